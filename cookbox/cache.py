"""The category list the presentation layer observes.

Only the sync coordinator writes to it, and only through `apply`, so every
observer sees whole lists and never a half applied change.
"""
from collections.abc import Callable, Iterable, Iterator

from cookbox.models import Category, CategoryId


type Listener = Callable[[tuple[Category, ...]], None]


class CategoryCache:
    def __init__(self, categories: Iterable[Category] = ()) -> None:
        self._categories: tuple[Category, ...] = tuple(categories)
        self._listeners: list[Listener] = []

    @property
    def categories(self) -> tuple[Category, ...]:
        return self._categories

    def __len__(self) -> int:
        return len(self._categories)

    def __iter__(self) -> Iterator[Category]:
        return iter(self._categories)

    def __contains__(self, category_id: object) -> bool:
        return any(c.id == category_id for c in self._categories)

    def get(self, category_id: CategoryId) -> Category | None:
        for category in self._categories:
            if category.id == category_id:
                return category
        return None

    def find_by_name(self, name: str) -> Category | None:
        for category in self._categories:
            if category.name == name:
                return category
        return None

    def apply(self, categories: Iterable[Category]) -> None:
        new = tuple(categories)
        ids = [c.id for c in new]
        if len(ids) != len(set(ids)):
            raise ValueError("Category ids must be unique within the cache.")
        self._categories = new
        for listener in list(self._listeners):
            listener(new)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
