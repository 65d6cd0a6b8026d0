"""Keeps the category cache in step with the record store.

Remote calls run concurrently; writes to the cache do not. Each mutation is
applied in one step, under `_lock`, once the store has confirmed it.

Every mutation gets a generation number. A load that resolves after
mutations it did not see merges rather than overwrites: categories deleted
since the load started stay deleted, and categories created or edited since
then keep their local version.
"""
import asyncio
from collections.abc import Callable
import logging

from cookbox.cache import CategoryCache
from cookbox.errors import CategoryNotEmpty, CookboxError, NotFound, ValidationRejected
from cookbox.models import Category, CategoryId
from cookbox.repository import RecordStore


logger = logging.getLogger(__name__)


type LoadingListener = Callable[[bool], None]


class SyncCoordinator:
    def __init__(
        self,
        store: RecordStore,
        cache: CategoryCache | None = None,
    ) -> None:
        self.store = store
        self.cache = CategoryCache() if cache is None else cache
        self.error: CookboxError | None = None
        self._lock = asyncio.Lock()
        self._load_task: asyncio.Task[tuple[Category, ...]] | None = None
        self._generation = 0
        self._touched: dict[CategoryId, int] = {}
        self._deleted: dict[CategoryId, int] = {}
        self._loading_listeners: list[LoadingListener] = []

    @property
    def categories(self) -> tuple[Category, ...]:
        return self.cache.categories

    @property
    def is_loading_categories(self) -> bool:
        return self._load_task is not None

    def subscribe_loading(self, listener: LoadingListener) -> Callable[[], None]:
        self._loading_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._loading_listeners:
                self._loading_listeners.remove(listener)

        return unsubscribe

    def _set_loading(self, task: asyncio.Task[tuple[Category, ...]] | None) -> None:
        self._load_task = task
        for listener in list(self._loading_listeners):
            listener(task is not None)

    def _fail(self, operation: str, exc: CookboxError) -> None:
        logger.warning("%s failed: %s", operation, exc)
        self.error = exc

    def _bump(self) -> int:
        self._generation += 1
        return self._generation

    async def load_categories(self) -> tuple[Category, ...]:
        """Replace the cache with the store's categories.

        Joins the load already in flight, if there is one. On failure the
        cache keeps its current contents.
        """
        if self._load_task is None:
            self._set_loading(asyncio.create_task(self._load()))
        assert self._load_task is not None
        return await asyncio.shield(self._load_task)

    async def _load(self) -> tuple[Category, ...]:
        started = self._generation
        self.error = None
        try:
            try:
                fetched = await self.store.fetch_all_categories()
            except CookboxError as exc:
                self._fail("load_categories", exc)
                raise

            async with self._lock:
                merged = self._merge(fetched, started)
                self.cache.apply(merged)
                self._touched = {
                    cid: gen for cid, gen in self._touched.items() if gen > started
                }
                self._deleted = {
                    cid: gen for cid, gen in self._deleted.items() if gen > started
                }
        finally:
            self._set_loading(None)
        logger.info("Loaded %d categories", len(merged))
        return merged

    def _merge(self, fetched: list[Category], started: int) -> tuple[Category, ...]:
        local = {c.id: c for c in self.cache.categories}
        merged: list[Category] = []
        seen: set[CategoryId] = set()
        for category in fetched:
            if category.id in seen or self._deleted.get(category.id, -1) > started:
                continue
            seen.add(category.id)
            if self._touched.get(category.id, -1) > started and category.id in local:
                category = local[category.id]
            merged.append(category)
        for category in self.cache.categories:
            if category.id not in seen and self._touched.get(category.id, -1) > started:
                merged.append(category)
        return tuple(merged)

    async def create_category(self, name: str, icon: str) -> Category:
        self.error = None
        if not name or not name.strip():
            exc = ValidationRejected("Category name cannot be empty")
            self._fail("create_category", exc)
            raise exc

        try:
            created = await self.store.create_category(name, icon)
        except CookboxError as exc:
            self._fail("create_category", exc)
            raise

        async with self._lock:
            self._touched[created.id] = self._bump()
            if created.id not in self.cache:
                self.cache.apply(self.cache.categories + (created,))
        logger.info("Created category %r (%s)", created.name, created.id)
        return created

    async def edit_category(
        self, category_id: CategoryId, name: str, icon: str
    ) -> Category:
        self.error = None
        try:
            if category_id not in self.cache:
                raise NotFound(f"Category {category_id} not found")
            if not name or not name.strip():
                raise ValidationRejected("Category name cannot be empty")
            updated = await self.store.update_category(category_id, name, icon)
        except CookboxError as exc:
            self._fail("edit_category", exc)
            raise

        async with self._lock:
            self._touched[updated.id] = self._bump()
            # A delete may have landed while the update was in flight.
            if updated.id in self.cache:
                self.cache.apply(
                    updated if c.id == updated.id else c for c in self.cache.categories
                )
        logger.info("Edited category %s", updated.id)
        return updated

    async def delete_category(self, category_id: CategoryId) -> None:
        """Delete a category.

        Deleting a category this coordinator already deleted succeeds, until a
        later load drops the record of it.
        """
        self.error = None
        if category_id in self._deleted and category_id not in self.cache:
            return
        try:
            if category_id not in self.cache:
                raise NotFound(f"Category {category_id} not found")
            try:
                count = await self.store.count_recipes(category_id)
                if count:
                    raise CategoryNotEmpty(category_id, count)
                await self.store.delete_category(category_id)
            except NotFound:
                logger.info("Category %s already absent from the store", category_id)
        except CookboxError as exc:
            self._fail("delete_category", exc)
            raise

        async with self._lock:
            self._deleted[category_id] = self._bump()
            self._touched.pop(category_id, None)
            if category_id in self.cache:
                self.cache.apply(c for c in self.cache.categories if c.id != category_id)
        logger.info("Deleted category %s", category_id)
