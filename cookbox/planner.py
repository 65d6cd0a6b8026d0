"""Grouping and selection over an import preview.

Category names are grouped exactly as written in the package: "Soup" and
"soup" are two groups.
"""
from collections.abc import Iterable

from cookbox.models import SelectionSummary
from cookbox.package import ExportedRecipe, ImportPreview, RecipeExportPackage


type Selection = frozenset[int]
type Group = list[tuple[int, ExportedRecipe]]


def group_by_category(package: RecipeExportPackage) -> dict[str, Group]:
    groups: dict[str, Group] = {}
    for index, recipe in enumerate(package.recipes):
        groups.setdefault(recipe.category_name, []).append((index, recipe))
    return groups


def sorted_groups(package: RecipeExportPackage) -> list[tuple[str, Group]]:
    """Groups ordered by category name, the way the import sheet lists them."""
    return sorted(group_by_category(package).items(), key=lambda item: item[0])


def select_all(package: RecipeExportPackage) -> Selection:
    return frozenset(range(len(package.recipes)))


def deselect_all() -> Selection:
    return frozenset()


def toggle(index: int, package: RecipeExportPackage, selection: Selection) -> Selection:
    if not 0 <= index < len(package.recipes):
        return selection
    if index in selection:
        return selection - {index}
    return selection | {index}


def selection_summary(
    package: RecipeExportPackage, selection: Selection
) -> SelectionSummary:
    return SelectionSummary(selected=len(selection), total=len(package.recipes))


class ImportPlanner:
    """Selection state for one preview, as shown while choosing what to import."""

    def __init__(
        self,
        preview: ImportPreview,
        selection: Iterable[int] | None = None,
    ) -> None:
        self.preview = preview
        if selection is None:
            self._selection = select_all(self.package)
        else:
            self._selection = deselect_all()
            for index in selection:
                if index not in self._selection:
                    self.toggle(index)

    @property
    def package(self) -> RecipeExportPackage:
        return self.preview.package

    @property
    def selection(self) -> Selection:
        return self._selection

    @property
    def groups(self) -> list[tuple[str, Group]]:
        return sorted_groups(self.package)

    @property
    def summary(self) -> SelectionSummary:
        return selection_summary(self.package, self._selection)

    @property
    def can_import(self) -> bool:
        return bool(self._selection)

    def select_all(self) -> Selection:
        self._selection = select_all(self.package)
        return self._selection

    def deselect_all(self) -> Selection:
        self._selection = deselect_all()
        return self._selection

    def toggle(self, index: int) -> Selection:
        self._selection = toggle(index, self.package, self._selection)
        return self._selection

    def set_category_selected(self, category_name: str, selected: bool) -> Selection:
        indices = {i for i, _ in group_by_category(self.package).get(category_name, [])}
        if selected:
            self._selection = self._selection | indices
        else:
            self._selection = self._selection - indices
        return self._selection

    def selected_recipes(self) -> list[tuple[int, ExportedRecipe]]:
        recipes = self.package.recipes
        return [(i, recipes[i]) for i in sorted(self._selection)]
