"""Commit a selection from an import preview into the record store.

Why is this hard?

- Category names in a package are not ids. They have to be resolved against
  the categories we know, and the missing ones created, once each.
- The store is remote. Any write can fail, and a half finished import must
  still be reported honestly.
- Running the same import twice must not double up recipes.

Recipe failures are collected and the run carries on. A category that cannot
be created fails every recipe that needed it. Nothing is rolled back.
"""
import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
import hashlib
import json
import logging

from cookbox.errors import CategoryCreateFailed, CookboxError, ValidationRejected
from cookbox.models import Category
from cookbox.package import ExportedRecipe, RecipeExportPackage
from cookbox.planner import Selection
from cookbox.repository import PersistOutcome, RecordStore
from cookbox.sync import SyncCoordinator


logger = logging.getLogger(__name__)


DEFAULT_ICON = "🍽️"


@dataclass(frozen=True)
class CategoryCreateRequest:
    name: str
    icon: str


type Resolution = Category | CategoryCreateRequest


@dataclass(frozen=True)
class ImportFailure:
    index: int
    recipe_name: str
    category_name: str
    error: CookboxError

    @property
    def cause(self) -> str:
        return type(self.error).__name__


@dataclass
class ImportResult:
    imported: list[int] = field(default_factory=list)
    created_categories: list[Category] = field(default_factory=list)
    failures: list[ImportFailure] = field(default_factory=list)
    skipped_duplicates: list[int] = field(default_factory=list)
    not_attempted: list[int] = field(default_factory=list)
    cancelled: bool = False

    @property
    def imported_count(self) -> int:
        return len(self.imported)

    @property
    def categories_created(self) -> int:
        return len(self.created_categories)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def changed_anything(self) -> bool:
        return bool(self.imported or self.created_categories)

    def __str__(self) -> str:
        parts = [
            f"{self.imported_count} imported",
            f"{self.categories_created} categories created",
            f"{self.failed_count} failed",
        ]
        if self.skipped_duplicates:
            parts.append(f"{len(self.skipped_duplicates)} already present")
        if self.cancelled:
            parts.append(f"cancelled with {len(self.not_attempted)} left")
        return ", ".join(parts)


def import_key(package: RecipeExportPackage, recipe: ExportedRecipe) -> str:
    """Stable identity of a recipe across repeated imports of the same export."""
    last_modified = recipe.last_modified.isoformat() if recipe.last_modified else None
    raw = json.dumps(
        [
            package.source_name,
            recipe.category_name,
            recipe.name,
            recipe.recipe_time,
            last_modified,
        ],
        ensure_ascii=False,
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def resolve_categories(
    package: RecipeExportPackage,
    names: Iterable[str],
    existing: Iterable[Category],
    *,
    default_icon: str = DEFAULT_ICON,
) -> dict[str, Resolution]:
    """Map category names to known categories or to requests to create them.

    Matching is exact and case sensitive. The first known category with the
    name wins.
    """
    known: dict[str, Category] = {}
    for category in existing:
        known.setdefault(category.name, category)

    resolved: dict[str, Resolution] = {}
    for name in names:
        if name in resolved:
            continue
        if name in known:
            resolved[name] = known[name]
        else:
            icon = package.icon_for(name) or default_icon
            resolved[name] = CategoryCreateRequest(name=name, icon=icon)
    return resolved


class ImportExecutor:
    def __init__(
        self,
        coordinator: SyncCoordinator,
        store: RecordStore | None = None,
        *,
        default_icon: str = DEFAULT_ICON,
        refresh: bool = True,
    ) -> None:
        self.coordinator = coordinator
        self.store = coordinator.store if store is None else store
        self.default_icon = default_icon
        self.refresh = refresh

    async def import_selected(
        self,
        package: RecipeExportPackage,
        selection: Selection,
        existing_categories: Iterable[Category] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ImportResult:
        result = ImportResult()
        if not selection:
            return result

        recipes = package.recipes
        invalid = sorted(i for i in selection if not 0 <= i < len(recipes))
        if invalid:
            raise ValidationRejected(f"Selection holds invalid indices: {invalid}")

        if existing_categories is None:
            existing_categories = self.coordinator.categories
        order = sorted(selection)
        resolutions = resolve_categories(
            package,
            (recipes[i].category_name for i in order),
            existing_categories,
            default_icon=self.default_icon,
        )
        failed_names: dict[str, CategoryCreateFailed] = {}

        for position, index in enumerate(order):
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                result.not_attempted = order[position:]
                logger.info("Import cancelled, %d recipes left", len(order) - position)
                break

            recipe = recipes[index]
            name = recipe.category_name

            if name in failed_names:
                self._fail(result, index, recipe, failed_names[name])
                continue

            resolution = resolutions[name]
            if isinstance(resolution, CategoryCreateRequest):
                try:
                    category = await self.coordinator.create_category(
                        resolution.name, resolution.icon
                    )
                except CookboxError as exc:
                    failed_names[name] = CategoryCreateFailed(name, exc)
                    self._fail(result, index, recipe, failed_names[name])
                    continue
                resolutions[name] = category
                result.created_categories.append(category)
            else:
                category = resolution

            try:
                outcome = await self.store.persist_recipe(
                    category.id, recipe, import_key=import_key(package, recipe)
                )
            except CookboxError as exc:
                self._fail(result, index, recipe, exc)
                continue

            if outcome is PersistOutcome.already_present:
                result.skipped_duplicates.append(index)
            else:
                result.imported.append(index)

        logger.info("Import of %r finished: %s", package.source_name, result)
        if self.refresh and result.changed_anything:
            await self._refresh()
        return result

    def _fail(
        self,
        result: ImportResult,
        index: int,
        recipe: ExportedRecipe,
        error: CookboxError,
    ) -> None:
        logger.warning("Could not import %r: %s", recipe.name, error)
        result.failures.append(
            ImportFailure(
                index=index,
                recipe_name=recipe.name,
                category_name=recipe.category_name,
                error=error,
            )
        )

    async def _refresh(self) -> None:
        try:
            await self.coordinator.load_categories()
        except CookboxError as exc:
            # Recorded on the coordinator; the import itself already happened.
            logger.warning("Refresh after import failed: %s", exc)
