from collections.abc import Iterable
from datetime import UTC, datetime
import logging

from cookbox.models import Category, StoredRecipe
from cookbox.package import (
    CURRENT_VERSION,
    ExportedCategory,
    ExportedRecipe,
    RecipeExportPackage,
)
from cookbox.repository import RecordStore


logger = logging.getLogger(__name__)


def exported_recipe(recipe: StoredRecipe, category: Category) -> ExportedRecipe:
    return ExportedRecipe.model_validate(
        {
            **recipe.payload,
            "name": recipe.name,
            "category_name": category.name,
            "recipe_time": max(recipe.recipe_time, 0),
            "details": recipe.details,
            "recipe_steps": recipe.recipe_steps,
            "last_modified": recipe.last_modified,
        }
    )


async def export_categories(
    store: RecordStore,
    categories: Iterable[Category],
    *,
    source_name: str,
) -> RecipeExportPackage:
    """Snapshot `categories` and their recipes as a package other stores can import."""
    categories = list(categories)
    recipes: list[ExportedRecipe] = []
    for category in categories:
        for recipe in await store.fetch_recipes(category.id):
            if recipe.name:
                recipes.append(exported_recipe(recipe, category))

    logger.info("Exported %d recipes from %r", len(recipes), source_name)
    return RecipeExportPackage(
        version=CURRENT_VERSION,
        source_name=source_name,
        exported_at=datetime.now(UTC),
        categories=tuple(ExportedCategory(name=c.name, icon=c.icon) for c in categories),
        recipes=tuple(recipes),
    )
