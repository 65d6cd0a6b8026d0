import asyncio
from collections import defaultdict
from typing import Any

import pytest

from cookbox.errors import CookboxError, NotFound, ValidationRejected
from cookbox.models import Category, CategoryId, StoredRecipe
from cookbox.package import ExportedRecipe, RecipeExportPackage
from cookbox.repository import PersistOutcome


class FakeRecordStore:
    """In-memory record store.

    `fail[operation]` holds errors to raise, consumed one per call.
    `gates[operation]` holds events a call waits on before touching state,
    which lets tests interleave operations.
    """

    def __init__(self, categories: list[Category] | None = None) -> None:
        self.categories: dict[CategoryId, Category] = {
            c.id: c for c in (categories or [])
        }
        self.recipes: dict[CategoryId, list[StoredRecipe]] = defaultdict(list)
        self.import_keys: set[str] = set()
        self.fail: dict[str, list[CookboxError]] = defaultdict(list)
        self.fail_recipes: dict[str, CookboxError] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, Any]] = []
        self._next_id = 1

    async def _enter(self, operation: str, arg: Any = None) -> None:
        self.calls.append((operation, arg))
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        if self.fail[operation]:
            raise self.fail[operation].pop(0)

    async def fetch_all_categories(self) -> list[Category]:
        # The response reflects the store as of when the request was made.
        snapshot = list(self.categories.values())
        await self._enter("fetch_all_categories")
        return snapshot

    async def create_category(self, name: str, icon: str) -> Category:
        await self._enter("create_category", name)
        if not name.strip():
            raise ValidationRejected("`name` is required")
        category = Category(id=f"c{self._next_id}", name=name, icon=icon)
        self._next_id += 1
        self.categories[category.id] = category
        return category

    async def update_category(
        self, category_id: CategoryId, name: str, icon: str
    ) -> Category:
        await self._enter("update_category", category_id)
        if category_id not in self.categories:
            raise NotFound(category_id)
        category = Category(id=category_id, name=name, icon=icon)
        self.categories[category_id] = category
        return category

    async def delete_category(self, category_id: CategoryId) -> None:
        await self._enter("delete_category", category_id)
        if self.categories.pop(category_id, None) is None:
            raise NotFound(category_id)

    async def count_recipes(self, category_id: CategoryId) -> int:
        await self._enter("count_recipes", category_id)
        return len(self.recipes.get(category_id, []))

    async def fetch_recipes(self, category_id: CategoryId) -> list[StoredRecipe]:
        await self._enter("fetch_recipes", category_id)
        return list(self.recipes.get(category_id, []))

    async def persist_recipe(
        self,
        category_id: CategoryId,
        recipe: ExportedRecipe,
        *,
        import_key: str,
    ) -> PersistOutcome:
        await self._enter("persist_recipe", recipe.name)
        if recipe.name in self.fail_recipes:
            raise self.fail_recipes[recipe.name]
        if category_id not in self.categories:
            raise NotFound(category_id)
        if import_key in self.import_keys:
            return PersistOutcome.already_present
        self.import_keys.add(import_key)
        self.recipes[category_id].append(
            StoredRecipe(
                id=f"r{len(self.import_keys)}",
                category_id=category_id,
                name=recipe.name,
                recipe_time=recipe.recipe_time,
                details=recipe.details,
                recipe_steps=recipe.recipe_steps,
                last_modified=recipe.last_modified,
                payload=recipe.model_extra or {},
            )
        )
        return PersistOutcome.created

    def recipe_names(self, category_id: CategoryId) -> list[str]:
        return [r.name for r in self.recipes.get(category_id, [])]


def make_package(*recipes: tuple[str, str], **kwargs: Any) -> RecipeExportPackage:
    return RecipeExportPackage(
        source_name=kwargs.pop("source_name", "Family Recipes"),
        recipes=tuple(
            ExportedRecipe(name=name, category_name=category, recipe_time=10)
            for name, category in recipes
        ),
        **kwargs,
    )


@pytest.fixture()
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture()
def package_data() -> dict[str, Any]:
    return {
        "version": 1,
        "sourceName": "Family Recipes",
        "exportedAt": "2025-09-16T12:34:56Z",
        "categories": [
            {"name": "Soup", "icon": "🥣"},
            {"name": "Salad", "icon": "🥗"},
        ],
        "recipes": [
            {
                "name": "Tomato Soup",
                "categoryName": "Soup",
                "recipeTime": 30,
                "details": "# Tomato Soup",
                "recipeSteps": [
                    {
                        "step_number": 1,
                        "instruction": "Simmer.",
                        "ingredients": ["tomatoes", "onion"],
                    }
                ],
                "lastModified": "2025-09-01T10:00:00Z",
            },
            {
                "name": "Leek Soup",
                "categoryName": "Soup",
                "recipeTime": 45,
                "lastModified": 780000000.0,
            },
            {
                "name": "Caesar",
                "categoryName": "Salad",
                "recipeTime": 15,
                "servings": 2,
            },
        ],
    }
