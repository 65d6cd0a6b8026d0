from collections.abc import Iterator
import contextlib
from datetime import UTC, datetime
import json
import logging
import sqlite3
from typing import Any
from uuid import uuid4

from databases import Database
from databases.interfaces import Record

from cookbox.errors import NotFound, StoreUnavailable, ValidationRejected
from cookbox.models import Category, CategoryId, StoredRecipe
from cookbox.package import ExportedRecipe
from cookbox.repository import PersistOutcome


logger = logging.getLogger(__name__)


CREATE_CATEGORIES_TABLE = """
CREATE TABLE IF NOT EXISTS categories (
    id VARCHAR(64) PRIMARY KEY,
    name VARCHAR(100) NOT NULL,
    icon VARCHAR(50) NOT NULL,
    last_modified VARCHAR(40) NOT NULL
)
"""


CREATE_RECIPES_TABLE = """
CREATE TABLE IF NOT EXISTS recipes (
    id VARCHAR(64) PRIMARY KEY,
    category_id VARCHAR(64) NOT NULL,
    name VARCHAR(150) NOT NULL,
    recipe_time INTEGER NOT NULL DEFAULT 0,
    details TEXT,
    recipe_steps TEXT NOT NULL DEFAULT '[]',
    payload TEXT NOT NULL DEFAULT '{}',
    import_key VARCHAR(64) UNIQUE,
    last_modified VARCHAR(40)
)
"""


LIST_CATEGORIES = "SELECT id, name, icon FROM categories ORDER BY name, id"


GET_CATEGORY = "SELECT id, name, icon FROM categories WHERE id = :id"


CREATE_CATEGORY = """
INSERT INTO categories (id, name, icon, last_modified)
VALUES (:id, :name, :icon, :last_modified)
"""


UPDATE_CATEGORY = """
UPDATE categories SET name = :name, icon = :icon, last_modified = :last_modified
WHERE id = :id
"""


DELETE_CATEGORY = "DELETE FROM categories WHERE id = :id"


COUNT_RECIPES = "SELECT COUNT(*) FROM recipes WHERE category_id = :category_id"


LIST_RECIPES = """
SELECT
    id, category_id, name, recipe_time, details, recipe_steps, payload,
    last_modified
FROM recipes WHERE category_id = :category_id ORDER BY name, id
"""


FIND_RECIPE_BY_IMPORT_KEY = "SELECT id FROM recipes WHERE import_key = :import_key"


CREATE_RECIPE = """
INSERT INTO recipes (
    id, category_id, name, recipe_time, details, recipe_steps, payload,
    import_key, last_modified
)
VALUES (
    :id, :category_id, :name, :recipe_time, :details, :recipe_steps, :payload,
    :import_key, :last_modified
)
"""


@contextlib.contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as exc:
        raise ValidationRejected(f"{operation}: {exc}") from exc
    except sqlite3.Error as exc:
        raise StoreUnavailable(f"{operation}: {exc}") from exc


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _check_category_fields(name: str, icon: str) -> None:
    if not name.strip() or len(name) > 100:
        raise ValidationRejected("`name` is required (1-100 chars)")
    if not icon.strip() or len(icon) > 50:
        raise ValidationRejected("`icon` is required (1-50 chars)")


def _category(row: Record) -> Category:
    return Category(id=row["id"], name=row["name"], icon=row["icon"])


def _recipe(row: Record) -> StoredRecipe:
    return StoredRecipe(
        id=row["id"],
        category_id=row["category_id"],
        name=row["name"],
        recipe_time=row["recipe_time"],
        details=row["details"],
        recipe_steps=json.loads(row["recipe_steps"] or "[]"),
        payload=json.loads(row["payload"] or "{}"),
        last_modified=row["last_modified"],
    )


class SqlRecordStore:
    """Record store backed by a SQL database, SQLite unless configured otherwise."""

    def __init__(self, db: Database | str) -> None:
        self.db = Database(db) if isinstance(db, str) else db

    async def connect(self) -> None:
        await self.db.connect()
        await self.create_tables()

    async def disconnect(self) -> None:
        await self.db.disconnect()

    async def create_tables(self) -> None:
        with _translate_errors("create_tables"):
            await self.db.execute(query=CREATE_CATEGORIES_TABLE)  # pyright: ignore[reportUnknownMemberType]
            await self.db.execute(query=CREATE_RECIPES_TABLE)  # pyright: ignore[reportUnknownMemberType]

    async def _get_category(self, category_id: CategoryId) -> Record:
        with _translate_errors("get_category"):
            row = await self.db.fetch_one(GET_CATEGORY, values={"id": category_id})  # pyright: ignore[reportUnknownMemberType]
        if row is None:
            raise NotFound(f"Category {category_id} not found")
        return row

    async def fetch_all_categories(self) -> list[Category]:
        with _translate_errors("fetch_all_categories"):
            rows = await self.db.fetch_all(LIST_CATEGORIES)  # pyright: ignore[reportUnknownMemberType]
        return [_category(row) for row in rows]

    async def create_category(self, name: str, icon: str) -> Category:
        _check_category_fields(name, icon)
        category = Category(id=uuid4().hex, name=name, icon=icon)
        with _translate_errors("create_category"):
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_CATEGORY,
                values={**category.to_dict(), "last_modified": _now()},
            )
        return category

    async def update_category(
        self, category_id: CategoryId, name: str, icon: str
    ) -> Category:
        _check_category_fields(name, icon)
        await self._get_category(category_id)
        with _translate_errors("update_category"):
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                UPDATE_CATEGORY,
                values={
                    "id": category_id,
                    "name": name,
                    "icon": icon,
                    "last_modified": _now(),
                },
            )
        return Category(id=category_id, name=name, icon=icon)

    async def delete_category(self, category_id: CategoryId) -> None:
        await self._get_category(category_id)
        with _translate_errors("delete_category"):
            await self.db.execute(DELETE_CATEGORY, values={"id": category_id})  # pyright: ignore[reportUnknownMemberType]

    async def count_recipes(self, category_id: CategoryId) -> int:
        with _translate_errors("count_recipes"):
            count = await self.db.fetch_val(  # pyright: ignore[reportUnknownMemberType]
                COUNT_RECIPES, values={"category_id": category_id}
            )
        return int(count or 0)

    async def fetch_recipes(self, category_id: CategoryId) -> list[StoredRecipe]:
        with _translate_errors("fetch_recipes"):
            rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
                LIST_RECIPES, values={"category_id": category_id}
            )
        return [_recipe(row) for row in rows]

    async def persist_recipe(
        self,
        category_id: CategoryId,
        recipe: ExportedRecipe,
        *,
        import_key: str,
    ) -> PersistOutcome:
        await self._get_category(category_id)
        if len(recipe.name) > 150:
            raise ValidationRejected("`name` is required (1-150 chars)")

        with _translate_errors("persist_recipe"):
            existing = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
                FIND_RECIPE_BY_IMPORT_KEY, values={"import_key": import_key}
            )
        if existing is not None:
            return PersistOutcome.already_present

        last_modified = recipe.last_modified or datetime.now(UTC)
        values: dict[str, Any] = {
            "id": uuid4().hex,
            "category_id": category_id,
            "name": recipe.name,
            "recipe_time": recipe.recipe_time,
            "details": recipe.details,
            "recipe_steps": json.dumps(
                [s.model_dump(mode="json") for s in recipe.recipe_steps]
            ),
            "payload": json.dumps(recipe.model_extra or {}),
            "import_key": import_key,
            "last_modified": last_modified.isoformat(),
        }
        try:
            with _translate_errors("persist_recipe"):
                await self.db.execute(CREATE_RECIPE, values=values)  # pyright: ignore[reportUnknownMemberType]
        except ValidationRejected:
            # Lost a race with another import of the same recipe.
            with _translate_errors("persist_recipe"):
                existing = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
                    FIND_RECIPE_BY_IMPORT_KEY, values={"import_key": import_key}
                )
            if existing is None:
                raise
            return PersistOutcome.already_present
        return PersistOutcome.created
