"""Record stores: where categories and recipes actually live.

The rest of the package only talks to the `RecordStore` protocol. Two
implementations ship: `HttpRecordStore` here, for the recipe REST API, and
`cookbox.db.SqlRecordStore` for a local database.
"""
from enum import Enum
import logging
from typing import Any, Protocol, Self

import httpx

from cookbox.errors import (
    CookboxError,
    NotFound,
    StoreAuthError,
    StoreUnavailable,
    ValidationRejected,
)
from cookbox.models import Category, CategoryId, StoredRecipe
from cookbox.package import ExportedRecipe


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 30
PAGE_LIMIT = 100


class PersistOutcome(Enum):
    created = "created"
    already_present = "already_present"


class RecordStore(Protocol):
    """Remote, eventually consistent storage for categories and recipes.

    Every method may raise `StoreUnavailable`, `StoreAuthError`,
    `ValidationRejected` or `NotFound`.
    """

    async def fetch_all_categories(self) -> list[Category]:
        ...

    async def create_category(self, name: str, icon: str) -> Category:
        ...

    async def update_category(
        self, category_id: CategoryId, name: str, icon: str
    ) -> Category:
        ...

    async def delete_category(self, category_id: CategoryId) -> None:
        ...

    async def count_recipes(self, category_id: CategoryId) -> int:
        ...

    async def fetch_recipes(self, category_id: CategoryId) -> list[StoredRecipe]:
        ...

    async def persist_recipe(
        self,
        category_id: CategoryId,
        recipe: ExportedRecipe,
        *,
        import_key: str,
    ) -> PersistOutcome:
        """Store `recipe` under `category_id`.

        Returns `PersistOutcome.already_present` instead of writing when the
        store already holds the recipe identified by `import_key`.
        """
        ...


def api_client_factory(
    token: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> httpx.AsyncClient:
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(headers=headers, timeout=timeout)


def error_for_response(resp: httpx.Response, route: str) -> CookboxError:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        message = f"{route}: {body['error']}"
    else:
        message = f"{route}: HTTP {resp.status_code}"

    match resp.status_code:
        case 401 | 403:
            return StoreAuthError(message)
        case 404:
            return NotFound(message)
        case 400 | 409 | 413 | 415 | 422:
            return ValidationRejected(message)
        case _:
            return StoreUnavailable(message)


def _wire_id(category_id: CategoryId) -> int | str:
    # The API keys rows by integer; ids travel as strings everywhere else.
    return int(category_id) if category_id.isdigit() else category_id


def _category(row: dict[str, Any]) -> Category:
    return Category(id=str(row["id"]), name=row["name"], icon=row.get("icon") or "")


def _recipe(row: dict[str, Any]) -> StoredRecipe:
    return StoredRecipe(
        id=str(row["id"]),
        category_id=str(row["category_id"]),
        name=row["name"],
        recipe_time=row.get("recipe_time") or 0,
        details=row.get("details"),
        recipe_steps=row.get("recipe_steps") or (),
        last_modified=row.get("last_modified"),
    )


class HttpRecordStore:
    """Talks to `api.php`, routing with the `?route=` query parameter."""

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.url = url
        self.client = api_client_factory(token, timeout) if client is None else client

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        route: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        query: dict[str, Any] = {"route": route}
        if params:
            query.update(params)
        try:
            resp = await self.client.request(method, self.url, params=query, json=json)
        except httpx.TransportError as exc:
            raise StoreUnavailable(f"{route}: {exc!r}") from exc

        if not resp.is_success:
            raise error_for_response(resp, route)
        try:
            return resp.json()
        except ValueError as exc:
            raise StoreUnavailable(f"{route}: response is not JSON") from exc

    async def _paged(
        self, route: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        page = 1
        while True:
            query = {"page": page, "limit": PAGE_LIMIT, **(params or {})}
            data = await self._request("GET", route, params=query)
            batch = data.get("data") or []
            rows.extend(batch)
            if not batch or len(rows) >= int(data.get("total") or 0):
                return rows
            page += 1

    async def fetch_all_categories(self) -> list[Category]:
        return [_category(row) for row in await self._paged("/categories")]

    async def create_category(self, name: str, icon: str) -> Category:
        data = await self._request(
            "POST", "/categories", json={"name": name, "icon": icon}
        )
        return _category(data)

    async def update_category(
        self, category_id: CategoryId, name: str, icon: str
    ) -> Category:
        data = await self._request(
            "PUT", f"/categories/{category_id}", json={"name": name, "icon": icon}
        )
        return _category(data)

    async def delete_category(self, category_id: CategoryId) -> None:
        await self._request("DELETE", f"/categories/{category_id}")

    async def count_recipes(self, category_id: CategoryId) -> int:
        data = await self._request(
            "GET",
            "/recipes",
            params={"category_id": category_id, "page": 1, "limit": 1},
        )
        return int(data.get("total") or 0)

    async def fetch_recipes(self, category_id: CategoryId) -> list[StoredRecipe]:
        rows = await self._paged("/recipes", {"category_id": category_id})
        return [_recipe(row) for row in rows]

    async def persist_recipe(
        self,
        category_id: CategoryId,
        recipe: ExportedRecipe,
        *,
        import_key: str,
    ) -> PersistOutcome:
        # The API has nowhere to keep the import key, so a recipe with the same
        # name and time in the same category counts as the same recipe.
        for existing in await self.fetch_recipes(category_id):
            if existing.name == recipe.name and existing.recipe_time == recipe.recipe_time:
                logger.info("Recipe %r already in category %s", recipe.name, category_id)
                return PersistOutcome.already_present

        ingredients = sorted(
            {i for step in recipe.recipe_steps for i in step.ingredients}
        )
        await self._request(
            "POST",
            "/recipes",
            json={
                "category_id": _wire_id(category_id),
                "name": recipe.name,
                "recipe_time": recipe.recipe_time,
                "details": recipe.details,
                "ingredients": ingredients,
                "recipe_steps": [s.model_dump(mode="json") for s in recipe.recipe_steps],
                "import_key": import_key,
            },
        )
        return PersistOutcome.created
