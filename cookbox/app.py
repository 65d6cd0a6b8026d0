import contextlib
import json
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from cookbox import config
from cookbox.errors import (
    CategoryNotEmpty,
    CookboxError,
    NotFound,
    PackageError,
    StoreAuthError,
    StoreUnavailable,
    ValidationRejected,
)
from cookbox.importer import ImportResult
from cookbox.package import encode
from cookbox.planner import ImportPlanner
from cookbox.services import RecipeBox


CONFIG = config.Config()


def status_for(exc: CookboxError) -> int:
    match exc:
        case StoreUnavailable():
            return 503
        case StoreAuthError():
            return 401
        case NotFound():
            return 404
        case CategoryNotEmpty():
            return 409
        case ValidationRejected():
            return 422
        case PackageError():
            return 400
        case _:
            return 500


async def cookbox_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, CookboxError)
    return JSONResponse(
        {"error": str(exc), "type": type(exc).__name__},
        status_code=status_for(exc),
    )


async def json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except json.JSONDecodeError as exc:
        raise ValidationRejected("Body must be JSON.") from exc
    if not isinstance(body, dict):
        raise ValidationRejected("Body must be a JSON object.")
    return body


def box(request: Request) -> RecipeBox:
    return request.app.state.box


def preview_json(import_id: str, planner: ImportPlanner) -> dict[str, Any]:
    summary = planner.summary
    return {
        "id": import_id,
        "source": planner.preview.source,
        "summary": {
            "selected": summary.selected,
            "total": summary.total,
            "text": str(summary),
        },
        "can_import": planner.can_import,
        "groups": [
            {
                "category": name,
                "recipes": [
                    {
                        "index": index,
                        "name": recipe.name,
                        "recipe_time": recipe.recipe_time,
                        "selected": index in planner.selection,
                    }
                    for index, recipe in items
                ],
            }
            for name, items in planner.groups
        ],
    }


def result_json(result: ImportResult) -> dict[str, Any]:
    return {
        "imported": result.imported,
        "created_categories": [c.to_dict() for c in result.created_categories],
        "failures": [
            {
                "index": f.index,
                "recipe": f.recipe_name,
                "category": f.category_name,
                "cause": f.cause,
                "error": str(f.error),
            }
            for f in result.failures
        ],
        "skipped_duplicates": result.skipped_duplicates,
        "not_attempted": result.not_attempted,
        "cancelled": result.cancelled,
        "summary": str(result),
    }


def categories_json(request: Request) -> dict[str, Any]:
    coordinator = box(request).coordinator
    return {
        "categories": [c.to_dict() for c in coordinator.categories],
        "is_loading": coordinator.is_loading_categories,
        "error": None if coordinator.error is None else str(coordinator.error),
    }


async def categories(request: Request) -> JSONResponse:
    match request.method.lower():
        case "get":
            return JSONResponse(categories_json(request))
        case "post":
            body = await json_body(request)
            created = await box(request).coordinator.create_category(
                str(body.get("name") or ""),
                str(body.get("icon") or CONFIG.default_icon),
            )
            return JSONResponse(created.to_dict(), status_code=201)
        case _:
            raise ValueError("Unsupported method.")


async def load_categories(request: Request) -> JSONResponse:
    await box(request).coordinator.load_categories()
    return JSONResponse(categories_json(request))


async def category_detail(request: Request) -> JSONResponse:
    category_id = request.path_params["id"]
    coordinator = box(request).coordinator
    match request.method.lower():
        case "put":
            body = await json_body(request)
            current = coordinator.cache.get(category_id)
            updated = await coordinator.edit_category(
                category_id,
                str(body.get("name") or ""),
                str(body.get("icon") or (current.icon if current else CONFIG.default_icon)),
            )
            return JSONResponse(updated.to_dict())
        case "delete":
            await coordinator.delete_category(category_id)
            return JSONResponse({"deleted": category_id})
        case _:
            raise ValueError("Unsupported method.")


async def imports(request: Request) -> JSONResponse:
    source = request.query_params.get("source", "")
    import_id, planner = box(request).open_import(await request.body(), source=source)
    return JSONResponse(preview_json(import_id, planner), status_code=201)


async def import_detail(request: Request) -> JSONResponse:
    import_id = request.path_params["id"]
    match request.method.lower():
        case "get":
            planner = box(request).get_import(import_id)
            return JSONResponse(preview_json(import_id, planner))
        case "delete":
            box(request).close_import(import_id)
            return JSONResponse({"deleted": import_id})
        case _:
            raise ValueError("Unsupported method.")


async def import_selection(request: Request) -> JSONResponse:
    import_id = request.path_params["id"]
    planner = box(request).get_import(import_id)
    match request.path_params["action"]:
        case "select-all":
            planner.select_all()
        case "deselect-all":
            planner.deselect_all()
        case "category":
            body = await json_body(request)
            planner.set_category_selected(
                str(body.get("category", "")), bool(body.get("selected", True))
            )
        case action:
            raise NotFound(f"Unknown selection action {action!r}")
    return JSONResponse(preview_json(import_id, planner))


async def import_toggle(request: Request) -> JSONResponse:
    import_id = request.path_params["id"]
    planner = box(request).get_import(import_id)
    planner.toggle(request.path_params["index"])
    return JSONResponse(preview_json(import_id, planner))


async def import_commit(request: Request) -> JSONResponse:
    result = await box(request).commit_import(request.path_params["id"])
    return JSONResponse(result_json(result))


async def export(request: Request) -> Response:
    package = await box(request).export()
    return Response(encode(package), media_type="application/json")


def create_app(recipe_box: RecipeBox | None = None) -> Starlette:
    recipe_box = RecipeBox.from_config(CONFIG) if recipe_box is None else recipe_box

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        await recipe_box.start()
        yield
        await recipe_box.stop()

    app = Starlette(
        debug=True if CONFIG.env == config.Env.local else False,
        routes=[
            Route("/categories", categories, methods=["GET", "POST"]),
            Route("/categories/load", load_categories, methods=["POST"]),
            Route("/categories/{id}", category_detail, methods=["PUT", "DELETE"]),
            Route("/imports", imports, methods=["POST"]),
            Route("/imports/{id}", import_detail, methods=["GET", "DELETE"]),
            Route("/imports/{id}/toggle/{index:int}", import_toggle, methods=["POST"]),
            Route("/imports/{id}/commit", import_commit, methods=["POST"]),
            Route("/imports/{id}/{action}", import_selection, methods=["POST"]),
            Route("/export", export),
        ],
        exception_handlers={CookboxError: cookbox_error},
        lifespan=lifespan,
    )
    app.state.box = recipe_box
    return app


app = create_app()
