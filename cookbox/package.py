"""Recipe export packages.

A package is JSON written by the exporting app:

    {"version": 1, "sourceName": "...", "exportedAt": ..., "categories":
     [{"name": "Soup", "icon": "🥣"}], "recipes": [{"name": "...",
     "categoryName": "Soup", "recipeTime": 30, "details": "...",
     "recipeSteps": [...], "lastModified": ...}]}

Older exports carry no version marker and are read as version 1.
"""
from collections.abc import Mapping
from datetime import datetime
import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from cookbox.errors import MalformedPackage, UnsupportedVersion
from cookbox.models import RecipeStep, parse_timestamp


logger = logging.getLogger(__name__)


CURRENT_VERSION = 1
SUPPORTED_VERSIONS = frozenset({CURRENT_VERSION})


class _PackageModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class ExportedCategory(_PackageModel):
    name: str
    icon: str


class ExportedRecipe(_PackageModel):
    # Unknown keys are payload and travel with the recipe untouched.
    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1)
    category_name: str
    recipe_time: int = Field(ge=0)
    details: str | None = None
    recipe_steps: tuple[RecipeStep, ...] = ()
    last_modified: datetime | None = None

    @field_validator("last_modified", mode="before")
    @classmethod
    def parse_last_modified(cls, value: Any) -> Any:
        return parse_timestamp(value)


class RecipeExportPackage(_PackageModel):
    version: int | None = None
    source_name: str = ""
    exported_at: datetime | None = None
    categories: tuple[ExportedCategory, ...] = ()
    recipes: tuple[ExportedRecipe, ...]

    @field_validator("exported_at", mode="before")
    @classmethod
    def parse_exported_at(cls, value: Any) -> Any:
        return parse_timestamp(value)

    def icon_for(self, category_name: str) -> str | None:
        for category in self.categories:
            if category.name == category_name:
                return category.icon
        return None


class ImportPreview:
    """A decoded package and where it came from. Selection lives elsewhere."""

    def __init__(self, *, source: str, package: RecipeExportPackage) -> None:
        self._source = source
        self._package = package

    @property
    def source(self) -> str:
        return self._source

    @property
    def package(self) -> RecipeExportPackage:
        return self._package

    @property
    def recipes(self) -> tuple[ExportedRecipe, ...]:
        return self._package.recipes

    def __len__(self) -> int:
        return len(self._package.recipes)

    def __repr__(self) -> str:
        return f"<ImportPreview(source={self._source}, recipes={len(self)})>"


def decode(raw: bytes | str | Mapping[str, Any], *, source: str = "") -> ImportPreview:
    if isinstance(raw, (bytes, str)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedPackage(f"Package is not valid JSON: {exc}") from exc
    else:
        data = raw

    if not isinstance(data, Mapping):
        raise MalformedPackage("Package must be a JSON object.")

    version = data.get("version")
    if version is not None:
        if not isinstance(version, int) or isinstance(version, bool):
            raise MalformedPackage(f"Package version must be an integer: {version!r}")
        if version not in SUPPORTED_VERSIONS:
            raise UnsupportedVersion(version)

    try:
        package = RecipeExportPackage.model_validate(data)
    except ValidationError as exc:
        raise MalformedPackage(
            f"Package does not match the export schema ({exc.error_count()} errors)."
        ) from exc

    logger.info("Decoded package %r with %d recipes", source, len(package.recipes))
    return ImportPreview(source=source, package=package)


def encode(package: RecipeExportPackage) -> bytes:
    package = package.model_copy(update={"version": CURRENT_VERSION})
    return package.model_dump_json(by_alias=True, indent=2).encode("utf-8")
