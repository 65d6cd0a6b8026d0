from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


type CategoryId = str
type RecipeId = str


# Reference date of the exporting app's default date encoding.
REFERENCE_DATE = datetime(2001, 1, 1, tzinfo=UTC)


def parse_timestamp(value: Any) -> Any:
    """Accept ISO-8601 strings or seconds since the 2001 reference date."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        try:
            return REFERENCE_DATE + timedelta(seconds=value)
        except (OverflowError, ValueError) as exc:
            raise ValueError(f"timestamp out of range: {value!r}") from exc
    return value


class Category(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: CategoryId
    name: str
    icon: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "icon": self.icon}


class RecipeStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_number: int
    instruction: str
    ingredients: tuple[str, ...] = ()


class StoredRecipe(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: RecipeId
    category_id: CategoryId
    name: str
    recipe_time: int = 0
    details: str | None = None
    recipe_steps: tuple[RecipeStep, ...] = ()
    last_modified: datetime | None = None
    # Package fields this app does not model, kept for export.
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("last_modified", mode="before")
    @classmethod
    def parse_last_modified(cls, value: Any) -> Any:
        return parse_timestamp(value)

    def __repr__(self) -> str:
        return f"<StoredRecipe(id={self.id}, name={self.name})>"


class SelectionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    selected: int = Field(ge=0)
    total: int = Field(ge=0)

    def __str__(self) -> str:
        return f"{self.selected} of {self.total} selected"
