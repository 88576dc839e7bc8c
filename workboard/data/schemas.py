"""
Workboard Core — Input schemas.

pydantic models for the payloads callers hand to the services. Entities
themselves stay dataclasses (see models.py); these only validate input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from workboard.core.errors import ValidationError
from workboard.data.models import Category, Priority, Recurrence

M = TypeVar("M", bound=BaseModel)


def _aware(v: datetime) -> datetime:
    # Naive timestamps are taken as UTC
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


class TaskDraft(BaseModel):
    """Fields accepted when creating a task.

    JSON example:
    {
        "title": "Weekly report",
        "assignee": "u2",
        "due_date": "2024-01-08T14:00:00Z",
        "recurrence": "weekly",
        "points": 75
    }
    """

    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=3)
    description: str = ""
    assignee: str = Field(min_length=1)
    due_date: datetime
    points: int = Field(ge=1)
    priority: Priority = Priority.MEDIUM
    category: Category = Category.CUSTOM
    recurrence: Recurrence = Recurrence.ONCE

    @field_validator("title", "assignee", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("due_date")
    @classmethod
    def make_aware(cls, v: datetime) -> datetime:
        return _aware(v)


class TaskPatch(BaseModel):
    """Fields an editor may change on an existing task.

    Status, timestamps and recurrence lineage are deliberately absent: they
    only change through the lifecycle transitions.
    """

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=3)
    description: str | None = None
    assignee: str | None = Field(default=None, min_length=1)
    due_date: datetime | None = None
    points: int | None = Field(default=None, ge=1)
    priority: Priority | None = None
    category: Category | None = None
    recurrence: Recurrence | None = None

    @field_validator("title", "assignee", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("due_date")
    @classmethod
    def make_aware(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return None
        return _aware(v)


class RewardTierInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    points: int = Field(ge=1)
    reward: str = Field(min_length=1)
    description: str = ""


class AchievementInput(BaseModel):
    """An achievement as an admin defines it. Keep `id` to preserve unlocks."""

    model_config = ConfigDict(extra="forbid")

    id: str = ""
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    icon: str = Field(default="🏆", min_length=1)
    points_required: int = Field(ge=1)
    reward: str | None = None

    @field_validator("title", "description", "icon", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v


def parse_input(model: type[M], data: Any) -> M:
    """Validate `data` against `model`, raising the core ValidationError.

    The message names the first failing field so it can be shown directly.
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(part) for part in first.get("loc", ())) or "input"
        if first.get("type") == "extra_forbidden":
            raise ValidationError(f"Field '{loc}' cannot be set here") from exc
        raise ValidationError(f"Invalid {loc}: {first.get('msg', 'invalid value')}") from exc
