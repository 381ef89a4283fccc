"""
symbolica.schemas — Input Validation
=====================================

Pydantic models for everything a mutation accepts.  Validation runs before
any network call; :func:`validate` converts pydantic's error into our
:class:`~symbolica.errors.ValidationError` so callers only ever see the
one taxonomy.
"""

from __future__ import annotations

from typing import Any, Literal, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from symbolica.constants import CHAT_MAX_LENGTH
from symbolica.database.models import QuestActivityType, VerificationStatus
from symbolica.errors import ValidationError

M = TypeVar("M", bound=BaseModel)

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


def validate(model: type[M], data: Any) -> M:
    """Parse *data* into *model* or raise :class:`ValidationError`."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        message = first.get("msg") or "Invalid input"
        message = message.removeprefix("Value error, ")
        raise ValidationError(message, field=field) from None


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------
class CollectionCreate(BaseModel):
    slug: str = Field(pattern=SLUG_PATTERN, max_length=120)
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    category: str | None = None
    is_featured: bool = False


class CollectionUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    category: str | None = None
    is_featured: bool | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Symbols
# ---------------------------------------------------------------------------
class SymbolFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    culture: str | None = None
    period: str | None = None
    technique: str | None = None
    search: str | None = Field(default=None, max_length=200)

    def active(self) -> dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v}


class AdminSymbolQuery(BaseModel):
    """One page of the admin symbol table."""

    model_config = ConfigDict(frozen=True)

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=100)
    sort_by: Literal[
        "name", "culture", "period", "created_at", "updated_at",
        "image_count", "verification_count",
    ] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    search: str | None = Field(default=None, max_length=200)
    culture: str | None = None
    period: str | None = None
    has_images: bool | None = None
    verified: bool | None = None


class SymbolUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    culture: str | None = Field(default=None, max_length=100)
    period: str | None = Field(default=None, max_length=100)
    technique: str | None = Field(default=None, max_length=100)
    description: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class VerificationIn(BaseModel):
    status: VerificationStatus
    confidence: int = Field(default=50, ge=0, le=100)
    summary: str | None = None


# ---------------------------------------------------------------------------
# Group chat
# ---------------------------------------------------------------------------
def _nonblank(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Message cannot be empty")
    return v


class ChatMessageIn(BaseModel):
    content: str = Field(max_length=CHAT_MAX_LENGTH)
    message_type: str = "text"
    reply_to_id: str | None = None
    client_id: str | None = None

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        return _nonblank(v)


class ChatMessageEdit(BaseModel):
    content: str = Field(max_length=CHAT_MAX_LENGTH)

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        return _nonblank(v)


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------
class QuestJoin(BaseModel):
    role: str = "explorer"
    team_name: str | None = Field(default=None, max_length=80)


class QuestActivityIn(BaseModel):
    activity_type: QuestActivityType
    activity_data: dict[str, Any] = Field(default_factory=dict)
