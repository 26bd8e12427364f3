"""Pydantic models for Thread Tracker entities.

These models bridge between the database (SQLAlchemy Core) and application code,
providing validation and serialization.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID


# =============================================================================
# Enums
# =============================================================================


class SortOrder(str, Enum):
    """Digest ordering preference."""

    INSERTION = "insertion"
    CATEGORY = "category"  # Alphabetical by category name


class ArchiveReason(str, Enum):
    """Why a scheduled message stopped being eligible for dispatch."""

    SENT = "sent"
    REMOVED = "removed"
    FAILED = "failed"


# =============================================================================
# Helper Functions
# =============================================================================


def generate_id() -> str:
    """Generate a new ULID for entities."""
    return str(ULID())


def utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Entity Models
# =============================================================================


class TrackedThread(BaseModel):
    """A channel or thread a user is waiting on replies in."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=generate_id)
    user_id: str
    guild_id: str
    channel_id: str
    category: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Watcher(BaseModel):
    """A live message that is periodically re-rendered with a user's digest."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=generate_id)
    user_id: str
    guild_id: str
    channel_id: str
    message_id: str
    categories: list[str] | None = None
    extra_message_ids: list[str] | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def message_ids(self) -> list[str]:
        """Bound message first, then continuation parts in order."""
        return [self.message_id, *(self.extra_message_ids or [])]


class Muse(BaseModel):
    """A character name whose replies count as the owner's own."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=generate_id)
    user_id: str
    guild_id: str
    muse_name: str
    created_at: datetime = Field(default_factory=utcnow)


class Todo(BaseModel):
    """A to do list entry."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=generate_id)
    user_id: str
    guild_id: str
    content: str
    category: str | None = None  # Includes the "!" marker
    created_at: datetime = Field(default_factory=utcnow)


class ScheduledMessage(BaseModel):
    """A message to be posted at a given instant, optionally repeating."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=generate_id)
    user_id: str
    channel_id: str
    due_at: datetime
    local_datetime: str
    timezone: str = "UTC"
    repeat: str | None = None
    title: str
    body: str
    archived: bool = False
    archive_reason: ArchiveReason | None = None
    failure: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class ScheduledMessageListing(BaseModel):
    """A scheduled message with its due instant rendered for its owner."""

    message: ScheduledMessage
    next_due_local: str
    display_timezone: str


class Statistics(BaseModel):
    """Usage counters across all communities."""

    users: int = 0
    servers: int = 0
    threads_distinct: int = 0
    threads_total: int = 0
    muses: int = 0
    todos: int = 0
    watchers: int = 0
    scheduled_messages: int = 0


# =============================================================================
# Conversion Helpers
# =============================================================================


def row_to_model[T: BaseModel](row, model_class: type[T]) -> T:
    """Convert SQLAlchemy row to Pydantic model.

    Naive datetimes coming back from SQLite are marked as UTC.

    Args:
        row: SQLAlchemy row result.
        model_class: Target Pydantic model class.

    Returns:
        Instance of the model class.
    """
    data = {
        key: ensure_utc(value) if isinstance(value, datetime) else value
        for key, value in row._mapping.items()
    }
    return model_class.model_validate(data)


def model_to_dict(model: BaseModel, exclude_none: bool = False) -> dict[str, Any]:
    """Convert Pydantic model to dict for database insert.

    Datetimes are converted to naive UTC for storage.

    Args:
        model: Pydantic model instance.
        exclude_none: If True, exclude None values.

    Returns:
        Dictionary representation.
    """
    data = model.model_dump(exclude_none=exclude_none)
    return {
        key: ensure_utc(value).replace(tzinfo=None) if isinstance(value, datetime) else value
        for key, value in data.items()
    }
