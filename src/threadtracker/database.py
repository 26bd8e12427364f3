"""Database schema and connection management for Thread Tracker.

Uses SQLAlchemy Core (not ORM) for explicit SQL control.
All datetimes are stored as naive UTC; the store converts at its boundary.
"""

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine

from threadtracker.config import Config

metadata = MetaData()


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Tracking
# =============================================================================

threads = Table(
    "threads",
    metadata,
    Column("id", String, primary_key=True),  # ULID
    Column("user_id", String, nullable=False),  # Discord snowflake
    Column("guild_id", String, nullable=False),
    Column("channel_id", String, nullable=False),
    Column("category", String(100), nullable=True),
    Column("created_at", DateTime, nullable=False, default=_utcnow_naive),
    Index("ix_threads_user_guild_channel", "user_id", "guild_id", "channel_id", unique=True),
    Index("ix_threads_user_guild_created", "user_id", "guild_id", "created_at"),
)

watchers = Table(
    "watchers",
    metadata,
    Column("id", String, primary_key=True),  # ULID
    Column("user_id", String, nullable=False),
    Column("guild_id", String, nullable=False),
    Column("channel_id", String, nullable=False),
    Column("message_id", String, nullable=False),  # Bound message
    Column("categories", JSON, nullable=True),  # NULL or [] means all categories
    Column("extra_message_ids", JSON, nullable=True),  # Continuation parts, in order
    Column("created_at", DateTime, nullable=False, default=_utcnow_naive),
    Index("ix_watchers_channel_message", "channel_id", "message_id", unique=True),
    Index("ix_watchers_user_guild", "user_id", "guild_id"),
)

muses = Table(
    "muses",
    metadata,
    Column("id", String, primary_key=True),  # ULID
    Column("user_id", String, nullable=False),
    Column("guild_id", String, nullable=False),
    Column("muse_name", String(100), nullable=False),
    Column("created_at", DateTime, nullable=False, default=_utcnow_naive),
    Index("ix_muses_user_guild", "user_id", "guild_id"),
)

todos = Table(
    "todos",
    metadata,
    Column("id", String, primary_key=True),  # ULID
    Column("user_id", String, nullable=False),
    Column("guild_id", String, nullable=False),
    Column("content", String(300), nullable=False),
    Column("category", String(100), nullable=True),  # Stored with the "!" marker
    Column("created_at", DateTime, nullable=False, default=_utcnow_naive),
    Index("ix_todos_user_guild_created", "user_id", "guild_id", "created_at"),
)


# =============================================================================
# Scheduling & Settings
# =============================================================================

scheduled_messages = Table(
    "scheduled_messages",
    metadata,
    Column("id", String, primary_key=True),  # ULID
    Column("user_id", String, nullable=False),
    Column("channel_id", String, nullable=False),
    Column("due_at", DateTime, nullable=False),  # Normalized UTC instant
    Column("local_datetime", String(60), nullable=False),  # As entered by the owner
    Column("timezone", String(60), nullable=False),  # Zone used for normalization
    Column("repeat", String(60), nullable=True),  # Canonical repeat rule
    Column("title", String(300), nullable=False),
    Column("body", Text, nullable=False),
    Column("archived", Boolean, nullable=False, default=False),
    Column("archive_reason", String, nullable=True),  # sent, removed, failed
    Column("failure", String, nullable=True),
    Column("created_at", DateTime, nullable=False, default=_utcnow_naive),
    Index("ix_scheduled_messages_archived_due", "archived", "due_at"),
    Index("ix_scheduled_messages_user", "user_id"),
)

user_settings = Table(
    "user_settings",
    metadata,
    Column("user_id", String, nullable=False),
    Column("name", String(300), nullable=False),
    Column("value", String(300), nullable=False),
    Column("updated_at", DateTime, nullable=False, default=_utcnow_naive),
    Index("ix_user_settings_user_name", "user_id", "name", unique=True),
)


# =============================================================================
# Schema Version (for migrations)
# =============================================================================

schema_version = Table(
    "_schema_version",
    metadata,
    Column("version", Integer, primary_key=True),
    Column("applied_at", DateTime, nullable=False),
    Column("description", String, nullable=True),
)


# =============================================================================
# Helper Functions
# =============================================================================


def get_engine(config: Config) -> Engine:
    """Create SQLAlchemy engine from config.

    Args:
        config: Application configuration.

    Returns:
        SQLAlchemy Engine instance.
    """
    db_path: Path = config.database_path

    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=config.log_level == "DEBUG",
    )

    # WAL lets the background tasks read while a command writes
    with engine.connect() as conn:
        conn.execute(text("PRAGMA journal_mode=WAL"))
        conn.commit()

    return engine


def create_tables(engine: Engine) -> None:
    """Create all tables in the database.

    Args:
        engine: SQLAlchemy Engine instance.
    """
    metadata.create_all(engine)
