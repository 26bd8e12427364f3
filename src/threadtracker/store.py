"""Typed read/write access to persisted entities.

The Store holds no business rules beyond uniqueness checks; every mutation is
a single statement or a single transaction, which is the only synchronization
the background tasks rely on.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, distinct, func, null, select, union, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine

from threadtracker.categories import UNSET
from threadtracker.database import (
    muses,
    scheduled_messages,
    threads,
    todos,
    user_settings,
    watchers,
)
from threadtracker.models import (
    ArchiveReason,
    Muse,
    ScheduledMessage,
    Statistics,
    Todo,
    TrackedThread,
    Watcher,
    ensure_utc,
    model_to_dict,
    row_to_model,
    utcnow,
)


def _db_time(value: datetime) -> datetime:
    """Convert an aware datetime to the naive UTC form stored in SQLite."""
    return ensure_utc(value).replace(tzinfo=None)


class Store:
    """Store gateway over the SQLAlchemy engine.

    Attributes:
        engine: SQLAlchemy engine for the tracker database.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # =========================================================================
    # Tracked threads
    # =========================================================================

    def add_thread(
        self,
        user_id: str,
        guild_id: str,
        channel_id: str,
        category: str | None = None,
    ) -> bool:
        """Track a thread. Returns False if it was already tracked."""
        thread = TrackedThread(
            user_id=user_id, guild_id=guild_id, channel_id=channel_id, category=category
        )
        with self.engine.begin() as conn:
            result = conn.execute(
                sqlite_insert(threads)
                .values(**model_to_dict(thread))
                .on_conflict_do_nothing(index_elements=["user_id", "guild_id", "channel_id"])
            )
            return result.rowcount > 0

    def list_threads(self, user_id: str, guild_id: str | None = None) -> list[TrackedThread]:
        """List a user's threads in insertion order, optionally for one guild."""
        query = select(threads).where(threads.c.user_id == user_id)
        if guild_id is not None:
            query = query.where(threads.c.guild_id == guild_id)
        query = query.order_by(threads.c.created_at, threads.c.id)

        with self.engine.connect() as conn:
            return [row_to_model(row, TrackedThread) for row in conn.execute(query)]

    def set_thread_category(
        self,
        user_id: str,
        guild_id: str,
        channel_id: str,
        category: str | None,
    ) -> bool:
        """Change a tracked thread's category. Returns False if not tracked."""
        with self.engine.begin() as conn:
            result = conn.execute(
                update(threads)
                .where(
                    and_(
                        threads.c.user_id == user_id,
                        threads.c.guild_id == guild_id,
                        threads.c.channel_id == channel_id,
                    )
                )
                .values(category=category)
            )
            return result.rowcount > 0

    def remove_thread(self, user_id: str, guild_id: str, channel_id: str) -> TrackedThread | None:
        """Stop tracking one thread. Returns the removed thread, if any."""
        removed = self._remove_threads(
            and_(
                threads.c.user_id == user_id,
                threads.c.guild_id == guild_id,
                threads.c.channel_id == channel_id,
            )
        )
        return removed[0] if removed else None

    def remove_threads(self, user_id: str, guild_id: str, category: str | None = None) -> list[TrackedThread]:
        """Stop tracking all threads, or all threads in one category.

        ``none``/``unset`` as the category removes uncategorized threads.
        Returns the removed threads so callers can drop per-thread state.
        """
        condition = and_(threads.c.user_id == user_id, threads.c.guild_id == guild_id)
        if category is not None:
            if category.casefold() in UNSET:
                condition = and_(condition, threads.c.category.is_(None))
            else:
                condition = and_(condition, func.lower(threads.c.category) == category.lower())
        return self._remove_threads(condition)

    def _remove_threads(self, condition: Any) -> list[TrackedThread]:
        with self.engine.begin() as conn:
            removed = [row_to_model(row, TrackedThread) for row in conn.execute(select(threads).where(condition))]
            if removed:
                conn.execute(delete(threads).where(threads.c.id.in_([t.id for t in removed])))
            return removed

    # =========================================================================
    # Watchers
    # =========================================================================

    def add_watcher(self, watcher: Watcher) -> Watcher:
        """Persist a new watcher."""
        with self.engine.begin() as conn:
            conn.execute(watchers.insert().values(**model_to_dict(watcher)))
        return watcher

    def list_watchers(self) -> list[Watcher]:
        """List every watcher, ordered by id."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(watchers).order_by(watchers.c.id))
            return [row_to_model(row, Watcher) for row in rows]

    def list_user_watchers(self, user_id: str, guild_id: str | None = None) -> list[Watcher]:
        """List a user's watchers, optionally for one guild."""
        query = select(watchers).where(watchers.c.user_id == user_id)
        if guild_id is not None:
            query = query.where(watchers.c.guild_id == guild_id)
        with self.engine.connect() as conn:
            return [row_to_model(row, Watcher) for row in conn.execute(query.order_by(watchers.c.id))]

    def get_watcher(self, watcher_id: str) -> Watcher | None:
        """Get a watcher by id."""
        with self.engine.connect() as conn:
            row = conn.execute(select(watchers).where(watchers.c.id == watcher_id)).fetchone()
            return row_to_model(row, Watcher) if row else None

    def get_watcher_by_message(self, channel_id: str, message_id: str) -> Watcher | None:
        """Get the watcher bound to a message."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(watchers).where(
                    and_(watchers.c.channel_id == channel_id, watchers.c.message_id == message_id)
                )
            ).fetchone()
            return row_to_model(row, Watcher) if row else None

    def remove_watcher(self, watcher_id: str) -> int:
        """Delete a watcher record."""
        with self.engine.begin() as conn:
            return conn.execute(delete(watchers).where(watchers.c.id == watcher_id)).rowcount

    def set_watcher_extra_messages(self, watcher_id: str, message_ids: list[str]) -> bool:
        """Replace the continuation message ids of a watcher."""
        with self.engine.begin() as conn:
            result = conn.execute(
                update(watchers)
                .where(watchers.c.id == watcher_id)
                .values(extra_message_ids=message_ids or None)
            )
            return result.rowcount > 0

    # =========================================================================
    # Muses
    # =========================================================================

    def add_muse(self, user_id: str, guild_id: str, name: str) -> bool:
        """Register a muse. Returns False if the name exists (any casing)."""
        muse = Muse(user_id=user_id, guild_id=guild_id, muse_name=name)
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(muses.c.id).where(
                    and_(
                        muses.c.user_id == user_id,
                        muses.c.guild_id == guild_id,
                        func.lower(muses.c.muse_name) == name.lower(),
                    )
                )
            ).first()
            if existing:
                return False
            conn.execute(muses.insert().values(**model_to_dict(muse)))
            return True

    def remove_muse(self, user_id: str, guild_id: str, name: str) -> int:
        """Remove a muse by name (case-insensitive)."""
        with self.engine.begin() as conn:
            return conn.execute(
                delete(muses).where(
                    and_(
                        muses.c.user_id == user_id,
                        muses.c.guild_id == guild_id,
                        func.lower(muses.c.muse_name) == name.lower(),
                    )
                )
            ).rowcount

    def list_muse_names(self, user_id: str, guild_id: str) -> list[str]:
        """List a user's muse names in registration order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(muses.c.muse_name)
                .where(and_(muses.c.user_id == user_id, muses.c.guild_id == guild_id))
                .order_by(muses.c.created_at, muses.c.id)
            )
            return [row.muse_name for row in rows]

    # =========================================================================
    # Todos
    # =========================================================================

    def add_todo(self, user_id: str, guild_id: str, content: str, category: str | None = None) -> bool:
        """Add a to do entry. Returns False if the same text is already listed."""
        todo = Todo(user_id=user_id, guild_id=guild_id, content=content, category=category)
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(todos.c.id).where(
                    and_(
                        todos.c.user_id == user_id,
                        todos.c.guild_id == guild_id,
                        todos.c.content == content,
                    )
                )
            ).first()
            if existing:
                return False
            conn.execute(todos.insert().values(**model_to_dict(todo)))
            return True

    def list_todos(self, user_id: str, guild_id: str) -> list[Todo]:
        """List a user's to do entries in insertion order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(todos)
                .where(and_(todos.c.user_id == user_id, todos.c.guild_id == guild_id))
                .order_by(todos.c.created_at, todos.c.id)
            )
            return [row_to_model(row, Todo) for row in rows]

    def remove_todo(self, user_id: str, guild_id: str, content: str) -> int:
        """Remove a to do entry by its exact text."""
        with self.engine.begin() as conn:
            return conn.execute(
                delete(todos).where(
                    and_(
                        todos.c.user_id == user_id,
                        todos.c.guild_id == guild_id,
                        todos.c.content == content,
                    )
                )
            ).rowcount

    def remove_todos(self, user_id: str, guild_id: str, category: str | None = None) -> int:
        """Remove all to do entries, or all entries in one (marked) category."""
        condition = and_(todos.c.user_id == user_id, todos.c.guild_id == guild_id)
        if category is not None:
            condition = and_(condition, func.lower(todos.c.category) == category.lower())
        with self.engine.begin() as conn:
            return conn.execute(delete(todos).where(condition)).rowcount

    # =========================================================================
    # User settings
    # =========================================================================

    def get_setting(self, user_id: str, name: str) -> str | None:
        """Get the raw value of a user setting, or None if unset."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(user_settings.c.value).where(
                    and_(user_settings.c.user_id == user_id, user_settings.c.name == name)
                )
            ).fetchone()
            return row.value if row else None

    def set_setting(self, user_id: str, name: str, value: str) -> bool:
        """Create or overwrite a user setting.

        Returns:
            False if the setting already held this value.
        """
        if self.get_setting(user_id, name) == value:
            return False

        now = _db_time(utcnow())
        with self.engine.begin() as conn:
            conn.execute(
                sqlite_insert(user_settings)
                .values(user_id=user_id, name=name, value=value, updated_at=now)
                .on_conflict_do_update(
                    index_elements=["user_id", "name"],
                    set_={"value": value, "updated_at": now},
                )
            )
        return True

    def delete_setting(self, user_id: str, name: str) -> int:
        """Remove a user setting so its default applies again."""
        with self.engine.begin() as conn:
            return conn.execute(
                delete(user_settings).where(
                    and_(user_settings.c.user_id == user_id, user_settings.c.name == name)
                )
            ).rowcount

    def list_users_with_setting(self, name: str, value: str) -> list[str]:
        """List users whose setting ``name`` holds exactly ``value``."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(user_settings.c.user_id)
                .where(and_(user_settings.c.name == name, user_settings.c.value == value))
                .order_by(user_settings.c.user_id)
            )
            return [row.user_id for row in rows]

    # =========================================================================
    # Scheduled messages
    # =========================================================================

    def add_scheduled_message(self, message: ScheduledMessage) -> ScheduledMessage:
        """Persist a new scheduled message."""
        values = model_to_dict(message)
        if message.archive_reason is not None:
            values["archive_reason"] = message.archive_reason.value
        with self.engine.begin() as conn:
            conn.execute(scheduled_messages.insert().values(**values))
        return message

    def get_scheduled_message(self, message_id: str) -> ScheduledMessage | None:
        """Get a scheduled message by id."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(scheduled_messages).where(scheduled_messages.c.id == message_id)
            ).fetchone()
            return row_to_model(row, ScheduledMessage) if row else None

    def list_scheduled_messages(
        self,
        user_id: str,
        include_archived: bool = False,
    ) -> list[ScheduledMessage]:
        """List a user's scheduled messages, soonest first."""
        query = select(scheduled_messages).where(scheduled_messages.c.user_id == user_id)
        if not include_archived:
            query = query.where(scheduled_messages.c.archived.is_(False))
        query = query.order_by(scheduled_messages.c.due_at, scheduled_messages.c.id)
        with self.engine.connect() as conn:
            return [row_to_model(row, ScheduledMessage) for row in conn.execute(query)]

    def list_due_scheduled_messages(self, now: datetime) -> list[ScheduledMessage]:
        """List non-archived messages whose due instant is at or before ``now``."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(scheduled_messages)
                .where(
                    and_(
                        scheduled_messages.c.archived.is_(False),
                        scheduled_messages.c.due_at <= _db_time(now),
                    )
                )
                .order_by(scheduled_messages.c.due_at, scheduled_messages.c.id)
            )
            return [row_to_model(row, ScheduledMessage) for row in rows]

    def update_scheduled_message(self, message_id: str, **fields: Any) -> bool:
        """Update selected columns of a scheduled message."""
        if not fields:
            return False
        values = {
            key: _db_time(value) if isinstance(value, datetime) else value
            for key, value in fields.items()
        }
        if isinstance(values.get("archive_reason"), ArchiveReason):
            values["archive_reason"] = values["archive_reason"].value
        with self.engine.begin() as conn:
            result = conn.execute(
                update(scheduled_messages)
                .where(scheduled_messages.c.id == message_id)
                .values(**values)
            )
            return result.rowcount > 0

    def claim_occurrence(
        self,
        message_id: str,
        expected_due: datetime,
        next_due: datetime | None,
    ) -> bool:
        """Take the occurrence due at ``expected_due`` for sending.

        Archives the message as sent when ``next_due`` is None, otherwise moves
        it to ``next_due``. The write only applies if the message is still
        armed for ``expected_due``, so of several dispatchers racing for the
        same occurrence exactly one wins, and a concurrent owner edit is never
        overwritten.

        Returns:
            True if this caller claimed the occurrence.
        """
        if next_due is None:
            values: dict[str, Any] = {
                "archived": True,
                "archive_reason": ArchiveReason.SENT.value,
            }
        else:
            values = {"due_at": _db_time(next_due)}

        with self.engine.begin() as conn:
            result = conn.execute(
                update(scheduled_messages)
                .where(
                    and_(
                        scheduled_messages.c.id == message_id,
                        scheduled_messages.c.archived.is_(False),
                        scheduled_messages.c.due_at == _db_time(expected_due),
                    )
                )
                .values(**values)
            )
            return result.rowcount > 0

    def release_occurrence(
        self,
        message_id: str,
        claimed_due: datetime,
        next_due: datetime | None,
    ) -> bool:
        """Undo a claim whose send did not happen, re-arming ``claimed_due``.

        Only applies while the row is still exactly as the claim left it.

        Returns:
            True if the message was re-armed.
        """
        if next_due is None:
            claimed = and_(
                scheduled_messages.c.archived.is_(True),
                scheduled_messages.c.archive_reason == ArchiveReason.SENT.value,
                scheduled_messages.c.due_at == _db_time(claimed_due),
            )
        else:
            claimed = and_(
                scheduled_messages.c.archived.is_(False),
                scheduled_messages.c.due_at == _db_time(next_due),
            )

        with self.engine.begin() as conn:
            result = conn.execute(
                update(scheduled_messages)
                .where(and_(scheduled_messages.c.id == message_id, claimed))
                .values(due_at=_db_time(claimed_due), archived=False, archive_reason=None)
            )
            return result.rowcount > 0

    def archive_scheduled_message(
        self,
        message_id: str,
        reason: ArchiveReason,
        failure: str | None = None,
    ) -> bool:
        """Archive a scheduled message so it is never dispatched again."""
        return self.update_scheduled_message(
            message_id, archived=True, archive_reason=reason, failure=failure
        )

    # =========================================================================
    # Statistics
    # =========================================================================

    def statistics(self) -> Statistics:
        """Count users, servers and entities across the whole database."""
        users_and_guilds = union(
            select(muses.c.user_id, muses.c.guild_id),
            select(threads.c.user_id, threads.c.guild_id),
            select(todos.c.user_id, todos.c.guild_id),
            select(watchers.c.user_id, watchers.c.guild_id),
            select(scheduled_messages.c.user_id, null().label("guild_id")),
            select(user_settings.c.user_id, null().label("guild_id")),
        ).subquery()

        def count(table) -> Any:
            return select(func.count()).select_from(table).scalar_subquery()

        query = select(
            select(func.count(distinct(users_and_guilds.c.user_id))).scalar_subquery().label("users"),
            select(func.count(distinct(users_and_guilds.c.guild_id))).scalar_subquery().label("servers"),
            select(func.count(distinct(threads.c.channel_id))).scalar_subquery().label("threads_distinct"),
            count(threads).label("threads_total"),
            count(muses).label("muses"),
            count(todos).label("todos"),
            count(watchers).label("watchers"),
            select(func.count())
            .select_from(scheduled_messages)
            .where(scheduled_messages.c.archived.is_(False))
            .scalar_subquery()
            .label("scheduled_messages"),
        )

        with self.engine.connect() as conn:
            row = conn.execute(query).one()
            return Statistics.model_validate(dict(row._mapping))
