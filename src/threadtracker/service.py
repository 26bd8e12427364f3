"""Thread Tracker application facade.

Wires the store, engines and chat platform collaborator together and exposes
the operations command handlers call. Command handlers stay thin: every rule
lives in the components assembled here.
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.engine import Engine

from threadtracker.categories import thread_category, todo_category
from threadtracker.config import Config
from threadtracker.digest import Digest, DigestRenderer
from threadtracker.logging import get_logger
from threadtracker.messaging import Messenger
from threadtracker.models import (
    ScheduledMessage,
    ScheduledMessageListing,
    SortOrder,
    Statistics,
    Todo,
    TrackedThread,
    Watcher,
)
from threadtracker.notifications import NotificationDispatcher
from threadtracker.replies import ReplyResolver
from threadtracker.scheduler import BackgroundScheduler
from threadtracker.scheduling import ScheduledMessageDispatcher, ScheduleService
from threadtracker.settings import Settings
from threadtracker.store import Store
from threadtracker.watchers import WatcherRefresher, WatcherService

log = get_logger("service")


class ThreadTracker:
    """Everything the bot needs, built from config, engine and messenger.

    Attributes:
        config: Application configuration.
        store: Store gateway.
        settings: User settings.
        renderer: Digest renderer.
        refresher: Watcher refresh engine.
        dispatcher: Scheduled message dispatcher.
        scheduler: Periodic driver for both engines.
    """

    def __init__(self, config: Config, engine: Engine, messenger: Messenger) -> None:
        self.config = config
        self.messenger = messenger
        self.store = Store(engine)
        self.settings = Settings(self.store)

        self.resolver = ReplyResolver(
            messenger,
            lookback=config.watchers.reply_lookback,
            cache_seconds=config.watchers.reply_cache_seconds,
        )
        self.renderer = DigestRenderer(self.store, self.resolver, config.watchers.max_message_chars)
        self.notifier = NotificationDispatcher(messenger, self.settings)
        self.refresher = WatcherRefresher(
            self.store,
            self.renderer,
            messenger,
            self.settings,
            notifier=self.notifier,
            config=config.watchers,
        )
        self.watchers = WatcherService(self.store, self.renderer, messenger, self.settings, self.refresher)
        self.schedules = ScheduleService(self.store, self.settings, config.scheduling)
        self.dispatcher = ScheduledMessageDispatcher(self.store, messenger)
        self.scheduler = BackgroundScheduler(self.refresher, self.dispatcher, config)

    # =========================================================================
    # Threads, muses and todos
    # =========================================================================

    def track_thread(self, user_id: str, guild_id: str, channel_id: str, category: str | None = None) -> bool:
        return self.store.add_thread(user_id, guild_id, channel_id, thread_category(category))

    def set_thread_category(self, user_id: str, guild_id: str, channel_id: str, category: str | None) -> bool:
        return self.store.set_thread_category(user_id, guild_id, channel_id, thread_category(category))

    def untrack_thread(self, user_id: str, guild_id: str, channel_id: str) -> bool:
        removed = self.store.remove_thread(user_id, guild_id, channel_id)
        if removed is None:
            return False
        self._forget_threads([removed])
        return True

    def untrack_threads(self, user_id: str, guild_id: str, category: str | None = None) -> int:
        """Untrack all threads, or those in one category (``none`` for uncategorized)."""
        removed = self.store.remove_threads(user_id, guild_id, category)
        self._forget_threads(removed)
        log.info("threads_untracked", user_id=user_id, guild_id=guild_id, category=category, count=len(removed))
        return len(removed)

    def _forget_threads(self, removed: Sequence[TrackedThread]) -> None:
        for thread in removed:
            self.notifier.forget(thread.id)
            self.resolver.invalidate(thread.channel_id)

    def list_threads(self, user_id: str, guild_id: str) -> list[TrackedThread]:
        return self.store.list_threads(user_id, guild_id)

    def add_muse(self, user_id: str, guild_id: str, name: str) -> bool:
        name = name.strip()
        if not name:
            raise ValueError("Muse name must not be empty")
        return self.store.add_muse(user_id, guild_id, name)

    def remove_muse(self, user_id: str, guild_id: str, name: str) -> bool:
        return self.store.remove_muse(user_id, guild_id, name.strip()) > 0

    def list_muses(self, user_id: str, guild_id: str) -> list[str]:
        return self.store.list_muse_names(user_id, guild_id)

    def add_todo(self, user_id: str, guild_id: str, content: str, category: str | None = None) -> bool:
        content = content.strip()
        if not content:
            raise ValueError("To do text must not be empty")
        return self.store.add_todo(user_id, guild_id, content, todo_category(category))

    def remove_todo(self, user_id: str, guild_id: str, content: str) -> bool:
        return self.store.remove_todo(user_id, guild_id, content.strip()) > 0

    def remove_todos(self, user_id: str, guild_id: str, category: str | None = None) -> int:
        """Remove all to do entries, or those in one category."""
        return self.store.remove_todos(user_id, guild_id, todo_category(category) if category else None)

    def list_todos(self, user_id: str, guild_id: str) -> list[Todo]:
        return self.store.list_todos(user_id, guild_id)

    # =========================================================================
    # Digests and watchers
    # =========================================================================

    async def render_digest(
        self,
        user_id: str,
        guild_id: str,
        categories: Sequence[str] | None = None,
        sort: SortOrder | None = None,
        include_todos: bool = False,
        show_timestamps: bool | None = None,
        pending_only: bool = False,
    ) -> Digest:
        """Render a digest; unset options fall back to the owner's settings."""
        prefs = self.settings.preferences(user_id)
        return await self.renderer.render(
            user_id,
            guild_id,
            categories=categories,
            sort=sort or prefs.sort,
            include_todos=include_todos,
            show_timestamps=prefs.timestamps if show_timestamps is None else show_timestamps,
            pending_only=pending_only,
        )

    async def random_pending_thread(
        self,
        user_id: str,
        guild_id: str,
        categories: Sequence[str] | None = None,
    ) -> TrackedThread | None:
        return await self.renderer.random_pending_thread(user_id, guild_id, categories)

    async def open_watcher(
        self,
        user_id: str,
        guild_id: str,
        channel_id: str,
        categories: Sequence[str] | None = None,
    ) -> Watcher:
        return await self.watchers.open_watcher(user_id, guild_id, channel_id, categories)

    def register_watcher(
        self,
        user_id: str,
        guild_id: str,
        channel_id: str,
        message_id: str,
        categories: Sequence[str] | None = None,
    ) -> Watcher:
        return self.watchers.register_watcher(user_id, guild_id, channel_id, message_id, categories)

    async def remove_watcher(self, watcher_id: str, user_id: str) -> Watcher:
        return await self.watchers.remove_watcher(watcher_id, user_id)

    def list_watchers(self, user_id: str, guild_id: str | None = None) -> list[Watcher]:
        return self.watchers.list_watchers(user_id, guild_id)

    # =========================================================================
    # Scheduled messages
    # =========================================================================

    def schedule_message(
        self,
        user_id: str,
        channel_id: str,
        local_datetime: str,
        title: str,
        body: str,
        repeat: str | None = None,
        timezone: str | None = None,
    ) -> str:
        """Schedule a message and return its id."""
        return self.schedules.schedule_message(
            user_id, channel_id, local_datetime, title, body, repeat=repeat, timezone=timezone
        ).id

    def update_scheduled_message(self, message_id: str, user_id: str | None = None, **changes) -> ScheduledMessage:
        return self.schedules.update_scheduled_message(message_id, user_id, **changes)

    def remove_scheduled_message(self, message_id: str, user_id: str | None = None) -> None:
        self.schedules.remove_scheduled_message(message_id, user_id)

    def get_scheduled_message(self, message_id: str, user_id: str | None = None) -> ScheduledMessage:
        return self.schedules.get_scheduled_message(message_id, user_id)

    def list_scheduled_messages(self, user_id: str, include_archived: bool = False) -> list[ScheduledMessageListing]:
        return self.schedules.list_scheduled_messages(user_id, include_archived)

    # =========================================================================
    # Settings and statistics
    # =========================================================================

    def set_setting(self, user_id: str, name: str, value: str) -> str:
        return self.settings.set(user_id, name, value)

    def statistics(self) -> Statistics:
        return self.store.statistics()
