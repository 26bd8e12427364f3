"""Watchers: live digest messages kept up to date in the background.

A watcher is bound to a posted message (plus continuation messages when the
digest is too long for one). Every refresh pass re-renders each watcher's
digest and edits its messages only when the text changed. A watcher whose
bound message has been deleted is removed for good.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from threadtracker.config import WatcherConfig
from threadtracker.digest import Digest, DigestRenderer
from threadtracker.errors import NotFound, PermissionDenied, ThreadTrackerError
from threadtracker.logging import get_logger
from threadtracker.messaging import Messenger
from threadtracker.models import TrackedThread, Watcher
from threadtracker.notifications import NotificationDispatcher
from threadtracker.replies import LastReply, ReplyResolver
from threadtracker.settings import Settings
from threadtracker.store import Store

log = get_logger("watchers")


async def render_for_watcher(
    renderer: DigestRenderer,
    settings: Settings,
    user_id: str,
    guild_id: str,
    categories: Sequence[str] | None,
) -> Digest:
    """Render a digest the way watchers display it, using the owner's preferences."""
    prefs = settings.preferences(user_id)
    return await renderer.render(
        user_id,
        guild_id,
        categories=categories,
        sort=prefs.sort,
        include_todos=True,
        show_timestamps=prefs.timestamps,
    )


@dataclass
class RefreshResult:
    """Counters for one refresh pass."""

    edited: int = 0
    unchanged: int = 0
    removed: int = 0
    failed: int = 0
    deferred: int = 0  # Not reached within the time budget
    notified: int = 0


class WatcherRefresher:
    """Periodic re-render of every watcher.

    Passes are single-flight and bounded by a time budget. Each pass starts
    after the last watcher the previous pass reached, so a slow pass never
    starves the watchers at the end of the list.

    Attributes:
        store: Store gateway.
        renderer: Digest renderer.
        messenger: Chat platform collaborator.
        settings: User settings.
        notifier: Optional notification dispatcher fed with every resolution.
        config: Watcher configuration.
    """

    def __init__(
        self,
        store: Store,
        renderer: DigestRenderer,
        messenger: Messenger,
        settings: Settings,
        notifier: NotificationDispatcher | None = None,
        config: WatcherConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.renderer = renderer
        self.messenger = messenger
        self.settings = settings
        self.notifier = notifier
        self.config = config or WatcherConfig()
        self.clock = clock

        self._rendered: dict[str, list[str]] = {}
        self._cursor: str | None = None
        self._lock = asyncio.Lock()
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def request_stop(self) -> None:
        """Finish the watcher in flight, then stop the current pass."""
        self._stopping = True

    async def wait_idle(self) -> None:
        """Wait until any pass in progress has finished."""
        async with self._lock:
            pass

    def remember(self, watcher_id: str, parts: list[str]) -> None:
        """Record what a watcher's messages currently show."""
        self._rendered[watcher_id] = list(parts)

    def forget(self, watcher_id: str) -> None:
        self._rendered.pop(watcher_id, None)

    def _rotation(self, watchers: list[Watcher]) -> list[Watcher]:
        if self._cursor is None:
            return watchers
        after = [w for w in watchers if w.id > self._cursor]
        before = [w for w in watchers if w.id <= self._cursor]
        return after + before

    async def tick(self) -> RefreshResult | None:
        """Run one refresh pass.

        Returns:
            Pass counters, or None if a previous pass is still running.
        """
        if self._lock.locked():
            log.debug("refresh_tick_skipped")
            return None

        async with self._lock:
            result = RefreshResult()
            deadline = self.clock() + self.config.tick_budget_seconds
            observed: set[str] = set()

            queue = self._rotation(self.store.list_watchers())
            for index, watcher in enumerate(queue):
                if self._stopping or self.clock() >= deadline:
                    result.deferred = len(queue) - index
                    log.info("refresh_tick_partial", deferred=result.deferred)
                    break
                await self._refresh(watcher, result, observed)
                self._cursor = watcher.id

            if not self._stopping and self.notifier is not None:
                await self._sweep_notifications(observed, deadline, result)

            log.debug(
                "refresh_tick_complete",
                edited=result.edited,
                unchanged=result.unchanged,
                removed=result.removed,
                failed=result.failed,
                deferred=result.deferred,
            )
            return result

    async def _observe(
        self,
        resolved: list[tuple[TrackedThread, LastReply | None]],
        observed: set[str],
        result: RefreshResult,
    ) -> None:
        if self.notifier is None:
            return
        for thread, reply in resolved:
            if thread.id in observed:
                continue
            observed.add(thread.id)
            if await self.notifier.observe(thread, reply):
                result.notified += 1

    async def _refresh(self, watcher: Watcher, result: RefreshResult, observed: set[str]) -> None:
        try:
            digest = await render_for_watcher(
                self.renderer, self.settings, watcher.user_id, watcher.guild_id, watcher.categories
            )
            await self._observe(digest.resolved, observed, result)

            if self._rendered.get(watcher.id) == digest.parts:
                result.unchanged += 1
                return

            await self._apply(watcher, digest)
            self.remember(watcher.id, digest.parts)
            result.edited += 1
            log.debug("watcher_refreshed", watcher_id=watcher.id, parts=len(digest.parts))

        except NotFound as e:
            self.store.remove_watcher(watcher.id)
            self.forget(watcher.id)
            result.removed += 1
            log.info("watcher_removed_message_gone", watcher_id=watcher.id, error=str(e))
        except Exception as e:
            result.failed += 1
            log.warning(
                "watcher_refresh_failed",
                watcher_id=watcher.id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _apply(self, watcher: Watcher, digest: Digest) -> None:
        """Write the digest parts into the watcher's messages.

        Continuation messages posted before a failure stay bound to the
        watcher, so the next pass edits them instead of posting again.

        Raises:
            NotFound: If the bound message is gone.
        """
        await self.messenger.edit_message(
            watcher.channel_id, watcher.message_id, digest.parts[0], title=digest.title
        )

        old_extras = list(watcher.extra_message_ids or [])
        extras: list[str] = []
        try:
            for index, part in enumerate(digest.parts[1:]):
                if index < len(old_extras):
                    try:
                        await self.messenger.edit_message(watcher.channel_id, old_extras[index], part)
                        extras.append(old_extras[index])
                        continue
                    except NotFound:
                        log.info("watcher_part_replaced", watcher_id=watcher.id, message_id=old_extras[index])
                extras.append(await self.messenger.send_message(watcher.channel_id, part))
        except Exception:
            self._bind_extras(watcher, old_extras, extras + old_extras[len(extras):])
            raise

        for surplus in old_extras[len(digest.parts) - 1:]:
            try:
                await self.messenger.delete_message(watcher.channel_id, surplus)
            except ThreadTrackerError as e:
                log.info("watcher_part_delete_failed", watcher_id=watcher.id, message_id=surplus, error=str(e))

        self._bind_extras(watcher, old_extras, extras)

    def _bind_extras(self, watcher: Watcher, old_extras: list[str], extras: list[str]) -> None:
        if extras != old_extras:
            self.store.set_watcher_extra_messages(watcher.id, extras)

    async def _sweep_notifications(
        self,
        observed: set[str],
        deadline: float,
        result: RefreshResult,
    ) -> None:
        """Resolve threads of users with notifications on that no watcher covered."""
        resolver: ReplyResolver = self.renderer.resolver
        for user_id in self.settings.users_with_notifications():
            muses: dict[str, list[str]] = {}
            for thread in self.store.list_threads(user_id):
                if thread.id in observed:
                    continue
                if self._stopping or self.clock() >= deadline:
                    return
                if thread.guild_id not in muses:
                    muses[thread.guild_id] = self.store.list_muse_names(user_id, thread.guild_id)
                try:
                    reply: LastReply | None = await resolver.resolve(thread, muses[thread.guild_id])
                except NotFound:
                    reply = None
                except ThreadTrackerError as e:
                    log.debug("notification_resolve_failed", thread_id=thread.id, error=str(e))
                    continue
                await self._observe([(thread, reply)], observed, result)


class WatcherService:
    """Owner-facing watcher operations.

    Changes take effect on the next refresh pass; nothing here waits for one.
    """

    def __init__(
        self,
        store: Store,
        renderer: DigestRenderer,
        messenger: Messenger,
        settings: Settings,
        refresher: WatcherRefresher | None = None,
    ) -> None:
        self.store = store
        self.renderer = renderer
        self.messenger = messenger
        self.settings = settings
        self.refresher = refresher

    async def open_watcher(
        self,
        user_id: str,
        guild_id: str,
        channel_id: str,
        categories: Sequence[str] | None = None,
    ) -> Watcher:
        """Post a digest in a channel and keep it up to date.

        Returns:
            The new watcher, bound to the first posted message.
        """
        digest = await render_for_watcher(self.renderer, self.settings, user_id, guild_id, categories)

        message_ids = [await self.messenger.send_message(channel_id, digest.parts[0], title=digest.title)]
        for part in digest.parts[1:]:
            message_ids.append(await self.messenger.send_message(channel_id, part))

        watcher = self.register_watcher(
            user_id, guild_id, channel_id, message_ids[0], categories, extra_message_ids=message_ids[1:]
        )
        if self.refresher is not None:
            self.refresher.remember(watcher.id, digest.parts)
        return watcher

    def register_watcher(
        self,
        user_id: str,
        guild_id: str,
        channel_id: str,
        message_id: str,
        categories: Sequence[str] | None = None,
        extra_message_ids: Sequence[str] | None = None,
    ) -> Watcher:
        """Bind a watcher to an existing message.

        Registering the same message twice returns the existing watcher.

        Raises:
            PermissionDenied: If the message is already watched for another user.
        """
        existing = self.store.get_watcher_by_message(channel_id, message_id)
        if existing is not None:
            if existing.user_id != user_id:
                raise PermissionDenied("That message is already a watcher for someone else")
            return existing

        watcher = Watcher(
            user_id=user_id,
            guild_id=guild_id,
            channel_id=channel_id,
            message_id=message_id,
            categories=list(categories) if categories else None,
            extra_message_ids=list(extra_message_ids) if extra_message_ids else None,
        )
        self.store.add_watcher(watcher)
        log.info("watcher_registered", watcher_id=watcher.id, user_id=user_id, channel_id=channel_id)
        return watcher

    async def remove_watcher(self, watcher_id: str, user_id: str) -> Watcher:
        """Stop a watcher and delete its messages.

        Raises:
            NotFound: If the watcher does not exist.
            PermissionDenied: If it belongs to another user.
        """
        watcher = self.store.get_watcher(watcher_id)
        if watcher is None:
            raise NotFound(f"No watcher {watcher_id}", resource=watcher_id)
        if watcher.user_id != user_id:
            raise PermissionDenied("That watcher belongs to someone else")

        self.store.remove_watcher(watcher_id)
        if self.refresher is not None:
            self.refresher.forget(watcher_id)

        for message_id in watcher.message_ids:
            try:
                await self.messenger.delete_message(watcher.channel_id, message_id)
            except ThreadTrackerError as e:
                log.info("watcher_message_delete_failed", watcher_id=watcher_id, message_id=message_id, error=str(e))

        log.info("watcher_removed", watcher_id=watcher_id, user_id=user_id)
        return watcher

    def list_watchers(self, user_id: str, guild_id: str | None = None) -> list[Watcher]:
        return self.store.list_user_watchers(user_id, guild_id)
