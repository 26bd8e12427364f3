"""Tests for watchers.

Covers:
- Opening, registering and removing watchers
- Refresh: edits only on change, cleanup on deleted message, retries
- Multi-part digests
- Round-robin fairness under a time budget
- Notification sweep for users without watchers
"""

import asyncio
from itertools import count

import pytest

from fakes import FakeMessenger, at, transient
from threadtracker.config import WatcherConfig
from threadtracker.digest import DigestRenderer
from threadtracker.errors import NotFound, PermissionDenied
from threadtracker.models import Watcher
from threadtracker.notifications import NotificationDispatcher
from threadtracker.replies import ReplyResolver
from threadtracker.settings import Settings
from threadtracker.store import Store
from threadtracker.watchers import WatcherRefresher, WatcherService


@pytest.fixture
def renderer(store: Store, messenger: FakeMessenger) -> DigestRenderer:
    return DigestRenderer(store, ReplyResolver(messenger, cache_seconds=0), max_chars=4096)


@pytest.fixture
def notifier(messenger: FakeMessenger, settings: Settings) -> NotificationDispatcher:
    return NotificationDispatcher(messenger, settings)


@pytest.fixture
def refresher(store, renderer, messenger, settings, notifier) -> WatcherRefresher:
    return WatcherRefresher(store, renderer, messenger, settings, notifier=notifier)


@pytest.fixture
def service(store, renderer, messenger, settings, refresher) -> WatcherService:
    return WatcherService(store, renderer, messenger, settings, refresher)


def bind(store: Store, message_id: str, user_id: str = "u1", **kwargs) -> Watcher:
    return store.add_watcher(
        Watcher(user_id=user_id, guild_id="g1", channel_id="wc", message_id=message_id, **kwargs)
    )


class TestWatcherService:
    """Tests for owner-facing watcher operations."""

    @pytest.mark.asyncio
    async def test_open_posts_digest_and_binds(self, service, store, messenger):
        store.add_thread("u1", "g1", "c1")
        watcher = await service.open_watcher("u1", "g1", "wc", ["fantasy"])

        assert len(messenger.sends) == 1
        channel_id, content, title = messenger.sends[0]
        assert channel_id == "wc"
        assert title == "Tracked threads: fantasy"
        assert store.get_watcher(watcher.id).categories == ["fantasy"]

    @pytest.mark.asyncio
    async def test_open_does_not_edit_on_first_tick(self, service, refresher, store, messenger):
        store.add_thread("u1", "g1", "c1")
        await service.open_watcher("u1", "g1", "wc")
        result = await refresher.tick()
        assert result.unchanged == 1
        assert messenger.edits == []

    def test_register_same_message_twice(self, service):
        first = service.register_watcher("u1", "g1", "wc", "m1")
        assert service.register_watcher("u1", "g1", "wc", "m1").id == first.id
        with pytest.raises(PermissionDenied):
            service.register_watcher("u2", "g1", "wc", "m1")

    @pytest.mark.asyncio
    async def test_remove_checks_owner(self, service, store, messenger):
        watcher = service.register_watcher("u1", "g1", "wc", "m1")
        with pytest.raises(PermissionDenied):
            await service.remove_watcher(watcher.id, "u2")
        with pytest.raises(NotFound):
            await service.remove_watcher("missing", "u1")

        await service.remove_watcher(watcher.id, "u1")
        assert store.get_watcher(watcher.id) is None
        assert messenger.deletes == [("wc", "m1")]

    @pytest.mark.asyncio
    async def test_remove_tolerates_already_deleted_message(self, service, store, messenger):
        watcher = service.register_watcher("u1", "g1", "wc", "m1")
        messenger.deleted_messages.add("m1")
        await service.remove_watcher(watcher.id, "u1")
        assert store.list_watchers() == []


class TestRefresh:
    """Tests for WatcherRefresher.tick()."""

    @pytest.mark.asyncio
    async def test_edits_then_skips_unchanged(self, refresher, store, messenger):
        store.add_thread("u1", "g1", "c1")
        bind(store, "m1")

        first = await refresher.tick()
        second = await refresher.tick()

        assert first.edited == 1
        assert second.unchanged == 1
        assert len(messenger.edits) == 1

    @pytest.mark.asyncio
    async def test_edits_again_when_reply_changes(self, refresher, store, messenger):
        store.add_thread("u1", "g1", "c1")
        bind(store, "m1")
        await refresher.tick()

        messenger.post("c1", "sam", "Sam", at("2024-01-01T10:00:00"))
        await refresher.tick()

        assert len(messenger.edits) == 2
        assert "**Sam**" in messenger.edits[-1][2]

    @pytest.mark.asyncio
    async def test_deleted_bound_message_removes_watcher(self, refresher, store, messenger):
        watcher = bind(store, "m1")
        messenger.deleted_messages.add("m1")

        result = await refresher.tick()
        assert result.removed == 1
        assert store.get_watcher(watcher.id) is None

        await refresher.tick()
        assert messenger.edits == []

    @pytest.mark.asyncio
    async def test_transient_failure_keeps_watcher_and_retries(self, refresher, store, messenger):
        watcher = bind(store, "m1")
        messenger.edit_errors["m1"] = transient()

        result = await refresher.tick()
        assert result.failed == 1
        assert store.get_watcher(watcher.id) is not None

        del messenger.edit_errors["m1"]
        result = await refresher.tick()
        assert result.edited == 1

    @pytest.mark.asyncio
    async def test_permission_denied_keeps_watcher(self, refresher, store, messenger):
        watcher = bind(store, "m1")
        messenger.edit_errors["m1"] = PermissionDenied("Missing Permissions")
        await refresher.tick()
        assert store.get_watcher(watcher.id) is not None

    @pytest.mark.asyncio
    async def test_one_bad_watcher_does_not_block_others(self, refresher, store, messenger):
        bind(store, "m1")
        bind(store, "m2", user_id="u2")
        messenger.edit_errors["m1"] = RuntimeError("boom")

        result = await refresher.tick()
        assert result.failed == 1
        assert result.edited == 1

    @pytest.mark.asyncio
    async def test_watcher_categories_filter_digest(self, refresher, store, messenger):
        store.add_thread("u1", "g1", "c1", "fantasy")
        store.add_thread("u1", "g1", "c2", "horror")
        bind(store, "m1", categories=["horror"])

        await refresher.tick()
        content = messenger.edits[0][2]
        assert "<#c2>" in content
        assert "<#c1>" not in content

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, refresher, store, messenger):
        bind(store, "m1")
        gate = asyncio.Event()
        original_edit = messenger.edit_message

        async def slow_edit(*args, **kwargs):
            await gate.wait()
            return await original_edit(*args, **kwargs)

        messenger.edit_message = slow_edit
        first = asyncio.create_task(refresher.tick())
        await asyncio.sleep(0)

        assert await refresher.tick() is None
        gate.set()
        assert (await first).edited == 1


class TestMultiPart:
    """Tests for digests split across several messages."""

    @pytest.fixture
    def small_refresher(self, store, messenger, settings) -> WatcherRefresher:
        renderer = DigestRenderer(store, ReplyResolver(messenger, cache_seconds=0), max_chars=200)
        return WatcherRefresher(store, renderer, messenger, settings)

    @pytest.mark.asyncio
    async def test_grows_and_shrinks_parts(self, small_refresher, store, messenger):
        for i in range(20):
            store.add_thread("u1", "g1", f"channel-{i:02d}")
        watcher = bind(store, "m1")

        await small_refresher.tick()
        extras = store.get_watcher(watcher.id).extra_message_ids
        assert extras
        assert len(messenger.sends) == len(extras)

        store.remove_threads("u1", "g1")
        await small_refresher.tick()
        assert store.get_watcher(watcher.id).extra_message_ids is None
        assert {m for _, m in messenger.deletes} == set(extras)

    @pytest.mark.asyncio
    async def test_failed_send_keeps_posted_parts_bound(self, small_refresher, store, messenger):
        """A send failing partway leaves no continuation message untracked."""
        for i in range(20):
            store.add_thread("u1", "g1", f"channel-{i:02d}")
        watcher = bind(store, "m1")

        calls = count(1)
        original_send = messenger.send_message

        async def flaky_send(channel_id, content, title=None):
            if next(calls) == 2:
                raise transient()
            return await original_send(channel_id, content, title)

        messenger.send_message = flaky_send

        result = await small_refresher.tick()
        assert result.failed == 1
        assert store.get_watcher(watcher.id).extra_message_ids == ["1000"]

        result = await small_refresher.tick()
        assert result.edited == 1

        extras = store.get_watcher(watcher.id).extra_message_ids
        live = {message_id for channel_id, message_id in messenger.posted if channel_id == "wc"} - {"m1"}
        assert set(extras) == live
        assert len(messenger.sends) == len(extras)


class TestFairness:
    """Tests for the time budget and round-robin order."""

    @pytest.mark.asyncio
    async def test_budget_defers_and_resumes_in_order(self, store, renderer, messenger, settings):
        ticks = count()
        # Each clock read advances one second; budget allows two watchers per pass
        refresher = WatcherRefresher(
            store,
            renderer,
            messenger,
            settings,
            config=WatcherConfig(tick_budget_seconds=2.5),
            clock=lambda: float(next(ticks)),
        )
        watchers = [bind(store, f"m{i}", user_id=f"u{i}") for i in range(5)]
        by_id = sorted(watchers, key=lambda w: w.id)

        first = await refresher.tick()
        second = await refresher.tick()
        third = await refresher.tick()

        assert first.deferred > 0
        edited = [message_id for _, message_id, _ in messenger.edits]
        assert edited[: len(by_id)] == [w.message_id for w in by_id]
        assert first.edited + second.edited + third.edited >= len(watchers)


class TestNotificationSweep:
    """Tests for notifications on threads no watcher covers."""

    @pytest.mark.asyncio
    async def test_notifies_without_watcher(self, refresher, store, settings, messenger):
        settings.set("u1", "notify", "on")
        store.add_thread("u1", "g1", "c1")
        messenger.post("c1", "u1", "Me", at("2024-01-01T10:00:00"))
        await refresher.tick()

        messenger.post("c1", "sam", "Sam", at("2024-01-01T11:00:00"))
        result = await refresher.tick()

        assert result.notified == 1
        assert messenger.direct_messages == [("u1", "**Sam** replied in <#c1>.")]

    @pytest.mark.asyncio
    async def test_watched_thread_notified_once_per_tick(self, refresher, store, settings, messenger):
        settings.set("u1", "notify", "on")
        store.add_thread("u1", "g1", "c1")
        bind(store, "m1")
        bind(store, "m2")
        messenger.post("c1", "u1", "Me", at("2024-01-01T10:00:00"))
        await refresher.tick()

        messenger.post("c1", "sam", "Sam", at("2024-01-01T11:00:00"))
        await refresher.tick()
        await refresher.tick()

        assert len(messenger.direct_messages) == 1
