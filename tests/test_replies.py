"""Tests for reply resolution."""

import pytest

from fakes import FakeMessenger, at
from threadtracker.errors import ChannelUnavailable
from threadtracker.models import TrackedThread
from threadtracker.replies import ReplyClass, ReplyResolver


@pytest.fixture
def thread() -> TrackedThread:
    return TrackedThread(user_id="owner", guild_id="g1", channel_id="c1")


@pytest.fixture
def resolver(messenger: FakeMessenger) -> ReplyResolver:
    return ReplyResolver(messenger, lookback=5, cache_seconds=60)


class TestClassification:
    """Tests for last author classification."""

    @pytest.mark.asyncio
    async def test_owner(self, messenger, resolver, thread):
        messenger.post("c1", "owner", "Owner", at("2024-01-01T10:00:00"))
        reply = await resolver.resolve(thread)
        assert reply.classification == ReplyClass.SELF
        assert not reply.awaiting

    @pytest.mark.asyncio
    async def test_muse_matches_case_insensitively(self, messenger, resolver, thread):
        messenger.post("c1", "webhook", "Lady Aria", at("2024-01-01T10:00:00"), is_bot=True)
        reply = await resolver.resolve(thread, muses=["lady aria"])
        assert reply.classification == ReplyClass.MUSE
        assert reply.author_label == "Lady Aria"

    @pytest.mark.asyncio
    async def test_other(self, messenger, resolver, thread):
        messenger.post("c1", "owner", "Owner", at("2024-01-01T10:00:00"))
        messenger.post("c1", "sam", "Sam", at("2024-01-01T11:00:00"))
        reply = await resolver.resolve(thread, muses=["Aria"])
        assert reply.classification == ReplyClass.OTHER
        assert reply.timestamp == at("2024-01-01T11:00:00")
        assert reply.awaiting

    @pytest.mark.asyncio
    async def test_empty_channel(self, resolver, thread):
        reply = await resolver.resolve(thread)
        assert reply.classification == ReplyClass.NONE
        assert reply.timestamp is None
        assert reply.awaiting

    @pytest.mark.asyncio
    async def test_unavailable_channel(self, messenger, resolver, thread):
        messenger.unavailable_channels.add("c1")
        with pytest.raises(ChannelUnavailable):
            await resolver.resolve(thread)


class TestCutoffAndCache:
    """Tests for the cutoff flag and per-channel caching."""

    @pytest.mark.asyncio
    async def test_cutoff_marks_new_replies(self, messenger, resolver, thread):
        messenger.post("c1", "sam", "Sam", at("2024-01-01T11:00:00"))
        assert (await resolver.resolve(thread, cutoff=at("2024-01-01T10:00:00"))).is_new
        assert not (await resolver.resolve(thread, cutoff=at("2024-01-01T11:00:00"))).is_new
        assert (await resolver.resolve(thread)).is_new

    @pytest.mark.asyncio
    async def test_channel_read_once_within_cache_window(self, messenger, resolver, thread):
        other_owner = TrackedThread(user_id="sam", guild_id="g1", channel_id="c1")
        messenger.post("c1", "sam", "Sam", at("2024-01-01T11:00:00"))

        first = await resolver.resolve(thread)
        second = await resolver.resolve(other_owner)

        assert messenger.fetches == ["c1"]
        assert first.classification == ReplyClass.OTHER
        assert second.classification == ReplyClass.SELF

    @pytest.mark.asyncio
    async def test_invalidate_forces_reread(self, messenger, resolver, thread):
        await resolver.resolve(thread)
        resolver.invalidate("c1")
        await resolver.resolve(thread)
        assert messenger.fetches == ["c1", "c1"]
