"""Tests for digest rendering.

Covers:
- Line formatting and bolding of threads awaiting a reply
- Category grouping and ordering
- To do entries and category requests
- Idempotence for an unchanged snapshot
- Splitting into numbered parts
"""

import random

import pytest

from fakes import FakeMessenger, at
from threadtracker.digest import EMPTY_TEXT, NOTHING_PENDING_TEXT, DigestRenderer, split_into_chunks
from threadtracker.models import SortOrder
from threadtracker.replies import ReplyResolver
from threadtracker.store import Store


@pytest.fixture
def renderer(store: Store, messenger: FakeMessenger) -> DigestRenderer:
    return DigestRenderer(store, ReplyResolver(messenger, cache_seconds=0), max_chars=4096)


@pytest.fixture
def populated(store: Store, messenger: FakeMessenger) -> Store:
    """Owner u1 with threads in three states and one unavailable channel."""
    store.add_thread("u1", "g1", "c1", "Fantasy")
    store.add_thread("u1", "g1", "c2")
    store.add_thread("u1", "g1", "c3", "horror")
    store.add_thread("u1", "g1", "c4", "fantasy")
    store.add_muse("u1", "g1", "Aria")

    messenger.post("c1", "sam", "Sam", at("2024-01-01T10:00:00"))
    messenger.post("c2", "u1", "Me", at("2024-01-01T10:00:00"))
    messenger.post("c3", "hook", "Aria", at("2024-01-01T10:00:00"))
    messenger.unavailable_channels.add("c4")
    return store


class TestRender:
    """Tests for DigestRenderer.render()."""

    @pytest.mark.asyncio
    async def test_empty(self, renderer):
        digest = await renderer.render("u1", "g1")
        assert digest.text == EMPTY_TEXT
        assert digest.parts == [EMPTY_TEXT]

    @pytest.mark.asyncio
    async def test_groups_and_bolding(self, renderer, populated):
        digest = await renderer.render("u1", "g1")
        assert digest.text == (
            "### Fantasy\n"
            "- <#c1> · **Sam**\n"
            "- <#c4> · *unavailable*\n"
            "\n"
            "### horror\n"
            "- <#c3> · Aria\n"
            "\n"
            "- <#c2> · Me"
        )

    @pytest.mark.asyncio
    async def test_no_replies_yet_is_bold(self, renderer, store):
        store.add_thread("u1", "g1", "c9")
        digest = await renderer.render("u1", "g1")
        assert digest.text == "- <#c9> · **No replies yet**"

    @pytest.mark.asyncio
    async def test_category_sort(self, renderer, store, messenger):
        store.add_thread("u1", "g1", "c1", "zeta")
        store.add_thread("u1", "g1", "c2", "Alpha")
        digest = await renderer.render("u1", "g1", sort=SortOrder.CATEGORY)
        assert digest.text.index("### Alpha") < digest.text.index("### zeta")

        digest = await renderer.render("u1", "g1", sort=SortOrder.INSERTION)
        assert digest.text.index("### zeta") < digest.text.index("### Alpha")

    @pytest.mark.asyncio
    async def test_category_filter(self, renderer, populated):
        digest = await renderer.render("u1", "g1", categories=["FANTASY"])
        assert "<#c1>" in digest.text
        assert "<#c3>" not in digest.text
        assert "<#c2>" not in digest.text

        digest = await renderer.render("u1", "g1", categories=["none"])
        assert digest.text == "- <#c2> · Me"

    @pytest.mark.asyncio
    async def test_timestamps(self, renderer, populated):
        digest = await renderer.render("u1", "g1", categories=["horror"], show_timestamps=True)
        epoch = int(at("2024-01-01T10:00:00").timestamp())
        assert digest.text.endswith(f"- <#c3> · Aria · <t:{epoch}:R>")

    @pytest.mark.asyncio
    async def test_pending_only(self, renderer, populated):
        digest = await renderer.render("u1", "g1", pending_only=True)
        assert digest.text == "### Fantasy\n- <#c1> · **Sam**"

    @pytest.mark.asyncio
    async def test_nothing_pending(self, renderer, store, messenger):
        store.add_thread("u1", "g1", "c2")
        messenger.post("c2", "u1", "Me", at("2024-01-01T10:00:00"))
        digest = await renderer.render("u1", "g1", pending_only=True)
        assert digest.text == NOTHING_PENDING_TEXT

    @pytest.mark.asyncio
    async def test_resolved_reports_unavailable_as_none(self, renderer, populated):
        digest = await renderer.render("u1", "g1")
        replies = {thread.channel_id: reply for thread, reply in digest.resolved}
        assert replies["c4"] is None
        assert replies["c1"].author_label == "Sam"

    @pytest.mark.asyncio
    async def test_same_snapshot_renders_identically(self, renderer, populated):
        first = await renderer.render("u1", "g1", include_todos=True, show_timestamps=True)
        second = await renderer.render("u1", "g1", include_todos=True, show_timestamps=True)
        assert first.text == second.text
        assert first.parts == second.parts


class TestTodos:
    """Tests for to do entries in digests."""

    @pytest.mark.asyncio
    async def test_todos_join_matching_group_and_to_do_section(self, renderer, store, messenger):
        store.add_thread("u1", "g1", "c1", "bob")
        messenger.post("c1", "u1", "Me", at("2024-01-01T10:00:00"))
        store.add_todo("u1", "g1", "plan arc", "!bob")
        store.add_todo("u1", "g1", "reply to Sam")

        digest = await renderer.render("u1", "g1", include_todos=True)
        assert digest.text == (
            "### bob\n"
            "- <#c1> · Me\n"
            "- plan arc\n"
            "\n"
            "## To Do\n"
            "- reply to Sam"
        )

    @pytest.mark.asyncio
    async def test_marked_request_lists_only_todos(self, renderer, store):
        store.add_thread("u1", "g1", "c1", "bob")
        store.add_todo("u1", "g1", "plan arc", "!bob")

        digest = await renderer.render("u1", "g1", categories=["!bob"], include_todos=True)
        assert digest.text == "### bob\n- plan arc"

    @pytest.mark.asyncio
    async def test_todos_excluded_by_default(self, renderer, store):
        store.add_todo("u1", "g1", "plan arc")
        digest = await renderer.render("u1", "g1")
        assert digest.text == EMPTY_TEXT


class TestRandomPending:
    """Tests for random_pending_thread()."""

    @pytest.mark.asyncio
    async def test_only_pending_threads(self, renderer, populated):
        for seed in range(5):
            thread = await renderer.random_pending_thread("u1", "g1", rng=random.Random(seed))
            assert thread.channel_id == "c1"

    @pytest.mark.asyncio
    async def test_none_when_nothing_pending(self, renderer, populated):
        assert await renderer.random_pending_thread("u1", "g1", categories=["horror"]) is None


class TestSplit:
    """Tests for split_into_chunks()."""

    def test_short_text_is_one_part(self):
        assert split_into_chunks("hello", 100) == ["hello"]

    def test_splits_on_lines_and_numbers_parts(self):
        lines = [f"- line {i:03d}" for i in range(60)]
        parts = split_into_chunks("\n".join(lines), 200)

        assert len(parts) > 1
        assert all(len(p) <= 200 for p in parts)
        assert parts[0].endswith(f"*Part 1 of {len(parts)}*")
        body = [line for p in parts for line in p.split("\n") if line.startswith("- line")]
        assert body == lines

    def test_long_line_is_cut(self):
        parts = split_into_chunks("x" * 500, 200)
        assert all(len(p) <= 200 for p in parts)
        assert "".join(p.split("\n")[0] for p in parts) == "x" * 500
