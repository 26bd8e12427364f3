"""Digest rendering.

A digest lists a user's tracked threads in one community, grouped by
category, with the latest responder of each thread. Threads where someone
else spoke last (or nobody spoke yet) are bold: the owner owes a reply.

Rendering is deterministic for an unchanged snapshot of the store and of
the channels, so watchers can compare renders to decide whether to edit.
"""

from __future__ import annotations

import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from threadtracker.categories import TODO_MARKER, matches, strip_marker
from threadtracker.errors import ChannelUnavailable
from threadtracker.logging import get_logger
from threadtracker.models import SortOrder, Todo, TrackedThread
from threadtracker.replies import LastReply, ReplyResolver
from threadtracker.store import Store

log = get_logger("digest")

EMPTY_TEXT = "No threads are currently being tracked."
NOTHING_PENDING_TEXT = "Nothing is awaiting your reply."
TODO_HEADER = "## To Do"

# Room kept free in each part for the "Part i of n" footer
_FOOTER_RESERVE = 32


@dataclass
class Digest:
    """A rendered digest.

    Attributes:
        title: Heading shown above the digest.
        text: The whole digest as one string.
        parts: ``text`` split to fit the platform message limit, in order.
        resolved: Each rendered thread with its last reply, or None when
            the channel is unavailable.
    """

    title: str
    text: str
    parts: list[str]
    resolved: list[tuple[TrackedThread, LastReply | None]] = field(default_factory=list)


@dataclass
class _Group:
    name: str | None
    threads: list[tuple[TrackedThread, LastReply | None]] = field(default_factory=list)
    todos: list[Todo] = field(default_factory=list)


def digest_title(categories: Sequence[str] | None = None) -> str:
    if categories:
        return "Tracked threads: " + ", ".join(categories)
    return "Tracked threads"


def split_into_chunks(text: str, limit: int) -> list[str]:
    """Split text on line boundaries into numbered parts of at most ``limit`` chars.

    Single lines longer than a part are cut hard.
    """
    if len(text) <= limit:
        return [text]

    size = limit - _FOOTER_RESERVE
    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > size:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:size])
            line = line[size:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > size:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)

    total = len(chunks)
    return [f"{chunk}\n\n*Part {i} of {total}*" for i, chunk in enumerate(chunks, start=1)]


def format_thread_line(
    thread: TrackedThread,
    reply: LastReply | None,
    show_timestamps: bool = False,
) -> str:
    """Render one thread as a list line."""
    if reply is None:
        label = "*unavailable*"
    elif reply.timestamp is None:
        label = "**No replies yet**"
    elif reply.awaiting:
        label = f"**{reply.author_label}**"
    else:
        label = reply.author_label or ""

    line = f"- <#{thread.channel_id}> · {label}"
    if show_timestamps and reply is not None and reply.timestamp is not None:
        line += f" · <t:{int(reply.timestamp.timestamp())}:R>"
    return line


class DigestRenderer:
    """Builds digests from the store and the reply resolver.

    Attributes:
        store: Store gateway.
        resolver: Reply resolver used for every listed thread.
        max_chars: Platform message size limit.
    """

    def __init__(self, store: Store, resolver: ReplyResolver, max_chars: int = 4096) -> None:
        self.store = store
        self.resolver = resolver
        self.max_chars = max_chars

    async def _resolve_all(
        self,
        threads: Iterable[TrackedThread],
        muses: list[str],
    ) -> list[tuple[TrackedThread, LastReply | None]]:
        resolved: list[tuple[TrackedThread, LastReply | None]] = []
        for thread in threads:
            try:
                reply: LastReply | None = await self.resolver.resolve(thread, muses)
            except ChannelUnavailable:
                log.info("thread_channel_unavailable", thread_id=thread.id, channel_id=thread.channel_id)
                reply = None
            resolved.append((thread, reply))
        return resolved

    def _select_threads(
        self,
        user_id: str,
        guild_id: str,
        categories: Sequence[str],
    ) -> list[TrackedThread]:
        threads = self.store.list_threads(user_id, guild_id)
        if not categories:
            return threads
        # A request made only of to do categories lists no threads
        thread_request = [c for c in categories if not c.startswith(TODO_MARKER)]
        if not thread_request:
            return []
        return [t for t in threads if matches(t.category, thread_request)]

    async def render(
        self,
        user_id: str,
        guild_id: str,
        categories: Sequence[str] | None = None,
        sort: SortOrder = SortOrder.INSERTION,
        include_todos: bool = False,
        show_timestamps: bool = False,
        pending_only: bool = False,
    ) -> Digest:
        """Render a user's digest for one community.

        Args:
            user_id: Owner of the threads.
            guild_id: Community the threads belong to.
            categories: Requested categories; empty means all.
            sort: Insertion order or alphabetical by category.
            include_todos: Also list the owner's to do entries.
            show_timestamps: Append the last reply time to each thread.
            pending_only: Only list threads awaiting the owner's reply.

        Returns:
            The rendered digest.

        Raises:
            TransientCollaboratorFailure: If a channel could not be read.
        """
        categories = list(categories or [])
        threads = self._select_threads(user_id, guild_id, categories)
        muses = self.store.list_muse_names(user_id, guild_id)
        resolved = await self._resolve_all(threads, muses)

        listed = resolved
        if pending_only:
            listed = [(t, r) for t, r in resolved if r is not None and r.awaiting]

        todos: list[Todo] = []
        if include_todos:
            todos = [
                todo
                for todo in self.store.list_todos(user_id, guild_id)
                if matches(todo.category, categories, cross_match=True)
            ]

        text = self._format(listed, todos, sort, show_timestamps)
        if not text:
            text = NOTHING_PENDING_TEXT if pending_only and resolved else EMPTY_TEXT

        return Digest(
            title=digest_title(categories),
            text=text,
            parts=split_into_chunks(text, self.max_chars),
            resolved=resolved,
        )

    def _format(
        self,
        resolved: list[tuple[TrackedThread, LastReply | None]],
        todos: list[Todo],
        sort: SortOrder,
        show_timestamps: bool,
    ) -> str:
        groups: dict[str, _Group] = {}
        loose = _Group(None)
        loose_todos: list[Todo] = []

        for thread, reply in resolved:
            if thread.category is None:
                loose.threads.append((thread, reply))
                continue
            group = groups.setdefault(thread.category.casefold(), _Group(thread.category))
            group.threads.append((thread, reply))

        for todo in todos:
            if todo.category is None:
                loose_todos.append(todo)
                continue
            name = strip_marker(todo.category)
            groups.setdefault(name.casefold(), _Group(name)).todos.append(todo)

        ordered = list(groups.values())
        if sort == SortOrder.CATEGORY:
            ordered.sort(key=lambda g: (g.name or "").casefold())

        sections: list[str] = []
        for group in ordered:
            lines = [f"### {group.name}"]
            lines += [format_thread_line(t, r, show_timestamps) for t, r in group.threads]
            lines += [f"- {todo.content}" for todo in group.todos]
            sections.append("\n".join(lines))

        if loose.threads:
            sections.append(
                "\n".join(format_thread_line(t, r, show_timestamps) for t, r in loose.threads)
            )

        if loose_todos:
            sections.append("\n".join([TODO_HEADER, *(f"- {todo.content}" for todo in loose_todos)]))

        return "\n\n".join(sections)

    async def random_pending_thread(
        self,
        user_id: str,
        guild_id: str,
        categories: Sequence[str] | None = None,
        rng: random.Random | None = None,
    ) -> TrackedThread | None:
        """Pick a random thread that is awaiting the owner's reply.

        Returns:
            A thread, or None if nothing is pending.
        """
        threads = self._select_threads(user_id, guild_id, list(categories or []))
        muses = self.store.list_muse_names(user_id, guild_id)
        pending = [
            thread
            for thread, reply in await self._resolve_all(threads, muses)
            if reply is not None and reply.awaiting
        ]
        if not pending:
            return None
        return (rng or random).choice(pending)
