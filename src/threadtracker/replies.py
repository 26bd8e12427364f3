"""Reply resolution: who spoke last in a tracked thread.

The resolver reads a few of the most recent messages in a thread's channel
and classifies the latest author as the owner, one of the owner's muses, or
someone else. Results are cached per channel for a short time so that a
channel tracked by several users is only read once per refresh pass.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from threadtracker.errors import ChannelUnavailable
from threadtracker.logging import get_logger
from threadtracker.messaging import ChannelMessage, Messenger
from threadtracker.models import TrackedThread, ensure_utc

log = get_logger("replies")


class ReplyClass(str, Enum):
    """Classification of a thread's latest author."""

    SELF = "self"
    MUSE = "muse"
    OTHER = "other"
    NONE = "none"  # No messages in the lookback window


@dataclass(frozen=True)
class LastReply:
    """Outcome of resolving one thread.

    Attributes:
        classification: Who wrote the latest message.
        timestamp: When it was written, or None for an empty thread.
        author_label: Display name of the latest author.
        is_new: True when the reply is newer than the caller's cutoff.
    """

    classification: ReplyClass
    timestamp: datetime | None = None
    author_label: str | None = None
    is_new: bool = False

    @property
    def awaiting(self) -> bool:
        """Whether the owner is expected to reply next."""
        return self.classification in (ReplyClass.OTHER, ReplyClass.NONE)


class ReplyResolver:
    """Resolves the last responder of tracked threads.

    Attributes:
        messenger: Chat platform collaborator.
        lookback: Number of recent messages read per channel.
        cache_seconds: How long a channel read is reused.
    """

    def __init__(self, messenger: Messenger, lookback: int = 5, cache_seconds: float = 60.0) -> None:
        self.messenger = messenger
        self.lookback = lookback
        self.cache_seconds = cache_seconds
        self._cache: dict[str, tuple[float, list[ChannelMessage]]] = {}

    async def _recent(self, channel_id: str) -> list[ChannelMessage]:
        cached = self._cache.get(channel_id)
        now = time.monotonic()
        if cached is not None and now - cached[0] < self.cache_seconds:
            return cached[1]

        try:
            messages = await self.messenger.fetch_recent_messages(channel_id, self.lookback)
        except ChannelUnavailable:
            self._cache.pop(channel_id, None)
            raise

        self._cache[channel_id] = (now, messages)
        return messages

    def invalidate(self, channel_id: str | None = None) -> None:
        """Forget cached reads for one channel, or for all channels."""
        if channel_id is None:
            self._cache.clear()
        else:
            self._cache.pop(channel_id, None)

    async def resolve(
        self,
        thread: TrackedThread,
        muses: Iterable[str] = (),
        cutoff: datetime | None = None,
    ) -> LastReply:
        """Classify the latest author of a thread.

        Args:
            thread: The tracked thread.
            muses: The owner's registered muse names.
            cutoff: Previously seen reply time; replies after it are new.

        Returns:
            The last reply.

        Raises:
            ChannelUnavailable: If the channel was deleted or became unreadable.
        """
        messages = await self._recent(thread.channel_id)
        if not messages:
            return LastReply(ReplyClass.NONE)

        latest = max(messages, key=lambda m: m.timestamp)
        timestamp = ensure_utc(latest.timestamp)

        muse_names = {name.casefold() for name in muses}
        if latest.author_id == thread.user_id:
            classification = ReplyClass.SELF
        elif latest.author_name.casefold() in muse_names:
            classification = ReplyClass.MUSE
        else:
            classification = ReplyClass.OTHER

        return LastReply(
            classification=classification,
            timestamp=timestamp,
            author_label=latest.author_name,
            is_new=cutoff is None or timestamp > ensure_utc(cutoff),
        )
