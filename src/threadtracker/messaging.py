"""Chat platform collaborator.

The engines talk to the platform through the ``Messenger`` protocol only.
``DiscordMessenger`` implements it on top of a discord.py client, applies an
outbound rate limit and maps platform errors onto the error taxonomy.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

import discord

from threadtracker.errors import (
    ChannelUnavailable,
    NotFound,
    PermissionDenied,
    TransientCollaboratorFailure,
)
from threadtracker.logging import get_logger

log = get_logger("messaging")


@dataclass(frozen=True)
class ChannelMessage:
    """One message as seen when reading a channel's recent history."""

    author_id: str
    author_name: str
    timestamp: datetime
    message_id: str
    is_bot: bool = False


class Messenger(Protocol):
    """Outbound operations the engines need from the chat platform."""

    async def fetch_recent_messages(self, channel_id: str, limit: int) -> list[ChannelMessage]:
        """Most recent messages in a channel, newest first."""
        ...

    async def edit_message(
        self,
        channel_id: str,
        message_id: str,
        content: str,
        title: str | None = None,
    ) -> None: ...

    async def send_message(self, channel_id: str, content: str, title: str | None = None) -> str:
        """Post a message and return its id."""
        ...

    async def send_direct_message(self, user_id: str, content: str) -> None: ...

    async def delete_message(self, channel_id: str, message_id: str) -> None: ...


class RateLimiter:
    """Sliding window rate limiter.

    Tracks calls within the last minute and blocks when the limit is reached
    until the oldest call leaves the window.
    """

    def __init__(self, calls_per_minute: int = 50) -> None:
        self.calls_per_minute = calls_per_minute
        self.calls: list[datetime] = []
        self._lock = asyncio.Lock()

    def _expire(self) -> datetime:
        now = datetime.now(timezone.utc)
        window_start = now - timedelta(minutes=1)
        self.calls = [t for t in self.calls if t > window_start]
        return now

    async def acquire(self) -> None:
        """Wait until the rate limit allows another call."""
        async with self._lock:
            now = self._expire()

            if len(self.calls) >= self.calls_per_minute:
                wait_time = (self.calls[0] + timedelta(minutes=1) - now).total_seconds()
                if wait_time > 0:
                    log.debug(
                        "rate_limit_waiting",
                        wait_seconds=wait_time,
                        calls_in_window=len(self.calls),
                    )
                    await asyncio.sleep(wait_time)
                now = self._expire()

            self.calls.append(now)


@contextmanager
def _platform_errors(action: str, resource: str, reading: bool = False) -> Iterator[None]:
    """Translate discord.py exceptions raised inside the block.

    Args:
        action: Short name of the call, for log and error messages.
        resource: Id of the channel, message or user involved.
        reading: Treat a permission failure as the channel being unreadable.
    """
    try:
        yield
    except discord.NotFound as e:
        raise NotFound(f"{action}: {e.text or 'not found'}", resource=resource) from e
    except discord.Forbidden as e:
        if reading:
            raise ChannelUnavailable(f"{action}: access revoked", resource=resource) from e
        raise PermissionDenied(f"{action}: {e.text or 'forbidden'}") from e
    except discord.HTTPException as e:
        raise TransientCollaboratorFailure(f"{action}: HTTP {e.status}") from e
    except (OSError, asyncio.TimeoutError) as e:
        raise TransientCollaboratorFailure(f"{action}: {e}") from e


class DiscordMessenger:
    """Messenger backed by a connected discord.py client.

    Attributes:
        client: The running bot client.
        limiter: Outbound call rate limiter shared by all operations.
    """

    def __init__(self, client: discord.Client, calls_per_minute: int = 50) -> None:
        self.client = client
        self.limiter = RateLimiter(calls_per_minute=calls_per_minute)

    async def _channel(self, channel_id: str, reading: bool = False) -> discord.abc.Messageable:
        channel = self.client.get_channel(int(channel_id))
        if channel is not None:
            return channel  # type: ignore[return-value]

        await self.limiter.acquire()
        try:
            with _platform_errors("fetch_channel", channel_id, reading=reading):
                return await self.client.fetch_channel(int(channel_id))  # type: ignore[return-value]
        except NotFound as e:
            raise ChannelUnavailable(str(e), resource=channel_id) from e

    async def fetch_recent_messages(self, channel_id: str, limit: int) -> list[ChannelMessage]:
        channel = await self._channel(channel_id, reading=True)
        await self.limiter.acquire()

        messages: list[ChannelMessage] = []
        try:
            with _platform_errors("fetch_history", channel_id, reading=True):
                async for message in channel.history(limit=limit):
                    messages.append(
                        ChannelMessage(
                            author_id=str(message.author.id),
                            author_name=message.author.display_name,
                            timestamp=message.created_at,
                            message_id=str(message.id),
                            is_bot=message.author.bot,
                        )
                    )
        except NotFound as e:
            raise ChannelUnavailable(str(e), resource=channel_id) from e
        return messages

    async def edit_message(
        self,
        channel_id: str,
        message_id: str,
        content: str,
        title: str | None = None,
    ) -> None:
        channel = await self._channel(channel_id)
        await self.limiter.acquire()
        with _platform_errors("edit_message", message_id):
            await channel.get_partial_message(int(message_id)).edit(  # type: ignore[attr-defined]
                embed=discord.Embed(title=title, description=content)
            )

    async def send_message(self, channel_id: str, content: str, title: str | None = None) -> str:
        channel = await self._channel(channel_id)
        await self.limiter.acquire()
        with _platform_errors("send_message", channel_id):
            message = await channel.send(embed=discord.Embed(title=title, description=content))
        return str(message.id)

    async def send_direct_message(self, user_id: str, content: str) -> None:
        await self.limiter.acquire()
        with _platform_errors("send_direct_message", user_id):
            user = self.client.get_user(int(user_id)) or await self.client.fetch_user(int(user_id))
            await user.send(content)

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        channel = await self._channel(channel_id)
        await self.limiter.acquire()
        with _platform_errors("delete_message", message_id):
            await channel.get_partial_message(int(message_id)).delete()  # type: ignore[attr-defined]
