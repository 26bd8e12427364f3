"""Direct message notifications when someone else replies in a thread.

The dispatcher keeps, per tracked thread, the last observed classification
and the timestamp of the last reply it notified about. Both maps live in
memory only: after a restart the first observation of each thread seeds
state without notifying, so a transition in flight during the restart may
go unnoticed.
"""

from __future__ import annotations

from datetime import datetime

from threadtracker.errors import ThreadTrackerError
from threadtracker.logging import get_logger
from threadtracker.messaging import Messenger
from threadtracker.models import TrackedThread
from threadtracker.replies import LastReply, ReplyClass
from threadtracker.settings import Settings

log = get_logger("notifications")

_OWN = (ReplyClass.SELF, ReplyClass.MUSE)


def format_notification(thread: TrackedThread, reply: LastReply) -> str:
    return f"**{reply.author_label}** replied in <#{thread.channel_id}>."


class NotificationDispatcher:
    """Notifies thread owners of new replies from other people.

    Attributes:
        messenger: Chat platform collaborator used for direct messages.
        settings: User settings, for the notify preference.
    """

    def __init__(self, messenger: Messenger, settings: Settings) -> None:
        self.messenger = messenger
        self.settings = settings
        self._last_class: dict[str, ReplyClass] = {}
        self._last_notified: dict[str, datetime] = {}

    def forget(self, thread_id: str) -> None:
        """Drop state for a thread that is no longer tracked."""
        self._last_class.pop(thread_id, None)
        self._last_notified.pop(thread_id, None)

    async def observe(self, thread: TrackedThread, reply: LastReply | None) -> bool:
        """Record a resolution and notify on a self/muse to other transition.

        Args:
            thread: The resolved thread.
            reply: Its last reply, or None if the channel is unavailable.

        Returns:
            True if a direct message was sent.
        """
        if reply is None:
            return False

        previous = self._last_class.get(thread.id)
        self._last_class[thread.id] = reply.classification

        if previous is None:
            # Cold cache: seed only
            return False
        if previous not in _OWN or reply.classification != ReplyClass.OTHER:
            return False

        notified_at = self._last_notified.get(thread.id)
        if reply.timestamp is None or (notified_at is not None and reply.timestamp <= notified_at):
            return False
        self._last_notified[thread.id] = reply.timestamp

        if not self.settings.notify(thread.user_id):
            return False

        try:
            await self.messenger.send_direct_message(thread.user_id, format_notification(thread, reply))
        except ThreadTrackerError as e:
            log.info("notification_not_delivered", user_id=thread.user_id, thread_id=thread.id, error=str(e))
            return False

        log.info("notification_sent", user_id=thread.user_id, thread_id=thread.id)
        return True
