"""Error taxonomy shared by the background engines and the service layer.

- NotFound: an entity, message or channel vanished. Triggers local cleanup.
- PermissionDenied: the platform rejected an action. Entity left intact.
- TransientCollaboratorFailure: network or rate limit trouble. Retried next tick.
- InvalidSchedule: bad datetime, timezone or repeat rule. Rejected up front.
"""

from __future__ import annotations


class ThreadTrackerError(Exception):
    """Base class for thread tracker errors."""


class NotFound(ThreadTrackerError):
    """An entity or external resource no longer exists."""

    def __init__(self, message: str, resource: str | None = None) -> None:
        super().__init__(message)
        self.resource = resource


class ChannelUnavailable(NotFound):
    """A tracked channel was deleted or can no longer be read."""


class PermissionDenied(ThreadTrackerError):
    """The caller or the bot is not allowed to perform the action."""


class TransientCollaboratorFailure(ThreadTrackerError):
    """A call to the chat platform failed in a way that may succeed later."""


class InvalidSchedule(ThreadTrackerError, ValueError):
    """A scheduled message's datetime, timezone or repeat rule is malformed."""
