"""Scheduled messages: creation, editing and timed dispatch.

Due instants are resolved to UTC once, when a message is scheduled or its
datetime is edited, from the local datetime and the owner's timezone. They
are never re-derived later, so changing the timezone setting does not move
messages that are already scheduled.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any

from threadtracker.config import SchedulingConfig
from threadtracker.errors import (
    InvalidSchedule,
    NotFound,
    PermissionDenied,
    TransientCollaboratorFailure,
)
from threadtracker.logging import get_logger
from threadtracker.messaging import Messenger
from threadtracker.models import ArchiveReason, ScheduledMessage, ScheduledMessageListing, utcnow
from threadtracker.repeat import MonthlyRule, advance_past, parse_repeat_rule
from threadtracker.settings import Settings, parse_timezone
from threadtracker.store import Store

log = get_logger("scheduling")

_NO_REPEAT = {"", "none", "never", "off"}


def to_utc_instant(local_datetime: str, timezone_name: str) -> datetime:
    """Resolve a local datetime string in a zone to a UTC instant.

    Args:
        local_datetime: ISO 8601 datetime such as ``2024-06-01T09:00``.
        timezone_name: IANA zone identifier used when the string has no offset.

    Returns:
        Timezone-aware UTC datetime.

    Raises:
        InvalidSchedule: If the datetime or zone is malformed, or the local
            time does not exist in the zone (skipped by a DST change).
    """
    try:
        zone = parse_timezone(timezone_name)
    except ValueError as e:
        raise InvalidSchedule(str(e)) from e

    try:
        parsed = datetime.fromisoformat(local_datetime.strip())
    except ValueError as e:
        raise InvalidSchedule(f"Invalid datetime: {local_datetime!r}") from e

    if parsed.tzinfo is not None:
        return parsed.astimezone(dt_timezone.utc)

    # Ambiguous times resolve to the earlier instant
    localized = parsed.replace(tzinfo=zone, fold=0)
    instant = localized.astimezone(dt_timezone.utc)
    if instant.astimezone(zone).replace(tzinfo=None) != parsed:
        raise InvalidSchedule(f"{local_datetime} does not exist in {timezone_name}")
    return instant


def _canonical_repeat(repeat: str | None, anchor: datetime) -> str | None:
    if repeat is None or repeat.strip().lower() in _NO_REPEAT:
        return None
    return str(parse_repeat_rule(repeat, anchor))


class ScheduleService:
    """Owner-facing operations on scheduled messages.

    Attributes:
        store: Store gateway.
        settings: User settings, for the default timezone.
        config: Scheduling configuration.
    """

    def __init__(
        self,
        store: Store,
        settings: Settings,
        config: SchedulingConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings
        self.config = config or SchedulingConfig()
        self.clock = clock

    def _check_future(self, due_at: datetime) -> None:
        if self.config.reject_past and due_at <= self.clock():
            raise InvalidSchedule("The scheduled time must be in the future")

    def _owned(self, message_id: str, user_id: str | None) -> ScheduledMessage:
        message = self.store.get_scheduled_message(message_id)
        if message is None:
            raise NotFound(f"No scheduled message {message_id}", resource=message_id)
        if user_id is not None and message.user_id != user_id:
            raise PermissionDenied("That scheduled message belongs to someone else")
        return message

    def schedule_message(
        self,
        user_id: str,
        channel_id: str,
        local_datetime: str,
        title: str,
        body: str,
        repeat: str | None = None,
        timezone: str | None = None,
    ) -> ScheduledMessage:
        """Validate and persist a new scheduled message.

        Args:
            user_id: Owner.
            channel_id: Target channel.
            local_datetime: Due datetime in the owner's local time.
            title: Message title.
            body: Message body.
            repeat: Optional repeat rule.
            timezone: Zone override; defaults to the owner's setting.

        Returns:
            The stored message.

        Raises:
            InvalidSchedule: If any field is malformed. Nothing is stored.
        """
        if not title.strip() or not body.strip():
            raise InvalidSchedule("Title and body must not be empty")

        tz_name = timezone or self.settings.timezone_name(user_id)
        due_at = to_utc_instant(local_datetime, tz_name)
        self._check_future(due_at)

        message = ScheduledMessage(
            user_id=user_id,
            channel_id=channel_id,
            due_at=due_at,
            local_datetime=local_datetime.strip(),
            timezone=parse_timezone(tz_name).key,
            repeat=_canonical_repeat(repeat, due_at),
            title=title,
            body=body,
        )
        self.store.add_scheduled_message(message)
        log.info(
            "message_scheduled",
            message_id=message.id,
            user_id=user_id,
            due_at=due_at.isoformat(),
            repeat=message.repeat,
        )
        return message

    def update_scheduled_message(
        self,
        message_id: str,
        user_id: str | None = None,
        **changes: Any,
    ) -> ScheduledMessage:
        """Apply a partial update.

        Accepted fields: ``local_datetime``, ``timezone``, ``repeat``,
        ``title``, ``body``, ``channel_id``. Changing the datetime or zone
        recomputes the due instant and re-arms an archived message.

        Raises:
            NotFound: If the message does not exist.
            PermissionDenied: If ``user_id`` is given and does not own it.
            InvalidSchedule: If a field is malformed. Nothing is stored.
        """
        allowed = {"local_datetime", "timezone", "repeat", "title", "body", "channel_id"}
        unknown = set(changes) - allowed
        if unknown:
            raise InvalidSchedule(f"Unknown fields: {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in changes.items() if v is not None}

        message = self._owned(message_id, user_id)
        fields: dict[str, Any] = {}

        for name in ("title", "body"):
            if name in changes:
                if not changes[name].strip():
                    raise InvalidSchedule(f"{name.capitalize()} must not be empty")
                fields[name] = changes[name]
        if "channel_id" in changes:
            fields["channel_id"] = changes["channel_id"]

        due_at = message.due_at
        if "local_datetime" in changes or "timezone" in changes:
            local = changes.get("local_datetime", message.local_datetime)
            if "timezone" in changes:
                tz_name = changes["timezone"]
            elif "local_datetime" in changes:
                tz_name = self.settings.timezone_name(message.user_id)
            else:
                tz_name = message.timezone
            due_at = to_utc_instant(local, tz_name)
            self._check_future(due_at)
            fields.update(
                due_at=due_at,
                local_datetime=local.strip(),
                timezone=parse_timezone(tz_name).key,
                archived=False,
                archive_reason=None,
                failure=None,
            )

        if "repeat" in changes:
            fields["repeat"] = _canonical_repeat(changes["repeat"], due_at)
        elif "due_at" in fields and message.repeat:
            rule = parse_repeat_rule(message.repeat, message.due_at)
            if isinstance(rule, MonthlyRule):
                fields["repeat"] = str(MonthlyRule(rule.interval, due_at.day))

        if fields:
            self.store.update_scheduled_message(message_id, **fields)
            log.info("scheduled_message_updated", message_id=message_id, fields=sorted(fields))

        return self._owned(message_id, None)

    def remove_scheduled_message(self, message_id: str, user_id: str | None = None) -> None:
        """Archive a message so it is never sent.

        Raises:
            NotFound: If the message does not exist.
            PermissionDenied: If ``user_id`` is given and does not own it.
        """
        self._owned(message_id, user_id)
        self.store.archive_scheduled_message(message_id, ArchiveReason.REMOVED)
        log.info("scheduled_message_removed", message_id=message_id)

    def get_scheduled_message(self, message_id: str, user_id: str | None = None) -> ScheduledMessage:
        """Fetch one message, checking ownership when ``user_id`` is given."""
        return self._owned(message_id, user_id)

    def list_scheduled_messages(
        self,
        user_id: str,
        include_archived: bool = False,
    ) -> list[ScheduledMessageListing]:
        """List a user's messages with the due time shown in their current zone."""
        zone = self.settings.timezone(user_id)
        return [
            ScheduledMessageListing(
                message=message,
                next_due_local=message.due_at.astimezone(zone).strftime("%Y-%m-%d %H:%M %Z"),
                display_timezone=zone.key,
            )
            for message in self.store.list_scheduled_messages(user_id, include_archived)
        ]


@dataclass
class DispatchResult:
    """Counters for one dispatch pass."""

    sent: int = 0
    failed: int = 0
    retrying: int = 0


class ScheduledMessageDispatcher:
    """Sends due scheduled messages and archives or re-arms them.

    Each occurrence is claimed before it is sent: one conditional write
    archives it (one-off) or moves it to its next occurrence (repeating).
    Only the dispatcher whose claim applies sends, so several dispatchers
    sharing a database never send an occurrence twice. A send that fails
    transiently releases the claim for the next pass.
    """

    def __init__(
        self,
        store: Store,
        messenger: Messenger,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.messenger = messenger
        self.clock = clock
        self._lock = asyncio.Lock()
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def request_stop(self) -> None:
        """Finish the message in flight, then stop the current pass."""
        self._stopping = True

    async def wait_idle(self) -> None:
        """Wait until any pass in progress has finished."""
        async with self._lock:
            pass

    async def tick(self, now: datetime | None = None) -> DispatchResult | None:
        """Run one dispatch pass.

        Returns:
            Pass counters, or None if a previous pass is still running.
        """
        if self._lock.locked():
            log.debug("dispatch_tick_skipped")
            return None

        async with self._lock:
            now = now or self.clock()
            result = DispatchResult()
            due = self.store.list_due_scheduled_messages(now)
            if due:
                log.debug("dispatch_tick_start", due=len(due))

            for message in due:
                if self._stopping:
                    log.info("dispatch_tick_interrupted")
                    break
                try:
                    await self._dispatch(message, now, result)
                except Exception as e:
                    result.retrying += 1
                    log.error(
                        "dispatch_unexpected_error",
                        message_id=message.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )

            if result.sent or result.failed or result.retrying:
                log.info(
                    "dispatch_tick_complete",
                    sent=result.sent,
                    failed=result.failed,
                    retrying=result.retrying,
                )
            return result

    async def _dispatch(self, message: ScheduledMessage, now: datetime, result: DispatchResult) -> None:
        rule = None
        if message.repeat:
            try:
                rule = parse_repeat_rule(message.repeat, message.due_at)
            except InvalidSchedule as e:
                self.store.archive_scheduled_message(message.id, ArchiveReason.FAILED, str(e))
                result.failed += 1
                log.warning("dispatch_invalid_repeat", message_id=message.id, repeat=message.repeat)
                return

        next_due = advance_past(rule, message.due_at, now) if rule else None
        if not self.store.claim_occurrence(message.id, message.due_at, next_due):
            log.info("dispatch_already_claimed", message_id=message.id)
            return

        try:
            await self.messenger.send_message(message.channel_id, message.body, title=message.title)
        except (NotFound, PermissionDenied) as e:
            self.store.archive_scheduled_message(message.id, ArchiveReason.FAILED, str(e))
            result.failed += 1
            log.warning("dispatch_failed", message_id=message.id, channel_id=message.channel_id, error=str(e))
            return
        except TransientCollaboratorFailure as e:
            self.store.release_occurrence(message.id, message.due_at, next_due)
            result.retrying += 1
            log.warning("dispatch_retry_later", message_id=message.id, error=str(e))
            return
        except Exception:
            self.store.release_occurrence(message.id, message.due_at, next_due)
            raise

        result.sent += 1
        log.info(
            "scheduled_message_sent",
            message_id=message.id,
            channel_id=message.channel_id,
            next_due=next_due.isoformat() if next_due else None,
        )
