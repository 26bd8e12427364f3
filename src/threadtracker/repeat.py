"""Repeat rules for scheduled messages.

A rule is one of three variants, each knowing how to compute its next
occurrence. Rules are parsed once when a message is scheduled and stored in
a canonical text form that parses back to the same rule:

    daily            every 3 days
    weekly           every 2 weeks
    monthly on day 31    every 2 months on day 15
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from threadtracker.errors import InvalidSchedule


@dataclass(frozen=True)
class DailyRule:
    """Repeat every ``interval`` days."""

    interval: int = 1

    def next_after(self, due: datetime) -> datetime:
        return due + timedelta(days=self.interval)

    def __str__(self) -> str:
        return "daily" if self.interval == 1 else f"every {self.interval} days"


@dataclass(frozen=True)
class WeeklyRule:
    """Repeat every ``interval`` weeks."""

    interval: int = 1

    def next_after(self, due: datetime) -> datetime:
        return due + timedelta(weeks=self.interval)

    def __str__(self) -> str:
        return "weekly" if self.interval == 1 else f"every {self.interval} weeks"


@dataclass(frozen=True)
class MonthlyRule:
    """Repeat every ``interval`` months on day ``day``.

    Months without that day clamp to their last day. The anchor day is kept,
    so a rule anchored on the 31st returns to the 31st after a short month.
    """

    interval: int = 1
    day: int = 1

    def next_after(self, due: datetime) -> datetime:
        months = due.year * 12 + (due.month - 1) + self.interval
        year, month = divmod(months, 12)
        month += 1
        last_day = calendar.monthrange(year, month)[1]
        return due.replace(year=year, month=month, day=min(self.day, last_day))

    def __str__(self) -> str:
        if self.interval == 1:
            return f"monthly on day {self.day}"
        return f"every {self.interval} months on day {self.day}"


type RepeatRule = DailyRule | WeeklyRule | MonthlyRule


_NAMED = {"daily": "d", "weekly": "w", "monthly": "m"}

_UNITS = {
    "d": "d", "day": "d", "days": "d",
    "w": "w", "week": "w", "weeks": "w",
    "m": "m", "mo": "m", "month": "m", "months": "m",
}

_PATTERN = re.compile(
    r"^(?:every\s+)?(?P<count>\d+)?\s*(?P<unit>[a-z]+)(?:\s+on\s+day\s+(?P<day>\d{1,2}))?$"
)


def parse_repeat_rule(text: str, anchor: datetime) -> RepeatRule:
    """Parse a repeat rule.

    Args:
        text: Rule text such as ``weekly``, ``2 days`` or ``every 3 months``.
        anchor: The first due instant; monthly rules without an explicit
            day repeat on this instant's day of month.

    Returns:
        The parsed rule.

    Raises:
        InvalidSchedule: If the text is not a supported rule.
    """
    normalized = " ".join(text.strip().lower().split())
    match = _PATTERN.match(normalized)
    if not match:
        raise InvalidSchedule(f"Unsupported repeat rule: {text!r}")

    word = match["unit"]
    if word in _NAMED and match["count"] is None:
        unit = _NAMED[word]
    elif word in _UNITS:
        unit = _UNITS[word]
    else:
        raise InvalidSchedule(f"Unsupported repeat rule: {text!r}")

    interval = int(match["count"]) if match["count"] else 1
    if interval < 1:
        raise InvalidSchedule("Repeat interval must be at least 1")

    if match["day"] is not None and unit != "m":
        raise InvalidSchedule("Only monthly rules take a day of month")

    if unit == "d":
        return DailyRule(interval)
    if unit == "w":
        return WeeklyRule(interval)

    day = int(match["day"]) if match["day"] else anchor.day
    if not 1 <= day <= 31:
        raise InvalidSchedule(f"Invalid day of month: {day}")
    return MonthlyRule(interval, day)


def advance_past(rule: RepeatRule, due: datetime, now: datetime) -> datetime:
    """Advance ``due`` by whole periods until it is strictly after ``now``.

    Always advances at least once.
    """
    next_due = rule.next_after(due)
    while next_due <= now:
        next_due = rule.next_after(next_due)
    return next_due
