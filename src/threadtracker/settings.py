"""Per-user settings with validation and defaults.

Settings are stored as strings. Absence of a setting means its default
applies: UTC, notifications off, timestamps off, insertion order.
"""

from __future__ import annotations

from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from threadtracker.models import SortOrder
from threadtracker.store import Store

TIMEZONE = "timezone"
NOTIFY = "notify"
TIMESTAMPS = "timestamps"
SORT = "sort"

DEFAULT_TIMEZONE = "UTC"

_TRUE = {"true", "yes", "on", "1", "enable", "enabled"}
_FALSE = {"false", "no", "off", "0", "disable", "disabled"}


def parse_bool(value: str) -> bool:
    """Parse a boolean setting value.

    Raises:
        ValueError: If the value is not a recognised boolean.
    """
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"Not a boolean value: {value!r}")


def parse_timezone(value: str) -> ZoneInfo:
    """Resolve an IANA zone identifier.

    Raises:
        ValueError: If the zone does not exist.
    """
    try:
        return ZoneInfo(value.strip())
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {value!r}") from e


def _normalize_timezone(value: str) -> str:
    return parse_timezone(value).key


def _normalize_bool(value: str) -> str:
    return "true" if parse_bool(value) else "false"


def _normalize_sort(value: str) -> str:
    try:
        return SortOrder(value.strip().lower()).value
    except ValueError as e:
        options = ", ".join(s.value for s in SortOrder)
        raise ValueError(f"Sort must be one of: {options}") from e


_NORMALIZERS = {
    TIMEZONE: _normalize_timezone,
    NOTIFY: _normalize_bool,
    TIMESTAMPS: _normalize_bool,
    SORT: _normalize_sort,
}


@dataclass(frozen=True)
class UserPreferences:
    """Resolved settings for one user."""

    timezone: ZoneInfo
    notify: bool
    timestamps: bool
    sort: SortOrder


class Settings:
    """Validated access to user settings."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def set(self, user_id: str, name: str, value: str) -> str:
        """Validate and store a setting.

        Returns:
            The normalized value that was stored.

        Raises:
            ValueError: If the name is unknown or the value invalid.
        """
        normalizer = _NORMALIZERS.get(name)
        if normalizer is None:
            raise ValueError(f"Unknown setting: {name!r}")
        normalized = normalizer(value)
        self.store.set_setting(user_id, name, normalized)
        return normalized

    def reset(self, user_id: str, name: str) -> bool:
        """Remove a setting so its default applies again."""
        return self.store.delete_setting(user_id, name) > 0

    def timezone(self, user_id: str) -> ZoneInfo:
        value = self.store.get_setting(user_id, TIMEZONE)
        return parse_timezone(value or DEFAULT_TIMEZONE)

    def timezone_name(self, user_id: str) -> str:
        return self.store.get_setting(user_id, TIMEZONE) or DEFAULT_TIMEZONE

    def notify(self, user_id: str) -> bool:
        value = self.store.get_setting(user_id, NOTIFY)
        return parse_bool(value) if value else False

    def timestamps(self, user_id: str) -> bool:
        value = self.store.get_setting(user_id, TIMESTAMPS)
        return parse_bool(value) if value else False

    def sort(self, user_id: str) -> SortOrder:
        value = self.store.get_setting(user_id, SORT)
        return SortOrder(value) if value else SortOrder.INSERTION

    def preferences(self, user_id: str) -> UserPreferences:
        """Resolve every setting for a user, applying defaults."""
        return UserPreferences(
            timezone=self.timezone(user_id),
            notify=self.notify(user_id),
            timestamps=self.timestamps(user_id),
            sort=self.sort(user_id),
        )

    def users_with_notifications(self) -> list[str]:
        """Users who enabled direct message notifications."""
        return self.store.list_users_with_setting(NOTIFY, "true")
