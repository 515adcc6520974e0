"""
swoon.engine.moderation — Ban Windows
=======================================

A ban is either permanent or lasts until an instant.  Admin input keeps
the familiar "days, where 0 means forever" shape; :func:`ban_window`
turns it into the explicit variant, and the variant is what gets stored
(``ban_expires_at`` NULL for :class:`Permanent`).

Pure functions — no database access.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from swoon.constants import MAX_DURATION_DAYS
from swoon.engine.clock import as_utc
from swoon.errors import InvalidDuration


@dataclass(frozen=True, slots=True)
class Permanent:
    """A ban with no end."""

    @property
    def expires_at(self) -> None:
        return None

    def is_active(self, now: datetime) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Until:
    """A ban that lifts at ``instant``."""

    instant: datetime

    @property
    def expires_at(self) -> datetime:
        return self.instant

    def is_active(self, now: datetime) -> bool:
        return as_utc(now) < as_utc(self.instant)


BanWindow = Permanent | Until


def ban_window(duration_days: int, now: datetime) -> BanWindow:
    """Map an admin-supplied duration to a ban window.

    ``0`` → :class:`Permanent`; ``N > 0`` → :class:`Until` ``now + N days``.

    Raises
    ------
    InvalidDuration
        Negative, non-integer, or absurdly long durations.
    """
    if isinstance(duration_days, bool) or not isinstance(duration_days, int):
        raise InvalidDuration("Ban duration must be a whole number of days")
    if duration_days < 0 or duration_days > MAX_DURATION_DAYS:
        raise InvalidDuration(
            f"Ban duration must be between 0 and {MAX_DURATION_DAYS} days",
            duration_days=duration_days,
        )
    if duration_days == 0:
        return Permanent()
    return Until(as_utc(now) + timedelta(days=duration_days))


def window_from_row(is_banned: bool, ban_expires_at: datetime | None) -> BanWindow | None:
    """Rebuild the stored variant from account columns (None = not banned)."""
    if not is_banned:
        return None
    if ban_expires_at is None:
        return Permanent()
    return Until(as_utc(ban_expires_at))


def describe(window: BanWindow | None) -> str:
    if window is None:
        return "not banned"
    if isinstance(window, Permanent):
        return "permanent"
    return f"until {window.instant.isoformat()}"
