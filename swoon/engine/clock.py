"""
swoon.engine.clock — UTC helpers
==================================

All instants inside the engine are timezone-aware UTC.  SQLite (used in
tests) hands back naive datetimes, so every value read from a row goes
through :func:`as_utc` before it is compared.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise *value* to an aware UTC datetime (naive is treated as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value is not None else None
