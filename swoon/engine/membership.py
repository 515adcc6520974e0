"""
swoon.engine.membership — Membership Rules
============================================

Pure functions for membership stacking, activity checks, and the feature
set each tier unlocks.  The entitlement service applies these to account
rows inside a transaction.

Stacking policy:

* Buying the tier you already hold (and is still active) extends from the
  later of *now* and the current expiry, so no paid time is lost.
* Buying any other tier replaces the current one; the new expiry is
  ``now + duration``.  Remaining time on the old tier is not carried over.
* Expired memberships read as ``standard``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from swoon.constants import MAX_DURATION_DAYS, PAID_MEMBERSHIP_TIERS, tier_rank
from swoon.engine.clock import as_utc
from swoon.errors import InvalidDuration, InvalidPatch

if TYPE_CHECKING:
    from swoon.engine.cache import ConfigCache


@dataclass(frozen=True, slots=True)
class TierFeatures:
    photo_slots: int
    orientation_filter: bool
    multiple_orientation: bool
    priority_display: bool

    def to_dict(self) -> dict:
        return asdict(self)


_DEFAULT_FEATURES: dict[str, TierFeatures] = {
    "standard": TierFeatures(3, False, False, False),
    "gold": TierFeatures(5, True, False, False),
    "platinum": TierFeatures(6, True, True, True),
}


def validate_grant(tier: str, duration_days: int) -> None:
    if tier not in PAID_MEMBERSHIP_TIERS:
        raise InvalidPatch(f"Unknown membership tier: {tier!r}")
    if isinstance(duration_days, bool) or not isinstance(duration_days, int):
        raise InvalidDuration("Membership duration must be a whole number of days")
    if duration_days <= 0 or duration_days > MAX_DURATION_DAYS:
        raise InvalidDuration(
            f"Membership duration must be between 1 and {MAX_DURATION_DAYS} days",
            duration_days=duration_days,
        )


def is_current(tier: str, expires_at: datetime | None, now: datetime) -> bool:
    """True when a paid *tier* has not yet expired (standard is never 'current')."""
    if tier not in PAID_MEMBERSHIP_TIERS:
        return False
    return expires_at is None or as_utc(expires_at) > as_utc(now)


def effective_tier(tier: str, expires_at: datetime | None, now: datetime) -> str:
    return tier if is_current(tier, expires_at, now) else "standard"


def satisfies(
    held_tier: str, expires_at: datetime | None, wanted_tier: str, now: datetime,
) -> bool:
    """True when the held membership includes *wanted_tier* at *now*."""
    return tier_rank(effective_tier(held_tier, expires_at, now)) >= tier_rank(wanted_tier)


def next_expiry(
    current_tier: str,
    current_expires_at: datetime | None,
    new_tier: str,
    duration_days: int,
    now: datetime,
) -> datetime | None:
    """Expiry after granting *duration_days* of *new_tier*.

    Returns None only when the same tier is already held without expiry.
    """
    now = as_utc(now)
    if current_tier == new_tier and is_current(current_tier, current_expires_at, now):
        if current_expires_at is None:
            return None
        start = max(now, as_utc(current_expires_at))
    else:
        start = now
    return start + timedelta(days=duration_days)


def features_for(tier: str, cache: ConfigCache | None = None) -> TierFeatures:
    """Feature set unlocked by *tier*; photo slots are admin-tunable."""
    base = _DEFAULT_FEATURES.get(tier, _DEFAULT_FEATURES["standard"])
    if cache is None:
        return base
    slots = cache.get_int(f"membership.{tier}.photo_slots", base.photo_slots)
    return TierFeatures(
        photo_slots=slots,
        orientation_filter=base.orientation_filter,
        multiple_orientation=base.multiple_orientation,
        priority_display=base.priority_display,
    )
