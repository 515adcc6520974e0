"""
swoon.constants — Shared Constants & Helpers
==============================================

Single source of truth for tier ordering, referral code shape and money
precision.  Import from here instead of duplicating in services and routes.
"""

from __future__ import annotations

import string
from decimal import Decimal

# ---------------------------------------------------------------------------
# Membership tier ordering (higher rank includes lower)
# ---------------------------------------------------------------------------
MEMBERSHIP_RANK: dict[str, int] = {
    "standard": 0,
    "gold": 1,
    "platinum": 2,
}

PAID_MEMBERSHIP_TIERS: frozenset[str] = frozenset({"gold", "platinum"})

# Price table item types for each purchasable membership tier
MEMBERSHIP_PRICE_ITEM: dict[str, str] = {
    "gold": "GOLD_MEMBERSHIP",
    "platinum": "PLATINUM_MEMBERSHIP",
}

COIN_RATE_ITEM = "COIN_RATE"


def tier_rank(tier: str) -> int:
    """Return the ordering rank for a membership tier (unknown → 0)."""
    return MEMBERSHIP_RANK.get(str(tier), 0)


# ---------------------------------------------------------------------------
# Gift tier ordering (cheapest first)
# ---------------------------------------------------------------------------
GIFT_TIER_ORDER: tuple[str, ...] = ("SILVER", "GOLD", "EMERALD", "DIAMOND", "RUBY")


# ---------------------------------------------------------------------------
# Referral codes
# ---------------------------------------------------------------------------
REFERRAL_CODE_LENGTH = 8
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------
CASH_QUANTUM = Decimal("0.01")

# Per-movement ceilings, in minor units
MAX_COIN_AMOUNT = 10**12
MAX_CASH_CENTS = 10**13

# Ceiling for any stored balance (BigInteger columns)
MAX_BALANCE = 10**15

# prices.price is Numeric(12, 4)
MAX_PRICE = Decimal("100000000")

# Upper bound for a single days-based grant or ban (about 10 years)
MAX_DURATION_DAYS = 3650
