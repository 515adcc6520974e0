"""
swoon.database.seed — Default Data Seeder
===========================================

Baseline settings, gift tiers, and prices seeded on first startup so the
engine is immediately usable.

Idempotent — only inserts rows that don't already exist.  Values created
by admin edits are never overwritten.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from swoon.database.engine import get_session
from swoon.database.models import GiftTierConfig, Price, Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "gifts.enabled": (True, "gifts", "Master switch for the gift system"),
    "gifts.min_message_length": (10, "gifts", "Minimum length of a gift message"),
    "gifts.max_message_length": (500, "gifts", "Maximum length of a gift message"),
    "gifts.transfer_to_receiver": (
        False, "gifts", "Credit the receiver with the gift price in coins",
    ),
    "gifts.expensive_threshold": (
        1000, "gifts", "Gifts at or above this coin price are logged for review",
    ),
    "referral.referee_reward_coins": (
        1000, "referral", "Coins credited to the new member on profile completion",
    ),
    "referral.referrer_reward_coins": (
        1000, "referral", "Coins credited to the code owner on profile completion",
    ),
    "referral.referrer_gold_days": (
        2, "referral", "Days of gold membership granted to the code owner (0 disables)",
    ),
    "reports.min_reward": (100, "reports", "Minimum coin reward for an approved report"),
    "reports.max_reward": (10000, "reports", "Maximum coin reward for an approved report"),
    "membership.standard.photo_slots": (3, "membership", "Photo slots for standard members"),
    "membership.gold.photo_slots": (5, "membership", "Photo slots for gold members"),
    "membership.platinum.photo_slots": (6, "membership", "Photo slots for platinum members"),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


DEFAULT_GIFT_TIERS: list[dict] = [
    {
        "tier": "SILVER", "name": "Gümüş", "icon": "⚪",
        "description": "Entry-level gift", "price_coins": 100,
        "shares_contact_info": False, "can_send_message": False,
    },
    {
        "tier": "GOLD", "name": "Altın", "icon": "\U0001f536",
        "description": "Mid-level gift", "price_coins": 250,
        "shares_contact_info": False, "can_send_message": False,
    },
    {
        "tier": "EMERALD", "name": "Zümrüt", "icon": "\U0001f49a",
        "description": "Good-level gift", "price_coins": 500,
        "shares_contact_info": False, "can_send_message": False,
    },
    {
        "tier": "DIAMOND", "name": "Elmas", "icon": "\U0001f48e",
        "description": "Reveals contact info when accepted", "price_coins": 1000,
        "shares_contact_info": True, "can_send_message": False,
    },
    {
        "tier": "RUBY", "name": "Yakut", "icon": "❤️",
        "description": "Reveals contact info and carries a message", "price_coins": 2500,
        "shares_contact_info": True, "can_send_message": True,
    },
]


# (item_type, item_key, price, description)
DEFAULT_PRICES: list[tuple[str, str, Decimal, str]] = [
    ("COIN_RATE", "default", Decimal("0.03"), "Cash price of one coin"),
    ("GOLD_MEMBERSHIP", "7", Decimal("4.99"), "Gold membership, 7 days"),
    ("GOLD_MEMBERSHIP", "30", Decimal("14.99"), "Gold membership, 30 days"),
    ("GOLD_MEMBERSHIP", "90", Decimal("39.99"), "Gold membership, 90 days"),
    ("PLATINUM_MEMBERSHIP", "7", Decimal("9.99"), "Platinum membership, 7 days"),
    ("PLATINUM_MEMBERSHIP", "30", Decimal("29.99"), "Platinum membership, 30 days"),
    ("PLATINUM_MEMBERSHIP", "90", Decimal("79.99"), "Platinum membership, 90 days"),
]


# ---------------------------------------------------------------------------
# Seeders
# ---------------------------------------------------------------------------
def seed_default_settings(session: Session) -> int:
    inserted = 0
    for key, (value, category, desc) in DEFAULT_SETTINGS.items():
        if session.get(Setting, key) is None:
            session.add(Setting(
                key=key,
                value_json=json.dumps(value),
                category=category,
                description=desc,
            ))
            inserted += 1
    return inserted


def seed_gift_tiers(session: Session) -> int:
    inserted = 0
    for order, row in enumerate(DEFAULT_GIFT_TIERS):
        if session.get(GiftTierConfig, row["tier"]) is None:
            session.add(GiftTierConfig(sort_order=order, enabled=True, **row))
            inserted += 1
    return inserted


def seed_prices(session: Session) -> int:
    inserted = 0
    for item_type, item_key, price, desc in DEFAULT_PRICES:
        existing = session.scalar(
            select(Price).where(Price.item_type == item_type, Price.item_key == item_key)
        )
        if existing is None:
            session.add(Price(
                item_type=item_type,
                item_key=item_key,
                price=price,
                description=desc,
                is_active=True,
            ))
            inserted += 1
    return inserted


def seed_defaults(engine: Engine) -> None:
    """Insert default settings, gift tiers, and prices that don't yet exist.

    Runs on every startup but only writes missing rows, so it is safe to
    call repeatedly.
    """
    with get_session(engine) as session:
        settings = seed_default_settings(session)
        tiers = seed_gift_tiers(session)
        prices = seed_prices(session)

    if settings or tiers or prices:
        logger.info(
            "Seeded %d settings, %d gift tiers, %d prices.", settings, tiers, prices,
        )
