"""
tests/test_engine_rules.py — Pure Rule Tests
==============================================
Ban windows, membership stacking and gift reveal rules.  No database.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from conftest import NOW
from swoon.engine import gifts, membership, moderation
from swoon.engine.clock import as_utc
from swoon.errors import InvalidDuration, InvalidGiftMessage


# ===========================================================================
# Ban windows
# ===========================================================================
class TestBanWindow:
    def test_zero_is_permanent(self):
        window = moderation.ban_window(0, NOW)
        assert isinstance(window, moderation.Permanent)
        assert window.expires_at is None
        assert window.is_active(NOW + timedelta(days=3650))

    def test_days_become_until(self):
        window = moderation.ban_window(7, NOW)
        assert window == moderation.Until(NOW + timedelta(days=7))
        assert window.is_active(NOW)
        assert not window.is_active(NOW + timedelta(days=7))

    @pytest.mark.parametrize("days", [-1, 3651, 1.5, True, "7"])
    def test_invalid_durations(self, days):
        with pytest.raises(InvalidDuration):
            moderation.ban_window(days, NOW)

    def test_window_from_row(self):
        assert moderation.window_from_row(False, None) is None
        assert moderation.window_from_row(True, None) == moderation.Permanent()
        naive = datetime(2026, 3, 8, 12, 0)
        assert moderation.window_from_row(True, naive).instant == as_utc(naive)

    def test_describe(self):
        assert moderation.describe(None) == "not banned"
        assert moderation.describe(moderation.Permanent()) == "permanent"
        assert moderation.describe(moderation.Until(NOW)).startswith("until 2026-03-01")


# ===========================================================================
# Membership stacking
# ===========================================================================
class TestMembershipRules:
    def test_same_tier_extends(self):
        expiry = NOW + timedelta(days=3)
        assert membership.next_expiry("gold", expiry, "gold", 7, NOW) == expiry + timedelta(days=7)

    def test_other_tier_replaces(self):
        expiry = NOW + timedelta(days=30)
        assert membership.next_expiry("gold", expiry, "platinum", 7, NOW) == NOW + timedelta(days=7)

    def test_lapsed_tier_restarts(self):
        expired = NOW - timedelta(days=1)
        assert membership.next_expiry("gold", expired, "gold", 7, NOW) == NOW + timedelta(days=7)

    def test_effective_tier(self):
        assert membership.effective_tier("gold", NOW + timedelta(seconds=1), NOW) == "gold"
        assert membership.effective_tier("gold", NOW, NOW) == "standard"
        assert membership.effective_tier("standard", None, NOW) == "standard"

    def test_satisfies_by_rank(self):
        later = NOW + timedelta(days=1)
        assert membership.satisfies("platinum", later, "gold", NOW)
        assert not membership.satisfies("gold", later, "platinum", NOW)
        assert membership.satisfies("standard", None, "standard", NOW)

    def test_default_features(self):
        assert membership.features_for("gold").photo_slots == 5
        assert membership.features_for("unknown") == membership.features_for("standard")


# ===========================================================================
# Gifts
# ===========================================================================
def _gift(**overrides):
    values = {
        "is_viewed": False,
        "is_accepted": None,
        "shares_contact_info": True,
        "can_send_message": True,
        "special_message": "See you at the weekend?",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestGiftRules:
    @pytest.mark.parametrize(
        ("viewed", "accepted", "state"),
        [
            (False, None, gifts.GiftState.SENT),
            (True, None, gifts.GiftState.VIEWED),
            (True, True, gifts.GiftState.ACCEPTED),
            (False, False, gifts.GiftState.REJECTED),
        ],
    )
    def test_state_of(self, viewed, accepted, state):
        assert gifts.state_of(viewed, accepted) == state

    def test_reveal_requires_acceptance(self):
        assert gifts.reveal_for(_gift()) == gifts.Reveal(False, False)
        assert gifts.reveal_for(_gift(is_accepted=False)) == gifts.Reveal(False, False)
        assert gifts.reveal_for(_gift(is_accepted=True)) == gifts.Reveal(True, True)

    def test_reveal_follows_captured_flags(self):
        gift = _gift(is_accepted=True, shares_contact_info=False, special_message=None)
        assert gifts.reveal_for(gift) == gifts.Reveal(False, False)

    def test_clean_message_strips_control_characters(self):
        cleaned = gifts.clean_message(
            "  hello\x07 there friend  ", can_send_message=True, min_length=10, max_length=500,
        )
        assert cleaned == "hello there friend"

    def test_blank_message_is_none(self):
        assert gifts.clean_message(
            " \x00 ", can_send_message=False, min_length=10, max_length=500,
        ) is None

    def test_message_not_allowed(self):
        with pytest.raises(InvalidGiftMessage):
            gifts.clean_message(
                "hello there friend", can_send_message=False, min_length=10, max_length=500,
            )
