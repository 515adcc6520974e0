"""
tests/test_gifts.py — Gift Workflow Tests
===========================================
Send / view / decide, reveal rules, message validation, capture of tier
flags at send time and the purchase-and-reveal scenario.
"""

from __future__ import annotations

import pytest

from conftest import ADMIN_ID, NOW, make_account
from swoon.database.models import AuditAction
from swoon.engine.gifts import GiftState
from swoon.errors import (
    GiftNotFound,
    GiftTierDisabled,
    InsufficientBalance,
    InvalidGiftMessage,
    InvalidRecipient,
    NotReceiver,
)
from swoon.services import audit_service, config_service, gift_service, ledger_service
from swoon.services.config_service import GiftTierPatch

SENDER = 10
RECEIVER = 20
RUBY_MESSAGE = "Would love to grab a coffee sometime!"


@pytest.fixture
def engine(db_engine):
    return db_engine


@pytest.fixture
def pair(engine):
    make_account(engine, SENDER, coins=5000)
    make_account(engine, RECEIVER)


def _coins(engine, account_id: int) -> int:
    return ledger_service.get_balances(engine, account_id).coins


# ===========================================================================
# Send
# ===========================================================================
class TestSend:
    def test_send_debits_price_and_records_gift(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "silver", now=NOW)
        assert gift.tier == "SILVER"
        assert gift.price_coins == 100
        assert _coins(engine, SENDER) == 4900
        assert _coins(engine, RECEIVER) == 0
        assert gift_service.get_gift(engine, gift.id, RECEIVER)["state"] == GiftState.SENT

    def test_send_writes_one_audit_entry(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "EMERALD", now=NOW)
        total, entries = audit_service.query(engine, action_type=AuditAction.GIFT_SEND)
        assert total == 1
        assert entries[0]["actor_id"] == SENDER
        assert entries[0]["target_id"] == str(gift.id)
        assert entries[0]["new_value"]["price_coins"] == 500

    def test_self_gift_rejected(self, engine, cache, pair):
        with pytest.raises(InvalidRecipient):
            gift_service.send(engine, cache, SENDER, SENDER, "SILVER", now=NOW)

    def test_unknown_receiver_rejected(self, engine, cache, pair):
        with pytest.raises(InvalidRecipient):
            gift_service.send(engine, cache, SENDER, 999, "SILVER", now=NOW)
        assert _coins(engine, SENDER) == 5000

    def test_unknown_tier(self, engine, cache, pair):
        with pytest.raises(GiftTierDisabled):
            gift_service.send(engine, cache, SENDER, RECEIVER, "PLATINUM", now=NOW)

    def test_disabled_tier(self, engine, cache, pair):
        config_service.update_gift_tier(
            engine, "GOLD", GiftTierPatch(enabled=False), actor_id=ADMIN_ID, cache=cache,
        )
        with pytest.raises(GiftTierDisabled):
            gift_service.send(engine, cache, SENDER, RECEIVER, "GOLD", now=NOW)
        assert _coins(engine, SENDER) == 5000

    def test_gift_system_switch(self, engine, cache, pair):
        config_service.bulk_upsert_settings(
            engine, [{"key": "gifts.enabled", "value": False}], actor_id=ADMIN_ID, cache=cache,
        )
        with pytest.raises(GiftTierDisabled):
            gift_service.send(engine, cache, SENDER, RECEIVER, "SILVER", now=NOW)

    def test_insufficient_balance_leaves_no_gift(self, engine, cache):
        make_account(engine, SENDER, coins=50)
        make_account(engine, RECEIVER)
        with pytest.raises(InsufficientBalance):
            gift_service.send(engine, cache, SENDER, RECEIVER, "SILVER", now=NOW)
        assert _coins(engine, SENDER) == 50
        assert gift_service.list_sent(engine, SENDER) == []
        total, _ = audit_service.query(engine, action_type=AuditAction.GIFT_SEND)
        assert total == 0

    def test_transfer_to_receiver(self, engine, cache, pair):
        config_service.bulk_upsert_settings(
            engine, [{"key": "gifts.transfer_to_receiver", "value": True}],
            actor_id=ADMIN_ID, cache=cache,
        )
        gift_service.send(engine, cache, SENDER, RECEIVER, "GOLD", now=NOW)
        assert _coins(engine, SENDER) == 4750
        assert _coins(engine, RECEIVER) == 250


# ===========================================================================
# Messages
# ===========================================================================
class TestMessages:
    def test_message_on_non_message_tier(self, engine, cache, pair):
        with pytest.raises(InvalidGiftMessage):
            gift_service.send(engine, cache, SENDER, RECEIVER, "DIAMOND", RUBY_MESSAGE, now=NOW)
        assert _coins(engine, SENDER) == 5000

    def test_blank_message_is_no_message(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "SILVER", "   ", now=NOW)
        assert gift.special_message is None

    @pytest.mark.parametrize("text", ["too short", "x" * 501])
    def test_message_length_bounds(self, engine, cache, pair, text):
        with pytest.raises(InvalidGiftMessage):
            gift_service.send(engine, cache, SENDER, RECEIVER, "RUBY", text, now=NOW)

    def test_message_hidden_from_receiver_until_accepted(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "RUBY", RUBY_MESSAGE, now=NOW)
        assert gift_service.get_gift(engine, gift.id, RECEIVER)["special_message"] is None
        assert gift_service.get_gift(engine, gift.id, SENDER)["special_message"] == RUBY_MESSAGE

        decision = gift_service.decide(engine, gift.id, RECEIVER, True, now=NOW)
        assert decision.message_revealed
        assert decision.contact_revealed
        assert decision.message == RUBY_MESSAGE
        assert gift_service.get_gift(engine, gift.id, RECEIVER)["special_message"] == RUBY_MESSAGE

    def test_rejected_ruby_reveals_nothing(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "RUBY", RUBY_MESSAGE, now=NOW)
        decision = gift_service.decide(engine, gift.id, RECEIVER, False, now=NOW)
        assert decision.state == GiftState.REJECTED
        assert not decision.contact_revealed
        assert not decision.message_revealed
        assert decision.message is None


# ===========================================================================
# View / decide
# ===========================================================================
class TestDecide:
    def test_view_then_accept(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "DIAMOND", now=NOW)
        assert gift_service.unviewed_count(engine, RECEIVER) == 1

        viewed = gift_service.mark_viewed(engine, gift.id, RECEIVER, now=NOW)
        assert viewed.is_viewed
        assert gift_service.unviewed_count(engine, RECEIVER) == 0

        decision = gift_service.decide(engine, gift.id, RECEIVER, True, now=NOW)
        assert decision.changed
        assert decision.state == GiftState.ACCEPTED
        assert decision.contact_revealed
        assert decision.sender_id == SENDER

    def test_decide_is_idempotent(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "DIAMOND", now=NOW)
        first = gift_service.decide(engine, gift.id, RECEIVER, True, now=NOW)
        balances = (_coins(engine, SENDER), _coins(engine, RECEIVER))

        second = gift_service.decide(engine, gift.id, RECEIVER, True, now=NOW)
        assert first.changed and not second.changed
        assert second.state == first.state == GiftState.ACCEPTED
        assert second.contact_revealed == first.contact_revealed
        assert (_coins(engine, SENDER), _coins(engine, RECEIVER)) == balances

    def test_decision_is_final(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "DIAMOND", now=NOW)
        gift_service.decide(engine, gift.id, RECEIVER, False, now=NOW)
        again = gift_service.decide(engine, gift.id, RECEIVER, True, now=NOW)
        assert not again.changed
        assert again.state == GiftState.REJECTED
        assert not again.contact_revealed

    def test_decide_marks_viewed(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "SILVER", now=NOW)
        gift_service.decide(engine, gift.id, RECEIVER, True, now=NOW)
        assert gift_service.get_gift(engine, gift.id, RECEIVER)["is_viewed"] is True

    def test_only_receiver_decides(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "SILVER", now=NOW)
        with pytest.raises(NotReceiver):
            gift_service.decide(engine, gift.id, SENDER, True, now=NOW)
        with pytest.raises(NotReceiver):
            gift_service.mark_viewed(engine, gift.id, SENDER, now=NOW)

    def test_unknown_gift(self, engine, pair):
        with pytest.raises(GiftNotFound):
            gift_service.decide(engine, 12345, RECEIVER, True, now=NOW)
        with pytest.raises(GiftNotFound):
            gift_service.get_gift(engine, 12345, RECEIVER)

    def test_outsiders_cannot_read_gift(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "SILVER", now=NOW)
        with pytest.raises(GiftNotFound):
            gift_service.get_gift(engine, gift.id, 777)


# ===========================================================================
# Catalogue edits vs. history
# ===========================================================================
class TestCaptureAtSend:
    def test_later_tier_edit_does_not_change_sent_gift(self, engine, cache, pair):
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "EMERALD", now=NOW)
        config_service.update_gift_tier(
            engine, "EMERALD",
            GiftTierPatch(price_coins=900, shares_contact_info=True),
            actor_id=ADMIN_ID, cache=cache,
        )
        decision = gift_service.decide(engine, gift.id, RECEIVER, True, now=NOW)
        assert not decision.contact_revealed
        assert gift_service.get_gift(engine, gift.id, SENDER)["price_coins"] == 500

    def test_purchase_and_reveal_scenario(self, engine, cache):
        make_account(engine, SENDER, coins=1000)
        make_account(engine, RECEIVER)
        config_service.update_gift_tier(
            engine, "GOLD", GiftTierPatch(price_coins=500, shares_contact_info=False),
            actor_id=ADMIN_ID, cache=cache,
        )
        gift = gift_service.send(engine, cache, SENDER, RECEIVER, "GOLD", now=NOW)
        assert _coins(engine, SENDER) == 500
        decision = gift_service.decide(engine, gift.id, RECEIVER, True, now=NOW)
        assert not decision.contact_revealed

        make_account(engine, 11, coins=1000)
        config_service.update_gift_tier(
            engine, "DIAMOND", GiftTierPatch(price_coins=1500, shares_contact_info=True),
            actor_id=ADMIN_ID, cache=cache,
        )
        with pytest.raises(InsufficientBalance):
            gift_service.send(engine, cache, 11, RECEIVER, "DIAMOND", now=NOW)
        assert _coins(engine, 11) == 1000
