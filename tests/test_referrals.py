"""
tests/test_referrals.py — Referral Engine Tests
=================================================
Code validation, application rules, exactly-once reward on profile
completion and the referrer's gold bonus.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import ADMIN_ID, NOW, make_account
from swoon.database.models import AuditAction
from swoon.errors import (
    AccountNotFound,
    AlreadyApplied,
    InvalidReferralCode,
    ProfileAlreadyCompleted,
    SelfReferral,
)
from swoon.services import (
    audit_service,
    config_service,
    entitlement_service,
    ledger_service,
    referral_service,
)

REFERRER = 1
REFEREE = 2


@pytest.fixture
def engine(db_engine):
    return db_engine


@pytest.fixture
def referrer_code(engine) -> str:
    make_account(engine, REFERRER)
    make_account(engine, REFEREE)
    return referral_service.get_referral_code(engine, REFERRER)


def _coins(engine, account_id: int) -> int:
    return ledger_service.get_balances(engine, account_id).coins


class TestCodes:
    def test_every_account_has_a_code(self, engine, referrer_code):
        assert len(referrer_code) == 8
        assert referrer_code.isalnum() and referrer_code.upper() == referrer_code
        assert referral_service.get_referral_code(engine, REFEREE) != referrer_code

    def test_validate_code(self, engine, referrer_code):
        assert referral_service.validate_code(engine, referrer_code.lower(), REFEREE) == REFERRER

    def test_validate_unknown_code(self, engine, referrer_code):
        with pytest.raises(InvalidReferralCode):
            referral_service.validate_code(engine, "NOPE0000", REFEREE)

    def test_validate_own_code(self, engine, referrer_code):
        with pytest.raises(InvalidReferralCode):
            referral_service.validate_code(engine, referrer_code, REFERRER)

    def test_code_for_unknown_account(self, engine):
        with pytest.raises(AccountNotFound):
            referral_service.get_referral_code(engine, 404)


class TestApply:
    def test_apply_records_pending_grant(self, engine, referrer_code):
        grant = referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        assert grant.referrer_id == REFERRER
        assert grant.applied is False

    def test_self_referral(self, engine, referrer_code):
        own = referral_service.get_referral_code(engine, REFEREE)
        with pytest.raises(SelfReferral):
            referral_service.apply_code(engine, REFEREE, own, now=NOW)

    def test_unknown_code(self, engine, referrer_code):
        with pytest.raises(InvalidReferralCode):
            referral_service.apply_code(engine, REFEREE, "ZZZZZZZZ", now=NOW)

    def test_pending_grant_can_be_repointed(self, engine, referrer_code):
        make_account(engine, 3)
        other = referral_service.get_referral_code(engine, 3)
        referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        grant = referral_service.apply_code(engine, REFEREE, other, now=NOW)
        assert grant.referrer_id == 3

    def test_code_after_profile_completion(self, engine, cache, referrer_code):
        referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        with pytest.raises(ProfileAlreadyCompleted):
            referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)

    def test_code_after_reward(self, engine, cache, referrer_code):
        referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        with pytest.raises(AlreadyApplied):
            referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)

    def test_one_code_many_referees(self, engine, cache, referrer_code):
        make_account(engine, 3)
        referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        referral_service.apply_code(engine, 3, referrer_code, now=NOW)
        referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        referral_service.complete_profile(engine, cache, 3, now=NOW)
        assert _coins(engine, REFERRER) == 2000


class TestReward:
    def test_completion_rewards_both_sides(self, engine, cache, referrer_code):
        referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        result = referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        assert result.newly_completed
        assert result.reward.applied
        assert result.reward.referrer_id == REFERRER
        assert _coins(engine, REFEREE) == 1000
        assert _coins(engine, REFERRER) == 1000

    def test_referrer_gets_gold_days(self, engine, cache, referrer_code):
        referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        result = referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        assert result.reward.referrer_gold_days == 2
        status = entitlement_service.get_membership(engine, REFERRER, now=NOW)
        assert status.tier == "gold"
        assert status.expires_at == NOW + timedelta(days=2)

    def test_platinum_referrer_keeps_platinum(self, engine, cache, referrer_code):
        entitlement_service.grant_membership(
            engine, REFERRER, "platinum", 30, actor_id=ADMIN_ID, now=NOW,
        )
        referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        result = referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        assert result.reward.referrer_gold_days == 0
        assert entitlement_service.get_membership(engine, REFERRER, now=NOW).tier == "platinum"

    def test_repeated_completion_is_noop(self, engine, cache, referrer_code):
        referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        again = referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        assert not again.newly_completed
        assert not again.reward.applied
        assert _coins(engine, REFEREE) == 1000
        assert _coins(engine, REFERRER) == 1000

    def test_reward_on_completion_exactly_once(self, engine, cache, referrer_code):
        referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        results = [
            referral_service.reward_on_completion(engine, cache, REFEREE, now=NOW)
            for _ in range(3)
        ]
        assert [r.applied for r in results] == [True, False, False]
        assert _coins(engine, REFERRER) == 1000

    def test_completion_without_code(self, engine, cache, referrer_code):
        result = referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        assert result.newly_completed
        assert not result.reward.applied
        assert _coins(engine, REFEREE) == 0

    def test_reward_amounts_are_configurable(self, engine, cache, referrer_code):
        config_service.bulk_upsert_settings(
            engine,
            [
                {"key": "referral.referee_reward_coins", "value": 250},
                {"key": "referral.referrer_gold_days", "value": 0},
            ],
            actor_id=ADMIN_ID, cache=cache,
        )
        referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        assert _coins(engine, REFEREE) == 250
        assert entitlement_service.get_membership(engine, REFERRER, now=NOW).tier == "standard"

    def test_reward_writes_one_audit_entry(self, engine, cache, referrer_code):
        referral_service.apply_code(engine, REFEREE, referrer_code, now=NOW)
        referral_service.complete_profile(engine, cache, REFEREE, now=NOW)
        total, entries = audit_service.query(engine, action_type=AuditAction.REFERRAL_REWARD)
        assert total == 1
        assert entries[0]["new_value"]["referrer_coins"] == 1000

    def test_complete_unknown_account(self, engine, cache):
        with pytest.raises(AccountNotFound):
            referral_service.complete_profile(engine, cache, 404, now=NOW)
