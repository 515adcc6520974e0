"""
tests/test_accounts.py — Account & Admin Edit Tests
=====================================================
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import ADMIN_ID, NOW, make_account
from swoon.database.models import AuditAction
from swoon.errors import AccountNotFound, InsufficientBalance, InvalidPatch
from swoon.services import account_service, audit_service, entitlement_service, ledger_service
from swoon.services.account_service import AccountPatch


class TestAccounts:
    def test_get_or_create_is_idempotent(self, db_engine):
        first = account_service.get_or_create_account(db_engine, 1, "alice")
        second = account_service.get_or_create_account(db_engine, 1, "other name")
        assert first.referral_code == second.referral_code
        assert account_service.get_account(db_engine, 1).display_name == "alice"

    def test_new_account_starts_empty(self, db_engine):
        account = make_account(db_engine, 1)
        data = account_service.account_to_dict(account)
        assert data["coins"] == 0
        assert data["cash"] == "0.00"
        assert data["membership_tier"] == "standard"
        assert data["is_banned"] is False

    def test_unknown_account(self, db_engine):
        with pytest.raises(AccountNotFound):
            account_service.get_account(db_engine, 404)


class TestAccountPatch:
    @pytest.mark.parametrize(
        "patch",
        [
            AccountPatch(),
            AccountPatch(note="only a note"),
            AccountPatch(display_name=""),
            AccountPatch(membership_days=7),
            AccountPatch(membership_tier="diamond", membership_days=7),
            AccountPatch(membership_tier="gold"),
            AccountPatch(membership_tier="standard", membership_days=3),
            AccountPatch(coin_adjustment=0),
            AccountPatch(coin_adjustment=2.5),
            AccountPatch(cash_adjustment=Decimal("0")),
            AccountPatch(cash_adjustment="lots"),
            AccountPatch(coin_adjustment=-(10**19)),
            AccountPatch(cash_adjustment="1e30"),
        ],
    )
    def test_invalid_patches(self, patch):
        with pytest.raises(InvalidPatch):
            patch.validate()

    def test_from_dict_rejects_unknown_fields(self):
        with pytest.raises(InvalidPatch):
            AccountPatch.from_dict({"coins": 5})


class TestEditAccount:
    def test_composite_edit_writes_one_audit_entry(self, db_engine):
        make_account(db_engine, 1, coins=100)
        account = account_service.edit_account(
            db_engine, 1,
            AccountPatch(
                display_name="Renamed",
                membership_tier="gold",
                membership_days=30,
                coin_adjustment=-40,
                cash_adjustment=Decimal("5.00"),
                note="support ticket 42",
            ),
            actor_id=ADMIN_ID, now=NOW,
        )
        assert account.display_name == "Renamed"
        assert account.coins == 60
        assert account.cash_cents == 500
        assert account.membership_tier == "gold"

        total, entries = audit_service.query(db_engine, action_type=AuditAction.ACCOUNT_EDIT)
        assert total == 1
        assert entries[0]["description"].startswith("support ticket 42")
        assert entries[0]["old_value"]["coins"] == 100
        assert entries[0]["new_value"]["coins"] == 60

    def test_revoke_membership(self, db_engine):
        make_account(db_engine, 1)
        entitlement_service.grant_membership(db_engine, 1, "platinum", 30, actor_id=ADMIN_ID, now=NOW)
        account_service.edit_account(
            db_engine, 1, AccountPatch(membership_tier="standard"), actor_id=ADMIN_ID, now=NOW,
        )
        status = entitlement_service.get_membership(db_engine, 1, now=NOW + timedelta(days=1))
        assert status.tier == "standard"
        assert status.expires_at is None

    def test_failed_adjustment_rolls_back_everything(self, db_engine):
        make_account(db_engine, 1, coins=10)
        with pytest.raises(InsufficientBalance):
            account_service.edit_account(
                db_engine, 1,
                AccountPatch(display_name="Nope", coin_adjustment=-50),
                actor_id=ADMIN_ID, now=NOW,
            )
        account = account_service.get_account(db_engine, 1)
        assert account.display_name == "user-1"
        assert ledger_service.get_balances(db_engine, 1).coins == 10
        total, _ = audit_service.query(db_engine, action_type=AuditAction.ACCOUNT_EDIT)
        assert total == 0

    def test_unknown_account(self, db_engine):
        with pytest.raises(AccountNotFound):
            account_service.edit_account(
                db_engine, 404, AccountPatch(display_name="x"), actor_id=ADMIN_ID, now=NOW,
            )
