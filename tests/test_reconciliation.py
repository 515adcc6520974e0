"""
tests/test_reconciliation.py — Balance Reconciliation Tests
=============================================================
"""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from conftest import NOW, make_account
from swoon.database.models import Account
from swoon.services import ledger_service
from swoon.services.reconciliation_service import reconcile_balances


class TestReconciliation:
    def test_clean_ledger(self, db_engine, caplog):
        make_account(db_engine, 1, coins=300, cash="12.50")
        make_account(db_engine, 2)
        ledger_service.debit(db_engine, 1, "COIN", 120, "spend", now=NOW)

        with caplog.at_level(logging.INFO, logger="swoon.services.reconciliation_service"):
            result = reconcile_balances(db_engine)

        assert result["checked"] == 4
        assert result["mismatched"] == 0
        assert result["mismatches"] == []
        assert "all 4 balances match" in caplog.text

    def test_detects_out_of_band_write(self, db_engine, caplog):
        make_account(db_engine, 1, coins=100)
        with Session(db_engine) as session:
            session.execute(update(Account).where(Account.id == 1).values(coins=150))
            session.commit()

        with caplog.at_level(logging.WARNING, logger="swoon.services.reconciliation_service"):
            result = reconcile_balances(db_engine)

        assert result["mismatched"] == 1
        assert result["mismatches"][0] == {
            "account_id": 1,
            "currency": "COIN",
            "stored": "150",
            "ledger": "100",
            "diff": "50",
        }
        assert "disagree with the ledger" in caplog.text

    def test_cash_drift_reported_in_currency_units(self, db_engine):
        make_account(db_engine, 1, cash="1.00")
        with Session(db_engine) as session:
            session.execute(update(Account).where(Account.id == 1).values(cash_cents=95))
            session.commit()
        mismatch = reconcile_balances(db_engine)["mismatches"][0]
        assert mismatch["currency"] == "CASH"
        assert mismatch["diff"] == "-0.05"
