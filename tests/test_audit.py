"""
tests/test_audit.py — Audit Log Tests
=======================================
Recording inside the caller's transaction, filters and pagination.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from conftest import ADMIN_ID, NOW, make_account
from swoon.database.engine import run_in_transaction
from swoon.database.models import Account, AuditAction
from swoon.services import audit_service, ledger_service


@pytest.fixture
def engine(db_engine):
    make_account(db_engine, 1)
    make_account(db_engine, 2)
    return db_engine


def _adjust(engine, account_id: int, amount: int, *, when=NOW, actor=ADMIN_ID) -> None:
    ledger_service.admin_adjust(
        engine, account_id, "COIN", amount, actor_id=actor, reason="test", now=when,
    )


class TestRecord:
    def test_entry_rolls_back_with_its_transaction(self, engine):
        def _txn(session: Session):
            audit_service.record(
                session, actor_id=ADMIN_ID, action_type=AuditAction.ACCOUNT_EDIT,
                description="doomed", target_account_id=1,
            )
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            run_in_transaction(engine, _txn)
        total, _ = audit_service.query(engine, action_type=AuditAction.ACCOUNT_EDIT)
        assert total == 0

    def test_snapshot_serializes_values(self, engine):
        with Session(engine) as session:
            account = session.get(Account, 1)
            snap = audit_service.snapshot(account, ("coins", "created_at", "is_banned"))
        assert snap["coins"] == 0
        assert snap["is_banned"] is False
        assert isinstance(snap["created_at"], str)

    def test_snapshot_of_none(self):
        assert audit_service.snapshot(None) is None


class TestQuery:
    def test_filters(self, engine):
        _adjust(engine, 1, 10)
        _adjust(engine, 2, 20)
        _adjust(engine, 1, 5, actor=777)

        assert audit_service.query(engine, target_account_id=1)[0] == 2
        assert audit_service.query(engine, actor_id=777)[0] == 1
        assert audit_service.query(engine, actor_id=ADMIN_ID, target_account_id=2)[0] == 1
        assert audit_service.query(engine, action_type="NOPE")[0] == 0

    def test_time_window(self, engine):
        _adjust(engine, 1, 1, when=NOW - timedelta(days=2))
        _adjust(engine, 1, 1, when=NOW)
        _adjust(engine, 1, 1, when=NOW + timedelta(days=2))
        total, _ = audit_service.query(
            engine, actor_id=ADMIN_ID,
            start=NOW - timedelta(hours=1), end=NOW + timedelta(hours=1),
        )
        assert total == 1

    def test_newest_first_with_pages(self, engine):
        for day in range(5):
            _adjust(engine, 1, day + 1, when=NOW + timedelta(days=day))

        total, first = audit_service.query(engine, actor_id=ADMIN_ID, page=1, page_size=2)
        _, last = audit_service.query(engine, actor_id=ADMIN_ID, page=3, page_size=2)
        assert total == 5
        assert [e["new_value"]["coins"] for e in first] == [15, 10]
        assert [e["new_value"]["coins"] for e in last] == [1]

    def test_page_size_is_capped(self, engine):
        _adjust(engine, 1, 1)
        total, entries = audit_service.query(engine, page=0, page_size=10_000)
        assert total == len(entries)
