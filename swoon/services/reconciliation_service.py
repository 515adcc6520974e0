"""
swoon.services.reconciliation_service — Balance reconciliation
================================================================

Compares each account's stored balances against the ledger.  Every
balance movement appends a signed row to ``ledger_transactions`` in the
same transaction, so for every account and currency:

    stored balance == SUM(amount) over its ledger rows

Drift means something wrote a balance outside the ledger.  This job only
reports drift; money is never rewritten automatically.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from swoon.database.models import Account, Currency, LedgerTransaction
from swoon.services.ledger_service import from_minor

logger = logging.getLogger(__name__)


def reconcile_balances(engine: Engine) -> dict:
    """Compare stored balances with ledger sums for every account.

    Returns a summary dict with ``checked``, ``mismatched``, the list of
    ``mismatches`` and a ``timestamp``.
    """
    mismatches: list[dict] = []
    checked = 0

    with Session(engine) as session:
        sums = session.execute(
            select(
                LedgerTransaction.account_id,
                LedgerTransaction.currency,
                func.sum(LedgerTransaction.amount),
            ).group_by(LedgerTransaction.account_id, LedgerTransaction.currency)
        ).all()
        truth_map: dict[tuple[int, str], int] = {
            (account_id, currency): int(total or 0)
            for account_id, currency, total in sums
        }

        accounts = session.execute(
            select(Account.id, Account.coins, Account.cash_cents).order_by(Account.id)
        ).all()

        for account_id, coins, cash_cents in accounts:
            for currency, stored in ((Currency.COIN, coins), (Currency.CASH, cash_cents)):
                checked += 1
                actual = truth_map.get((account_id, currency.value), 0)
                if stored == actual:
                    continue
                mismatches.append({
                    "account_id": account_id,
                    "currency": currency.value,
                    "stored": str(from_minor(currency, stored)),
                    "ledger": str(from_minor(currency, actual)),
                    "diff": str(from_minor(currency, stored - actual)),
                })

    if mismatches:
        logger.warning(
            "Balance reconciliation: %d/%d balances disagree with the ledger: %s",
            len(mismatches), checked, mismatches,
        )
    else:
        logger.info("Balance reconciliation: all %d balances match", checked)

    return {
        "checked": checked,
        "mismatched": len(mismatches),
        "mismatches": mismatches,
        "timestamp": datetime.now(UTC).isoformat(),
    }
