"""
swoon.services.ledger_service — Coin & Cash Ledger
====================================================

Every balance movement is a single conditional UPDATE on the account row
plus one append to ``ledger_transactions``:

    UPDATE accounts SET coins = coins - :amount
     WHERE id = :id AND coins >= :amount

The row lock taken by that UPDATE serializes concurrent movements on the
same account (accounts never contend with each other), and the
``coins >= :amount`` guard means a debit either succeeds against the
latest committed balance or matches no row.  Balances can therefore never
go negative, even under concurrent debits.

Cash is carried in cents internally and exposed as :class:`~decimal.Decimal`
with two fractional digits.

Session-level primitives (:func:`apply_credit`, :func:`apply_debit`) compose
into larger transactions; the public functions each run as one transaction
and write one audit entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from swoon.constants import (
    CASH_QUANTUM,
    COIN_RATE_ITEM,
    MAX_BALANCE,
    MAX_CASH_CENTS,
    MAX_COIN_AMOUNT,
    MEMBERSHIP_PRICE_ITEM,
)
from swoon.database.engine import run_in_transaction
from swoon.database.models import (
    Account,
    AuditAction,
    Currency,
    LedgerTransaction,
    Price,
    TransactionCategory,
)
from swoon.engine.clock import as_utc, isoformat, utcnow
from swoon.errors import (
    AccountNotFound,
    InsufficientBalance,
    InvalidAmount,
    InvalidPatch,
    PriceUnavailable,
)
from swoon.services import audit_service, entitlement_service

logger = logging.getLogger(__name__)

_BALANCE_COLUMNS = {
    Currency.COIN: Account.coins,
    Currency.CASH: Account.cash_cents,
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Balances:
    coins: int
    cash: Decimal

    def to_dict(self) -> dict:
        return {"coins": self.coins, "cash": str(self.cash)}


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    cash_spent: Decimal
    balances: Balances
    coins_granted: int | None = None
    membership: entitlement_service.MembershipStatus | None = None

    def to_dict(self) -> dict:
        return {
            "cash_spent": str(self.cash_spent),
            "balances": self.balances.to_dict(),
            "coins_granted": self.coins_granted,
            "membership": self.membership.to_dict() if self.membership else None,
        }


# ---------------------------------------------------------------------------
# Amount validation
# ---------------------------------------------------------------------------
def parse_currency(currency: Any) -> Currency:
    try:
        return Currency(str(currency).upper())
    except ValueError:
        raise InvalidAmount(f"Unknown currency: {currency!r}") from None


def coin_amount(amount: Any) -> int:
    """Validate a coin amount: a positive whole number."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("Coin amounts must be whole numbers", amount=str(amount))
    if amount <= 0:
        raise InvalidAmount(amount=amount)
    if amount > MAX_COIN_AMOUNT:
        raise InvalidAmount(f"Coin amounts are at most {MAX_COIN_AMOUNT}", amount=amount)
    return amount


def to_cents(amount: Any) -> int:
    """Validate a cash amount (positive, at most two decimals) → cents."""
    if isinstance(amount, bool):
        raise InvalidAmount("Cash amount must be a number")
    try:
        value = Decimal(str(amount)) if isinstance(amount, float) else Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount("Cash amount must be a number", amount=str(amount)) from None
    if not value.is_finite() or value <= 0:
        raise InvalidAmount(amount=str(amount))
    if value * 100 > MAX_CASH_CENTS:
        raise InvalidAmount(
            f"Cash amounts are at most {from_cents(MAX_CASH_CENTS)}", amount=str(amount),
        )
    try:
        exact = value == value.quantize(CASH_QUANTUM)
    except InvalidOperation:
        exact = False
    if not exact:
        raise InvalidAmount("Cash amounts have at most two decimal places", amount=str(amount))
    return int(value * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CASH_QUANTUM)


def to_minor(currency: Currency, amount: Any) -> int:
    if currency == Currency.COIN:
        return coin_amount(amount)
    return to_cents(amount)


def from_minor(currency: Currency, minor: int) -> int | Decimal:
    return minor if currency == Currency.COIN else from_cents(minor)


# ---------------------------------------------------------------------------
# Session-level primitives
# ---------------------------------------------------------------------------
def _append(
    session: Session,
    account_id: int,
    currency: Currency,
    signed_amount: int,
    balance_after: int,
    category: str,
    description: str | None,
    now: datetime,
) -> None:
    session.add(LedgerTransaction(
        account_id=account_id,
        currency=currency.value,
        amount=signed_amount,
        balance_after=balance_after,
        category=str(category),
        description=description,
        created_at=now,
    ))


def apply_credit(
    session: Session,
    account_id: int,
    currency: Currency,
    minor_amount: int,
    *,
    category: str,
    description: str | None = None,
    now: datetime | None = None,
) -> int:
    """Increase a balance by *minor_amount* (> 0).  Returns the new balance
    in minor units.

    Raises
    ------
    InvalidAmount
        The credit would take the balance above ``MAX_BALANCE``.
    """
    if minor_amount <= 0 or minor_amount > MAX_BALANCE:
        raise InvalidAmount(amount=minor_amount)
    now = now or utcnow()
    col = _BALANCE_COLUMNS[currency]
    result = session.execute(
        update(Account)
        .where(Account.id == account_id, col <= MAX_BALANCE - minor_amount)
        .values(**{col.key: col + minor_amount, "updated_at": now})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        if session.scalar(select(Account.id).where(Account.id == account_id)) is None:
            raise AccountNotFound(account_id=account_id)
        raise InvalidAmount(
            "Balance would exceed the maximum", account_id=account_id, amount=minor_amount,
        )
    balance = session.scalar(select(col).where(Account.id == account_id))
    _append(session, account_id, currency, minor_amount, balance, category, description, now)
    return balance


def apply_debit(
    session: Session,
    account_id: int,
    currency: Currency,
    minor_amount: int,
    *,
    category: str,
    description: str | None = None,
    now: datetime | None = None,
) -> int:
    """Decrease a balance by *minor_amount* (> 0) if it covers the amount.

    Raises
    ------
    InsufficientBalance
        The latest committed balance is below *minor_amount*; nothing changes.
    """
    if minor_amount <= 0 or minor_amount > MAX_BALANCE:
        raise InvalidAmount(amount=minor_amount)
    now = now or utcnow()
    col = _BALANCE_COLUMNS[currency]
    result = session.execute(
        update(Account)
        .where(Account.id == account_id, col >= minor_amount)
        .values(**{col.key: col - minor_amount, "updated_at": now})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        balance = session.scalar(select(col).where(Account.id == account_id))
        if balance is None:
            raise AccountNotFound(account_id=account_id)
        raise InsufficientBalance(
            currency=currency.value,
            balance=str(from_minor(currency, balance)),
            required=str(from_minor(currency, minor_amount)),
        )
    balance = session.scalar(select(col).where(Account.id == account_id))
    _append(session, account_id, currency, -minor_amount, balance, category, description, now)
    return balance


def read_balances(session: Session, account_id: int) -> Balances:
    row = session.execute(
        select(Account.coins, Account.cash_cents).where(Account.id == account_id)
    ).first()
    if row is None:
        raise AccountNotFound(account_id=account_id)
    return Balances(coins=row.coins, cash=from_cents(row.cash_cents))


def _default_audit_action(category: str) -> AuditAction:
    if category == TransactionCategory.CASH_DEPOSIT:
        return AuditAction.CASH_DEPOSIT
    if category in (TransactionCategory.COIN_PURCHASE, TransactionCategory.MEMBERSHIP_PURCHASE):
        return AuditAction.PURCHASE
    return AuditAction.BALANCE_ADJUST


# ---------------------------------------------------------------------------
# Public API — one transaction, one audit entry each
# ---------------------------------------------------------------------------
def credit(
    engine: Engine,
    account_id: int,
    currency: Currency | str,
    amount: Any,
    description: str,
    *,
    category: str = TransactionCategory.ADMIN_ADJUSTMENT,
    actor_id: int | None = None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> int | Decimal:
    """Credit *amount* and return the new balance in the currency's unit."""
    currency = parse_currency(currency)
    minor = to_minor(currency, amount)
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> int:
        balance = apply_credit(
            session, account_id, currency, minor,
            category=category, description=description, now=now,
        )
        audit_service.record(
            session,
            actor_id=actor_id,
            action_type=_default_audit_action(category),
            target_account_id=account_id,
            target_table="accounts",
            target_id=account_id,
            description=f"Credit {from_minor(currency, minor)} {currency}: {description}",
            old_value={currency.value.lower(): str(from_minor(currency, balance - minor))},
            new_value={currency.value.lower(): str(from_minor(currency, balance))},
            source_address=source_address,
            now=now,
        )
        return balance

    balance = run_in_transaction(engine, _txn)
    logger.info(
        "Credit %s %s → account %s (%s)", from_minor(currency, minor), currency, account_id, category,
    )
    return from_minor(currency, balance)


def debit(
    engine: Engine,
    account_id: int,
    currency: Currency | str,
    amount: Any,
    description: str,
    *,
    category: str = TransactionCategory.ADMIN_ADJUSTMENT,
    actor_id: int | None = None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> int | Decimal:
    """Debit *amount*; raises :class:`InsufficientBalance` rather than going
    negative.  Returns the new balance in the currency's unit."""
    currency = parse_currency(currency)
    minor = to_minor(currency, amount)
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> int:
        balance = apply_debit(
            session, account_id, currency, minor,
            category=category, description=description, now=now,
        )
        audit_service.record(
            session,
            actor_id=actor_id,
            action_type=_default_audit_action(category),
            target_account_id=account_id,
            target_table="accounts",
            target_id=account_id,
            description=f"Debit {from_minor(currency, minor)} {currency}: {description}",
            old_value={currency.value.lower(): str(from_minor(currency, balance + minor))},
            new_value={currency.value.lower(): str(from_minor(currency, balance))},
            source_address=source_address,
            now=now,
        )
        return balance

    balance = run_in_transaction(engine, _txn)
    logger.info(
        "Debit %s %s ← account %s (%s)", from_minor(currency, minor), currency, account_id, category,
    )
    return from_minor(currency, balance)


def deposit_cash(
    engine: Engine,
    account_id: int,
    amount: Any,
    *,
    actor_id: int | None,
    reference: str | None = None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> Decimal:
    """Credit a cash amount captured and verified upstream."""
    description = f"Cash deposit ({reference})" if reference else "Cash deposit"
    return credit(
        engine, account_id, Currency.CASH, amount, description,
        category=TransactionCategory.CASH_DEPOSIT,
        actor_id=actor_id,
        source_address=source_address,
        now=now,
    )


def apply_purchase(
    session: Session,
    account_id: int,
    price_cents: int,
    *,
    coins_granted: int | None,
    membership_granted: tuple[str, int] | None,
    category: str,
    description: str,
    actor_id: int | None,
    source_address: str | None,
    now: datetime,
) -> PurchaseResult:
    """Debit cash and deliver the goods inside the caller's transaction."""
    if not coins_granted and not membership_granted:
        raise InvalidPatch("A purchase must grant coins or a membership")

    apply_debit(
        session, account_id, Currency.CASH, price_cents,
        category=category, description=description, now=now,
    )
    if coins_granted:
        apply_credit(
            session, account_id, Currency.COIN, coin_amount(coins_granted),
            category=category, description=description, now=now,
        )
    status = None
    before_membership = None
    if membership_granted:
        tier, days = membership_granted
        before_membership, status = entitlement_service.apply_grant(
            session, account_id, tier, days, now,
        )

    result = PurchaseResult(
        cash_spent=from_cents(price_cents),
        balances=read_balances(session, account_id),
        coins_granted=coins_granted,
        membership=status,
    )
    audit_service.record(
        session,
        actor_id=actor_id,
        action_type=AuditAction.PURCHASE,
        target_account_id=account_id,
        target_table="accounts",
        target_id=account_id,
        description=description,
        old_value={"membership": before_membership} if before_membership else None,
        new_value=result.to_dict(),
        source_address=source_address,
        now=now,
    )
    return result


def purchase_with_cash(
    engine: Engine,
    account_id: int,
    price_cash: Any,
    *,
    coins_granted: int | None = None,
    membership_granted: tuple[str, int] | None = None,
    description: str = "Purchase",
    category: str | None = None,
    actor_id: int | None = None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> PurchaseResult:
    """Spend cash on coins and/or a membership atomically.

    If any step fails (insufficient cash, unknown account, invalid grant)
    the whole purchase rolls back; cash is never debited without the goods
    being delivered.
    """
    price_cents = to_cents(price_cash)
    now = as_utc(now) if now else utcnow()
    if category is None:
        category = (
            TransactionCategory.MEMBERSHIP_PURCHASE if membership_granted
            else TransactionCategory.COIN_PURCHASE
        )

    result = run_in_transaction(
        engine, apply_purchase, account_id, price_cents,
        coins_granted=coins_granted,
        membership_granted=membership_granted,
        category=category,
        description=description,
        actor_id=actor_id if actor_id is not None else account_id,
        source_address=source_address,
        now=now,
    )
    logger.info("Purchase by account %s: %s for %s", account_id, description, result.cash_spent)
    return result


def _active_price(session: Session, item_type: str, item_key: str) -> Decimal:
    price = session.scalar(
        select(Price).where(
            Price.item_type == item_type,
            Price.item_key == item_key,
            Price.is_active.is_(True),
        )
    )
    if price is None:
        raise PriceUnavailable(item_type=item_type, item_key=item_key)
    return Decimal(price.price)


def purchase_coins(
    engine: Engine,
    account_id: int,
    coins: int,
    *,
    source_address: str | None = None,
    now: datetime | None = None,
) -> PurchaseResult:
    """Buy *coins* at the active ``COIN_RATE`` price."""
    coins = coin_amount(coins)
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> PurchaseResult:
        rate = _active_price(session, COIN_RATE_ITEM, "default")
        cost = (rate * coins).quantize(CASH_QUANTUM, rounding=ROUND_HALF_UP)
        if cost <= 0:
            raise InvalidAmount("Purchase is too small to price", coins=coins)
        return apply_purchase(
            session, account_id, int(cost * 100),
            coins_granted=coins,
            membership_granted=None,
            category=TransactionCategory.COIN_PURCHASE,
            description=f"Purchased {coins} coins",
            actor_id=account_id,
            source_address=source_address,
            now=now,
        )

    result = run_in_transaction(engine, _txn)
    logger.info("Account %s bought %d coins for %s", account_id, coins, result.cash_spent)
    return result


def purchase_membership(
    engine: Engine,
    account_id: int,
    tier: str,
    duration_days: int,
    *,
    source_address: str | None = None,
    now: datetime | None = None,
) -> PurchaseResult:
    """Buy a membership at its price-table price."""
    item_type = MEMBERSHIP_PRICE_ITEM.get(tier)
    if item_type is None:
        raise InvalidPatch(f"Unknown membership tier: {tier!r}")
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> PurchaseResult:
        price = _active_price(session, item_type, str(duration_days))
        return apply_purchase(
            session, account_id, to_cents(price.quantize(CASH_QUANTUM, rounding=ROUND_HALF_UP)),
            coins_granted=None,
            membership_granted=(tier, duration_days),
            category=TransactionCategory.MEMBERSHIP_PURCHASE,
            description=f"Purchased {duration_days} days of {tier}",
            actor_id=account_id,
            source_address=source_address,
            now=now,
        )

    result = run_in_transaction(engine, _txn)
    logger.info(
        "Account %s bought %d days of %s for %s", account_id, duration_days, tier, result.cash_spent,
    )
    return result


def apply_adjustment(
    session: Session,
    account_id: int,
    currency: Currency,
    signed_amount: Any,
    *,
    reason: str,
    now: datetime,
) -> int:
    """Signed admin correction inside the caller's transaction.  Returns
    the new balance in minor units."""
    if isinstance(signed_amount, bool):
        raise InvalidAmount("Adjustment must be a number")
    if currency == Currency.COIN:
        if not isinstance(signed_amount, int):
            raise InvalidAmount("Coin amounts must be whole numbers")
        value = signed_amount
    else:
        try:
            value = Decimal(str(signed_amount))
        except InvalidOperation:
            raise InvalidAmount("Adjustment must be a number") from None
    if value == 0:
        raise InvalidAmount("Adjustment must not be zero")
    minor = to_minor(currency, abs(value))
    apply = apply_debit if value < 0 else apply_credit
    return apply(
        session, account_id, currency, minor,
        category=TransactionCategory.ADMIN_ADJUSTMENT,
        description=reason,
        now=now,
    )


def admin_adjust(
    engine: Engine,
    account_id: int,
    currency: Currency | str,
    signed_amount: Any,
    *,
    actor_id: int,
    reason: str,
    source_address: str | None = None,
    now: datetime | None = None,
) -> int | Decimal:
    """Admin balance correction: positive credits, negative debits."""
    currency = parse_currency(currency)
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> int:
        before = read_balances(session, account_id)
        balance = apply_adjustment(
            session, account_id, currency, signed_amount, reason=reason, now=now,
        )
        audit_service.record(
            session,
            actor_id=actor_id,
            action_type=AuditAction.BALANCE_ADJUST,
            target_account_id=account_id,
            target_table="accounts",
            target_id=account_id,
            description=f"Adjusted {currency} by {signed_amount}: {reason}",
            old_value=before.to_dict(),
            new_value=read_balances(session, account_id).to_dict(),
            source_address=source_address,
            now=now,
        )
        return balance

    balance = run_in_transaction(engine, _txn)
    logger.info("Admin %s adjusted %s of account %s by %s", actor_id, currency, account_id, signed_amount)
    return from_minor(currency, balance)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_balances(engine: Engine, account_id: int) -> Balances:
    with Session(engine) as session:
        return read_balances(session, account_id)


def get_history(
    engine: Engine,
    account_id: int,
    *,
    currency: Currency | str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict]:
    """Most recent ledger transactions for an account."""
    limit = max(1, min(limit, 200))
    query = select(LedgerTransaction).where(LedgerTransaction.account_id == account_id)
    if currency is not None:
        query = query.where(LedgerTransaction.currency == parse_currency(currency).value)
    query = query.order_by(
        LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc()
    ).offset(max(0, offset)).limit(limit)

    with Session(engine) as session:
        rows = session.scalars(query).all()
        out = []
        for tx in rows:
            currency_ = Currency(tx.currency)
            out.append({
                "id": tx.id,
                "currency": tx.currency,
                "amount": str(from_minor(currency_, tx.amount)),
                "balance_after": str(from_minor(currency_, tx.balance_after)),
                "category": tx.category,
                "description": tx.description,
                "created_at": isoformat(tx.created_at),
            })
        return out
