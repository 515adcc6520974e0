"""
swoon.services.account_service — Accounts & Admin Account Edits
=================================================================

Accounts are created lazily the first time an authenticated user touches
the engine.  Each gets a unique 8-character referral code.

Admin edits go through :class:`AccountPatch`: every optional field is
validated on its own, membership changes follow the entitlement stacking
rules, balance changes go through the ledger, and the whole edit is one
transaction with one ``ACCOUNT_EDIT`` audit entry.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from swoon.constants import (
    MAX_CASH_CENTS,
    MAX_COIN_AMOUNT,
    MEMBERSHIP_RANK,
    REFERRAL_CODE_ALPHABET,
    REFERRAL_CODE_LENGTH,
)
from swoon.database.engine import run_in_transaction
from swoon.database.models import Account, AuditAction, Currency, MembershipTier
from swoon.engine.clock import as_utc, isoformat, utcnow
from swoon.errors import AccountNotFound, InvalidPatch
from swoon.services import audit_service, entitlement_service, ledger_service

logger = logging.getLogger(__name__)

_EDIT_SNAPSHOT_FIELDS = (
    "display_name", "is_admin", "coins", "cash_cents",
    "membership_tier", "membership_expires_at",
)


def generate_referral_code() -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


def _unique_referral_code(session: Session) -> str:
    while True:
        code = generate_referral_code()
        taken = session.scalar(select(Account.id).where(Account.referral_code == code))
        if taken is None:
            return code


def account_to_dict(account: Account) -> dict:
    return {
        "id": account.id,
        "display_name": account.display_name,
        "referral_code": account.referral_code,
        "coins": account.coins,
        "cash": str(ledger_service.from_cents(account.cash_cents)),
        "membership_tier": account.membership_tier,
        "membership_expires_at": isoformat(account.membership_expires_at),
        "is_banned": account.is_banned,
        "ban_expires_at": isoformat(account.ban_expires_at),
        "profile_completed_at": isoformat(account.profile_completed_at),
        "created_at": isoformat(account.created_at),
    }


# ---------------------------------------------------------------------------
# Lookup / creation
# ---------------------------------------------------------------------------
def ensure_account(
    session: Session,
    account_id: int,
    display_name: str | None = None,
    *,
    is_admin: bool = False,
) -> Account:
    """Fetch or insert *account_id* inside the caller's transaction."""
    account = session.get(Account, account_id)
    if account is not None:
        return account
    account = Account(
        id=account_id,
        display_name=display_name,
        referral_code=_unique_referral_code(session),
        is_admin=is_admin,
        coins=0,
        cash_cents=0,
        membership_tier=MembershipTier.STANDARD.value,
        is_banned=False,
    )
    session.add(account)
    session.flush()
    logger.info("Created account %s (referral code %s)", account_id, account.referral_code)
    return account


def get_or_create_account(
    engine: Engine,
    account_id: int,
    display_name: str | None = None,
    *,
    is_admin: bool = False,
) -> Account:
    return run_in_transaction(
        engine, ensure_account, account_id, display_name, is_admin=is_admin,
    )


def get_account(engine: Engine, account_id: int) -> Account:
    with Session(engine, expire_on_commit=False) as session:
        account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFound(account_id=account_id)
        session.expunge(account)
        return account


# ---------------------------------------------------------------------------
# Admin edit
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AccountPatch:
    """Explicit admin edit.  ``None`` means 'leave unchanged'.

    * ``membership_tier`` + ``membership_days`` — grant a paid tier for N
      days (stacking rules apply), or ``membership_tier="standard"`` with no
      days to revoke.
    * ``coin_adjustment`` / ``cash_adjustment`` — signed ledger corrections.
    """

    display_name: str | None = None
    is_admin: bool | None = None
    membership_tier: str | None = None
    membership_days: int | None = None
    coin_adjustment: int | None = None
    cash_adjustment: Decimal | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountPatch:
        allowed = {f.name for f in fields(cls)}
        unknown = set(data) - allowed
        if unknown:
            raise InvalidPatch(f"Unknown fields: {', '.join(sorted(unknown))}")
        return cls(**data)

    def is_empty(self) -> bool:
        return all(
            getattr(self, f.name) is None for f in fields(self) if f.name != "note"
        )

    def validate(self) -> None:
        if self.is_empty():
            raise InvalidPatch("No fields to update")
        if self.display_name is not None and not (0 < len(self.display_name.strip()) <= 100):
            raise InvalidPatch("display_name must be 1-100 characters")
        if self.membership_days is not None and self.membership_tier is None:
            raise InvalidPatch("membership_days requires membership_tier")
        if self.membership_tier is not None:
            if self.membership_tier not in MEMBERSHIP_RANK:
                raise InvalidPatch(f"Unknown membership tier: {self.membership_tier!r}")
            if self.membership_tier == MembershipTier.STANDARD:
                if self.membership_days is not None:
                    raise InvalidPatch("standard membership takes no duration")
            elif self.membership_days is None:
                raise InvalidPatch("membership_days is required for paid tiers")
        if self.coin_adjustment is not None and (
            isinstance(self.coin_adjustment, bool) or not isinstance(self.coin_adjustment, int)
            or self.coin_adjustment == 0
        ):
            raise InvalidPatch("coin_adjustment must be a non-zero whole number")
        if self.coin_adjustment is not None and abs(self.coin_adjustment) > MAX_COIN_AMOUNT:
            raise InvalidPatch(f"coin_adjustment is at most {MAX_COIN_AMOUNT} either way")
        if self.cash_adjustment is not None:
            try:
                cash = Decimal(str(self.cash_adjustment))
            except InvalidOperation:
                raise InvalidPatch("cash_adjustment must be a number") from None
            if not cash.is_finite() or cash == 0:
                raise InvalidPatch("cash_adjustment must be non-zero")
            if abs(cash) * 100 > MAX_CASH_CENTS:
                raise InvalidPatch("cash_adjustment is out of range")


def edit_account(
    engine: Engine,
    account_id: int,
    patch: AccountPatch,
    *,
    actor_id: int,
    source_address: str | None = None,
    now: datetime | None = None,
) -> Account:
    """Apply an admin :class:`AccountPatch` atomically with one audit entry."""
    patch.validate()
    now = as_utc(now) if now else utcnow()
    reason = patch.note or "Admin account edit"

    def _txn(session: Session) -> Account:
        account = entitlement_service.lock_account(session, account_id)
        before = audit_service.snapshot(account, _EDIT_SNAPSHOT_FIELDS)
        changes: list[str] = []

        if patch.display_name is not None:
            account.display_name = patch.display_name.strip()
            changes.append("display_name")
        if patch.is_admin is not None:
            account.is_admin = patch.is_admin
            changes.append("is_admin")
        session.flush()

        if patch.membership_tier == MembershipTier.STANDARD:
            account.membership_tier = MembershipTier.STANDARD.value
            account.membership_expires_at = None
            session.flush()
            changes.append("membership revoked")
        elif patch.membership_tier is not None:
            entitlement_service.apply_grant(
                session, account_id, patch.membership_tier, patch.membership_days, now,
            )
            changes.append(f"{patch.membership_days}d {patch.membership_tier}")

        if patch.coin_adjustment is not None:
            ledger_service.apply_adjustment(
                session, account_id, Currency.COIN, patch.coin_adjustment,
                reason=reason, now=now,
            )
            changes.append(f"coins {patch.coin_adjustment:+d}")
        if patch.cash_adjustment is not None:
            ledger_service.apply_adjustment(
                session, account_id, Currency.CASH, patch.cash_adjustment,
                reason=reason, now=now,
            )
            changes.append(f"cash {patch.cash_adjustment}")

        account = session.get(Account, account_id, populate_existing=True)
        audit_service.record(
            session,
            actor_id=actor_id,
            action_type=AuditAction.ACCOUNT_EDIT,
            target_account_id=account_id,
            target_table="accounts",
            target_id=account_id,
            description=f"{reason}: {', '.join(changes)}",
            old_value=before,
            new_value=audit_service.snapshot(account, _EDIT_SNAPSHOT_FIELDS),
            source_address=source_address,
            now=now,
        )
        return account

    account = run_in_transaction(engine, _txn)
    logger.info("Admin %s edited account %s", actor_id, account_id)
    return account
