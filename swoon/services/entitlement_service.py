"""
swoon.services.entitlement_service — Membership Entitlements
==============================================================

Time-boxed gold / platinum memberships.  Stacking rules live in
:mod:`swoon.engine.membership`; this module applies them to account rows
under a row lock and writes the audit entries.

Expiry is lazy: any read that finds a paid tier past its expiry downgrades
the account to ``standard`` in the same transaction and records a
``MEMBERSHIP_EXPIRE`` entry with no actor.  :func:`sweep_expired` does the
same in bulk for reporting jobs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from swoon.database.engine import run_in_transaction
from swoon.database.models import Account, AuditAction, MembershipTier
from swoon.engine import membership
from swoon.engine.clock import as_utc, isoformat, utcnow
from swoon.errors import AccountNotFound
from swoon.services import audit_service

if TYPE_CHECKING:
    from swoon.engine.cache import ConfigCache

logger = logging.getLogger(__name__)

_MEMBERSHIP_FIELDS = ("membership_tier", "membership_expires_at")


@dataclass(frozen=True, slots=True)
class MembershipStatus:
    tier: str
    expires_at: datetime | None

    def to_dict(self) -> dict:
        return {"tier": self.tier, "expires_at": isoformat(self.expires_at)}


def _status(account: Account) -> MembershipStatus:
    return MembershipStatus(account.membership_tier, as_utc(account.membership_expires_at))


def lock_account(session: Session, account_id: int) -> Account:
    """Load *account_id* with a row lock (``SELECT … FOR UPDATE``)."""
    account = session.get(Account, account_id, with_for_update=True, populate_existing=True)
    if account is None:
        raise AccountNotFound(account_id=account_id)
    return account


# ---------------------------------------------------------------------------
# Session-level helpers (compose into larger transactions)
# ---------------------------------------------------------------------------
def expire_if_due(session: Session, account: Account, now: datetime) -> bool:
    """Downgrade an expired paid membership.  Returns True if it did."""
    if account.membership_tier == MembershipTier.STANDARD:
        return False
    if membership.is_current(account.membership_tier, account.membership_expires_at, now):
        return False

    before = audit_service.snapshot(account, _MEMBERSHIP_FIELDS)
    account.membership_tier = MembershipTier.STANDARD.value
    account.membership_expires_at = None
    session.flush()
    audit_service.record(
        session,
        actor_id=None,
        action_type=AuditAction.MEMBERSHIP_EXPIRE,
        target_account_id=account.id,
        target_table="accounts",
        target_id=account.id,
        description=f"{before['membership_tier']} membership expired",
        old_value=before,
        new_value=audit_service.snapshot(account, _MEMBERSHIP_FIELDS),
        now=now,
    )
    logger.info("Membership expired for account %s (%s)", account.id, before["membership_tier"])
    return True


def apply_grant(
    session: Session,
    account_id: int,
    tier: str,
    duration_days: int,
    now: datetime,
) -> tuple[dict, MembershipStatus]:
    """Grant *duration_days* of *tier* inside the caller's transaction.

    Returns ``(before_snapshot, new_status)``; the caller writes the audit
    entry so a composite operation still logs once.
    """
    membership.validate_grant(tier, duration_days)
    account = lock_account(session, account_id)
    before = audit_service.snapshot(account, _MEMBERSHIP_FIELDS)

    if not membership.is_current(account.membership_tier, account.membership_expires_at, now):
        # Expired or standard: treat as standard without a separate expiry entry.
        current_tier = MembershipTier.STANDARD.value
        current_expiry = None
    else:
        current_tier = account.membership_tier
        current_expiry = account.membership_expires_at

    account.membership_expires_at = membership.next_expiry(
        current_tier, current_expiry, tier, duration_days, now,
    )
    account.membership_tier = tier
    session.flush()
    return before, _status(account)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def grant_membership(
    engine: Engine,
    account_id: int,
    tier: str,
    duration_days: int,
    *,
    actor_id: int | None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> MembershipStatus:
    """Grant or extend a membership.

    Same active tier extends from the current expiry; a different tier
    replaces it with ``now + duration_days``.
    """
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> MembershipStatus:
        before, status = apply_grant(session, account_id, tier, duration_days, now)
        audit_service.record(
            session,
            actor_id=actor_id,
            action_type=AuditAction.MEMBERSHIP_GRANT,
            target_account_id=account_id,
            target_table="accounts",
            target_id=account_id,
            description=f"Granted {duration_days} days of {tier}",
            old_value=before,
            new_value=status.to_dict(),
            source_address=source_address,
            now=now,
        )
        return status

    status = run_in_transaction(engine, _txn)
    logger.info(
        "Membership granted: account=%s tier=%s days=%d expires=%s",
        account_id, tier, duration_days, status.expires_at,
    )
    return status


def get_membership(
    engine: Engine, account_id: int, *, now: datetime | None = None,
) -> MembershipStatus:
    """Current membership, downgrading lazily if it has expired."""
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> MembershipStatus:
        account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFound(account_id=account_id)
        if account.membership_tier != MembershipTier.STANDARD and not membership.is_current(
            account.membership_tier, account.membership_expires_at, now
        ):
            account = lock_account(session, account_id)
            expire_if_due(session, account, now)
        return _status(account)

    return run_in_transaction(engine, _txn)


def is_active(
    engine: Engine, account_id: int, tier: str, *, now: datetime | None = None,
) -> bool:
    """True when the account holds *tier* (or higher) and it has not expired."""
    now = as_utc(now) if now else utcnow()
    status = get_membership(engine, account_id, now=now)
    return membership.satisfies(status.tier, status.expires_at, tier, now)


def feature_flags(
    engine: Engine,
    account_id: int,
    cache: ConfigCache | None = None,
    *,
    now: datetime | None = None,
) -> membership.TierFeatures:
    status = get_membership(engine, account_id, now=now)
    return membership.features_for(status.tier, cache)


def sweep_expired(engine: Engine, *, now: datetime | None = None) -> int:
    """Downgrade every expired paid membership.  Returns the count."""
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> int:
        ids = session.scalars(
            select(Account.id).where(
                Account.membership_tier != MembershipTier.STANDARD.value,
                Account.membership_expires_at.is_not(None),
                Account.membership_expires_at <= now,
            )
        ).all()
        expired = 0
        for account_id in ids:
            if expire_if_due(session, lock_account(session, account_id), now):
                expired += 1
        return expired

    expired = run_in_transaction(engine, _txn)
    if expired:
        logger.info("Membership sweep downgraded %d accounts", expired)
    return expired
