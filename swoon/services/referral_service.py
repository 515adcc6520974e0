"""
swoon.services.referral_service — Referral Engine
===================================================

Every account owns a referral code.  A new member may apply someone
else's code before completing their profile; when the profile-completion
event arrives, both sides are rewarded exactly once.

Exactly-once comes from a compare-and-swap on the grant's ``applied`` flag
in the same transaction as both credits:

    UPDATE referral_grants SET applied = true, applied_at = :now
     WHERE referee_id = :id AND applied = false

Concurrent duplicate completion signals all race for that one row; only
the transaction that flips it pays out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from swoon.constants import tier_rank
from swoon.database.engine import run_in_transaction
from swoon.database.models import (
    Account,
    AuditAction,
    Currency,
    MembershipTier,
    ReferralGrant,
    TransactionCategory,
)
from swoon.engine import membership
from swoon.engine.clock import as_utc, isoformat, utcnow
from swoon.errors import (
    AccountNotFound,
    AlreadyApplied,
    InvalidReferralCode,
    ProfileAlreadyCompleted,
    SelfReferral,
)
from swoon.services import audit_service, entitlement_service, ledger_service

if TYPE_CHECKING:
    from swoon.engine.cache import ConfigCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RewardResult:
    applied: bool
    referrer_id: int | None = None
    referee_coins: int = 0
    referrer_coins: int = 0
    referrer_gold_days: int = 0

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "referrer_id": self.referrer_id,
            "referee_coins": self.referee_coins,
            "referrer_coins": self.referrer_coins,
            "referrer_gold_days": self.referrer_gold_days,
        }


@dataclass(frozen=True, slots=True)
class CompletionResult:
    newly_completed: bool
    completed_at: datetime | None
    reward: RewardResult

    def to_dict(self) -> dict:
        return {
            "newly_completed": self.newly_completed,
            "completed_at": isoformat(self.completed_at),
            "reward": self.reward.to_dict(),
        }


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _owner_of(session: Session, code: str) -> int | None:
    if not code:
        return None
    return session.scalar(select(Account.id).where(Account.referral_code == code))


# ---------------------------------------------------------------------------
# Codes
# ---------------------------------------------------------------------------
def get_referral_code(engine: Engine, account_id: int) -> str:
    with Session(engine) as session:
        code = session.scalar(select(Account.referral_code).where(Account.id == account_id))
        if code is None:
            raise AccountNotFound(account_id=account_id)
        return code


def validate_code(engine: Engine, code: str, caller_id: int) -> int:
    """Return the referrer's account id if *code* is usable by *caller_id*.

    Pure check, no mutation.

    Raises
    ------
    InvalidReferralCode
        Unknown code, or the caller's own code.
    """
    code = normalize_code(code)
    with Session(engine) as session:
        owner = _owner_of(session, code)
    if owner is None or owner == caller_id:
        raise InvalidReferralCode(code=code)
    return owner


def apply_code(
    engine: Engine, referee_id: int, code: str, *, now: datetime | None = None,
) -> ReferralGrant:
    """Record that *referee_id* was referred by the owner of *code*.

    A pending (unrewarded) grant may be re-pointed at a different code.

    Raises
    ------
    AlreadyApplied
        The referee's grant has already paid out.
    SelfReferral
        The code is the referee's own.
    ProfileAlreadyCompleted
        Codes are only redeemable before profile completion.
    InvalidReferralCode
        No account owns the code.
    """
    code = normalize_code(code)
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> ReferralGrant:
        referee = entitlement_service.lock_account(session, referee_id)
        grant = session.scalar(
            select(ReferralGrant).where(ReferralGrant.referee_id == referee_id)
        )
        if grant is not None and grant.applied:
            raise AlreadyApplied(referee_id=referee_id)
        if code and code == referee.referral_code:
            raise SelfReferral()
        if referee.profile_completed_at is not None:
            raise ProfileAlreadyCompleted()
        referrer_id = _owner_of(session, code)
        if referrer_id is None:
            raise InvalidReferralCode(code=code)

        if grant is None:
            grant = ReferralGrant(
                referee_id=referee_id,
                referrer_id=referrer_id,
                code=code,
                applied=False,
                created_at=now,
            )
            session.add(grant)
        else:
            grant.referrer_id = referrer_id
            grant.code = code
        session.flush()
        return grant

    grant = run_in_transaction(engine, _txn)
    logger.info("Account %s applied referral code %s (referrer %s)", referee_id, code, grant.referrer_id)
    return grant


# ---------------------------------------------------------------------------
# Reward
# ---------------------------------------------------------------------------
def apply_reward(
    session: Session, cache: ConfigCache, referee_id: int, now: datetime,
) -> RewardResult:
    """Pay out the referee's pending grant inside the caller's transaction."""
    flipped = session.execute(
        update(ReferralGrant)
        .where(ReferralGrant.referee_id == referee_id, ReferralGrant.applied.is_(False))
        .values(applied=True, applied_at=now)
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount == 0:
        return RewardResult(applied=False)

    grant = session.scalar(
        select(ReferralGrant)
        .where(ReferralGrant.referee_id == referee_id)
        .execution_options(populate_existing=True)
    )
    referee_coins = cache.get_int("referral.referee_reward_coins", 1000)
    referrer_coins = cache.get_int("referral.referrer_reward_coins", 1000)
    gold_days = cache.get_int("referral.referrer_gold_days", 2)

    if referee_coins > 0:
        ledger_service.apply_credit(
            session, referee_id, Currency.COIN, referee_coins,
            category=TransactionCategory.REFERRAL_REWARD,
            description=f"Referral bonus (code {grant.code})",
            now=now,
        )
    if referrer_coins > 0:
        ledger_service.apply_credit(
            session, grant.referrer_id, Currency.COIN, referrer_coins,
            category=TransactionCategory.REFERRAL_REWARD,
            description=f"Referral reward for inviting {referee_id}",
            now=now,
        )

    granted_days = 0
    if gold_days > 0:
        referrer = entitlement_service.lock_account(session, grant.referrer_id)
        held = membership.effective_tier(
            referrer.membership_tier, referrer.membership_expires_at, now,
        )
        if tier_rank(held) <= tier_rank(MembershipTier.GOLD):
            entitlement_service.apply_grant(
                session, grant.referrer_id, MembershipTier.GOLD.value, gold_days, now,
            )
            granted_days = gold_days

    result = RewardResult(
        applied=True,
        referrer_id=grant.referrer_id,
        referee_coins=max(referee_coins, 0),
        referrer_coins=max(referrer_coins, 0),
        referrer_gold_days=granted_days,
    )
    audit_service.record(
        session,
        actor_id=None,
        action_type=AuditAction.REFERRAL_REWARD,
        target_account_id=referee_id,
        target_table="referral_grants",
        target_id=grant.id,
        description=(
            f"Referral reward: referee {referee_id} +{result.referee_coins}, "
            f"referrer {grant.referrer_id} +{result.referrer_coins}"
            + (f" and {granted_days}d gold" if granted_days else "")
        ),
        old_value={"applied": False},
        new_value=result.to_dict(),
        now=now,
    )
    return result


def reward_on_completion(
    engine: Engine, cache: ConfigCache, referee_id: int, *, now: datetime | None = None,
) -> RewardResult:
    """Reward both sides of the referee's pending grant, exactly once.

    Returns ``RewardResult(applied=False)`` when there is no pending grant
    (never referred, or already paid).
    """
    now = as_utc(now) if now else utcnow()
    result = run_in_transaction(engine, apply_reward, cache, referee_id, now)
    if result.applied:
        logger.info(
            "Referral reward paid: referee %s, referrer %s", referee_id, result.referrer_id,
        )
    return result


def complete_profile(
    engine: Engine, cache: ConfigCache, account_id: int, *, now: datetime | None = None,
) -> CompletionResult:
    """Handle the profile-completion signal.

    Stamps the milestone once and pays any pending referral reward in the
    same transaction.  Repeated signals are no-ops.
    """
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> CompletionResult:
        stamped = session.execute(
            update(Account)
            .where(Account.id == account_id, Account.profile_completed_at.is_(None))
            .values(profile_completed_at=now)
            .execution_options(synchronize_session=False)
        )
        if stamped.rowcount == 0:
            completed_at = session.scalar(
                select(Account.profile_completed_at).where(Account.id == account_id)
            )
            if completed_at is None:
                raise AccountNotFound(account_id=account_id)
            return CompletionResult(False, as_utc(completed_at), RewardResult(applied=False))
        return CompletionResult(True, now, apply_reward(session, cache, account_id, now))

    result = run_in_transaction(engine, _txn)
    if result.newly_completed:
        logger.info("Account %s completed its profile", account_id)
    return result
