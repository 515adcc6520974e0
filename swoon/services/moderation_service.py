"""
swoon.services.moderation_service — Bans
==========================================

Ban, unban, and ban checks.  Ban windows are the explicit
``Permanent | Until`` variant from :mod:`swoon.engine.moderation`.

* Banning an account that already has an unexpired ban raises
  :class:`~swoon.errors.AlreadyBanned`; an admin who wants a different
  window unbans first.
* Administrator accounts cannot be banned.
* Expired bans are cleared lazily by :func:`is_banned` / :func:`ban_status`
  with a ``BAN_EXPIRE`` audit entry and no actor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from swoon.database.engine import run_in_transaction
from swoon.database.models import Account, AuditAction
from swoon.engine import moderation
from swoon.engine.clock import as_utc, isoformat, utcnow
from swoon.errors import AccountNotFound, AlreadyBanned, InvalidRecipient
from swoon.services import audit_service
from swoon.services.entitlement_service import lock_account

logger = logging.getLogger(__name__)

_BAN_FIELDS = ("is_banned", "ban_expires_at", "ban_reason", "banned_at", "banned_by")


@dataclass(frozen=True, slots=True)
class BanStatus:
    is_banned: bool
    window: moderation.BanWindow | None
    reason: str | None

    @property
    def expires_at(self) -> datetime | None:
        return self.window.expires_at if self.window is not None else None

    @property
    def permanent(self) -> bool:
        return isinstance(self.window, moderation.Permanent)

    def to_dict(self) -> dict:
        return {
            "is_banned": self.is_banned,
            "permanent": self.permanent,
            "expires_at": isoformat(self.expires_at),
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class UnbanResult:
    was_banned: bool


def _status(account: Account) -> BanStatus:
    window = moderation.window_from_row(account.is_banned, account.ban_expires_at)
    return BanStatus(
        is_banned=window is not None,
        window=window,
        reason=account.ban_reason if window is not None else None,
    )


def _clear(account: Account) -> None:
    account.is_banned = False
    account.ban_expires_at = None
    account.ban_reason = None
    account.banned_at = None
    account.banned_by = None


# ---------------------------------------------------------------------------
# Session-level helpers
# ---------------------------------------------------------------------------
def clear_if_expired(session: Session, account: Account, now: datetime) -> bool:
    window = moderation.window_from_row(account.is_banned, account.ban_expires_at)
    if window is None or window.is_active(now):
        return False
    before = audit_service.snapshot(account, _BAN_FIELDS)
    _clear(account)
    session.flush()
    audit_service.record(
        session,
        actor_id=None,
        action_type=AuditAction.BAN_EXPIRE,
        target_account_id=account.id,
        target_table="accounts",
        target_id=account.id,
        description="Temporary ban expired",
        old_value=before,
        new_value=audit_service.snapshot(account, _BAN_FIELDS),
        now=now,
    )
    logger.info("Ban expired for account %s", account.id)
    return True


def apply_ban(
    session: Session,
    account: Account,
    window: moderation.BanWindow,
    *,
    admin_id: int,
    reason: str,
    now: datetime,
) -> dict:
    """Ban a locked *account* in the caller's transaction.

    Returns the before-snapshot.  The caller checks for an active ban and
    writes the audit entry.
    """
    if account.is_admin:
        raise InvalidRecipient("Administrators cannot be banned")
    before = audit_service.snapshot(account, _BAN_FIELDS)
    account.is_banned = True
    account.ban_expires_at = window.expires_at
    account.ban_reason = reason
    account.banned_at = now
    account.banned_by = admin_id
    session.flush()
    return before


def is_actively_banned(session: Session, account: Account, now: datetime) -> bool:
    clear_if_expired(session, account, now)
    return account.is_banned


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def ban(
    engine: Engine,
    target_id: int,
    admin_id: int,
    reason: str,
    duration_days: int,
    *,
    source_address: str | None = None,
    now: datetime | None = None,
) -> BanStatus:
    """Ban *target_id*.  ``duration_days=0`` is permanent.

    Raises
    ------
    AlreadyBanned
        The account has an unexpired ban.
    InvalidDuration
        Negative or out-of-range duration.
    """
    now = as_utc(now) if now else utcnow()
    window = moderation.ban_window(duration_days, now)
    reason = (reason or "").strip() or "No reason given"

    def _txn(session: Session) -> BanStatus:
        account = lock_account(session, target_id)
        if is_actively_banned(session, account, now):
            raise AlreadyBanned(account_id=target_id)
        before = apply_ban(session, account, window, admin_id=admin_id, reason=reason, now=now)
        status = _status(account)
        audit_service.record(
            session,
            actor_id=admin_id,
            action_type=AuditAction.BAN_USER,
            target_account_id=target_id,
            target_table="accounts",
            target_id=target_id,
            description=f"Banned ({moderation.describe(window)}): {reason}",
            old_value=before,
            new_value=audit_service.snapshot(account, _BAN_FIELDS),
            source_address=source_address,
            now=now,
        )
        return status

    status = run_in_transaction(engine, _txn)
    logger.warning(
        "Account %s banned by %s (%s): %s",
        target_id, admin_id, moderation.describe(window), reason,
    )
    return status


def unban(
    engine: Engine,
    target_id: int,
    admin_id: int,
    *,
    reason: str | None = None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> UnbanResult:
    """Lift an active ban.  Unbanning an account that is not currently
    banned (including one whose ban has already run out) is a no-op."""
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> UnbanResult:
        account = lock_account(session, target_id)
        clear_if_expired(session, account, now)
        if not account.is_banned:
            return UnbanResult(was_banned=False)
        before = audit_service.snapshot(account, _BAN_FIELDS)
        _clear(account)
        session.flush()
        audit_service.record(
            session,
            actor_id=admin_id,
            action_type=AuditAction.UNBAN_USER,
            target_account_id=target_id,
            target_table="accounts",
            target_id=target_id,
            description=f"Unbanned: {reason}" if reason else "Unbanned",
            old_value=before,
            new_value=audit_service.snapshot(account, _BAN_FIELDS),
            source_address=source_address,
            now=now,
        )
        return UnbanResult(was_banned=True)

    result = run_in_transaction(engine, _txn)
    if result.was_banned:
        logger.info("Account %s unbanned by %s", target_id, admin_id)
    return result


def ban_status(engine: Engine, account_id: int, *, now: datetime | None = None) -> BanStatus:
    """Current ban state, clearing an expired ban lazily."""
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> BanStatus:
        account = session.get(Account, account_id)
        if account is None:
            raise AccountNotFound(account_id=account_id)
        window = moderation.window_from_row(account.is_banned, account.ban_expires_at)
        if window is not None and not window.is_active(now):
            account = lock_account(session, account_id)
            clear_if_expired(session, account, now)
        return _status(account)

    return run_in_transaction(engine, _txn)


def is_banned(engine: Engine, account_id: int, *, now: datetime | None = None) -> bool:
    return ban_status(engine, account_id, now=now).is_banned
