"""
swoon.services.report_service — Report Review Workflow
========================================================

Users file reports against other accounts; moderators resolve them.

States: ``PENDING → APPROVED | REJECTED`` (single, terminal transition).

:func:`resolve` is one transaction:

    1. Compare-and-swap the report from PENDING to its final status.
    2. On approval, optionally ban the reported account permanently.
    3. On approval, optionally credit the reporter a bounded coin reward.
    4. Write one ``REPORT_RESOLVE`` audit entry describing all of it.

If any step fails the transaction rolls back and the report stays PENDING
for a retry.  Two concurrent resolutions race on step 1; the loser gets
:class:`~swoon.errors.ReportNotPending` and changes nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Engine, func, select, update
from sqlalchemy.orm import Session

from swoon.database.engine import run_in_transaction
from swoon.database.models import (
    Account,
    AuditAction,
    Currency,
    Report,
    ReportStatus,
    TransactionCategory,
)
from swoon.engine import moderation
from swoon.engine.clock import as_utc, isoformat, utcnow
from swoon.errors import (
    DuplicateReport,
    InvalidAmount,
    InvalidPatch,
    InvalidRecipient,
    ReportNotFound,
    ReportNotPending,
)
from swoon.services import audit_service, ledger_service, moderation_service
from swoon.services.entitlement_service import lock_account

if TYPE_CHECKING:
    from swoon.engine.cache import ConfigCache

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 1000


def report_to_dict(report: Report) -> dict:
    return {
        "id": report.id,
        "reporter_id": report.reporter_id,
        "reported_id": report.reported_id,
        "reason": report.reason,
        "status": report.status,
        "reviewed_by": report.reviewed_by,
        "review_note": report.review_note,
        "reward_amount": report.reward_amount,
        "reviewed_at": isoformat(report.reviewed_at),
        "created_at": isoformat(report.created_at),
    }


# ---------------------------------------------------------------------------
# Filing
# ---------------------------------------------------------------------------
def file_report(
    engine: Engine,
    reporter_id: int,
    reported_id: int,
    reason: str,
    *,
    now: datetime | None = None,
) -> Report:
    """File a report.  One pending report per (reporter, reported) pair."""
    reason = (reason or "").strip()
    if not reason:
        raise InvalidPatch("A reason is required")
    if len(reason) > MAX_REASON_LENGTH:
        raise InvalidPatch(f"Reason must be at most {MAX_REASON_LENGTH} characters")
    if reporter_id == reported_id:
        raise InvalidRecipient("You cannot report yourself")
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> Report:
        # Serialize filings by the same reporter so the duplicate check holds.
        lock_account(session, reporter_id)
        if session.get(Account, reported_id) is None:
            raise InvalidRecipient("Reported account not found", reported_id=reported_id)
        pending = session.scalar(
            select(Report.id).where(
                Report.reporter_id == reporter_id,
                Report.reported_id == reported_id,
                Report.status == ReportStatus.PENDING.value,
            )
        )
        if pending is not None:
            raise DuplicateReport(report_id=pending)
        report = Report(
            reporter_id=reporter_id,
            reported_id=reported_id,
            reason=reason,
            status=ReportStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        session.add(report)
        session.flush()
        return report

    report = run_in_transaction(engine, _txn)
    logger.info("Report %s filed: %s -> %s", report.id, reporter_id, reported_id)
    return report


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------
def _parse_decision(decision: str) -> ReportStatus:
    try:
        status = ReportStatus(str(decision).upper())
    except ValueError:
        raise InvalidPatch(f"Unknown decision: {decision!r}") from None
    if status == ReportStatus.PENDING:
        raise InvalidPatch("Decision must be APPROVED or REJECTED")
    return status


def _validate_reward(cache: ConfigCache, amount: int | None) -> int:
    low = cache.get_int("reports.min_reward", 100)
    high = cache.get_int("reports.max_reward", 10000)
    if amount is None or isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("A whole-number reward amount is required")
    if not low <= amount <= high:
        raise InvalidAmount(
            f"Reward must be between {low} and {high} coins", min=low, max=high,
        )
    return amount


def resolve(
    engine: Engine,
    cache: ConfigCache,
    report_id: int,
    admin_id: int,
    decision: str,
    review_note: str | None = None,
    *,
    ban_reported_user: bool = False,
    reward_reporter: bool = False,
    reward_amount: int | None = None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> Report:
    """Resolve a pending report, optionally banning and rewarding.

    The ban and reward flags only apply to approvals.  An approval that
    asks for a ban on an account that is already banned leaves the
    existing ban in place and says so in the audit entry.

    Raises
    ------
    ReportNotFound, ReportNotPending
        Unknown or already-resolved report.
    InvalidAmount
        Reward requested without an amount, or outside the configured range.
    """
    status = _parse_decision(decision)
    approved = status == ReportStatus.APPROVED
    ban_requested = approved and ban_reported_user
    reward = _validate_reward(cache, reward_amount) if approved and reward_reporter else None
    note = (review_note or "").strip() or None
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> Report:
        report = session.get(Report, report_id)
        if report is None:
            raise ReportNotFound(report_id=report_id)
        if report.status != ReportStatus.PENDING:
            raise ReportNotPending(report_id=report_id, status=report.status)

        moved = session.execute(
            update(Report)
            .where(Report.id == report_id, Report.status == ReportStatus.PENDING.value)
            .values(
                status=status.value,
                reviewed_by=admin_id,
                review_note=note,
                reward_amount=reward,
                reviewed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount == 0:
            raise ReportNotPending(report_id=report_id)
        report = session.get(Report, report_id, populate_existing=True)

        outcome: dict = {"status": status.value, "review_note": note}
        summary = [f"Report {report_id} {status.value.lower()}"]

        if ban_requested:
            reported = lock_account(session, report.reported_id)
            if moderation_service.is_actively_banned(session, reported, now):
                outcome["ban"] = "already_banned"
                summary.append(f"account {report.reported_id} already banned")
            else:
                ban_reason = f"Report approved: {note or report.reason}"
                ban_before = moderation_service.apply_ban(
                    session, reported, moderation.Permanent(),
                    admin_id=admin_id, reason=ban_reason, now=now,
                )
                outcome["ban"] = {
                    "account_id": report.reported_id,
                    "window": "permanent",
                    "reason": ban_reason,
                    "before": ban_before,
                }
                summary.append(f"account {report.reported_id} banned permanently")

        if reward is not None:
            balance = ledger_service.apply_credit(
                session, report.reporter_id, Currency.COIN, reward,
                category=TransactionCategory.REPORT_REWARD,
                description=f"Reward for report {report_id}",
                now=now,
            )
            outcome["reward"] = {
                "account_id": report.reporter_id,
                "coins": reward,
                "balance_after": balance,
            }
            summary.append(f"reporter {report.reporter_id} rewarded {reward} coins")

        audit_service.record(
            session,
            actor_id=admin_id,
            action_type=AuditAction.REPORT_RESOLVE,
            target_account_id=report.reported_id,
            target_table="reports",
            target_id=report_id,
            description="; ".join(summary),
            old_value={"status": ReportStatus.PENDING.value},
            new_value=outcome,
            source_address=source_address,
            now=now,
        )
        return report

    report = run_in_transaction(engine, _txn)
    logger.info(
        "Report %s %s by %s (ban=%s reward=%s)",
        report_id, status.value, admin_id, ban_requested, reward,
    )
    return report


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_report(engine: Engine, report_id: int) -> dict:
    with Session(engine) as session:
        report = session.get(Report, report_id)
        if report is None:
            raise ReportNotFound(report_id=report_id)
        return report_to_dict(report)


def list_reports(
    engine: Engine,
    *,
    status: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[int, list[dict]]:
    """Reports filtered by status, oldest pending first."""
    page = max(1, page)
    page_size = max(1, min(page_size, 200))
    filters = []
    if status:
        try:
            filters.append(Report.status == ReportStatus(status.upper()).value)
        except ValueError:
            raise InvalidPatch(f"Unknown report status: {status!r}") from None

    with Session(engine) as session:
        total = session.scalar(
            select(func.count()).select_from(Report).where(*filters)
        ) or 0
        rows = session.scalars(
            select(Report)
            .where(*filters)
            .order_by(Report.created_at.asc(), Report.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return total, [report_to_dict(r) for r in rows]
