"""
swoon.services.audit_service — Audit Log
==========================================

Append-only audit trail.  :func:`record` never opens its own session: it
writes into the caller's transaction and flushes, so the audit row commits
with the mutation it describes or not at all.

Each public mutating operation writes exactly one entry.  Composite
operations (report resolution with a ban and a payout, admin account
edits) describe every sub-step in that one entry rather than writing one
per step.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from swoon.database.models import AuditLogEntry
from swoon.engine.clock import as_utc, isoformat, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------
def _json_value(val: Any) -> Any:
    if isinstance(val, datetime):
        return isoformat(val)
    if isinstance(val, Decimal):
        return str(val)
    return val


def snapshot(obj: Any, fields: list[str] | tuple[str, ...] | None = None) -> dict | None:
    """Convert a model instance (or a subset of its columns) to a
    JSON-serializable dict."""
    if obj is None:
        return None
    keys = fields if fields is not None else [c.key for c in obj.__table__.columns]
    return {key: _json_value(getattr(obj, key, None)) for key in keys}


# ---------------------------------------------------------------------------
# Writes (within the caller's transaction)
# ---------------------------------------------------------------------------
def record(
    session: Session,
    *,
    actor_id: int | None,
    action_type: str,
    description: str,
    target_account_id: int | None = None,
    target_table: str | None = None,
    target_id: str | int | None = None,
    old_value: dict | None = None,
    new_value: dict | None = None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> AuditLogEntry:
    """Insert a row into audit_log within the current transaction."""
    entry = AuditLogEntry(
        actor_id=actor_id,
        action_type=str(action_type),
        target_account_id=target_account_id,
        target_table=target_table,
        target_id=str(target_id) if target_id is not None else None,
        description=description,
        old_value=old_value,
        new_value=new_value,
        source_address=source_address,
        created_at=now or utcnow(),
    )
    session.add(entry)
    session.flush()
    return entry


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def entry_to_dict(entry: AuditLogEntry) -> dict:
    return {
        "id": entry.id,
        "actor_id": entry.actor_id,
        "action_type": entry.action_type,
        "target_account_id": entry.target_account_id,
        "target_table": entry.target_table,
        "target_id": entry.target_id,
        "description": entry.description,
        "old_value": entry.old_value,
        "new_value": entry.new_value,
        "source_address": entry.source_address,
        "created_at": isoformat(entry.created_at),
    }


def query(
    engine: Engine,
    *,
    actor_id: int | None = None,
    target_account_id: int | None = None,
    action_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[int, list[dict]]:
    """Filter the audit log, newest first.

    Returns ``(total_matching, entries_on_page)``.
    """
    page = max(1, page)
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))

    filters = []
    if actor_id is not None:
        filters.append(AuditLogEntry.actor_id == actor_id)
    if target_account_id is not None:
        filters.append(AuditLogEntry.target_account_id == target_account_id)
    if action_type:
        filters.append(AuditLogEntry.action_type == action_type)
    if start is not None:
        filters.append(AuditLogEntry.created_at >= as_utc(start))
    if end is not None:
        filters.append(AuditLogEntry.created_at <= as_utc(end))

    with Session(engine) as session:
        total = session.scalar(
            select(func.count()).select_from(AuditLogEntry).where(*filters)
        ) or 0
        rows = session.scalars(
            select(AuditLogEntry)
            .where(*filters)
            .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return total, [entry_to_dict(r) for r in rows]
