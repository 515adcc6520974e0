"""
swoon.services.config_service — Admin Price / Config Store
============================================================

Audited writes to the gift tier catalogue, the price table, and the
settings store.  Every write follows the pattern:

  1. Begin transaction
  2. Read "before" snapshot
  3. Validate and apply the typed patch
  4. Write audit_log with before/after JSON
  5. Commit
  6. Invalidate the :class:`~swoon.engine.cache.ConfigCache`

Patches are explicit dataclasses with named optional fields; ``None``
means "leave unchanged" and every present field is validated on its own.
Edits never touch historical gifts, which carry their own copy of price
and reveal flags.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from swoon.constants import MAX_COIN_AMOUNT, MAX_PRICE
from swoon.database.engine import run_in_transaction
from swoon.database.models import AuditAction, GiftTierConfig, Price, Setting
from swoon.database.seed import DEFAULT_SETTINGS
from swoon.engine.clock import as_utc, utcnow
from swoon.errors import InvalidPatch, PriceUnavailable
from swoon.services import audit_service

if TYPE_CHECKING:
    from swoon.engine.cache import ConfigCache

logger = logging.getLogger(__name__)


def _patch_from_dict(cls, data: dict[str, Any]):
    allowed = {f.name for f in fields(cls)}
    unknown = set(data) - allowed
    if unknown:
        raise InvalidPatch(f"Unknown fields: {', '.join(sorted(unknown))}")
    return cls(**data)


def _changes(patch: Any) -> dict[str, Any]:
    return {
        f.name: getattr(patch, f.name)
        for f in fields(patch)
        if getattr(patch, f.name) is not None
    }


# ---------------------------------------------------------------------------
# Typed patches
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GiftTierPatch:
    name: str | None = None
    icon: str | None = None
    description: str | None = None
    price_coins: int | None = None
    enabled: bool | None = None
    shares_contact_info: bool | None = None
    can_send_message: bool | None = None
    sort_order: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GiftTierPatch:
        return _patch_from_dict(cls, data)

    def validate(self) -> None:
        if not _changes(self):
            raise InvalidPatch("No fields to update")
        if self.name is not None and not (0 < len(self.name.strip()) <= 60):
            raise InvalidPatch("name must be 1-60 characters")
        if self.icon is not None and len(self.icon) > 16:
            raise InvalidPatch("icon must be at most 16 characters")
        if self.price_coins is not None and (
            isinstance(self.price_coins, bool)
            or not isinstance(self.price_coins, int)
            or not 0 < self.price_coins <= MAX_COIN_AMOUNT
        ):
            raise InvalidPatch(f"price_coins must be a whole number from 1 to {MAX_COIN_AMOUNT}")
        if self.sort_order is not None and (
            isinstance(self.sort_order, bool) or not isinstance(self.sort_order, int)
        ):
            raise InvalidPatch("sort_order must be a whole number")
        for flag in ("enabled", "shares_contact_info", "can_send_message"):
            value = getattr(self, flag)
            if value is not None and not isinstance(value, bool):
                raise InvalidPatch(f"{flag} must be true or false")


@dataclass(frozen=True, slots=True)
class PricePatch:
    price: Decimal | None = None
    is_active: bool | None = None
    description: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PricePatch:
        return _patch_from_dict(cls, data)

    def validate(self) -> None:
        if not _changes(self):
            raise InvalidPatch("No fields to update")
        if self.price is not None:
            try:
                price = Decimal(str(self.price))
            except InvalidOperation:
                raise InvalidPatch("price must be a number") from None
            if not price.is_finite() or price <= 0:
                raise InvalidPatch("price must be greater than zero")
            if price >= MAX_PRICE:
                raise InvalidPatch(f"price must be below {MAX_PRICE}")
            if price != price.quantize(Decimal("0.0001")):
                raise InvalidPatch("price has at most four decimal places")
        if self.is_active is not None and not isinstance(self.is_active, bool):
            raise InvalidPatch("is_active must be true or false")


# ---------------------------------------------------------------------------
# Gift tiers
# ---------------------------------------------------------------------------
def update_gift_tier(
    engine: Engine,
    tier: str,
    patch: GiftTierPatch,
    *,
    actor_id: int,
    cache: ConfigCache | None = None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> GiftTierConfig:
    patch.validate()
    tier = str(tier).upper()
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> GiftTierConfig:
        row = session.get(GiftTierConfig, tier, with_for_update=True)
        if row is None:
            raise InvalidPatch(f"Unknown gift tier: {tier!r}")
        before = audit_service.snapshot(row)
        for key, value in _changes(patch).items():
            setattr(row, key, value.strip() if isinstance(value, str) else value)
        row.updated_at = now
        session.flush()
        audit_service.record(
            session,
            actor_id=actor_id,
            action_type=AuditAction.CONFIG_UPDATE,
            target_table="gift_tier_configs",
            target_id=tier,
            description=f"Updated gift tier {tier}: {', '.join(sorted(_changes(patch)))}",
            old_value=before,
            new_value=audit_service.snapshot(row),
            source_address=source_address,
            now=now,
        )
        return row

    row = run_in_transaction(engine, _txn)
    logger.info("Gift tier %s updated by %s", tier, actor_id)
    if cache is not None:
        cache.invalidate()
    return row


def list_gift_tiers(engine: Engine) -> list[GiftTierConfig]:
    with Session(engine) as session:
        rows = session.scalars(select(GiftTierConfig).order_by(GiftTierConfig.sort_order)).all()
        for r in rows:
            session.expunge(r)
        return list(rows)


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------
def update_price(
    engine: Engine,
    price_id: int,
    patch: PricePatch,
    *,
    actor_id: int,
    cache: ConfigCache | None = None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> Price:
    patch.validate()
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> Price:
        row = session.get(Price, price_id, with_for_update=True)
        if row is None:
            raise PriceUnavailable(price_id=price_id)
        before = audit_service.snapshot(row)
        if patch.price is not None:
            row.price = Decimal(str(patch.price))
        if patch.is_active is not None:
            row.is_active = patch.is_active
        if patch.description is not None:
            row.description = patch.description.strip() or None
        row.updated_at = now
        session.flush()
        audit_service.record(
            session,
            actor_id=actor_id,
            action_type=AuditAction.CONFIG_UPDATE,
            target_table="prices",
            target_id=price_id,
            description=f"Updated price {row.item_type}/{row.item_key}",
            old_value=before,
            new_value=audit_service.snapshot(row),
            source_address=source_address,
            now=now,
        )
        return row

    row = run_in_transaction(engine, _txn)
    logger.info("Price %s/%s updated by %s", row.item_type, row.item_key, actor_id)
    if cache is not None:
        cache.invalidate()
    return row


def list_prices(engine: Engine, item_type: str | None = None) -> list[Price]:
    query = select(Price).order_by(Price.item_type, Price.id)
    if item_type:
        query = query.where(Price.item_type == item_type)
    with Session(engine) as session:
        rows = session.scalars(query).all()
        for r in rows:
            session.expunge(r)
        return list(rows)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
def _validate_setting(key: str, value: Any) -> None:
    default = DEFAULT_SETTINGS.get(key)
    if default is None:
        return
    expected = default[0]
    if isinstance(expected, bool):
        if not isinstance(value, bool):
            raise InvalidPatch(f"{key} must be true or false")
    elif isinstance(expected, int):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidPatch(f"{key} must be a non-negative whole number")


def _check_bounds(session: Session, pending: dict[str, Any]) -> None:
    def current(key: str) -> Any:
        if key in pending:
            return pending[key]
        row = session.get(Setting, key)
        return json.loads(row.value_json) if row else DEFAULT_SETTINGS[key][0]

    for low_key, high_key in (
        ("gifts.min_message_length", "gifts.max_message_length"),
        ("reports.min_reward", "reports.max_reward"),
    ):
        if low_key in pending or high_key in pending:
            if current(low_key) > current(high_key):
                raise InvalidPatch(f"{low_key} must not exceed {high_key}")


def get_all_settings(engine: Engine) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(select(Setting).order_by(Setting.category, Setting.key)).all()
        return [
            {
                "key": r.key,
                "value": json.loads(r.value_json),
                "category": r.category,
                "description": r.description,
            }
            for r in rows
        ]


def bulk_upsert_settings(
    engine: Engine,
    items: list[dict],
    *,
    actor_id: int,
    cache: ConfigCache | None = None,
    source_address: str | None = None,
    now: datetime | None = None,
) -> int:
    """Upsert many settings at once.

    Each dict has ``key`` and ``value`` and optionally ``category`` and
    ``description``.  Each changed key gets its own audit entry with
    before/after snapshots.  Returns the number of keys changed.
    """
    for item in items:
        if "key" not in item or "value" not in item:
            raise InvalidPatch("Each setting needs a key and a value")
        _validate_setting(item["key"], item["value"])
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> int:
        _check_bounds(session, {item["key"]: item["value"] for item in items})
        changed = 0
        for item in items:
            key = item["key"]
            existing = session.get(Setting, key)
            before = None
            if existing is not None:
                before = {
                    "key": existing.key,
                    "value": json.loads(existing.value_json),
                    "category": existing.category,
                    "description": existing.description,
                }
                existing.value_json = json.dumps(item["value"])
                if "category" in item:
                    existing.category = item["category"]
                if "description" in item:
                    existing.description = item["description"]
                existing.updated_at = now
            else:
                existing = Setting(
                    key=key,
                    value_json=json.dumps(item["value"]),
                    category=item.get("category", "general"),
                    description=item.get("description"),
                    updated_at=now,
                )
                session.add(existing)
            after = {
                "key": key,
                "value": item["value"],
                "category": existing.category,
                "description": existing.description,
            }
            if before == after:
                continue
            session.flush()
            audit_service.record(
                session,
                actor_id=actor_id,
                action_type=AuditAction.CONFIG_UPDATE,
                target_table="settings",
                target_id=key,
                description=f"Setting {key} {'updated' if before else 'created'}",
                old_value=before,
                new_value=after,
                source_address=source_address,
                now=now,
            )
            changed += 1
        return changed

    changed = run_in_transaction(engine, _txn)
    logger.info("Settings updated by %s: %d changed", actor_id, changed)
    if cache is not None and changed:
        cache.invalidate()
    return changed
