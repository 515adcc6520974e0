"""
swoon.api.routes.admin — Moderation & admin endpoints (JWT‑protected)
=======================================================================
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from swoon.api.deps import (
    client_address,
    get_cache,
    get_current_admin,
    get_engine,
    get_moderator,
)
from swoon.services import (
    account_service,
    audit_service,
    config_service,
    ledger_service,
    moderation_service,
    reconciliation_service,
    report_service,
)
from swoon.services.account_service import AccountPatch
from swoon.services.config_service import GiftTierPatch, PricePatch

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class BanCreate(BaseModel):
    account_id: int
    reason: str
    duration_days: int = 0


class ReportResolution(BaseModel):
    decision: str
    review_note: str | None = None
    ban_reported_user: bool = False
    reward_reporter: bool = False
    reward_amount: int | None = None


class GiftTierUpdate(BaseModel):
    name: str | None = None
    icon: str | None = None
    description: str | None = None
    price_coins: int | None = None
    enabled: bool | None = None
    shares_contact_info: bool | None = None
    can_send_message: bool | None = None
    sort_order: int | None = None


class PriceUpdate(BaseModel):
    price: Decimal | None = None
    is_active: bool | None = None
    description: str | None = None


class SettingUpdate(BaseModel):
    key: str
    value: Any
    category: str | None = None
    description: str | None = None


class AccountUpdate(BaseModel):
    display_name: str | None = None
    is_admin: bool | None = None
    membership_tier: str | None = None
    membership_days: int | None = None
    coin_adjustment: int | None = None
    cash_adjustment: Decimal | None = None
    note: str | None = None


class CashDeposit(BaseModel):
    amount: Decimal
    reference: str | None = None


def _price_dict(p) -> dict:
    return {
        "id": p.id,
        "item_type": p.item_type,
        "item_key": p.item_key,
        "price": str(p.price),
        "description": p.description,
        "is_active": p.is_active,
    }


# ---------------------------------------------------------------------------
# Bans (admin or moderator)
# ---------------------------------------------------------------------------
@router.post("/bans", status_code=201)
def ban_account(
    body: BanCreate,
    request: Request,
    moderator: dict = Depends(get_moderator),
    engine=Depends(get_engine),
):
    status = moderation_service.ban(
        engine, body.account_id, moderator["id"], body.reason, body.duration_days,
        source_address=client_address(request),
    )
    return {"account_id": body.account_id, **status.to_dict()}


@router.delete("/bans/{account_id}")
def unban_account(
    account_id: int,
    request: Request,
    reason: str | None = None,
    moderator: dict = Depends(get_moderator),
    engine=Depends(get_engine),
):
    result = moderation_service.unban(
        engine, account_id, moderator["id"], reason=reason,
        source_address=client_address(request),
    )
    return {"account_id": account_id, "was_banned": result.was_banned}


# ---------------------------------------------------------------------------
# Reports (admin or moderator)
# ---------------------------------------------------------------------------
@router.get("/reports")
def list_reports(
    status: str | None = "PENDING",
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    moderator: dict = Depends(get_moderator),
    engine=Depends(get_engine),
):
    total, reports = report_service.list_reports(
        engine, status=status, page=page, page_size=page_size,
    )
    return {"total": total, "page": page, "page_size": page_size, "reports": reports}


@router.get("/reports/{report_id}")
def get_report(
    report_id: int,
    moderator: dict = Depends(get_moderator),
    engine=Depends(get_engine),
):
    return report_service.get_report(engine, report_id)


@router.post("/reports/{report_id}/resolve")
def resolve_report(
    report_id: int,
    body: ReportResolution,
    request: Request,
    moderator: dict = Depends(get_moderator),
    engine=Depends(get_engine),
    cache=Depends(get_cache),
):
    report = report_service.resolve(
        engine, cache, report_id, moderator["id"], body.decision, body.review_note,
        ban_reported_user=body.ban_reported_user,
        reward_reporter=body.reward_reporter,
        reward_amount=body.reward_amount,
        source_address=client_address(request),
    )
    return report_service.report_to_dict(report)


# ---------------------------------------------------------------------------
# Audit log (admin or moderator)
# ---------------------------------------------------------------------------
@router.get("/audit")
def get_audit_log(
    actor_id: int | None = None,
    target_account_id: int | None = None,
    action_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    moderator: dict = Depends(get_moderator),
    engine=Depends(get_engine),
):
    total, entries = audit_service.query(
        engine,
        actor_id=actor_id,
        target_account_id=target_account_id,
        action_type=action_type,
        start=start,
        end=end,
        page=page,
        page_size=page_size,
    )
    return {"total": total, "page": page, "page_size": page_size, "entries": entries}


# ---------------------------------------------------------------------------
# Catalogue & prices (admin only)
# ---------------------------------------------------------------------------
@router.patch("/gift-tiers/{tier}")
def update_gift_tier(
    tier: str,
    body: GiftTierUpdate,
    request: Request,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cache=Depends(get_cache),
):
    patch = GiftTierPatch.from_dict(body.model_dump(exclude_unset=True))
    config_service.update_gift_tier(
        engine, tier, patch,
        actor_id=admin["id"], cache=cache, source_address=client_address(request),
    )
    view = cache.get_gift_tier(tier.upper())
    return view.to_dict() if view else {"tier": tier.upper()}


@router.get("/prices")
def list_prices(
    item_type: str | None = None,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"prices": [_price_dict(p) for p in config_service.list_prices(engine, item_type)]}


@router.patch("/prices/{price_id}")
def update_price(
    price_id: int,
    body: PriceUpdate,
    request: Request,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cache=Depends(get_cache),
):
    patch = PricePatch.from_dict(body.model_dump(exclude_unset=True))
    price = config_service.update_price(
        engine, price_id, patch,
        actor_id=admin["id"], cache=cache, source_address=client_address(request),
    )
    return _price_dict(price)


# ---------------------------------------------------------------------------
# Settings (admin only)
# ---------------------------------------------------------------------------
@router.get("/settings")
def get_settings(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"settings": config_service.get_all_settings(engine)}


@router.put("/settings")
def update_settings(
    body: list[SettingUpdate],
    request: Request,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cache=Depends(get_cache),
):
    changed = config_service.bulk_upsert_settings(
        engine,
        [item.model_dump(exclude_unset=True) for item in body],
        actor_id=admin["id"],
        cache=cache,
        source_address=client_address(request),
    )
    return {"updated": changed}


# ---------------------------------------------------------------------------
# Accounts & money (admin only)
# ---------------------------------------------------------------------------
@router.patch("/accounts/{account_id}")
def edit_account(
    account_id: int,
    body: AccountUpdate,
    request: Request,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    patch = AccountPatch.from_dict(body.model_dump(exclude_unset=True))
    account = account_service.edit_account(
        engine, account_id, patch,
        actor_id=admin["id"], source_address=client_address(request),
    )
    return account_service.account_to_dict(account)


@router.post("/accounts/{account_id}/deposits")
def deposit_cash(
    account_id: int,
    body: CashDeposit,
    request: Request,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    balance = ledger_service.deposit_cash(
        engine, account_id, body.amount,
        actor_id=admin["id"], reference=body.reference,
        source_address=client_address(request),
    )
    return {"account_id": account_id, "cash": str(balance)}


@router.get("/reconciliation")
def reconcile(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return reconciliation_service.reconcile_balances(engine)
