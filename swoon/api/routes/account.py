"""
swoon.api.routes.account — Self-service endpoints for the calling member
=========================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from swoon.api.deps import (
    client_address,
    get_active_member,
    get_cache,
    get_engine,
    get_member,
)
from swoon.services import (
    entitlement_service,
    ledger_service,
    moderation_service,
    referral_service,
    report_service,
)

router = APIRouter(tags=["account"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class CoinPurchase(BaseModel):
    coins: int = Field(gt=0)


class MembershipPurchase(BaseModel):
    tier: str
    duration_days: int


class ReferralCodeBody(BaseModel):
    code: str


class ReportCreate(BaseModel):
    reported_id: int
    reason: str


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------
@router.get("/me/balance")
def my_balance(
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    return ledger_service.get_balances(engine, caller["id"]).to_dict()


@router.get("/me/transactions")
def my_transactions(
    currency: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    rows = ledger_service.get_history(
        engine, caller["id"], currency=currency, limit=limit, offset=offset,
    )
    return {"transactions": rows}


@router.post("/me/purchase/coins")
def buy_coins(
    body: CoinPurchase,
    request: Request,
    caller: dict = Depends(get_active_member),
    engine=Depends(get_engine),
):
    result = ledger_service.purchase_coins(
        engine, caller["id"], body.coins, source_address=client_address(request),
    )
    return result.to_dict()


@router.post("/me/purchase/membership")
def buy_membership(
    body: MembershipPurchase,
    request: Request,
    caller: dict = Depends(get_active_member),
    engine=Depends(get_engine),
):
    result = ledger_service.purchase_membership(
        engine, caller["id"], body.tier.lower(), body.duration_days,
        source_address=client_address(request),
    )
    return result.to_dict()


# ---------------------------------------------------------------------------
# Membership & moderation state
# ---------------------------------------------------------------------------
@router.get("/me/membership")
def my_membership(
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
    cache=Depends(get_cache),
):
    status = entitlement_service.get_membership(engine, caller["id"])
    features = entitlement_service.feature_flags(engine, caller["id"], cache)
    return {**status.to_dict(), "features": features.to_dict()}


@router.get("/me/ban-status")
def my_ban_status(
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    return moderation_service.ban_status(engine, caller["id"]).to_dict()


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------
@router.get("/me/referral-code")
def my_referral_code(
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    return {"code": referral_service.get_referral_code(engine, caller["id"])}


@router.post("/me/referral/validate")
def validate_referral_code(
    body: ReferralCodeBody,
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    referrer_id = referral_service.validate_code(engine, body.code, caller["id"])
    return {"valid": True, "referrer_id": referrer_id}


@router.post("/me/referral/apply")
def apply_referral_code(
    body: ReferralCodeBody,
    caller: dict = Depends(get_active_member),
    engine=Depends(get_engine),
):
    grant = referral_service.apply_code(engine, caller["id"], body.code)
    return {
        "referrer_id": grant.referrer_id,
        "code": grant.code,
        "applied": grant.applied,
    }


@router.post("/me/profile-completed")
def profile_completed(
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
    cache=Depends(get_cache),
):
    return referral_service.complete_profile(engine, cache, caller["id"]).to_dict()


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
@router.post("/reports", status_code=201)
def create_report(
    body: ReportCreate,
    caller: dict = Depends(get_active_member),
    engine=Depends(get_engine),
):
    report = report_service.file_report(engine, caller["id"], body.reported_id, body.reason)
    return report_service.report_to_dict(report)
