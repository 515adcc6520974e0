"""
swoon.api.routes.gifts — Gift catalogue, sending and receiving
================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from swoon.api.deps import client_address, get_active_member, get_cache, get_engine, get_member
from swoon.services import gift_service

router = APIRouter(prefix="/gifts", tags=["gifts"])


class GiftCreate(BaseModel):
    receiver_id: int
    tier: str
    message: str | None = None


class GiftDecision(BaseModel):
    accept: bool


@router.get("/tiers")
def list_tiers(cache=Depends(get_cache)):
    """Enabled gift tiers, cheapest first."""
    return {"tiers": [t.to_dict() for t in cache.get_gift_tiers(enabled_only=True)]}


@router.post("", status_code=201)
def send_gift(
    body: GiftCreate,
    request: Request,
    caller: dict = Depends(get_active_member),
    engine=Depends(get_engine),
    cache=Depends(get_cache),
):
    gift = gift_service.send(
        engine, cache, caller["id"], body.receiver_id, body.tier, body.message,
        source_address=client_address(request),
    )
    return gift_service.gift_to_dict(gift, caller["id"])


@router.get("/received")
def received_gifts(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    return {"gifts": gift_service.list_received(engine, caller["id"], limit=limit, offset=offset)}


@router.get("/sent")
def sent_gifts(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    return {"gifts": gift_service.list_sent(engine, caller["id"], limit=limit, offset=offset)}


@router.get("/unviewed-count")
def unviewed_count(
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    return {"count": gift_service.unviewed_count(engine, caller["id"])}


@router.get("/{gift_id}")
def get_gift(
    gift_id: int,
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    return gift_service.get_gift(engine, gift_id, caller["id"])


@router.post("/{gift_id}/view")
def view_gift(
    gift_id: int,
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    gift = gift_service.mark_viewed(engine, gift_id, caller["id"])
    return gift_service.gift_to_dict(gift, caller["id"])


@router.post("/{gift_id}/decision")
def decide_gift(
    gift_id: int,
    body: GiftDecision,
    caller: dict = Depends(get_member),
    engine=Depends(get_engine),
):
    return gift_service.decide(engine, gift_id, caller["id"], body.accept).to_dict()
