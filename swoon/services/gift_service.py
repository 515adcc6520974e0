"""
swoon.services.gift_service — Gift Workflow
=============================================

Send → view → accept / reject.

:func:`send` is one transaction: the sender's coin debit, the optional
credit to the receiver, the gift row (with price and reveal flags copied
from the tier config), and the audit entry commit together or not at all.

:func:`decide` is a compare-and-swap on ``is_accepted IS NULL``.  Of two
concurrent decisions exactly one matches the row; the other re-reads the
winner's outcome and returns it unchanged.  Deciding an already-decided
gift is therefore an idempotent no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Engine, func, select, update
from sqlalchemy.orm import Session

from swoon.database.engine import run_in_transaction
from swoon.database.models import (
    Account,
    AuditAction,
    Currency,
    Gift,
    GiftTier,
    GiftTierConfig,
    TransactionCategory,
)
from swoon.engine import gifts as gift_rules
from swoon.engine.clock import as_utc, isoformat, utcnow
from swoon.errors import GiftNotFound, GiftTierDisabled, InvalidRecipient, NotReceiver
from swoon.services import audit_service, ledger_service

if TYPE_CHECKING:
    from swoon.engine.cache import ConfigCache

logger = logging.getLogger(__name__)

_GIFT_SNAPSHOT_FIELDS = (
    "id", "sender_id", "receiver_id", "tier", "price_coins",
    "shares_contact_info", "can_send_message",
)


@dataclass(frozen=True, slots=True)
class Decision:
    gift_id: int
    state: gift_rules.GiftState
    changed: bool
    sender_id: int
    contact_revealed: bool
    message_revealed: bool
    message: str | None

    def to_dict(self) -> dict:
        return {
            "gift_id": self.gift_id,
            "state": self.state.value,
            "changed": self.changed,
            "sender_id": self.sender_id,
            "contact_revealed": self.contact_revealed,
            "message_revealed": self.message_revealed,
            "message": self.message,
        }


def gift_to_dict(gift: Gift, viewer_id: int | None = None) -> dict:
    """Serialize a gift for *viewer_id*.

    The receiver only sees the special message once it is revealed; the
    sender always sees what they wrote.
    """
    reveal = gift_rules.reveal_for(gift)
    show_message = viewer_id == gift.sender_id or reveal.message_revealed
    return {
        "id": gift.id,
        "sender_id": gift.sender_id,
        "receiver_id": gift.receiver_id,
        "tier": gift.tier,
        "price_coins": gift.price_coins,
        "state": gift_rules.gift_state(gift).value,
        "is_viewed": gift.is_viewed,
        "is_accepted": gift.is_accepted,
        "shares_contact_info": gift.shares_contact_info,
        "can_send_message": gift.can_send_message,
        "contact_revealed": reveal.contact_revealed,
        "message_revealed": reveal.message_revealed,
        "special_message": gift.special_message if show_message else None,
        "created_at": isoformat(gift.created_at),
        "decided_at": isoformat(gift.decided_at),
    }


def _parse_tier(tier: str) -> GiftTier:
    try:
        return GiftTier(str(tier).upper())
    except ValueError:
        raise GiftTierDisabled(f"Unknown gift tier: {tier!r}") from None


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------
def send(
    engine: Engine,
    cache: ConfigCache,
    sender_id: int,
    receiver_id: int,
    tier: str,
    message: str | None = None,
    *,
    source_address: str | None = None,
    now: datetime | None = None,
) -> Gift:
    """Buy a gift of *tier* for *receiver_id*.

    Raises
    ------
    GiftTierDisabled
        The gift system or this tier is switched off, or the tier is unknown.
    InvalidRecipient
        Self-gift or unknown receiver.
    InvalidGiftMessage
        Message on a tier without messages, or outside the length bounds.
    InsufficientBalance
        The sender cannot cover the tier price.
    """
    if not cache.get_bool("gifts.enabled", True):
        raise GiftTierDisabled("The gift system is currently disabled")
    gift_tier = _parse_tier(tier)
    if sender_id == receiver_id:
        raise InvalidRecipient("You cannot send a gift to yourself")

    min_len = cache.get_int("gifts.min_message_length", 10)
    max_len = cache.get_int("gifts.max_message_length", 500)
    transfer = cache.get_bool("gifts.transfer_to_receiver", False)
    expensive = cache.get_int("gifts.expensive_threshold", 1000)
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> Gift:
        config = session.get(GiftTierConfig, gift_tier.value)
        if config is None or not config.enabled:
            raise GiftTierDisabled(tier=gift_tier.value)
        if session.get(Account, receiver_id) is None:
            raise InvalidRecipient("Receiver not found", receiver_id=receiver_id)

        text = gift_rules.clean_message(
            message,
            can_send_message=config.can_send_message,
            min_length=min_len,
            max_length=max_len,
        )

        ledger_service.apply_debit(
            session, sender_id, Currency.COIN, config.price_coins,
            category=TransactionCategory.GIFT_PURCHASE,
            description=f"gift:{gift_tier.value}",
            now=now,
        )
        if transfer:
            ledger_service.apply_credit(
                session, receiver_id, Currency.COIN, config.price_coins,
                category=TransactionCategory.GIFT_RECEIVED,
                description=f"gift:{gift_tier.value}",
                now=now,
            )

        gift = Gift(
            sender_id=sender_id,
            receiver_id=receiver_id,
            tier=gift_tier.value,
            price_coins=config.price_coins,
            shares_contact_info=config.shares_contact_info,
            can_send_message=config.can_send_message,
            special_message=text,
            is_viewed=False,
            is_accepted=None,
            created_at=now,
        )
        session.add(gift)
        session.flush()

        audit_service.record(
            session,
            actor_id=sender_id,
            action_type=AuditAction.GIFT_SEND,
            target_account_id=receiver_id,
            target_table="gifts",
            target_id=gift.id,
            description=f"{gift_tier.value} gift for {config.price_coins} coins",
            new_value=audit_service.snapshot(gift, _GIFT_SNAPSHOT_FIELDS),
            source_address=source_address,
            now=now,
        )
        return gift

    gift = run_in_transaction(engine, _txn)
    if gift.price_coins >= expensive:
        logger.info(
            "Expensive gift sent: %s -> %s, %s for %d coins",
            sender_id, receiver_id, gift.tier, gift.price_coins,
        )
    else:
        logger.debug("Gift %s sent: %s -> %s (%s)", gift.id, sender_id, receiver_id, gift.tier)
    return gift


# ---------------------------------------------------------------------------
# View / decide
# ---------------------------------------------------------------------------
def _load_for_receiver(session: Session, gift_id: int, receiver_id: int) -> Gift:
    gift = session.get(Gift, gift_id, populate_existing=True)
    if gift is None:
        raise GiftNotFound(gift_id=gift_id)
    if gift.receiver_id != receiver_id:
        raise NotReceiver(gift_id=gift_id)
    return gift


def mark_viewed(
    engine: Engine, gift_id: int, receiver_id: int, *, now: datetime | None = None,
) -> Gift:
    """Mark a gift viewed.  Idempotent; never changes a decision."""
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> Gift:
        gift = _load_for_receiver(session, gift_id, receiver_id)
        if not gift.is_viewed:
            session.execute(
                update(Gift)
                .where(Gift.id == gift_id, Gift.is_viewed.is_(False))
                .values(is_viewed=True, viewed_at=now)
                .execution_options(synchronize_session=False)
            )
            gift = _load_for_receiver(session, gift_id, receiver_id)
        return gift

    return run_in_transaction(engine, _txn)


def decide(
    engine: Engine,
    gift_id: int,
    receiver_id: int,
    accept: bool,
    *,
    now: datetime | None = None,
) -> Decision:
    """Accept or reject a pending gift.

    A gift already decided returns its existing outcome with
    ``changed=False`` and no side effects.
    """
    now = as_utc(now) if now else utcnow()

    def _txn(session: Session) -> Decision:
        result = session.execute(
            update(Gift)
            .where(
                Gift.id == gift_id,
                Gift.receiver_id == receiver_id,
                Gift.is_accepted.is_(None),
            )
            .values(
                is_accepted=bool(accept),
                decided_at=now,
                is_viewed=True,
                viewed_at=func.coalesce(Gift.viewed_at, now),
            )
            .execution_options(synchronize_session=False)
        )
        gift = _load_for_receiver(session, gift_id, receiver_id)
        reveal = gift_rules.reveal_for(gift)
        return Decision(
            gift_id=gift.id,
            state=gift_rules.gift_state(gift),
            changed=result.rowcount == 1,
            sender_id=gift.sender_id,
            contact_revealed=reveal.contact_revealed,
            message_revealed=reveal.message_revealed,
            message=gift.special_message if reveal.message_revealed else None,
        )

    decision = run_in_transaction(engine, _txn)
    if decision.changed:
        logger.info("Gift %s %s by %s", gift_id, decision.state.value.lower(), receiver_id)
    return decision


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_gift(engine: Engine, gift_id: int, viewer_id: int) -> dict:
    """A gift visible to its sender or receiver."""
    with Session(engine) as session:
        gift = session.get(Gift, gift_id)
        if gift is None or viewer_id not in (gift.sender_id, gift.receiver_id):
            raise GiftNotFound(gift_id=gift_id)
        return gift_to_dict(gift, viewer_id)


def list_received(
    engine: Engine, receiver_id: int, *, limit: int = 50, offset: int = 0,
) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(Gift)
            .where(Gift.receiver_id == receiver_id)
            .order_by(Gift.created_at.desc(), Gift.id.desc())
            .offset(max(0, offset))
            .limit(max(1, min(limit, 200)))
        ).all()
        return [gift_to_dict(g, receiver_id) for g in rows]


def list_sent(
    engine: Engine, sender_id: int, *, limit: int = 50, offset: int = 0,
) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(Gift)
            .where(Gift.sender_id == sender_id)
            .order_by(Gift.created_at.desc(), Gift.id.desc())
            .offset(max(0, offset))
            .limit(max(1, min(limit, 200)))
        ).all()
        return [gift_to_dict(g, sender_id) for g in rows]


def unviewed_count(engine: Engine, receiver_id: int) -> int:
    with Session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(Gift).where(
                Gift.receiver_id == receiver_id, Gift.is_viewed.is_(False),
            )
        ) or 0
