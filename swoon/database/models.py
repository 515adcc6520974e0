"""
swoon.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- accounts             — Per-user wallet, membership, ban state, referral code
- ledger_transactions  — Append-only journal of every balance movement
- gift_tier_configs    — Admin-editable catalogue of the five gift tiers
- gifts                — Sent gifts with price and reveal flags captured at send
- prices               — Cash price table (coin rate, membership durations)
- referral_grants      — One pending-or-applied referral per referee
- reports              — User reports and their review outcome
- audit_log            — Append-only audit trail of privileged mutations
- settings             — Admin-configurable key-value store

Money is stored in minor units: coins are whole numbers, cash is stored in
cents (``cash_cents``) and exposed as :class:`~decimal.Decimal` by the
services.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from swoon.engine.clock import utcnow


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Swoon ORM models."""


# ---------------------------------------------------------------------------
# Enums (stored as plain strings)
# ---------------------------------------------------------------------------
class Currency(enum.StrEnum):
    COIN = "COIN"
    CASH = "CASH"


class MembershipTier(enum.StrEnum):
    STANDARD = "standard"
    GOLD = "gold"
    PLATINUM = "platinum"


class GiftTier(enum.StrEnum):
    """Gift tiers, cheapest first."""
    SILVER = "SILVER"
    GOLD = "GOLD"
    EMERALD = "EMERALD"
    DIAMOND = "DIAMOND"
    RUBY = "RUBY"


class ReportStatus(enum.StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class TransactionCategory(enum.StrEnum):
    GIFT_PURCHASE = "gift_purchase"
    GIFT_RECEIVED = "gift_received"
    MEMBERSHIP_PURCHASE = "membership_purchase"
    COIN_PURCHASE = "coin_purchase"
    CASH_DEPOSIT = "cash_deposit"
    REFERRAL_REWARD = "referral_reward"
    REPORT_REWARD = "report_reward"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class AuditAction(enum.StrEnum):
    """Audit action types.  The column is a free string so new actions
    can be added without a migration."""
    CASH_DEPOSIT = "CASH_DEPOSIT"
    PURCHASE = "PURCHASE"
    BALANCE_ADJUST = "BALANCE_ADJUST"
    GIFT_SEND = "GIFT_SEND"
    MEMBERSHIP_GRANT = "MEMBERSHIP_GRANT"
    MEMBERSHIP_EXPIRE = "MEMBERSHIP_EXPIRE"
    REFERRAL_REWARD = "REFERRAL_REWARD"
    BAN_USER = "BAN_USER"
    UNBAN_USER = "UNBAN_USER"
    BAN_EXPIRE = "BAN_EXPIRE"
    REPORT_RESOLVE = "REPORT_RESOLVE"
    CONFIG_UPDATE = "CONFIG_UPDATE"
    ACCOUNT_EDIT = "ACCOUNT_EDIT"


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------
class Account(Base):
    """A user's economic and moderation state.

    The primary key is the identity-provider user id (assigned upstream,
    never auto-incremented).  Accounts are never deleted.
    """
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    referral_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    coins: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    cash_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    membership_tier: Mapped[str] = mapped_column(
        String(20), default=MembershipTier.STANDARD.value, nullable=False
    )
    membership_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ban_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )  # NULL while banned = permanent
    ban_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    banned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    banned_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    profile_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("coins >= 0", name="ck_accounts_coins_non_negative"),
        CheckConstraint("cash_cents >= 0", name="ck_accounts_cash_non_negative"),
        Index("ix_accounts_membership_expiry", "membership_tier", "membership_expires_at"),
        Index("ix_accounts_banned", "is_banned"),
    )

    @property
    def cash(self) -> Decimal:
        return Decimal(self.cash_cents) / 100

    def __repr__(self) -> str:
        return f"<Account id={self.id} coins={self.coins} cash_cents={self.cash_cents}>"


# ---------------------------------------------------------------------------
# LedgerTransaction — append-only
# ---------------------------------------------------------------------------
class LedgerTransaction(Base):
    """One balance movement.

    ``amount`` is signed and in minor units of ``currency`` (coins, or cents
    for cash).  The sum of ``amount`` per (account, currency) always equals
    the account's current balance.
    """
    __tablename__ = "ledger_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id"), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_ledger_account_time", "account_id", "created_at"),
        Index("ix_ledger_account_currency", "account_id", "currency"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerTransaction id={self.id} account={self.account_id} "
            f"{self.currency} {self.amount:+d}>"
        )


# ---------------------------------------------------------------------------
# GiftTierConfig — admin-editable gift catalogue
# ---------------------------------------------------------------------------
class GiftTierConfig(Base):
    __tablename__ = "gift_tier_configs"

    tier: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(60), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(16), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_coins: Mapped[int] = mapped_column(Integer, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    shares_contact_info: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_send_message: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("price_coins > 0", name="ck_gift_tier_price_positive"),
    )

    def __repr__(self) -> str:
        return f"<GiftTierConfig tier={self.tier} price={self.price_coins} enabled={self.enabled}>"


# ---------------------------------------------------------------------------
# Gift
# ---------------------------------------------------------------------------
class Gift(Base):
    """A sent gift.

    ``price_coins``, ``shares_contact_info`` and ``can_send_message`` are
    copied from the tier config at send time; later catalogue edits never
    change a historical gift.  ``is_accepted`` is tri-state: NULL while
    pending, then TRUE or FALSE exactly once.
    """
    __tablename__ = "gifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False)
    receiver_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    price_coins: Mapped[int] = mapped_column(Integer, nullable=False)
    shares_contact_info: Mapped[bool] = mapped_column(Boolean, nullable=False)
    can_send_message: Mapped[bool] = mapped_column(Boolean, nullable=False)
    special_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_viewed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_accepted: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_gifts_receiver_time", "receiver_id", "created_at"),
        Index("ix_gifts_sender_time", "sender_id", "created_at"),
        Index("ix_gifts_receiver_unviewed", "receiver_id", "is_viewed"),
    )

    def __repr__(self) -> str:
        return (
            f"<Gift id={self.id} {self.sender_id}->{self.receiver_id} "
            f"tier={self.tier} accepted={self.is_accepted}>"
        )


# ---------------------------------------------------------------------------
# Price — cash price table
# ---------------------------------------------------------------------------
class Price(Base):
    """Cash price of a purchasable item.

    ``item_type`` is ``COIN_RATE`` (``item_key="default"``, price per coin)
    or ``GOLD_MEMBERSHIP`` / ``PLATINUM_MEMBERSHIP`` (``item_key`` is the
    duration in days).
    """
    __tablename__ = "prices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_type: Mapped[str] = mapped_column(String(40), nullable=False)
    item_key: Mapped[str] = mapped_column(String(40), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("item_type", "item_key", name="uq_prices_item"),
        CheckConstraint("price > 0", name="ck_prices_positive"),
    )

    def __repr__(self) -> str:
        return f"<Price {self.item_type}/{self.item_key}={self.price}>"


# ---------------------------------------------------------------------------
# ReferralGrant
# ---------------------------------------------------------------------------
class ReferralGrant(Base):
    """The referral code a referee applied.

    ``referee_id`` is unique, so each referee has at most one grant and
    therefore at most one applied reward.
    """
    __tablename__ = "referral_grants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id"), unique=True, nullable=False
    )
    referrer_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id"), nullable=False
    )
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    applied: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_referral_grants_referrer", "referrer_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ReferralGrant referee={self.referee_id} referrer={self.referrer_id} "
            f"applied={self.applied}>"
        )


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------
class Report(Base):
    __tablename__ = "reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reporter_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False)
    reported_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ReportStatus.PENDING.value, nullable=False
    )
    reviewed_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    reward_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_reports_status_time", "status", "created_at"),
        Index("ix_reports_pair", "reporter_id", "reported_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Report id={self.id} {self.reporter_id}->{self.reported_id} {self.status}>"


# ---------------------------------------------------------------------------
# AuditLogEntry — append-only audit trail
# ---------------------------------------------------------------------------
class AuditLogEntry(Base):
    """One audited mutation.

    ``actor_id`` is the acting admin, or the acting account for self-service
    money movements, or NULL for system actions such as lazy expiry.
    """
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_account_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    target_table: Mapped[str | None] = mapped_column(String(50), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    old_value: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    new_value: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    source_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_audit_log_actor_time", "actor_id", "created_at"),
        Index("ix_audit_log_target_time", "target_account_id", "created_at"),
        Index("ix_audit_log_action_time", "action_type", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLogEntry id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# Setting — admin-configurable key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Business tuning knobs (message length bounds, referral rewards, report
    reward bounds, tier feature overrides) live here so admins can adjust
    them without redeploying.  Values are stored as JSON strings; typed
    accessors live in :class:`~swoon.engine.cache.ConfigCache`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"
