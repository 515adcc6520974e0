"""Initial economy schema

Revision ID: 5c2e9a41b7d0
Revises:
Create Date: 2026-10-19 09:12:37.481220

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e9a41b7d0'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create accounts, ledger, gifts, catalogue, moderation and audit tables."""

    # --- accounts ---
    op.create_table(
        "accounts",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("referral_code", sa.String(16), nullable=False, unique=True),
        sa.Column("is_admin", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("coins", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("cash_cents", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("membership_tier", sa.String(20), nullable=False, server_default="standard"),
        sa.Column("membership_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_banned", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("ban_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ban_reason", sa.Text, nullable=True),
        sa.Column("banned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("banned_by", sa.BigInteger, nullable=True),
        sa.Column("profile_completed_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("coins >= 0", name="ck_accounts_coins_non_negative"),
        sa.CheckConstraint("cash_cents >= 0", name="ck_accounts_cash_non_negative"),
    )
    op.create_index(
        "ix_accounts_membership_expiry", "accounts", ["membership_tier", "membership_expires_at"],
    )
    op.create_index("ix_accounts_banned", "accounts", ["is_banned"])

    # --- ledger_transactions ---
    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.BigInteger, sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("balance_after", sa.BigInteger, nullable=False),
        sa.Column("category", sa.String(40), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_ledger_account_time", "ledger_transactions", ["account_id", "created_at"])
    op.create_index("ix_ledger_account_currency", "ledger_transactions", ["account_id", "currency"])

    # --- gift_tier_configs ---
    op.create_table(
        "gift_tier_configs",
        sa.Column("tier", sa.String(20), primary_key=True),
        sa.Column("name", sa.String(60), nullable=False),
        sa.Column("icon", sa.String(16), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("price_coins", sa.Integer, nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("shares_contact_info", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("can_send_message", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        _timestamp("updated_at"),
        sa.CheckConstraint("price_coins > 0", name="ck_gift_tier_price_positive"),
    )

    # --- gifts ---
    op.create_table(
        "gifts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("sender_id", sa.BigInteger, sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("receiver_id", sa.BigInteger, sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("price_coins", sa.Integer, nullable=False),
        sa.Column("shares_contact_info", sa.Boolean, nullable=False),
        sa.Column("can_send_message", sa.Boolean, nullable=False),
        sa.Column("special_message", sa.Text, nullable=True),
        sa.Column("is_viewed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_accepted", sa.Boolean, nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_gifts_receiver_time", "gifts", ["receiver_id", "created_at"])
    op.create_index("ix_gifts_sender_time", "gifts", ["sender_id", "created_at"])
    op.create_index("ix_gifts_receiver_unviewed", "gifts", ["receiver_id", "is_viewed"])

    # --- prices ---
    op.create_table(
        "prices",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("item_type", sa.String(40), nullable=False),
        sa.Column("item_key", sa.String(40), nullable=False),
        sa.Column("price", sa.Numeric(12, 4), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _timestamp("updated_at"),
        sa.UniqueConstraint("item_type", "item_key", name="uq_prices_item"),
        sa.CheckConstraint("price > 0", name="ck_prices_positive"),
    )

    # --- referral_grants ---
    op.create_table(
        "referral_grants",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "referee_id", sa.BigInteger, sa.ForeignKey("accounts.id"),
            nullable=False, unique=True,
        ),
        sa.Column("referrer_id", sa.BigInteger, sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("applied", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_referral_grants_referrer", "referral_grants", ["referrer_id"])

    # --- reports ---
    op.create_table(
        "reports",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("reporter_id", sa.BigInteger, sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("reported_id", sa.BigInteger, sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("reviewed_by", sa.BigInteger, nullable=True),
        sa.Column("review_note", sa.Text, nullable=True),
        sa.Column("reward_amount", sa.Integer, nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_reports_status_time", "reports", ["status", "created_at"])
    op.create_index("ix_reports_pair", "reports", ["reporter_id", "reported_id", "status"])

    # --- audit_log ---
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.BigInteger, nullable=True),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_account_id", sa.BigInteger, nullable=True),
        sa.Column("target_table", sa.String(50), nullable=True),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("old_value", postgresql.JSONB, nullable=True),
        sa.Column("new_value", postgresql.JSONB, nullable=True),
        sa.Column("source_address", sa.String(45), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_audit_log_actor_time", "audit_log", ["actor_id", "created_at"])
    op.create_index("ix_audit_log_target_time", "audit_log", ["target_account_id", "created_at"])
    op.create_index("ix_audit_log_action_time", "audit_log", ["action_type", "created_at"])

    # --- settings ---
    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text, nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text, nullable=True),
        _timestamp("updated_at"),
    )
    op.create_index("ix_settings_category", "settings", ["category"])


def downgrade() -> None:
    """Drop every economy table."""
    op.drop_index("ix_settings_category", table_name="settings")
    op.drop_table("settings")

    op.drop_index("ix_audit_log_action_time", table_name="audit_log")
    op.drop_index("ix_audit_log_target_time", table_name="audit_log")
    op.drop_index("ix_audit_log_actor_time", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_reports_pair", table_name="reports")
    op.drop_index("ix_reports_status_time", table_name="reports")
    op.drop_table("reports")

    op.drop_index("ix_referral_grants_referrer", table_name="referral_grants")
    op.drop_table("referral_grants")

    op.drop_table("prices")

    op.drop_index("ix_gifts_receiver_unviewed", table_name="gifts")
    op.drop_index("ix_gifts_sender_time", table_name="gifts")
    op.drop_index("ix_gifts_receiver_time", table_name="gifts")
    op.drop_table("gifts")

    op.drop_table("gift_tier_configs")

    op.drop_index("ix_ledger_account_currency", table_name="ledger_transactions")
    op.drop_index("ix_ledger_account_time", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")

    op.drop_index("ix_accounts_banned", table_name="accounts")
    op.drop_index("ix_accounts_membership_expiry", table_name="accounts")
    op.drop_table("accounts")
