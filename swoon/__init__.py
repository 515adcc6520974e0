"""
Swoon — Virtual Economy & Interaction Engine for a Dating App
===============================================================
Owns coin and cash balances, the gift purchase-and-reveal workflow,
time-boxed memberships, referral rewards, bans, and report-resolution
payouts.  Every money, entitlement, and moderation change is written to
the audit log in the same database transaction as the change itself.

Package layout::

    swoon/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Tier ranks, referral code alphabet
    ├── errors.py          # Closed error taxonomy (EngineError subclasses)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, transaction runner, async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default settings, gift tiers, price table
    ├── engine/
    │   ├── clock.py       # UTC helpers
    │   ├── membership.py  # Membership stacking + tier features (pure)
    │   ├── gifts.py       # Gift state machine + reveal rules (pure)
    │   ├── moderation.py  # Ban windows: Permanent | Until (pure)
    │   └── cache.py       # In-memory config snapshot
    ├── services/
    │   ├── ledger_service.py        # Balances, purchases, transactions
    │   ├── entitlement_service.py   # Memberships
    │   ├── gift_service.py          # Send / view / decide
    │   ├── referral_service.py      # Codes + completion reward
    │   ├── moderation_service.py    # Ban / unban
    │   ├── report_service.py        # File + resolve reports
    │   ├── audit_service.py         # Append + query audit log
    │   ├── config_service.py        # Typed admin patches
    │   ├── account_service.py       # Accounts + admin edits
    │   └── reconciliation_service.py  # Balance drift report
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT caller identity + DI
        └── routes/        # Account, gift, and admin REST endpoints
"""

__version__ = "0.1.0"
