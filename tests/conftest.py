"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of swoon.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from swoon.database.engine import init_db, set_transaction_retries  # noqa: E402
from swoon.database.models import Account  # noqa: E402
from swoon.engine.cache import ConfigCache  # noqa: E402
from swoon.services import account_service, ledger_service  # noqa: E402

_jsonb_sqlite_registered = False

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

ADMIN_ID = 900
MOD_ID = 901


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Swoon tables and defaults.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by the FastAPI TestClient thread pool).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for tests that write from many threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'swoon.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(engine)
    set_transaction_retries(50)
    yield engine
    set_transaction_retries(2)
    engine.dispose()


@pytest.fixture
def cache(db_engine: Engine) -> ConfigCache:
    """Config snapshot that only reloads on explicit invalidation."""
    cache = ConfigCache(db_engine, ttl_seconds=None)
    cache.load_all()
    return cache


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Account helpers
# ---------------------------------------------------------------------------
def make_account(
    engine: Engine,
    account_id: int,
    *,
    coins: int = 0,
    cash: str | None = None,
    is_admin: bool = False,
) -> Account:
    """Create an account and fund it through the ledger."""
    account_service.get_or_create_account(
        engine, account_id, f"user-{account_id}", is_admin=is_admin,
    )
    if coins:
        ledger_service.credit(engine, account_id, "COIN", coins, "test funding", now=NOW)
    if cash:
        ledger_service.deposit_cash(engine, account_id, cash, actor_id=None, now=NOW)
    return account_service.get_account(engine, account_id)


@pytest.fixture
def admin(db_engine: Engine) -> Account:
    return make_account(db_engine, ADMIN_ID, is_admin=True)


# ---------------------------------------------------------------------------
# API helpers
# ---------------------------------------------------------------------------
def make_token(
    sub: int | str = "12345",
    *,
    is_admin: bool = False,
    is_moderator: bool = False,
    username: str = "FixtureUser",
) -> str:
    """Create a JWT.  Usable from fixtures and directly in tests."""
    import jwt

    from swoon.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {
            "sub": str(sub),
            "username": username,
            "is_admin": is_admin,
            "is_moderator": is_moderator,
        },
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def admin_token() -> str:
    return make_token(ADMIN_ID, is_admin=True, username="FixtureAdmin")


@pytest.fixture
def client(db_engine: Engine, cache: ConfigCache):
    """FastAPI TestClient wired to the in-memory database."""
    from fastapi.testclient import TestClient

    from swoon.api.deps import get_cache, get_engine
    from swoon.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_cache] = lambda: cache
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
