"""
swoon.database.engine — Database Connection, Transactions & Async Helper
=========================================================================

SQLAlchemy + psycopg2 is **synchronous**.  FastAPI route handlers declared
with ``def`` already run on a thread pool, and async callers use
:func:`run_db` to ship a synchronous service call to a worker thread, so
the event loop is never blocked.

Every public service operation runs inside :func:`run_in_transaction`:

    1. Open one session.
    2. Run the unit of work.
    3. Commit on success, roll back on *any* exception.
    4. Retry a bounded number of times when the database reports a
       serialization failure, deadlock, or lock contention.
    5. Translate storage failures into the engine's error taxonomy
       (:class:`~swoon.errors.ConcurrencyConflict`,
       :class:`~swoon.errors.StorageUnavailable`).

Usage::

    from swoon.database.engine import create_db_engine, init_db, run_in_transaction

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS + seed

    balance = run_in_transaction(engine, _debit_txn, account_id, 60)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Concatenate, ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from swoon.database.models import Base
from swoon.errors import ConcurrencyConflict, StorageUnavailable

if TYPE_CHECKING:
    from swoon.config import SwoonConfig

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_TRANSACTION_RETRIES = 2

# PostgreSQL SQLSTATEs worth retrying: serialization_failure, deadlock_detected,
# lock_not_available
_RETRYABLE_PGCODES = frozenset({"40001", "40P01", "55P03"})

# unique_violation; other integrity failures are deterministic
_UNIQUE_VIOLATION_PGCODE = "23505"

_transaction_retries = DEFAULT_TRANSACTION_RETRIES


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(cfg: SwoonConfig | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Pool sizing:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout`` — fail instead of waiting forever for a connection.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    On PostgreSQL every connection also gets a ``statement_timeout`` and a
    ``lock_timeout`` so no operation waits unbounded on a contended row.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if cfg is not None:
        set_transaction_retries(cfg.transaction_retries)
    pool_timeout = cfg.pool_timeout_seconds if cfg else 10
    connect_args: dict[str, Any] = {}
    if url.startswith("postgresql"):
        statement_ms = cfg.statement_timeout_ms if cfg else 5000
        lock_ms = cfg.lock_timeout_ms if cfg else 3000
        connect_args["options"] = (
            f"-c statement_timeout={statement_ms} -c lock_timeout={lock_ms}"
        )

    engine = create_engine(
        url,
        echo=False,        # Set True for SQL debugging
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=pool_timeout,
        pool_recycle=3600,
        connect_args=connect_args,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


def set_transaction_retries(retries: int) -> None:
    """Set how many times :func:`run_in_transaction` retries a conflict."""
    global _transaction_retries
    _transaction_retries = max(0, int(retries))


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`swoon.database.models` and seed
    default settings, gift tiers, and prices.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained as a safety net for dev/test
        environments where Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from swoon.database.seed import seed_defaults

    seed_defaults(engine)


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(Account(id=123, referral_code="ABCD1234"))
            # commit happens automatically on block exit
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _is_retryable(exc: DBAPIError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None)
    if isinstance(exc, IntegrityError):
        # A unique index lost a race; a fresh attempt sees the winner's row.
        return (
            pgcode == _UNIQUE_VIOLATION_PGCODE
            or "UNIQUE constraint failed" in str(exc.orig)
        )
    if pgcode in _RETRYABLE_PGCODES:
        return True
    return isinstance(exc, OperationalError) and "database is locked" in str(exc.orig)


def run_in_transaction(
    engine: Engine,
    func: Callable[Concatenate[Session, P], T],
    *args: P.args,
    **kwargs: P.kwargs,
) -> T:
    """Run ``func(session, *args, **kwargs)`` as one atomic unit of work.

    The session is created with ``expire_on_commit=False`` so ORM objects
    returned by *func* stay readable after commit.

    Raises
    ------
    ConcurrencyConflict
        A retryable conflict persisted through every attempt.
    StorageUnavailable
        The pool timed out or the connection was lost.
    """
    retries = _transaction_retries
    attempt = 0
    while True:
        session = Session(engine, expire_on_commit=False)
        try:
            result = func(session, *args, **kwargs)
            session.commit()
            return result
        except PoolTimeoutError as exc:
            session.rollback()
            logger.error("Connection pool exhausted: %s", exc)
            raise StorageUnavailable("Timed out waiting for a database connection") from exc
        except DBAPIError as exc:
            session.rollback()
            if exc.connection_invalidated:
                logger.error("Database connection lost: %s", exc.orig)
                raise StorageUnavailable() from exc
            if _is_retryable(exc):
                if attempt < retries:
                    attempt += 1
                    logger.warning(
                        "Transaction conflict in %s (attempt %d/%d): %s",
                        getattr(func, "__name__", func), attempt, retries, exc.orig,
                    )
                    continue
                raise ConcurrencyConflict() from exc
            if isinstance(exc, OperationalError):
                logger.error("Database unavailable: %s", exc.orig)
                raise StorageUnavailable() from exc
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** service function on a background thread.

    Async callers go through this wrapper::

        result = await run_db(ledger_service.debit, engine, account_id, ...)

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the event loop is
    never blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
