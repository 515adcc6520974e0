"""
swoon.engine.cache — In-Memory Config Snapshot
================================================

Read-side cache for settings, the gift tier catalogue, and the price
table.  Services receive a :class:`ConfigCache` by injection and read
typed values from it; admin writes go through
:mod:`swoon.services.config_service`, which calls :meth:`ConfigCache.invalidate`
after commit.

Other processes pick up admin edits when their snapshot ages past
``ttl_seconds``.  Money-moving operations never trust the snapshot for
prices: they re-read the authoritative row inside their own transaction.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from swoon.database.models import GiftTierConfig, Price, Setting

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GiftTierView:
    tier: str
    name: str
    icon: str | None
    description: str | None
    price_coins: int
    enabled: bool
    shares_contact_info: bool
    can_send_message: bool
    sort_order: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class PriceView:
    id: int
    item_type: str
    item_key: str
    price: Decimal
    description: str | None
    is_active: bool

    def to_dict(self) -> dict:
        data = asdict(self)
        data["price"] = str(self.price)
        return data


class ConfigCache:
    """Thread-safe in-memory snapshot of business configuration.

    Usage:
        cache = ConfigCache(engine, ttl_seconds=30)
        cache.load_all()

        min_len = cache.get_int("gifts.min_message_length", 10)
        tiers = cache.get_gift_tiers()
    """

    def __init__(self, engine: Engine, ttl_seconds: float | None = 30.0) -> None:
        self._engine = engine
        self._ttl = ttl_seconds
        self._lock = threading.Lock()

        # key → parsed JSON value
        self._settings: dict[str, Any] = {}
        # tier → view, in catalogue order
        self._gift_tiers: dict[str, GiftTierView] = {}
        self._prices: list[PriceView] = []

        self._version = 0
        self._loaded_at: float | None = None

    # -------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------
    def load_all(self) -> None:
        """Load every partition from the DB.  Call on startup."""
        with Session(self._engine) as session:
            settings = self._read_settings(session)
            tiers = {
                row.tier: GiftTierView(
                    tier=row.tier,
                    name=row.name,
                    icon=row.icon,
                    description=row.description,
                    price_coins=row.price_coins,
                    enabled=row.enabled,
                    shares_contact_info=row.shares_contact_info,
                    can_send_message=row.can_send_message,
                    sort_order=row.sort_order,
                )
                for row in session.scalars(
                    select(GiftTierConfig).order_by(GiftTierConfig.sort_order)
                )
            }
            prices = [
                PriceView(
                    id=row.id,
                    item_type=row.item_type,
                    item_key=row.item_key,
                    price=Decimal(row.price),
                    description=row.description,
                    is_active=row.is_active,
                )
                for row in session.scalars(
                    select(Price).order_by(Price.item_type, Price.id)
                )
            ]

        with self._lock:
            self._settings = settings
            self._gift_tiers = tiers
            self._prices = prices
            self._version += 1
            self._loaded_at = time.monotonic()
            version = self._version

        logger.info(
            "ConfigCache loaded (v%d): %d settings, %d gift tiers, %d prices",
            version, len(settings), len(tiers), len(prices),
        )

    @staticmethod
    def _read_settings(session: Session) -> dict[str, Any]:
        parsed: dict[str, Any] = {}
        for row in session.scalars(select(Setting)):
            try:
                parsed[row.key] = json.loads(row.value_json)
            except (json.JSONDecodeError, TypeError):
                parsed[row.key] = row.value_json
        return parsed

    def invalidate(self) -> None:
        """Reload immediately.  Called by the config service after a write."""
        self.load_all()

    def _refresh_if_stale(self) -> None:
        with self._lock:
            loaded_at = self._loaded_at
        if loaded_at is None or (
            self._ttl is not None and time.monotonic() - loaded_at > self._ttl
        ):
            self.load_all()

    @property
    def version(self) -> int:
        """Monotonically increasing snapshot number."""
        with self._lock:
            return self._version

    # -------------------------------------------------------------------
    # Typed setting accessors (thread-safe)
    # -------------------------------------------------------------------
    def get_setting(self, key: str, default: Any = None) -> Any:
        """Return the parsed JSON value for *key*, or *default*."""
        self._refresh_if_stale()
        with self._lock:
            return self._settings.get(key, default)

    def get_all_settings(self) -> dict[str, Any]:
        self._refresh_if_stale()
        with self._lock:
            return dict(self._settings)

    def get_int(self, key: str, default: int = 0) -> int:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return int(val)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return float(val)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        val = self.get_setting(key)
        if val is None:
            return default
        return bool(val)

    # -------------------------------------------------------------------
    # Catalogue reads
    # -------------------------------------------------------------------
    def get_gift_tiers(self, *, enabled_only: bool = False) -> list[GiftTierView]:
        self._refresh_if_stale()
        with self._lock:
            tiers = list(self._gift_tiers.values())
        if enabled_only:
            tiers = [t for t in tiers if t.enabled]
        return tiers

    def get_gift_tier(self, tier: str) -> GiftTierView | None:
        self._refresh_if_stale()
        with self._lock:
            return self._gift_tiers.get(tier)

    def get_prices(self, item_type: str | None = None) -> list[PriceView]:
        self._refresh_if_stale()
        with self._lock:
            prices = list(self._prices)
        if item_type is not None:
            prices = [p for p in prices if p.item_type == item_type]
        return prices
