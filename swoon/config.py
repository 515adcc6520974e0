"""
swoon.config — YAML Configuration Loader
=========================================

This module reads ``config.yaml`` for **infrastructure-only** settings
(service identity, API port, database timeouts, transaction retries).
All business tuning values (gift prices, message lengths, referral
rewards, report reward bounds) live in the ``settings``, ``gift_tier_configs``
and ``prices`` database tables and are editable through the admin API.

Usage::

    from swoon.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.service_name)          # "swoon"
    print(cfg.transaction_retries)   # 2
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure only.
# Business tuning lives in the DB ``settings`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SwoonConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    service_name: str
    api_port: int

    # Database tuning
    pool_timeout_seconds: int = 10
    statement_timeout_ms: int = 5000
    lock_timeout_ms: int = 3000
    transaction_retries: int = 2

    # ConfigCache refresh interval
    cache_ttl_seconds: float = 30.0

    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> SwoonConfig:
    """Read *path* and return a :class:`SwoonConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    db = raw.get("database") or {}
    return SwoonConfig(
        service_name=raw["service_name"],
        api_port=int(raw["api_port"]),
        pool_timeout_seconds=int(db.get("pool_timeout_seconds", 10)),
        statement_timeout_ms=int(db.get("statement_timeout_ms", 5000)),
        lock_timeout_ms=int(db.get("lock_timeout_ms", 3000)),
        transaction_retries=int(db.get("transaction_retries", 2)),
        cache_ttl_seconds=float(raw.get("cache_ttl_seconds", 30.0)),
        log_level=str(raw.get("log_level", "INFO")).upper(),
    )
