"""
swoon.api.deps — FastAPI dependency injection
===============================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from swoon.config import SwoonConfig, load_config
from swoon.database.engine import create_db_engine
from swoon.engine.cache import ConfigCache
from swoon.services import account_service, moderation_service

_WEAK_SECRETS = frozenset({
    "swoon-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_config() -> SwoonConfig:
    return load_config(os.getenv("SWOON_CONFIG", "config.yaml"))


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    try:
        cfg = get_config()
    except FileNotFoundError:
        cfg = None
    return create_db_engine(cfg)


@lru_cache(maxsize=1)
def get_cache() -> ConfigCache:
    try:
        ttl = get_config().cache_ttl_seconds
    except FileNotFoundError:
        ttl = 30.0
    cache = ConfigCache(get_engine(), ttl_seconds=ttl)
    cache.load_all()
    return cache


def client_address(request: Request) -> str | None:
    """Best-effort caller address for the audit log."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
def get_caller(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate the bearer JWT and return the caller. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    try:
        account_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token subject")
    return {
        "id": account_id,
        "username": payload.get("username"),
        "is_admin": bool(payload.get("is_admin")),
        "is_moderator": bool(payload.get("is_moderator")),
    }


def get_member(
    caller: dict = Depends(get_caller),
    engine: Engine = Depends(get_engine),
) -> dict:
    """The caller, with their account created on first contact."""
    account_service.get_or_create_account(
        engine, caller["id"], caller["username"], is_admin=caller["is_admin"],
    )
    return caller


def get_active_member(
    caller: dict = Depends(get_member),
    engine: Engine = Depends(get_engine),
) -> dict:
    """Same as :func:`get_member` but refuses banned accounts."""
    if moderation_service.is_banned(engine, caller["id"]):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Account is banned")
    return caller


def get_moderator(caller: dict = Depends(get_caller)) -> dict:
    """Admin or moderator. Raises 403 otherwise."""
    if not (caller["is_admin"] or caller["is_moderator"]):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not a moderator")
    return caller


def get_current_admin(caller: dict = Depends(get_caller)) -> dict:
    """Admin only. Raises 403 otherwise."""
    if not caller["is_admin"]:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return caller
