"""
symbolica.api.deps — FastAPI dependency injection
==================================================
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated, Any

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from symbolica.config import SymbolicaConfig, load_config
from symbolica.database.engine import create_db_engine
from symbolica.errors import safe_error_message
from symbolica.sync.context import SyncContext
from symbolica.sync.query import QueryState

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "symbolica-dev-secret-change-me",
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
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> SymbolicaConfig:
    path = os.getenv("SYMBOLICA_CONFIG", "config.yaml")
    if not os.path.exists(path):
        logger.warning("No %s found; using built-in sync defaults", path)
        return SymbolicaConfig.defaults()
    return load_config(path)


def get_context(request: Request) -> SyncContext:
    """The process-wide :class:`SyncContext` built by the app lifespan."""
    ctx = getattr(request.app.state, "sync", None)
    if ctx is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Service temporarily unavailable")
    return ctx


def _decode(authorization: str | None) -> dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("sub"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return payload


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    """Validate the JWT and return its payload.  Raises 401 if invalid."""
    return _decode(authorization)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    """Validate the JWT and return an admin user payload.

    Raises 401 if the token is invalid and 403 if it lacks ``is_admin``.
    """
    payload = _decode(authorization)
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


Context = Annotated[SyncContext, Depends(get_context)]
CurrentUser = Annotated[dict, Depends(get_current_user)]
CurrentAdmin = Annotated[dict, Depends(get_current_admin)]


def query_response(state: QueryState) -> dict[str, Any]:
    """Serialise a query for the wire.

    Stale data is returned alongside the error when there is any; a query
    that failed with nothing to show re-raises for the error handler.
    """
    if state.error is not None and not state.has_data:
        raise state.error
    return {
        "data": state.data,
        "stale": state.is_stale,
        "error": safe_error_message(state.error) if state.error is not None else None,
    }
