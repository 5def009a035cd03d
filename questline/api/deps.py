"""
questline.api.deps — FastAPI dependency injection
==================================================

- ``EngineDep`` — the process-wide SQLAlchemy engine (overridden in tests).
- ``AdminDep``  — :class:`AdminClaims` decoded from a bearer JWT.

The signing secret is read once at import; a missing or guessable secret
stops the API from starting at all.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from questline.database.engine import create_db_engine

JWT_ALGORITHM = "HS256"

_MIN_SECRET_LENGTH = 32
_PLACEHOLDER_SECRETS = frozenset({"questline-dev-secret-change-me", "change-me", "secret"})


def _read_signing_secret(env_var: str = "JWT_SECRET") -> str:
    secret = os.getenv(env_var, "").strip()
    problem = None
    if not secret:
        problem = "is not set"
    elif secret in _PLACEHOLDER_SECRETS:
        problem = "still holds the .env.example placeholder"
    elif len(secret) < _MIN_SECRET_LENGTH:
        problem = f"must be at least {_MIN_SECRET_LENGTH} characters (got {len(secret)})"
    if problem:
        raise RuntimeError(
            f"{env_var} {problem}. Generate one with: "
            "python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    return secret


JWT_SECRET: str = _read_signing_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@dataclass(frozen=True, slots=True)
class AdminClaims:
    """The parts of an admin token the routes rely on."""

    user_id: int
    username: str | None = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status.HTTP_401_UNAUTHORIZED, detail, headers={"WWW-Authenticate": "Bearer"}
    )


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> AdminClaims:
    """401 for a missing/invalid token, 403 for a valid non-admin one."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer" or not token:
        raise _unauthorized("Missing token")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise _unauthorized("Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    # Quests record their author as a Discord snowflake.
    sub = str(payload.get("sub", ""))
    if not sub.isdigit():
        raise _unauthorized("Token subject is not a Discord user ID")
    return AdminClaims(user_id=int(sub), username=payload.get("username"))


EngineDep = Annotated[Engine, Depends(get_engine)]
AdminDep = Annotated[AdminClaims, Depends(get_current_admin)]
