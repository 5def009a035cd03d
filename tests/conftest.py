"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of questline.api.deps which validates
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

from questline.database.engine import (  # noqa: E402
    create_db_engine,
    enable_immediate_transactions,
    init_db,
)

_jsonb_sqlite_registered = False


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

GUILD_ID = 100
ADMIN_ID = 9000


def run_async(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.new_event_loop().run_until_complete(coro)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Questline tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``), and the same
    ``BEGIN IMMEDIATE`` transactions as a file-backed SQLite engine.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_immediate_transactions(engine)
    init_db(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """A file-backed SQLite engine with a real connection pool.

    Each worker thread gets its own connection, so concurrent transactions
    genuinely contend for the database write lock.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'questline.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def make_quest(db_engine):
    """Factory that authors a quest through the catalog service."""
    from questline.services import catalog_service

    def _make(engine=None, **overrides):
        params = {
            "guild_id": GUILD_ID,
            "created_by": ADMIN_ID,
            "name": "Join the newsletter",
            "description": "Sign up with your email address.",
            "xp_reward": 100,
            "verification_kind": "email",
            "verification_config": {
                "endpoint": "https://api.example.com/subscribers",
                "params": {"email": "[EMAIL]"},
                "success_condition": {"field": "subscribed", "operator": "=", "value": True},
            },
        }
        params.update(overrides)
        return catalog_service.create_quest(engine or db_engine, **params)

    return _make


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from questline.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": True},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


@pytest.fixture
def client(db_engine):
    """FastAPI TestClient whose engine dependency points at the test DB."""
    from fastapi.testclient import TestClient

    from questline.api.deps import get_engine
    from questline.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
