"""
questline.database.engine — Database Connection, Transactions & Async Helper
=============================================================================

Discord bots run on an ``asyncio`` event loop while SQLAlchemy + psycopg2 is
**synchronous**.  Every quest operation is therefore a plain sync function
that opens one transaction, and cogs call it through :func:`run_db`, which
ships it to a worker thread via ``asyncio.to_thread()``.

Because several workers may run the same operation at once, correctness
comes from the database alone: row locks (``FOR UPDATE SKIP LOCKED``),
unique indexes and atomic ``UPDATE … SET x = x + n`` statements.

Usage::

    from questline.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async Cog method:
    result = await run_db(assign_quest, engine, user_id, guild_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from questline.database.models import Base
from questline.errors import StoreUnavailable

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    PostgreSQL gets a small pooled configuration:
    * ``pool_size=5`` / ``max_overflow=10``
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    SQLite (local development) gets ``BEGIN IMMEDIATE`` transactions, see
    :func:`enable_immediate_transactions`.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if url.startswith("sqlite"):
        engine = create_engine(
            url, echo=False, connect_args={"check_same_thread": False, "timeout": 30}
        )
        enable_immediate_transactions(engine)
    else:
        engine = create_engine(
            url,
            echo=False,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_timeout=10,
            pool_recycle=3600,
        )
    logger.info("Database engine created → %s", engine.url.host or engine.url.database)
    return engine


def enable_immediate_transactions(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock up front.

    SQLite ignores ``FOR UPDATE``; ``BEGIN IMMEDIATE`` is its equivalent of
    locking the rows a transaction is about to change, so concurrent
    assignment attempts queue instead of both reading "no active quest".
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`questline.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Yield a :class:`Session` that commits on success and rolls back on
    exception.

    Connection loss, lock timeouts and other ``OperationalError`` failures
    are re-raised as :class:`StoreUnavailable` *after* the rollback, so the
    caller knows nothing was persisted and the call is safe to retry.

    Usage::

        with get_session(engine) as session:
            session.add(UserXp(user_id=1, guild_id=2))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except OperationalError as exc:
        session.rollback()
        logger.warning("Transaction rolled back: %s", exc.orig)
        raise StoreUnavailable("The database is temporarily unavailable.") from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call in a Cog should go through this wrapper::

        result = await run_db(my_sync_db_function, engine, user_id)

    If the awaiting coroutine is cancelled (e.g. by ``asyncio.wait_for``),
    the worker thread still finishes its transaction: it either commits or
    rolls back, never stops half-way.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
