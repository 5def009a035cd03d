"""
questline.services.activity_service — Activity Capture for Native Checks
=========================================================================

The message / reaction / poll counters behind Discord-native verification.
Writers are called from the activity cog; counters take an open session so
the verifier can run them inside one short read transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from questline.constants import utcnow
from questline.database.engine import get_session
from questline.database.models import MessageReaction, MessageRecord, Poll

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------
def _insert_once(engine: Engine, row) -> bool:
    """Insert *row*; a duplicate (Discord redelivery) is silently ignored."""
    with get_session(engine) as session:
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(row)
                session.flush()
        except IntegrityError:
            return False
    return True


def record_message(
    engine: Engine,
    message_id: int,
    guild_id: int,
    channel_id: int,
    user_id: int,
    posted_at: datetime | None = None,
) -> bool:
    return _insert_once(engine, MessageRecord(
        message_id=message_id,
        guild_id=guild_id,
        channel_id=channel_id,
        user_id=user_id,
        posted_at=posted_at or utcnow(),
    ))


def record_reaction(
    engine: Engine,
    message_id: int,
    channel_id: int,
    guild_id: int,
    author_id: int,
    reactor_id: int,
    emoji: str,
    created_at: datetime | None = None,
) -> bool:
    """Record a reaction on *author_id*'s message.  Self-reactions are skipped."""
    if author_id == reactor_id:
        return False
    return _insert_once(engine, MessageReaction(
        message_id=message_id,
        channel_id=channel_id,
        guild_id=guild_id,
        author_id=author_id,
        reactor_id=reactor_id,
        emoji=emoji,
        created_at=created_at or utcnow(),
    ))


def remove_reaction(engine: Engine, message_id: int, reactor_id: int, emoji: str) -> bool:
    with get_session(engine) as session:
        result = session.execute(
            delete(MessageReaction).where(
                MessageReaction.message_id == message_id,
                MessageReaction.reactor_id == reactor_id,
                MessageReaction.emoji == emoji,
            )
        )
        return result.rowcount > 0


def record_poll(
    engine: Engine,
    message_id: int,
    channel_id: int,
    guild_id: int,
    creator_id: int,
    question: str | None = None,
    created_at: datetime | None = None,
) -> bool:
    return _insert_once(engine, Poll(
        message_id=message_id,
        channel_id=channel_id,
        guild_id=guild_id,
        creator_id=creator_id,
        question=question,
        created_at=created_at or utcnow(),
    ))


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------
def count_messages(
    session: Session,
    user_id: int,
    guild_id: int,
    *,
    channel_id: int | None = None,
    since: datetime | None = None,
) -> int:
    stmt = select(func.count()).select_from(MessageRecord).where(
        MessageRecord.user_id == user_id, MessageRecord.guild_id == guild_id
    )
    if channel_id is not None:
        stmt = stmt.where(MessageRecord.channel_id == channel_id)
    if since is not None:
        stmt = stmt.where(MessageRecord.posted_at >= since)
    return session.scalar(stmt) or 0


def count_reactions_received(
    session: Session,
    user_id: int,
    guild_id: int,
    *,
    channel_id: int | None = None,
    since: datetime | None = None,
) -> int:
    stmt = select(func.count()).select_from(MessageReaction).where(
        MessageReaction.author_id == user_id,
        MessageReaction.guild_id == guild_id,
        MessageReaction.reactor_id != user_id,
    )
    if channel_id is not None:
        stmt = stmt.where(MessageReaction.channel_id == channel_id)
    if since is not None:
        stmt = stmt.where(MessageReaction.created_at >= since)
    return session.scalar(stmt) or 0


def count_polls(
    session: Session,
    user_id: int,
    guild_id: int,
    *,
    channel_id: int | None = None,
    since: datetime | None = None,
) -> int:
    stmt = select(func.count()).select_from(Poll).where(
        Poll.creator_id == user_id, Poll.guild_id == guild_id
    )
    if channel_id is not None:
        stmt = stmt.where(Poll.channel_id == channel_id)
    if since is not None:
        stmt = stmt.where(Poll.created_at >= since)
    return session.scalar(stmt) or 0
