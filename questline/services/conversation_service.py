"""
questline.services.conversation_service — Quest-Authoring Conversations
========================================================================

Scratch state for a multi-turn quest-authoring dialogue, one row per
user+guild with a sliding expiry.  Expired rows are invisible to
:func:`get_conversation` and are swept by
:func:`cleanup_expired_conversations` from the bot's periodic task cog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from questline.constants import as_utc, utcnow
from questline.database.engine import get_session
from questline.database.models import QuestConversation

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=1)


@dataclass(frozen=True, slots=True)
class Conversation:
    user_id: int
    guild_id: int
    channel_id: int | None
    state: dict[str, Any]
    messages: list[dict[str, Any]] = field(default_factory=list)
    updated_at: datetime | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_row(cls, row: QuestConversation) -> Conversation:
        return cls(
            user_id=row.user_id,
            guild_id=row.guild_id,
            channel_id=row.channel_id,
            state=dict(row.conversation_state or {}),
            messages=list(row.messages or []),
            updated_at=as_utc(row.updated_at),
            expires_at=as_utc(row.expires_at),
        )


def get_conversation(
    engine: Engine, user_id: int, guild_id: int, *, now: datetime | None = None
) -> Conversation | None:
    """The user's conversation, or None if there is none or it has expired."""
    now = now or utcnow()
    with get_session(engine) as session:
        row = session.scalar(
            select(QuestConversation).where(
                QuestConversation.user_id == user_id,
                QuestConversation.guild_id == guild_id,
                QuestConversation.expires_at > now,
            )
        )
        return Conversation.from_row(row) if row else None


def upsert_conversation(
    engine: Engine,
    user_id: int,
    guild_id: int,
    state: dict[str, Any],
    messages: list[dict[str, Any]],
    *,
    channel_id: int | None = None,
    ttl: timedelta = DEFAULT_TTL,
    now: datetime | None = None,
) -> Conversation:
    """Replace state and messages and push ``expires_at`` to ``now + ttl``."""
    now = now or utcnow()
    values = {
        "conversation_state": dict(state),
        "messages": list(messages),
        "updated_at": now,
        "expires_at": now + ttl,
    }
    with get_session(engine) as session:
        row = _find(session, user_id, guild_id)
        if row is None:
            row = QuestConversation(
                user_id=user_id, guild_id=guild_id, channel_id=channel_id,
                created_at=now, **values,
            )
            try:
                with session.begin_nested():   # SAVEPOINT
                    session.add(row)
                    session.flush()
            except IntegrityError:
                # Created concurrently; overwrite it instead.
                row = _find(session, user_id, guild_id)
                if row is None:
                    raise
                _apply(row, values, channel_id)
        else:
            _apply(row, values, channel_id)
        session.flush()
        return Conversation.from_row(row)


def _find(session, user_id: int, guild_id: int) -> QuestConversation | None:
    return session.scalar(
        select(QuestConversation).where(
            QuestConversation.user_id == user_id,
            QuestConversation.guild_id == guild_id,
        )
    )


def _apply(row: QuestConversation, values: dict[str, Any], channel_id: int | None) -> None:
    for key, value in values.items():
        setattr(row, key, value)
    if channel_id is not None:
        row.channel_id = channel_id


def delete_conversation(engine: Engine, user_id: int, guild_id: int) -> bool:
    with get_session(engine) as session:
        result = session.execute(
            delete(QuestConversation).where(
                QuestConversation.user_id == user_id,
                QuestConversation.guild_id == guild_id,
            )
        )
        return result.rowcount > 0


def cleanup_expired_conversations(engine: Engine, *, now: datetime | None = None) -> int:
    """Delete every conversation whose ``expires_at`` has passed."""
    now = now or utcnow()
    with get_session(engine) as session:
        result = session.execute(
            delete(QuestConversation).where(QuestConversation.expires_at <= now)
        )
        removed = result.rowcount
    if removed:
        logger.info("Removed %d expired quest conversations", removed)
    return removed
