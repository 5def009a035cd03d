"""
questline.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- quests                 — Quest definitions (authored elsewhere, read-only here)
- quest_tasks            — Ordered steps of task-based quests
- user_quests            — Assignments; at most one ``assigned`` row per user+guild
- user_task_completions  — One row per (user, task); idempotency anchor for task XP
- user_xp                — Per-user per-guild XP ledger
- quest_conversations    — TTL scratch state for quest-authoring dialogues
- messages               — Minimal message log for native message-count checks
- message_reactions      — Reactions received, for native reaction-count checks
- polls                  — Polls created, for native poll-count checks
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from questline.constants import AssignmentStatus, VerificationKind, utcnow
from questline.engine.verification import VerificationConfig, parse_verification


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Questline ORM models."""


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------
class Quest(Base):
    __tablename__ = "quests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False)
    verification_kind: Mapped[str] = mapped_column(String(30), nullable=False)
    verification_config: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    user_input_description: Mapped[str | None] = mapped_column(String(200), default=None)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_completions: Mapped[int | None] = mapped_column(Integer, default=None)
    total_completions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    tasks: Mapped[list[QuestTask]] = relationship(
        back_populates="quest", order_by="QuestTask.position"
    )

    __table_args__ = (
        CheckConstraint(
            "xp_reward > 0 AND xp_reward <= 10000", name="ck_quests_xp_reward"
        ),
        Index("ix_quests_guild_active", "guild_id", "active"),
    )

    @property
    def kind(self) -> VerificationKind:
        return VerificationKind(self.verification_kind)

    @property
    def verification(self) -> VerificationConfig:
        return parse_verification(self.verification_kind, self.verification_config)

    @property
    def is_exhausted(self) -> bool:
        return (
            self.max_completions is not None
            and self.total_completions >= self.max_completions
        )

    def __repr__(self) -> str:
        return f"<Quest id={self.id} name={self.name!r} active={self.active}>"


class QuestTask(Base):
    __tablename__ = "quest_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    quest_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    verification_kind: Mapped[str | None] = mapped_column(String(30), default=None)
    verification_config: Mapped[dict | None] = mapped_column(JSONB, default=None)
    user_input_description: Mapped[str | None] = mapped_column(String(200), default=None)
    max_completions: Mapped[int | None] = mapped_column(Integer, default=None)
    max_completions_per_day: Mapped[int | None] = mapped_column(Integer, default=None)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    quest: Mapped[Quest] = relationship(back_populates="tasks")

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_quest_tasks_points"),
        Index("ix_quest_tasks_quest_position", "quest_id", "position"),
    )

    @property
    def kind(self) -> VerificationKind | None:
        return VerificationKind(self.verification_kind) if self.verification_kind else None

    @property
    def verification(self) -> VerificationConfig | None:
        if not self.verification_kind:
            return None
        return parse_verification(self.verification_kind, self.verification_config)

    def __repr__(self) -> str:
        return f"<QuestTask id={self.id} quest={self.quest_id} pos={self.position}>"


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------
class UserQuest(Base):
    """Binds one user to one quest, in progress or resolved."""
    __tablename__ = "user_quests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    quest_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AssignmentStatus.ASSIGNED.value
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    verification_identifier: Mapped[str | None] = mapped_column(Text, default=None)
    verification_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    xp_awarded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text, default=None)

    quest: Mapped[Quest] = relationship()

    __table_args__ = (
        CheckConstraint(
            "status IN ('assigned', 'completed', 'failed', 'expired')",
            name="ck_user_quests_status",
        ),
        # One active assignment per user per guild, enforced by the DB.
        Index(
            "uq_user_quests_one_active",
            "user_id",
            "guild_id",
            unique=True,
            postgresql_where=text("status = 'assigned'"),
            sqlite_where=text("status = 'assigned'"),
        ),
        Index("ix_user_quests_user_status", "user_id", "guild_id", "status"),
        Index("ix_user_quests_quest", "quest_id"),
    )

    def __repr__(self) -> str:
        return f"<UserQuest id={self.id} user={self.user_id} status={self.status}>"


class UserTaskCompletion(Base):
    __tablename__ = "user_task_completions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quest_tasks.id", ondelete="CASCADE"), nullable=False
    )
    quest_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    xp_awarded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    verification_identifier: Mapped[str | None] = mapped_column(Text, default=None)

    __table_args__ = (
        UniqueConstraint("user_id", "task_id", name="uq_user_task_completions_user_task"),
        Index("ix_user_task_completions_user", "user_id", "guild_id"),
        Index("ix_user_task_completions_quest", "quest_id"),
    )

    def __repr__(self) -> str:
        return f"<UserTaskCompletion user={self.user_id} task={self.task_id}>"


# ---------------------------------------------------------------------------
# XP ledger
# ---------------------------------------------------------------------------
class UserXp(Base):
    __tablename__ = "user_xp"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    total_xp: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quests_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_quest_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_user_xp_leaderboard", "guild_id", "total_xp"),
    )

    def __repr__(self) -> str:
        return f"<UserXp user={self.user_id} guild={self.guild_id} xp={self.total_xp}>"


# ---------------------------------------------------------------------------
# Authoring conversations
# ---------------------------------------------------------------------------
class QuestConversation(Base):
    __tablename__ = "quest_conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    conversation_state: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    messages: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "guild_id", name="uq_quest_conversations_user_guild"),
        Index("ix_quest_conversations_expires", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<QuestConversation user={self.user_id} guild={self.guild_id}>"


# ---------------------------------------------------------------------------
# Activity records (Discord-native verification)
# ---------------------------------------------------------------------------
class MessageRecord(Base):
    __tablename__ = "messages"

    message_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_messages_user_guild_time", "user_id", "guild_id", "posted_at"),
    )


class MessageReaction(Base):
    __tablename__ = "message_reactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    author_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reactor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    emoji: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "message_id", "reactor_id", "emoji", name="uq_message_reactions_unique"
        ),
        Index("ix_message_reactions_author", "author_id", "guild_id"),
    )


class Poll(Base):
    __tablename__ = "polls"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    creator_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    question: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_polls_creator", "creator_id", "guild_id"),
    )
