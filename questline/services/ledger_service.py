"""
questline.services.ledger_service — XP Ledger & Leaderboard
============================================================

Per-user per-guild XP totals.  Both completion paths credit XP through
:func:`apply_xp` so there is exactly one place that mutates ``user_xp``.

Increments are atomic ``UPDATE … SET total_xp = total_xp + :n`` statements;
a missing row is inserted inside a SAVEPOINT and, if a concurrent
transaction inserted it first, the update is simply retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from questline.constants import AssignmentStatus, as_utc, utcnow
from questline.database.engine import get_session
from questline.database.models import Quest, UserQuest, UserTaskCompletion, UserXp
from questline.errors import ValidationError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    user_id: int
    guild_id: int
    total_xp: int
    quests_completed: int
    last_quest_at: datetime | None

    @classmethod
    def from_row(cls, row: UserXp) -> LedgerEntry:
        return cls(
            user_id=row.user_id,
            guild_id=row.guild_id,
            total_xp=row.total_xp,
            quests_completed=row.quests_completed,
            last_quest_at=as_utc(row.last_quest_at),
        )


@dataclass(frozen=True, slots=True)
class CompletedQuestSummary:
    name: str
    xp_awarded: int
    completed_at: datetime | None


@dataclass(frozen=True, slots=True)
class UserProgress:
    """Everything ``/xp`` shows."""

    total_xp: int
    quests_completed: int
    recent_quests: list[CompletedQuestSummary]
    current_quest_name: str | None = None
    current_quest_xp: int | None = None
    current_assigned_at: datetime | None = None


# ---------------------------------------------------------------------------
# In-transaction helper
# ---------------------------------------------------------------------------
def apply_xp(
    session: Session,
    user_id: int,
    guild_id: int,
    amount: int,
    *,
    quest_completed: bool,
    now: datetime | None = None,
) -> UserXp:
    """Add *amount* XP (and optionally one completed quest) to the ledger.

    Must run inside the caller's transaction so the credit commits or rolls
    back together with the completion that earned it.
    """
    if amount < 0:
        raise ValidationError("XP amounts cannot be negative", field="amount")
    now = now or utcnow()

    values: dict = {"total_xp": UserXp.total_xp + amount}
    if quest_completed:
        values["quests_completed"] = UserXp.quests_completed + 1
        values["last_quest_at"] = now

    stmt = (
        update(UserXp)
        .where(UserXp.user_id == user_id, UserXp.guild_id == guild_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if session.execute(stmt).rowcount == 0:
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(UserXp(
                    user_id=user_id,
                    guild_id=guild_id,
                    total_xp=amount,
                    quests_completed=1 if quest_completed else 0,
                    last_quest_at=now if quest_completed else None,
                ))
                session.flush()
        except IntegrityError:
            # Another transaction created the row first; add to it instead.
            session.execute(stmt)

    return session.execute(
        select(UserXp)
        .where(UserXp.user_id == user_id, UserXp.guild_id == guild_id)
        .execution_options(populate_existing=True)
    ).scalar_one()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def get_xp(engine: Engine, user_id: int, guild_id: int) -> LedgerEntry | None:
    with get_session(engine) as session:
        row = session.get(UserXp, (user_id, guild_id))
        return LedgerEntry.from_row(row) if row else None


def add_xp(engine: Engine, user_id: int, guild_id: int, amount: int) -> LedgerEntry:
    """Credit one completed quest worth *amount* XP (legacy single path)."""
    with get_session(engine) as session:
        row = apply_xp(session, user_id, guild_id, amount, quest_completed=True)
        entry = LedgerEntry.from_row(row)
    logger.info(
        "Added %d XP to user %s in guild %s (total %d)",
        amount, user_id, guild_id, entry.total_xp,
    )
    return entry


def leaderboard(engine: Engine, guild_id: int, limit: int = 10) -> list[LedgerEntry]:
    """Top *limit* members of a guild by total XP (ties in no particular order)."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(UserXp)
            .where(UserXp.guild_id == guild_id)
            .order_by(UserXp.total_xp.desc())
            .limit(limit)
        ).all()
        return [LedgerEntry.from_row(r) for r in rows]


def get_user_progress(
    engine: Engine, user_id: int, guild_id: int, *, recent: int = 10
) -> UserProgress:
    with get_session(engine) as session:
        ledger = session.get(UserXp, (user_id, guild_id))

        task_xp = (
            select(func.coalesce(func.sum(UserTaskCompletion.xp_awarded), 0))
            .where(
                UserTaskCompletion.user_id == UserQuest.user_id,
                UserTaskCompletion.quest_id == UserQuest.quest_id,
            )
            .correlate(UserQuest)
            .scalar_subquery()
        )
        # Task-based assignments carry 0 themselves; show the task XP instead.
        completed = session.execute(
            select(Quest.name, UserQuest.xp_awarded + task_xp, UserQuest.completed_at)
            .select_from(UserQuest)
            .join(Quest, Quest.id == UserQuest.quest_id)
            .where(
                UserQuest.user_id == user_id,
                UserQuest.guild_id == guild_id,
                UserQuest.status == AssignmentStatus.COMPLETED.value,
            )
            .order_by(UserQuest.completed_at.desc())
            .limit(recent)
        ).all()

        current = session.execute(
            select(Quest.name, Quest.xp_reward, UserQuest.assigned_at)
            .select_from(UserQuest)
            .join(Quest, Quest.id == UserQuest.quest_id)
            .where(
                UserQuest.user_id == user_id,
                UserQuest.guild_id == guild_id,
                UserQuest.status == AssignmentStatus.ASSIGNED.value,
            )
        ).first()

        return UserProgress(
            total_xp=ledger.total_xp if ledger else 0,
            quests_completed=ledger.quests_completed if ledger else 0,
            recent_quests=[
                CompletedQuestSummary(r[0], r[1], as_utc(r[2])) for r in completed
            ],
            current_quest_name=current[0] if current else None,
            current_quest_xp=current[1] if current else None,
            current_assigned_at=as_utc(current[2]) if current else None,
        )
