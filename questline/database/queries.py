"""
questline.database.queries — Locking & Eligibility Queries
===========================================================

Session-level building blocks shared by the assignment and completion
services.  Every function here expects to run *inside* a transaction opened
with :func:`questline.database.engine.get_session`.
"""

from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from questline.constants import AssignmentStatus
from questline.database.models import Quest, QuestTask, UserQuest, UserTaskCompletion


def try_lock_active_assignment(
    session: Session, user_id: int, guild_id: int
) -> UserQuest | None:
    """Lock and return the user's ``assigned`` row, skipping rows that other
    transactions already hold.

    ``SKIP LOCKED`` keeps concurrent callers for *other* users from queueing
    behind each other.  Two callers for the *same* user can both come back
    empty-handed; the partial unique index ``uq_user_quests_one_active``
    settles that race at insert time.
    """
    return session.scalar(
        select(UserQuest)
        .where(
            UserQuest.user_id == user_id,
            UserQuest.guild_id == guild_id,
            UserQuest.status == AssignmentStatus.ASSIGNED.value,
        )
        .with_for_update(skip_locked=True)
    )


def get_active_assignment(
    session: Session, user_id: int, guild_id: int, *, for_update: bool = False
) -> UserQuest | None:
    stmt = select(UserQuest).where(
        UserQuest.user_id == user_id,
        UserQuest.guild_id == guild_id,
        UserQuest.status == AssignmentStatus.ASSIGNED.value,
    )
    if for_update:
        stmt = stmt.with_for_update()
    return session.scalar(stmt)


def lock_assignment(session: Session, assignment_id: str) -> UserQuest | None:
    """Re-read one assignment with a blocking row lock."""
    return session.scalar(
        select(UserQuest).where(UserQuest.id == assignment_id).with_for_update()
    )


def get_completed_quest_ids(session: Session, user_id: int, guild_id: int) -> list[str]:
    return list(
        session.scalars(
            select(UserQuest.quest_id).where(
                UserQuest.user_id == user_id,
                UserQuest.guild_id == guild_id,
                UserQuest.status == AssignmentStatus.COMPLETED.value,
            )
        ).all()
    )


def get_eligible_quests(session: Session, user_id: int, guild_id: int) -> list[Quest]:
    """Active, non-exhausted quests this user has not completed yet.

    Returned in a stable order (oldest first) so a seeded RNG picks
    reproducibly.
    """
    completed = select(UserQuest.quest_id).where(
        UserQuest.user_id == user_id,
        UserQuest.guild_id == guild_id,
        UserQuest.status == AssignmentStatus.COMPLETED.value,
    )
    return list(
        session.scalars(
            select(Quest)
            .where(
                Quest.guild_id == guild_id,
                Quest.active.is_(True),
                or_(
                    Quest.max_completions.is_(None),
                    Quest.total_completions < Quest.max_completions,
                ),
                Quest.id.not_in(completed),
            )
            .order_by(Quest.created_at, Quest.id)
        ).all()
    )


def get_active_tasks(session: Session, quest_id: str) -> list[QuestTask]:
    return list(
        session.scalars(
            select(QuestTask)
            .where(QuestTask.quest_id == quest_id, QuestTask.active.is_(True))
            .order_by(QuestTask.position, QuestTask.id)
        ).all()
    )


def count_active_tasks(session: Session, quest_id: str) -> int:
    return session.scalar(
        select(func.count(QuestTask.id)).where(
            QuestTask.quest_id == quest_id, QuestTask.active.is_(True)
        )
    ) or 0


def get_completed_task_ids(session: Session, user_id: int, quest_id: str) -> set[str]:
    return set(
        session.scalars(
            select(UserTaskCompletion.task_id).where(
                UserTaskCompletion.user_id == user_id,
                UserTaskCompletion.quest_id == quest_id,
            )
        ).all()
    )


def count_completed_active_tasks(session: Session, user_id: int, quest_id: str) -> int:
    """Completions by *user_id* of tasks that are still active in *quest_id*."""
    return session.scalar(
        select(func.count(UserTaskCompletion.id))
        .join(QuestTask, QuestTask.id == UserTaskCompletion.task_id)
        .where(
            UserTaskCompletion.user_id == user_id,
            UserTaskCompletion.quest_id == quest_id,
            QuestTask.active.is_(True),
        )
    ) or 0
