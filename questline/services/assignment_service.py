"""
questline.services.assignment_service — Race-Safe Quest Assignment
===================================================================

"Give this user an active quest" in a single transaction:

1. Lock the user's existing ``assigned`` row (``FOR UPDATE SKIP LOCKED``).
2. If there is one, hand it back — assignment is idempotent.
3. Otherwise pick uniformly at random among eligible quests.
4. Insert the new row inside a SAVEPOINT.  If the partial unique index
   says a concurrent request for the same user got there first, return the
   winner's row instead.

Any store failure rolls the whole transaction back and surfaces as
:class:`~questline.errors.StoreUnavailable`.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from questline.constants import AssignmentStatus, VerificationKind, as_utc, utcnow
from questline.database import queries
from questline.database.engine import get_session
from questline.database.models import Quest, UserQuest
from questline.errors import NoQuestsAvailable, StoreUnavailable

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AssignedQuest:
    """Detached snapshot of an assignment joined with its quest."""

    assignment_id: str
    user_id: int
    guild_id: int
    quest_id: str
    status: str
    assigned_at: datetime
    verification_attempts: int
    quest_name: str
    quest_description: str
    xp_reward: int
    verification_kind: VerificationKind
    user_input_description: str | None
    task_count: int = 0

    @property
    def is_task_based(self) -> bool:
        return self.task_count > 0

    @classmethod
    def build(cls, session: Session, row: UserQuest) -> AssignedQuest:
        quest = row.quest
        return cls(
            assignment_id=row.id,
            user_id=row.user_id,
            guild_id=row.guild_id,
            quest_id=row.quest_id,
            status=row.status,
            assigned_at=as_utc(row.assigned_at),
            verification_attempts=row.verification_attempts,
            quest_name=quest.name,
            quest_description=quest.description,
            xp_reward=quest.xp_reward,
            verification_kind=quest.kind,
            user_input_description=quest.user_input_description,
            task_count=queries.count_active_tasks(session, quest.id),
        )


@dataclass(frozen=True, slots=True)
class AssignmentResult:
    assignment: AssignedQuest
    already_had: bool


def _choose(candidates: list[Quest], rng: random.Random | None) -> Quest:
    """Uniform random pick; callers pass a seeded ``Random`` for determinism."""
    return (rng or random).choice(candidates)


def assign_quest(
    engine: Engine,
    user_id: int,
    guild_id: int,
    *,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> AssignmentResult:
    """Return the user's active quest, assigning a new one if needed.

    Raises
    ------
    NoQuestsAvailable
        If no active, non-exhausted, not-yet-completed quest exists.
    StoreUnavailable
        On a transient database failure (nothing was persisted).
    """
    with get_session(engine) as session:
        existing = queries.try_lock_active_assignment(session, user_id, guild_id)
        if existing is not None:
            return AssignmentResult(AssignedQuest.build(session, existing), already_had=True)

        candidates = queries.get_eligible_quests(session, user_id, guild_id)
        if not candidates:
            raise NoQuestsAvailable(
                f"No eligible quests for user {user_id} in guild {guild_id}"
            )

        quest = _choose(candidates, rng)
        row = UserQuest(
            user_id=user_id,
            guild_id=guild_id,
            quest_id=quest.id,
            status=AssignmentStatus.ASSIGNED.value,
            assigned_at=now or utcnow(),
        )
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(row)
                session.flush()
        except IntegrityError:
            # A concurrent request for this user committed first.
            winner = queries.get_active_assignment(session, user_id, guild_id)
            if winner is None:
                # The winner was resolved before we could read it; start over.
                raise StoreUnavailable(
                    f"Assignment for user {user_id} changed concurrently; retry"
                )
            logger.info(
                "Concurrent assignment for user %s in guild %s resolved to %s",
                user_id, guild_id, winner.id,
            )
            return AssignmentResult(AssignedQuest.build(session, winner), already_had=True)

        # Under READ COMMITTED the candidate list can predate a completion that
        # committed while we waited on the insert.
        if quest.id in queries.get_completed_quest_ids(session, user_id, guild_id):
            raise StoreUnavailable(
                f"Quest {quest.id} was completed by user {user_id} concurrently; retry"
            )

        result = AssignmentResult(AssignedQuest.build(session, row), already_had=False)

    logger.info(
        "Quest assigned: user=%s guild=%s quest=%s (%s) from %d candidates",
        user_id, guild_id, quest.id, quest.name, len(candidates),
    )
    return result


def get_active_quest(engine: Engine, user_id: int, guild_id: int) -> AssignedQuest | None:
    with get_session(engine) as session:
        row = queries.get_active_assignment(session, user_id, guild_id)
        return AssignedQuest.build(session, row) if row else None


def get_completed_quest_ids(engine: Engine, user_id: int, guild_id: int) -> list[str]:
    """Quest IDs this user has completed; lets callers tell "never eligible"
    apart from "completed everything"."""
    with get_session(engine) as session:
        return queries.get_completed_quest_ids(session, user_id, guild_id)
