"""
questline.services.completion_service — Quest & Task Completion
================================================================

Two ways to finish an assignment, both crediting XP through
:func:`questline.services.ledger_service.apply_xp`:

- **Single verification** (:func:`verify_and_complete`) — one provider check
  for the whole quest, then one transaction that closes the assignment.
- **Task-based** (:func:`complete_task`) — one row per completed task; the
  assignment closes when every active task is done.

:func:`complete_unit` picks the right path from the shape of the user's
active quest.

Exactly-once crediting hinges on the locked assignment row: whichever path
moves it from ``assigned`` to ``completed`` is the only one that bumps
``quests_completed`` and ``total_completions``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from questline.constants import (
    ATTEMPTS_EXCEEDED_REASON,
    AssignmentStatus,
    VerificationKind,
    utcnow,
)
from questline.database import queries
from questline.database.engine import get_session, run_db
from questline.database.models import Quest, QuestTask, UserQuest, UserTaskCompletion
from questline.engine.verification import (
    VerificationConfig,
    VerificationProvider,
    VerificationResult,
    parse_verification,
)
from questline.errors import NoActiveQuest, TaskExhausted, TaskNotFound, ValidationError
from questline.services.ledger_service import apply_xp

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_TIMEOUT = 10.0


class CompletionStatus(enum.StrEnum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    RETRY = "retry"
    FAILED = "failed"
    NO_ACTIVE_QUEST = "no_active_quest"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"


@dataclass(frozen=True, slots=True)
class CompletionOutcome:
    """Result of one ``/confirm`` on a single-verification quest."""

    status: CompletionStatus
    details: str = ""
    quest_id: str | None = None
    quest_name: str | None = None
    xp_awarded: int = 0
    total_xp: int | None = None
    attempts: int = 0
    attempts_remaining: int | None = None

    @property
    def completed(self) -> bool:
        return self.status == CompletionStatus.COMPLETED


@dataclass(frozen=True, slots=True)
class TaskCompletionResult:
    task_id: str
    quest_id: str
    task_title: str = ""
    already_completed: bool = False
    quest_fully_completed: bool = False
    xp_awarded: int = 0
    total_xp: int | None = None
    tasks_completed: int = 0
    tasks_total: int = 0


# ---------------------------------------------------------------------------
# Short transactions used by the single-verification path
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class _AttemptSnapshot:
    assignment_id: str
    quest_id: str
    quest_name: str
    xp_reward: int
    verification_kind: str
    verification_config: dict
    attempts: int


def increment_verification_attempts(
    engine: Engine, user_id: int, guild_id: int
) -> _AttemptSnapshot | None:
    """Count one verification attempt against the active assignment.

    Runs in its own transaction and is applied whatever the verification
    outcome turns out to be.  Returns None when nothing is assigned.
    """
    with get_session(engine) as session:
        row = queries.get_active_assignment(session, user_id, guild_id, for_update=True)
        if row is None:
            return None
        row.verification_attempts = row.verification_attempts + 1
        session.flush()
        quest = row.quest
        return _AttemptSnapshot(
            assignment_id=row.id,
            quest_id=quest.id,
            quest_name=quest.name,
            xp_reward=quest.xp_reward,
            verification_kind=quest.verification_kind,
            verification_config=dict(quest.verification_config or {}),
            attempts=row.verification_attempts,
        )


def fail_assignment(engine: Engine, assignment_id: str, reason: str) -> bool:
    """Move an ``assigned`` row to ``failed``; False if it already left that state."""
    with get_session(engine) as session:
        row = queries.lock_assignment(session, assignment_id)
        if row is None or row.status != AssignmentStatus.ASSIGNED.value:
            return False
        row.status = AssignmentStatus.FAILED.value
        row.failure_reason = reason
    logger.info("Assignment %s failed: %s", assignment_id, reason)
    return True


def _close_assignment(
    session: Session,
    row: UserQuest,
    *,
    xp_awarded: int,
    identifier: str | None,
    now: datetime,
) -> None:
    """``assigned`` → ``completed`` plus the quest's completion counter.

    Caller must hold the row lock and have checked the status.
    """
    row.status = AssignmentStatus.COMPLETED.value
    row.completed_at = now
    row.xp_awarded = xp_awarded
    if identifier is not None:
        row.verification_identifier = identifier
    session.execute(
        update(Quest)
        .where(Quest.id == row.quest_id)
        .values(total_completions=Quest.total_completions + 1)
        .execution_options(synchronize_session=False)
    )


def complete_quest_transaction(
    engine: Engine,
    assignment_id: str,
    identifier: str | None,
    *,
    now: datetime | None = None,
) -> tuple[bool, int, int]:
    """Persist a successful verification.

    Returns ``(completed, xp_awarded, total_xp)``.  ``completed`` is False
    when another request closed the assignment first; the ledger is then
    left untouched.
    """
    now = now or utcnow()
    with get_session(engine) as session:
        row = queries.lock_assignment(session, assignment_id)
        if row is None or row.status != AssignmentStatus.ASSIGNED.value:
            return False, 0, 0
        xp = row.quest.xp_reward
        _close_assignment(session, row, xp_awarded=xp, identifier=identifier, now=now)
        ledger = apply_xp(
            session, row.user_id, row.guild_id, xp, quest_completed=True, now=now
        )
        return True, xp, ledger.total_xp


# ---------------------------------------------------------------------------
# Provider call
# ---------------------------------------------------------------------------
async def _call_provider(
    verifier: VerificationProvider,
    kind: VerificationKind,
    config: VerificationConfig,
    identifier: str | None,
    *,
    user_id: int,
    guild_id: int,
    timeout: float,
) -> VerificationResult:
    try:
        return await asyncio.wait_for(
            verifier.verify(kind, config, identifier, user_id=user_id, guild_id=guild_id),
            timeout=timeout,
        )
    except TimeoutError:
        logger.warning(
            "Verification timed out after %.1fs (kind=%s, user=%s)", timeout, kind, user_id
        )
        return VerificationResult.retry("Verification timed out. Please try again.")


def _normalise_identifier(kind: VerificationKind, identifier: str | None) -> str | None:
    if kind.is_platform_native:
        return None
    identifier = (identifier or "").strip()
    return identifier or None


# ---------------------------------------------------------------------------
# Single-verification path
# ---------------------------------------------------------------------------
async def verify_and_complete(
    engine: Engine,
    verifier: VerificationProvider,
    user_id: int,
    guild_id: int,
    identifier: str | None,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    timeout: float = DEFAULT_TIMEOUT,
) -> CompletionOutcome:
    """Verify the user's active quest and, on success, award its XP."""
    snapshot = await run_db(increment_verification_attempts, engine, user_id, guild_id)
    if snapshot is None:
        return CompletionOutcome(CompletionStatus.NO_ACTIVE_QUEST)

    common = {
        "quest_id": snapshot.quest_id,
        "quest_name": snapshot.quest_name,
        "attempts": snapshot.attempts,
    }
    if snapshot.attempts > max_attempts:
        await run_db(fail_assignment, engine, snapshot.assignment_id, ATTEMPTS_EXCEEDED_REASON)
        return CompletionOutcome(
            CompletionStatus.ATTEMPTS_EXHAUSTED,
            details=ATTEMPTS_EXCEEDED_REASON,
            attempts_remaining=0,
            **common,
        )

    try:
        kind = VerificationKind(snapshot.verification_kind)
        config = parse_verification(kind, snapshot.verification_config)
    except (ValueError, ValidationError) as exc:
        result = VerificationResult.reject(f"Quest is misconfigured: {exc}")
    else:
        identifier = _normalise_identifier(kind, identifier)
        result = await _call_provider(
            verifier, kind, config, identifier,
            user_id=user_id, guild_id=guild_id, timeout=timeout,
        )

    if result.success:
        completed, xp, total = await run_db(
            complete_quest_transaction, engine, snapshot.assignment_id, identifier
        )
        if not completed:
            return CompletionOutcome(
                CompletionStatus.ALREADY_COMPLETED, details=result.details, **common
            )
        logger.info(
            "Quest completed: user=%s guild=%s quest=%s xp=%d",
            user_id, guild_id, snapshot.quest_id, xp,
        )
        return CompletionOutcome(
            CompletionStatus.COMPLETED,
            details=result.details,
            xp_awarded=xp,
            total_xp=total,
            **common,
        )

    if result.permanent_failure:
        await run_db(fail_assignment, engine, snapshot.assignment_id, result.details)
        return CompletionOutcome(CompletionStatus.FAILED, details=result.details, **common)

    return CompletionOutcome(
        CompletionStatus.RETRY,
        details=result.details,
        attempts_remaining=max(0, max_attempts - snapshot.attempts),
        **common,
    )


# ---------------------------------------------------------------------------
# Task-based path
# ---------------------------------------------------------------------------
def _enforce_task_caps(session: Session, task: QuestTask, now: datetime) -> None:
    if task.max_completions is not None:
        total = session.scalar(
            select(func.count(UserTaskCompletion.id)).where(
                UserTaskCompletion.task_id == task.id
            )
        ) or 0
        if total >= task.max_completions:
            raise TaskExhausted(f"Task {task.title!r} has reached its completion limit")

    if task.max_completions_per_day is not None:
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        today = session.scalar(
            select(func.count(UserTaskCompletion.id)).where(
                UserTaskCompletion.task_id == task.id,
                UserTaskCompletion.completed_at >= day_start,
                UserTaskCompletion.completed_at < day_start + timedelta(days=1),
            )
        ) or 0
        if today >= task.max_completions_per_day:
            raise TaskExhausted(f"Task {task.title!r} has reached today's completion limit")


def complete_task(
    engine: Engine,
    user_id: int,
    guild_id: int,
    task_id: str,
    identifier: str | None = None,
    *,
    now: datetime | None = None,
) -> TaskCompletionResult:
    """Record one task completion and close the quest when it was the last.

    Idempotent per (user, task): a repeat returns ``already_completed=True``
    and awards nothing.

    Raises
    ------
    TaskNotFound
        Unknown or inactive task.
    NoActiveQuest
        The user has no active assignment for the task's quest.
    TaskExhausted
        The task hit its overall or daily cap.
    """
    now = now or utcnow()
    with get_session(engine) as session:
        task = session.get(QuestTask, task_id)
        if task is None or not task.active:
            raise TaskNotFound(f"Task {task_id} does not exist or is inactive")

        total_tasks = queries.count_active_tasks(session, task.quest_id)
        base = {
            "task_id": task.id,
            "quest_id": task.quest_id,
            "task_title": task.title,
            "tasks_total": total_tasks,
        }
        # A repeat stays idempotent even after it closed the quest.
        if task.id in queries.get_completed_task_ids(session, user_id, task.quest_id):
            return TaskCompletionResult(
                already_completed=True,
                tasks_completed=queries.count_completed_active_tasks(
                    session, user_id, task.quest_id
                ),
                **base,
            )

        assignment = queries.get_active_assignment(session, user_id, guild_id, for_update=True)
        if assignment is None or assignment.quest_id != task.quest_id:
            raise NoActiveQuest(
                f"User {user_id} has no active assignment for quest {task.quest_id}"
            )

        _enforce_task_caps(session, task, now)

        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(UserTaskCompletion(
                    user_id=user_id,
                    guild_id=guild_id,
                    task_id=task.id,
                    quest_id=task.quest_id,
                    completed_at=now,
                    xp_awarded=task.points,
                    verification_identifier=identifier,
                ))
                session.flush()
        except IntegrityError:
            logger.info("Duplicate completion of task %s by user %s ignored", task.id, user_id)
            return TaskCompletionResult(already_completed=True, **base)

        ledger = apply_xp(session, user_id, guild_id, task.points, quest_completed=False, now=now)

        done = queries.count_completed_active_tasks(session, user_id, task.quest_id)
        fully_completed = done >= total_tasks
        if fully_completed:
            # Task XP lives on the completion rows; the assignment itself adds none.
            _close_assignment(session, assignment, xp_awarded=0, identifier=None, now=now)
            ledger = apply_xp(session, user_id, guild_id, 0, quest_completed=True, now=now)

        result = TaskCompletionResult(
            quest_fully_completed=fully_completed,
            xp_awarded=task.points,
            total_xp=ledger.total_xp,
            tasks_completed=done,
            **base,
        )

    logger.info(
        "Task completed: user=%s task=%s points=%d (%d/%d)%s",
        user_id, task_id, result.xp_awarded, result.tasks_completed, result.tasks_total,
        " → quest complete" if result.quest_fully_completed else "",
    )
    return result


@dataclass(frozen=True, slots=True)
class _TaskCheck:
    task_id: str
    title: str
    verification_kind: str | None
    verification_config: dict | None


def _load_task_for_user(
    engine: Engine, user_id: int, guild_id: int, task_id: str | None
) -> _TaskCheck:
    """Resolve *task_id* (or the next uncompleted task) within the active quest."""
    with get_session(engine) as session:
        assignment = queries.get_active_assignment(session, user_id, guild_id)
        if assignment is None:
            raise NoActiveQuest(f"User {user_id} has no active quest")
        tasks = queries.get_active_tasks(session, assignment.quest_id)
        if task_id is None:
            done = queries.get_completed_task_ids(session, user_id, assignment.quest_id)
            task = next((t for t in tasks if t.id not in done), None)
        else:
            task = next((t for t in tasks if t.id == task_id), None)
        if task is None:
            raise TaskNotFound("No matching open task in your active quest")
        return _TaskCheck(
            task_id=task.id,
            title=task.title,
            verification_kind=task.verification_kind,
            verification_config=dict(task.verification_config or {}),
        )


async def verify_and_complete_task(
    engine: Engine,
    verifier: VerificationProvider,
    user_id: int,
    guild_id: int,
    task_id: str | None = None,
    identifier: str | None = None,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> tuple[TaskCompletionResult | None, VerificationResult]:
    """Run the task's own check (if it has one), then :func:`complete_task`.

    Returns ``(completion, verification)``; ``completion`` is None when the
    check did not pass.
    """
    check = await run_db(_load_task_for_user, engine, user_id, guild_id, task_id)

    if check.verification_kind:
        try:
            kind = VerificationKind(check.verification_kind)
            config = parse_verification(kind, check.verification_config)
        except (ValueError, ValidationError) as exc:
            return None, VerificationResult.reject(f"Task is misconfigured: {exc}")
        identifier = _normalise_identifier(kind, identifier)
        verification = await _call_provider(
            verifier, kind, config, identifier,
            user_id=user_id, guild_id=guild_id, timeout=timeout,
        )
        if not verification.success:
            return None, verification
    else:
        verification = VerificationResult.ok("No verification required.")

    completion = await run_db(
        complete_task, engine, user_id, guild_id, check.task_id, identifier
    )
    return completion, verification


# ---------------------------------------------------------------------------
# Unified entry point
# ---------------------------------------------------------------------------
def get_active_quest_shape(engine: Engine, user_id: int, guild_id: int) -> int | None:
    """Active task count of the user's current quest, or None if unassigned."""
    with get_session(engine) as session:
        assignment = queries.get_active_assignment(session, user_id, guild_id)
        if assignment is None:
            return None
        return queries.count_active_tasks(session, assignment.quest_id)


async def complete_unit(
    engine: Engine,
    verifier: VerificationProvider,
    user_id: int,
    guild_id: int,
    identifier: str | None = None,
    task_id: str | None = None,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    timeout: float = DEFAULT_TIMEOUT,
) -> CompletionOutcome | tuple[TaskCompletionResult | None, VerificationResult]:
    """Complete whatever unit the user's active quest consists of.

    Task-based quests go through :func:`verify_and_complete_task`; quests
    without tasks through :func:`verify_and_complete`.
    """
    task_count = await run_db(get_active_quest_shape, engine, user_id, guild_id)
    if task_count is None:
        return CompletionOutcome(CompletionStatus.NO_ACTIVE_QUEST)
    if task_count > 0:
        return await verify_and_complete_task(
            engine, verifier, user_id, guild_id, task_id, identifier, timeout=timeout
        )
    return await verify_and_complete(
        engine, verifier, user_id, guild_id, identifier,
        max_attempts=max_attempts, timeout=timeout,
    )
