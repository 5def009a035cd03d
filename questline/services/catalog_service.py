"""
questline.services.catalog_service — Quest & Task Catalog
==========================================================

Read access to quest definitions plus the persistence step of quest
authoring.  All parameters are validated *before* a session is opened so a
malformed quest never reaches the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update

from questline.constants import (
    MAX_QUEST_NAME_LENGTH,
    MAX_TASK_TITLE_LENGTH,
    MAX_XP_REWARD,
    MIN_XP_REWARD,
    VerificationKind,
)
from questline.database import queries
from questline.database.engine import get_session
from questline.database.models import Quest, QuestTask
from questline.engine.verification import parse_verification
from questline.errors import ValidationError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QuestSummary:
    id: str
    guild_id: int
    name: str
    description: str
    xp_reward: int
    verification_kind: str
    active: bool
    max_completions: int | None
    total_completions: int
    task_count: int

    @classmethod
    def from_row(cls, quest: Quest, task_count: int = 0) -> QuestSummary:
        return cls(
            id=quest.id,
            guild_id=quest.guild_id,
            name=quest.name,
            description=quest.description,
            xp_reward=quest.xp_reward,
            verification_kind=quest.verification_kind,
            active=quest.active,
            max_completions=quest.max_completions,
            total_completions=quest.total_completions,
            task_count=task_count,
        )


@dataclass(frozen=True, slots=True)
class TaskSummary:
    id: str
    quest_id: str
    title: str
    points: int
    position: int
    verification_kind: str | None
    active: bool

    @classmethod
    def from_row(cls, task: QuestTask) -> TaskSummary:
        return cls(
            id=task.id,
            quest_id=task.quest_id,
            title=task.title,
            points=task.points,
            position=task.position,
            verification_kind=task.verification_kind,
            active=task.active,
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _as_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a whole number", field=field_name)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a whole number", field=field_name)


def _optional_cap(value: int | None, field_name: str) -> int | None:
    if value is None:
        return None
    cap = _as_int(value, field_name)
    if cap < 1:
        raise ValidationError(f"{field_name} must be at least 1", field=field_name)
    return cap


def validate_quest_fields(
    *,
    name: str,
    description: str,
    xp_reward: int,
    verification_kind: str,
    verification_config: dict | None,
    max_completions: int | None = None,
) -> dict[str, Any]:
    """Return normalised column values or raise :class:`ValidationError`."""
    name = (name or "").strip()
    if not name or len(name) > MAX_QUEST_NAME_LENGTH:
        raise ValidationError(
            f"Quest name must be 1–{MAX_QUEST_NAME_LENGTH} characters", field="name"
        )
    description = (description or "").strip()
    if not description:
        raise ValidationError("Quest description is required", field="description")
    xp_reward = _as_int(xp_reward, "xp_reward")
    if not MIN_XP_REWARD <= xp_reward <= MAX_XP_REWARD:
        raise ValidationError(
            f"xp_reward must be between {MIN_XP_REWARD} and {MAX_XP_REWARD}",
            field="xp_reward",
        )
    config = parse_verification(verification_kind, verification_config)
    return {
        "name": name,
        "description": description,
        "xp_reward": xp_reward,
        "verification_kind": VerificationKind(verification_kind).value,
        "verification_config": config.to_dict(),
        "max_completions": _optional_cap(max_completions, "max_completions"),
    }


def validate_task_fields(
    *,
    title: str,
    points: int = 0,
    description: str | None = None,
    verification_kind: str | None = None,
    verification_config: dict | None = None,
    max_completions: int | None = None,
    max_completions_per_day: int | None = None,
) -> dict[str, Any]:
    title = (title or "").strip()
    if not title or len(title) > MAX_TASK_TITLE_LENGTH:
        raise ValidationError(
            f"Task title must be 1–{MAX_TASK_TITLE_LENGTH} characters", field="title"
        )
    points = _as_int(points, "points")
    if points < 0:
        raise ValidationError("Task points cannot be negative", field="points")
    config_dict = None
    if verification_kind:
        config_dict = parse_verification(verification_kind, verification_config).to_dict()
    return {
        "title": title,
        "description": description,
        "points": points,
        "verification_kind": verification_kind or None,
        "verification_config": config_dict,
        "max_completions": _optional_cap(max_completions, "max_completions"),
        "max_completions_per_day": _optional_cap(
            max_completions_per_day, "max_completions_per_day"
        ),
    }


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def create_quest(
    engine: Engine,
    *,
    guild_id: int,
    created_by: int,
    name: str,
    description: str,
    xp_reward: int,
    verification_kind: str,
    verification_config: dict | None = None,
    user_input_description: str | None = None,
    max_completions: int | None = None,
    active: bool = True,
    tasks: list[dict[str, Any]] | None = None,
) -> QuestSummary:
    """Persist a quest, and optionally its tasks, in one transaction.

    Every field (tasks included) is validated before the session opens.
    """
    fields = validate_quest_fields(
        name=name,
        description=description,
        xp_reward=xp_reward,
        verification_kind=verification_kind,
        verification_config=verification_config,
        max_completions=max_completions,
    )
    task_fields = [validate_task_fields(**t) for t in tasks or []]

    with get_session(engine) as session:
        quest = Quest(
            guild_id=guild_id,
            created_by=created_by,
            user_input_description=user_input_description,
            active=active,
            **fields,
        )
        session.add(quest)
        session.flush()
        for position, values in enumerate(task_fields):
            session.add(QuestTask(quest_id=quest.id, position=position, **values))
        session.flush()
        summary = QuestSummary.from_row(quest, len(task_fields))

    logger.info(
        "Quest created: %s (%s) in guild %s by %s with %d tasks",
        summary.name, summary.id, guild_id, created_by, summary.task_count,
    )
    return summary


def add_task(
    engine: Engine,
    quest_id: str,
    *,
    position: int | None = None,
    **task: Any,
) -> TaskSummary:
    """Append a task to *quest_id* (turning it into a task-based quest).

    Keyword arguments are those of :func:`validate_task_fields`.
    """
    values = validate_task_fields(**task)

    with get_session(engine) as session:
        if session.get(Quest, quest_id) is None:
            raise ValidationError(f"Quest {quest_id} does not exist", field="quest_id")
        if position is None:
            position = session.scalar(
                select(func.coalesce(func.max(QuestTask.position) + 1, 0)).where(
                    QuestTask.quest_id == quest_id
                )
            )
        row = QuestTask(quest_id=quest_id, position=position, **values)
        session.add(row)
        session.flush()
        return TaskSummary.from_row(row)


def set_quest_active(engine: Engine, quest_id: str, active: bool) -> bool:
    """Toggle a quest; returns False if the quest does not exist."""
    with get_session(engine) as session:
        result = session.execute(
            update(Quest).where(Quest.id == quest_id).values(active=active)
        )
        found = result.rowcount > 0
    if found:
        logger.info("Quest %s active=%s", quest_id, active)
    return found


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_quest(engine: Engine, quest_id: str) -> QuestSummary | None:
    with get_session(engine) as session:
        quest = session.get(Quest, quest_id)
        if quest is None:
            return None
        return QuestSummary.from_row(quest, queries.count_active_tasks(session, quest_id))


def list_guild_quests(
    engine: Engine, guild_id: int, *, include_inactive: bool = False
) -> list[QuestSummary]:
    with get_session(engine) as session:
        stmt = select(Quest).where(Quest.guild_id == guild_id)
        if not include_inactive:
            stmt = stmt.where(Quest.active.is_(True))
        quests = session.scalars(stmt.order_by(Quest.created_at.desc())).all()
        return [
            QuestSummary.from_row(q, queries.count_active_tasks(session, q.id))
            for q in quests
        ]


def get_active_tasks(engine: Engine, quest_id: str) -> list[TaskSummary]:
    with get_session(engine) as session:
        return [TaskSummary.from_row(t) for t in queries.get_active_tasks(session, quest_id)]
