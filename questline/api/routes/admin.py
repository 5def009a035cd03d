"""
questline.api.routes.admin — Quest authoring endpoints (JWT‑protected)
=======================================================================
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from questline.api.deps import AdminDep, EngineDep
from questline.services import catalog_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class TaskCreate(BaseModel):
    title: str
    description: str | None = None
    points: int = 0
    verification_kind: str | None = None
    verification_config: dict[str, Any] | None = None
    max_completions: int | None = None
    max_completions_per_day: int | None = None


class QuestCreate(BaseModel):
    guild_id: int
    name: str
    description: str
    xp_reward: int
    verification_kind: str
    verification_config: dict[str, Any] | None = None
    user_input_description: str | None = None
    max_completions: int | None = None
    active: bool = True
    tasks: list[TaskCreate] = Field(default_factory=list)


class QuestActiveUpdate(BaseModel):
    active: bool


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.post("/quests", status_code=201)
def create_quest(body: QuestCreate, admin: AdminDep, engine: EngineDep):
    quest = catalog_service.create_quest(
        engine,
        guild_id=body.guild_id,
        created_by=admin.user_id,
        name=body.name,
        description=body.description,
        xp_reward=body.xp_reward,
        verification_kind=body.verification_kind,
        verification_config=body.verification_config,
        user_input_description=body.user_input_description,
        max_completions=body.max_completions,
        active=body.active,
        tasks=[t.model_dump() for t in body.tasks],
    )
    logger.info("Admin %s created quest %s", admin.user_id, quest.id)
    tasks = catalog_service.get_active_tasks(engine, quest.id)
    return {
        "id": quest.id,
        "name": quest.name,
        "guild_id": str(quest.guild_id),
        "xp_reward": quest.xp_reward,
        "verification_kind": quest.verification_kind,
        "active": quest.active,
        "tasks": [asdict(t) for t in tasks],
    }


@router.patch("/quests/{quest_id}/active")
def set_quest_active(
    quest_id: str, body: QuestActiveUpdate, admin: AdminDep, engine: EngineDep
):
    if not catalog_service.set_quest_active(engine, quest_id, body.active):
        raise HTTPException(404, "Quest not found")
    return {"id": quest_id, "active": body.active}
