"""
questline.api.routes.public — Read-only public endpoints
=========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Query

from questline.api.deps import EngineDep
from questline.services import catalog_service, ledger_service

router = APIRouter(tags=["public"])


def _iso(value) -> str | None:
    return value.isoformat() if value else None


@router.get("/guilds/{guild_id}/leaderboard")
def get_leaderboard(
    guild_id: int,
    engine: EngineDep,
    limit: int = Query(10, ge=1, le=100),
):
    rows = ledger_service.leaderboard(engine, guild_id, limit)
    return {
        "guild_id": str(guild_id),
        "entries": [
            {
                "rank": i,
                "user_id": str(r.user_id),
                "total_xp": r.total_xp,
                "quests_completed": r.quests_completed,
                "last_quest_at": _iso(r.last_quest_at),
            }
            for i, r in enumerate(rows, 1)
        ],
    }


@router.get("/guilds/{guild_id}/users/{user_id}/progress")
def get_progress(guild_id: int, user_id: int, engine: EngineDep):
    progress = ledger_service.get_user_progress(engine, user_id, guild_id)
    current = None
    if progress.current_quest_name:
        current = {
            "name": progress.current_quest_name,
            "xp_reward": progress.current_quest_xp,
            "assigned_at": _iso(progress.current_assigned_at),
        }
    return {
        "user_id": str(user_id),
        "total_xp": progress.total_xp,
        "quests_completed": progress.quests_completed,
        "recent_quests": [
            {"name": q.name, "xp_awarded": q.xp_awarded, "completed_at": _iso(q.completed_at)}
            for q in progress.recent_quests
        ],
        "current_quest": current,
    }


@router.get("/guilds/{guild_id}/quests")
def list_quests(guild_id: int, engine: EngineDep):
    quests = catalog_service.list_guild_quests(engine, guild_id)
    return {
        "quests": [
            {
                "id": q.id,
                "name": q.name,
                "description": q.description,
                "xp_reward": q.xp_reward,
                "verification_kind": q.verification_kind,
                "task_count": q.task_count,
                "remaining": (
                    None if q.max_completions is None
                    else max(0, q.max_completions - q.total_completions)
                ),
            }
            for q in quests
        ]
    }
