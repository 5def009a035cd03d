"""
tests/test_assignment.py — Quest Assignment Tests
==================================================
Covers assign_quest(): idempotency, eligibility filtering, seeded selection,
the one-active-quest index, and concurrent assignment for the same user.
"""

from __future__ import annotations

import asyncio
import random
from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conftest import GUILD_ID, run_async
from questline.constants import AssignmentStatus
from questline.database import queries
from questline.database.engine import run_db
from questline.database.models import Quest, UserQuest
from questline.errors import NoQuestsAvailable, StoreUnavailable
from questline.services import catalog_service
from questline.services.assignment_service import (
    assign_quest,
    get_active_quest,
    get_completed_quest_ids,
)
from questline.services.completion_service import complete_quest_transaction

USER = 1000


def _assigned_rows(engine, user_id=USER):
    with Session(engine) as session:
        return session.scalars(
            select(UserQuest).where(
                UserQuest.user_id == user_id,
                UserQuest.status == AssignmentStatus.ASSIGNED.value,
            )
        ).all()


class TestAssignQuest:
    def test_assigns_new_quest(self, db_engine, make_quest):
        quest = make_quest()
        result = assign_quest(db_engine, USER, GUILD_ID)

        assert result.already_had is False
        assert result.assignment.quest_id == quest.id
        assert result.assignment.quest_name == quest.name
        assert result.assignment.xp_reward == 100
        assert result.assignment.status == "assigned"
        assert result.assignment.is_task_based is False
        assert len(_assigned_rows(db_engine)) == 1

    def test_second_call_returns_existing(self, db_engine, make_quest):
        make_quest()
        make_quest(name="Follow us")
        first = assign_quest(db_engine, USER, GUILD_ID)
        second = assign_quest(db_engine, USER, GUILD_ID)

        assert second.already_had is True
        assert second.assignment.assignment_id == first.assignment.assignment_id
        assert len(_assigned_rows(db_engine)) == 1

    def test_no_quests_raises(self, db_engine):
        with pytest.raises(NoQuestsAvailable):
            assign_quest(db_engine, USER, GUILD_ID)

    def test_inactive_quests_are_skipped(self, db_engine, make_quest):
        make_quest(active=False)
        with pytest.raises(NoQuestsAvailable):
            assign_quest(db_engine, USER, GUILD_ID)

    def test_other_guild_quests_are_skipped(self, db_engine, make_quest):
        make_quest(guild_id=GUILD_ID + 1)
        with pytest.raises(NoQuestsAvailable):
            assign_quest(db_engine, USER, GUILD_ID)

    def test_exhausted_quests_are_skipped(self, db_engine, make_quest):
        quest = make_quest(max_completions=1)
        first = assign_quest(db_engine, 1, GUILD_ID)
        complete_quest_transaction(db_engine, first.assignment.assignment_id, "a@b.io")

        assert catalog_service.get_quest(db_engine, quest.id).total_completions == 1
        with pytest.raises(NoQuestsAvailable):
            assign_quest(db_engine, 2, GUILD_ID)

    def test_completed_quests_are_not_reassigned(self, db_engine, make_quest):
        done = make_quest(name="Done already")
        result = assign_quest(db_engine, USER, GUILD_ID)
        complete_quest_transaction(db_engine, result.assignment.assignment_id, "a@b.io")

        assert get_completed_quest_ids(db_engine, USER, GUILD_ID) == [done.id]
        with pytest.raises(NoQuestsAvailable):
            assign_quest(db_engine, USER, GUILD_ID)

        fresh = make_quest(name="Brand new")
        assert assign_quest(db_engine, USER, GUILD_ID).assignment.quest_id == fresh.id

    def test_seeded_rng_is_deterministic(self, db_engine, make_quest):
        for i in range(5):
            make_quest(name=f"Quest {i}")

        picks = set()
        for user in (1, 2):
            result = assign_quest(db_engine, user, GUILD_ID, rng=random.Random(42))
            picks.add(result.assignment.quest_id)
        assert len(picks) == 1

    def test_assigned_at_uses_injected_now(self, db_engine, make_quest):
        make_quest()
        now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        result = assign_quest(db_engine, USER, GUILD_ID, now=now)
        assert result.assignment.assigned_at == now

    def test_task_count_reported(self, db_engine, make_quest):
        make_quest(tasks=[{"title": "One"}, {"title": "Two", "points": 5}])
        result = assign_quest(db_engine, USER, GUILD_ID)
        assert result.assignment.task_count == 2
        assert result.assignment.is_task_based

    def test_get_active_quest(self, db_engine, make_quest):
        assert get_active_quest(db_engine, USER, GUILD_ID) is None
        make_quest()
        result = assign_quest(db_engine, USER, GUILD_ID)
        active = get_active_quest(db_engine, USER, GUILD_ID)
        assert active.assignment_id == result.assignment.assignment_id


class TestOneActiveIndex:
    def test_database_rejects_second_assigned_row(self, db_engine, make_quest):
        quest = make_quest()
        with Session(db_engine) as session:
            session.add(UserQuest(user_id=USER, guild_id=GUILD_ID, quest_id=quest.id))
            session.commit()
            session.add(UserQuest(user_id=USER, guild_id=GUILD_ID, quest_id=quest.id))
            with pytest.raises(IntegrityError):
                session.commit()

    def test_resolved_rows_do_not_count(self, db_engine, make_quest):
        quest = make_quest()
        with Session(db_engine) as session:
            for status in ("completed", "failed", "expired"):
                session.add(UserQuest(
                    user_id=USER, guild_id=GUILD_ID, quest_id=quest.id, status=status,
                ))
            session.add(UserQuest(user_id=USER, guild_id=GUILD_ID, quest_id=quest.id))
            session.commit()
            count = session.scalar(select(func.count(UserQuest.id)))
        assert count == 4


class TestConcurrentAssignment:
    """Many interleaved requests for one user end with a single assignment."""

    def test_concurrent_calls_share_one_row(self, file_engine, make_quest):
        for i in range(3):
            make_quest(engine=file_engine, name=f"Quest {i}")

        async def _burst():
            return await asyncio.gather(*[
                run_db(assign_quest, file_engine, USER, GUILD_ID) for _ in range(8)
            ])

        results = run_async(_burst())

        ids = {r.assignment.assignment_id for r in results}
        assert len(ids) == 1
        assert sum(1 for r in results if not r.already_had) == 1
        assert len(_assigned_rows(file_engine)) == 1

    def test_concurrent_users_each_get_one(self, file_engine, make_quest):
        make_quest(engine=file_engine)

        async def _burst():
            return await asyncio.gather(*[
                run_db(assign_quest, file_engine, user, GUILD_ID)
                for user in (1, 2, 3, 1, 2, 3)
            ])

        run_async(_burst())
        for user in (1, 2, 3):
            assert len(_assigned_rows(file_engine, user)) == 1


class TestLostRaces:
    """Interleavings that leave nothing safe to return ask the caller to retry."""

    def test_winner_resolved_before_it_could_be_read(self, db_engine, make_quest, monkeypatch):
        make_quest()
        first = assign_quest(db_engine, USER, GUILD_ID).assignment
        # The lock read and the fallback read both miss the committed row.
        monkeypatch.setattr(queries, "try_lock_active_assignment", lambda *a, **kw: None)
        monkeypatch.setattr(queries, "get_active_assignment", lambda *a, **kw: None)

        with pytest.raises(StoreUnavailable):
            assign_quest(db_engine, USER, GUILD_ID)

        monkeypatch.undo()
        rows = _assigned_rows(db_engine)
        assert [r.id for r in rows] == [first.assignment_id]

    def test_quest_completed_while_assigning(self, db_engine, make_quest, monkeypatch):
        done = make_quest(name="Done already")
        result = assign_quest(db_engine, USER, GUILD_ID)
        complete_quest_transaction(db_engine, result.assignment.assignment_id, "a@b.io")
        # A stale candidate list still offers the quest that was just completed.
        monkeypatch.setattr(
            queries, "get_eligible_quests",
            lambda session, user_id, guild_id: [session.get(Quest, done.id)],
        )

        with pytest.raises(StoreUnavailable):
            assign_quest(db_engine, USER, GUILD_ID)

        assert _assigned_rows(db_engine) == []
        assert get_completed_quest_ids(db_engine, USER, GUILD_ID) == [done.id]
