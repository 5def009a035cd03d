"""
tests/test_ledger.py — XP Ledger Tests
=======================================
apply_xp() is the only writer of user_xp; these tests pin its arithmetic,
the leaderboard ordering and the /xp progress snapshot.
"""

from __future__ import annotations

import pytest

from conftest import GUILD_ID
from questline.database.engine import get_session
from questline.errors import ValidationError
from questline.services import catalog_service
from questline.services.assignment_service import assign_quest
from questline.services.completion_service import complete_quest_transaction, complete_task
from questline.services.ledger_service import (
    add_xp,
    apply_xp,
    get_user_progress,
    get_xp,
    leaderboard,
)


class TestApplyXp:
    def test_creates_row_on_first_credit(self, db_engine):
        with get_session(db_engine) as session:
            row = apply_xp(session, 1, GUILD_ID, 50, quest_completed=True)
            assert row.total_xp == 50
            assert row.quests_completed == 1

        entry = get_xp(db_engine, 1, GUILD_ID)
        assert entry.total_xp == 50
        assert entry.last_quest_at is not None

    def test_increments_existing_row(self, db_engine):
        add_xp(db_engine, 1, GUILD_ID, 50)
        add_xp(db_engine, 1, GUILD_ID, 25)
        entry = get_xp(db_engine, 1, GUILD_ID)
        assert entry.total_xp == 75
        assert entry.quests_completed == 2

    def test_task_credit_does_not_count_a_quest(self, db_engine):
        with get_session(db_engine) as session:
            apply_xp(session, 1, GUILD_ID, 10, quest_completed=False)
        entry = get_xp(db_engine, 1, GUILD_ID)
        assert entry.total_xp == 10
        assert entry.quests_completed == 0
        assert entry.last_quest_at is None

    def test_negative_amount_rejected(self, db_engine):
        with pytest.raises(ValidationError):
            with get_session(db_engine) as session:
                apply_xp(session, 1, GUILD_ID, -5, quest_completed=False)
        assert get_xp(db_engine, 1, GUILD_ID) is None

    def test_guilds_are_separate(self, db_engine):
        add_xp(db_engine, 1, GUILD_ID, 50)
        add_xp(db_engine, 1, GUILD_ID + 1, 5)
        assert get_xp(db_engine, 1, GUILD_ID).total_xp == 50
        assert get_xp(db_engine, 1, GUILD_ID + 1).total_xp == 5


class TestLeaderboard:
    def test_sorted_by_xp_desc(self, db_engine):
        for user, xp in ((1, 30), (2, 90), (3, 60)):
            add_xp(db_engine, user, GUILD_ID, xp)
        add_xp(db_engine, 4, GUILD_ID + 1, 1000)

        rows = leaderboard(db_engine, GUILD_ID)
        assert [r.user_id for r in rows] == [2, 3, 1]

    def test_limit(self, db_engine):
        for user in range(1, 6):
            add_xp(db_engine, user, GUILD_ID, user * 10)
        rows = leaderboard(db_engine, GUILD_ID, limit=2)
        assert [r.total_xp for r in rows] == [50, 40]

    def test_empty(self, db_engine):
        assert leaderboard(db_engine, GUILD_ID) == []


class TestUserProgress:
    def test_new_user(self, db_engine):
        progress = get_user_progress(db_engine, 1, GUILD_ID)
        assert progress.total_xp == 0
        assert progress.quests_completed == 0
        assert progress.recent_quests == []
        assert progress.current_quest_name is None

    def test_completed_and_current(self, db_engine, make_quest):
        make_quest(name="First")
        first = assign_quest(db_engine, 1, GUILD_ID).assignment
        complete_quest_transaction(db_engine, first.assignment_id, "a@b.io")
        make_quest(name="Second", xp_reward=40)
        assign_quest(db_engine, 1, GUILD_ID)

        progress = get_user_progress(db_engine, 1, GUILD_ID)
        assert progress.total_xp == 100
        assert progress.quests_completed == 1
        assert [(q.name, q.xp_awarded) for q in progress.recent_quests] == [("First", 100)]
        assert progress.current_quest_name == "Second"
        assert progress.current_quest_xp == 40

    def test_task_quest_shows_task_xp(self, db_engine, make_quest):
        quest = make_quest(
            name="Onboarding",
            tasks=[{"title": "A", "points": 15}, {"title": "B", "points": 25}],
        )
        assign_quest(db_engine, 1, GUILD_ID)
        for task in catalog_service.get_active_tasks(db_engine, quest.id):
            complete_task(db_engine, 1, GUILD_ID, task.id)

        progress = get_user_progress(db_engine, 1, GUILD_ID)
        assert progress.total_xp == 40
        assert [(q.name, q.xp_awarded) for q in progress.recent_quests] == [("Onboarding", 40)]
