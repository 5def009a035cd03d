"""
tests/test_catalog.py — Quest Catalog Tests
============================================
Authoring validation, task creation and the read helpers.
"""

from __future__ import annotations

import pytest

from conftest import ADMIN_ID, GUILD_ID
from questline.errors import ValidationError
from questline.services import catalog_service


class TestCreateQuest:
    def test_defaults(self, make_quest):
        quest = make_quest()
        assert quest.active
        assert quest.total_completions == 0
        assert quest.task_count == 0
        assert quest.verification_kind == "email"

    def test_name_is_trimmed(self, make_quest):
        assert make_quest(name="  Spaced  ").name == "Spaced"

    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"name": ""}, "name"),
            ({"name": "x" * 101}, "name"),
            ({"description": "   "}, "description"),
            ({"xp_reward": 0}, "xp_reward"),
            ({"xp_reward": 10_001}, "xp_reward"),
            ({"xp_reward": "lots"}, "xp_reward"),
            ({"xp_reward": True}, "xp_reward"),
            ({"max_completions": 0}, "max_completions"),
            ({"max_completions": "many"}, "max_completions"),
            ({"verification_kind": "smoke_signal"}, "verification_kind"),
            ({"verification_config": {"endpoint": "not-a-url"}}, "endpoint"),
        ],
    )
    def test_rejects_bad_fields(self, db_engine, make_quest, overrides, field):
        with pytest.raises(ValidationError) as exc:
            make_quest(**overrides)
        assert exc.value.field == field
        assert catalog_service.list_guild_quests(db_engine, GUILD_ID) == []

    def test_stores_normalised_config(self, db_engine, make_quest):
        quest = make_quest(
            name="Hold a role",
            verification_kind="discord_role",
            verification_config={"roleId": "42"},
        )
        assert quest.verification_kind == "discord_role"

    def test_with_tasks(self, db_engine, make_quest):
        quest = make_quest(tasks=[
            {"title": "Read the rules", "points": 5},
            {"title": "Introduce yourself", "points": 15, "max_completions_per_day": 50},
        ])
        tasks = catalog_service.get_active_tasks(db_engine, quest.id)
        assert quest.task_count == 2
        assert [(t.title, t.points, t.position) for t in tasks] == [
            ("Read the rules", 5, 0),
            ("Introduce yourself", 15, 1),
        ]

    def test_bad_task_persists_nothing(self, db_engine, make_quest):
        with pytest.raises(ValidationError) as exc:
            make_quest(tasks=[{"title": "Fine"}, {"title": "Bad", "points": -1}])
        assert exc.value.field == "points"
        assert catalog_service.list_guild_quests(db_engine, GUILD_ID) == []


class TestTasks:
    def test_add_task_appends(self, db_engine, make_quest):
        quest = make_quest(tasks=[{"title": "First"}])
        task = catalog_service.add_task(db_engine, quest.id, title="Second", points=3)
        assert task.position == 1
        assert catalog_service.get_quest(db_engine, quest.id).task_count == 2

    def test_add_task_to_missing_quest(self, db_engine):
        with pytest.raises(ValidationError):
            catalog_service.add_task(db_engine, "missing", title="Orphan")

    def test_task_verification_is_validated(self, db_engine, make_quest):
        quest = make_quest()
        with pytest.raises(ValidationError):
            catalog_service.add_task(
                db_engine, quest.id, title="Role", verification_kind="discord_role",
                verification_config={},
            )

    def test_task_title_required(self):
        with pytest.raises(ValidationError) as exc:
            catalog_service.validate_task_fields(title="  ")
        assert exc.value.field == "title"

    @pytest.mark.parametrize("points", ["ten", None, ""])
    def test_task_points_must_be_whole_numbers(self, points):
        with pytest.raises(ValidationError) as exc:
            catalog_service.validate_task_fields(title="Check in", points=points)
        assert exc.value.field == "points"


class TestReads:
    def test_toggle_active(self, db_engine, make_quest):
        quest = make_quest()
        assert catalog_service.set_quest_active(db_engine, quest.id, False)
        assert catalog_service.list_guild_quests(db_engine, GUILD_ID) == []
        listed = catalog_service.list_guild_quests(db_engine, GUILD_ID, include_inactive=True)
        assert [q.id for q in listed] == [quest.id]

    def test_toggle_missing(self, db_engine):
        assert not catalog_service.set_quest_active(db_engine, "missing", True)

    def test_get_missing(self, db_engine):
        assert catalog_service.get_quest(db_engine, "missing") is None

    def test_list_is_per_guild(self, db_engine, make_quest):
        make_quest()
        make_quest(guild_id=GUILD_ID + 1, created_by=ADMIN_ID)
        assert len(catalog_service.list_guild_quests(db_engine, GUILD_ID)) == 1
