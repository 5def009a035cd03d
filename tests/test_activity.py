"""
tests/test_activity.py — Activity Capture Tests
================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from conftest import GUILD_ID
from questline.database.engine import get_session
from questline.services import activity_service

T0 = datetime(2026, 6, 1, tzinfo=UTC)


def _count(engine, counter, user_id, **kw):
    with get_session(engine) as session:
        return counter(session, user_id, GUILD_ID, **kw)


class TestMessages:
    def test_redelivery_is_ignored(self, db_engine):
        assert activity_service.record_message(db_engine, 1, GUILD_ID, 10, 7)
        assert not activity_service.record_message(db_engine, 1, GUILD_ID, 10, 7)
        assert _count(db_engine, activity_service.count_messages, 7) == 1

    def test_since_window(self, db_engine):
        activity_service.record_message(db_engine, 1, GUILD_ID, 10, 7, posted_at=T0)
        activity_service.record_message(
            db_engine, 2, GUILD_ID, 10, 7, posted_at=T0 + timedelta(days=10)
        )
        since = T0 + timedelta(days=5)
        assert _count(db_engine, activity_service.count_messages, 7, since=since) == 1


class TestReactions:
    def test_self_reaction_skipped(self, db_engine):
        assert not activity_service.record_reaction(db_engine, 1, 10, GUILD_ID, 7, 7, "🔥")
        assert _count(db_engine, activity_service.count_reactions_received, 7) == 0

    def test_add_and_remove(self, db_engine):
        activity_service.record_reaction(db_engine, 1, 10, GUILD_ID, 7, 8, "🔥")
        activity_service.record_reaction(db_engine, 1, 10, GUILD_ID, 7, 8, "🎉")
        assert not activity_service.record_reaction(db_engine, 1, 10, GUILD_ID, 7, 8, "🔥")
        assert _count(db_engine, activity_service.count_reactions_received, 7) == 2

        assert activity_service.remove_reaction(db_engine, 1, 8, "🔥")
        assert not activity_service.remove_reaction(db_engine, 1, 8, "🔥")
        assert _count(db_engine, activity_service.count_reactions_received, 7) == 1


class TestPolls:
    def test_counts_per_creator(self, db_engine):
        activity_service.record_poll(db_engine, 1, 10, GUILD_ID, 7, "Pizza?")
        activity_service.record_poll(db_engine, 2, 11, GUILD_ID, 7)
        activity_service.record_poll(db_engine, 3, 10, GUILD_ID, 8)
        assert _count(db_engine, activity_service.count_polls, 7) == 2
        assert _count(db_engine, activity_service.count_polls, 7, channel_id=11) == 1
