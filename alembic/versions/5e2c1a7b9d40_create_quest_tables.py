"""Create quest, task, assignment, ledger, conversation and activity tables

Revision ID: 5e2c1a7b9d40
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5e2c1a7b9d40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _ts(name: str, *, nullable: bool = False, server_default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.now() if server_default else None,
    )


def upgrade() -> None:
    """Create the full quest schema."""
    op.create_table(
        "quests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("xp_reward", sa.Integer(), nullable=False),
        sa.Column("verification_kind", sa.String(30), nullable=False),
        sa.Column(
            "verification_config",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("user_input_description", sa.String(200), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_completions", sa.Integer(), nullable=True),
        sa.Column("total_completions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.BigInteger(), nullable=False),
        _ts("created_at", nullable=True),
        _ts("updated_at", nullable=True),
        sa.CheckConstraint(
            "xp_reward > 0 AND xp_reward <= 10000", name="ck_quests_xp_reward"
        ),
    )
    op.create_index("ix_quests_guild_active", "quests", ["guild_id", "active"])

    op.create_table(
        "quest_tasks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "quest_id",
            sa.String(36),
            sa.ForeignKey("quests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("verification_kind", sa.String(30), nullable=True),
        sa.Column("verification_config", postgresql.JSONB(), nullable=True),
        sa.Column("user_input_description", sa.String(200), nullable=True),
        sa.Column("max_completions", sa.Integer(), nullable=True),
        sa.Column("max_completions_per_day", sa.Integer(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at", nullable=True),
        sa.CheckConstraint("points >= 0", name="ck_quest_tasks_points"),
    )
    op.create_index(
        "ix_quest_tasks_quest_position", "quest_tasks", ["quest_id", "position"]
    )

    op.create_table(
        "user_quests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "quest_id",
            sa.String(36),
            sa.ForeignKey("quests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="assigned"),
        _ts("assigned_at"),
        _ts("completed_at", nullable=True, server_default=False),
        sa.Column("verification_identifier", sa.Text(), nullable=True),
        sa.Column("verification_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("xp_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('assigned', 'completed', 'failed', 'expired')",
            name="ck_user_quests_status",
        ),
    )
    # At most one active assignment per user per guild.
    op.create_index(
        "uq_user_quests_one_active",
        "user_quests",
        ["user_id", "guild_id"],
        unique=True,
        postgresql_where=sa.text("status = 'assigned'"),
    )
    op.create_index(
        "ix_user_quests_user_status", "user_quests", ["user_id", "guild_id", "status"]
    )
    op.create_index("ix_user_quests_quest", "user_quests", ["quest_id"])

    op.create_table(
        "user_task_completions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "task_id",
            sa.String(36),
            sa.ForeignKey("quest_tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "quest_id",
            sa.String(36),
            sa.ForeignKey("quests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _ts("completed_at"),
        sa.Column("xp_awarded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("verification_identifier", sa.Text(), nullable=True),
        sa.UniqueConstraint("user_id", "task_id", name="uq_user_task_completions_user_task"),
    )
    op.create_index(
        "ix_user_task_completions_user", "user_task_completions", ["user_id", "guild_id"]
    )
    op.create_index(
        "ix_user_task_completions_quest", "user_task_completions", ["quest_id"]
    )

    op.create_table(
        "user_xp",
        sa.Column("user_id", sa.BigInteger(), primary_key=True),
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("total_xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quests_completed", sa.Integer(), nullable=False, server_default="0"),
        _ts("last_quest_at", nullable=True, server_default=False),
        _ts("created_at", nullable=True),
    )
    op.create_index("ix_user_xp_leaderboard", "user_xp", ["guild_id", "total_xp"])

    op.create_table(
        "quest_conversations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("channel_id", sa.BigInteger(), nullable=True),
        sa.Column(
            "conversation_state",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "messages",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("expires_at", server_default=False),
        sa.UniqueConstraint("user_id", "guild_id", name="uq_quest_conversations_user_guild"),
    )
    op.create_index(
        "ix_quest_conversations_expires", "quest_conversations", ["expires_at"]
    )

    op.create_table(
        "messages",
        sa.Column("message_id", sa.BigInteger(), primary_key=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("channel_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        _ts("posted_at", server_default=False),
    )
    op.create_index(
        "ix_messages_user_guild_time", "messages", ["user_id", "guild_id", "posted_at"]
    )

    op.create_table(
        "message_reactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("message_id", sa.BigInteger(), nullable=False),
        sa.Column("channel_id", sa.BigInteger(), nullable=False),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("author_id", sa.BigInteger(), nullable=False),
        sa.Column("reactor_id", sa.BigInteger(), nullable=False),
        sa.Column("emoji", sa.String(100), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint(
            "message_id", "reactor_id", "emoji", name="uq_message_reactions_unique"
        ),
    )
    op.create_index(
        "ix_message_reactions_author", "message_reactions", ["author_id", "guild_id"]
    )

    op.create_table(
        "polls",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("message_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("channel_id", sa.BigInteger(), nullable=False),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("creator_id", sa.BigInteger(), nullable=False),
        sa.Column("question", sa.Text(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_polls_creator", "polls", ["creator_id", "guild_id"])


def downgrade() -> None:
    """Drop the quest schema."""
    op.drop_index("ix_polls_creator", table_name="polls")
    op.drop_table("polls")
    op.drop_index("ix_message_reactions_author", table_name="message_reactions")
    op.drop_table("message_reactions")
    op.drop_index("ix_messages_user_guild_time", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_quest_conversations_expires", table_name="quest_conversations")
    op.drop_table("quest_conversations")
    op.drop_index("ix_user_xp_leaderboard", table_name="user_xp")
    op.drop_table("user_xp")
    op.drop_index("ix_user_task_completions_quest", table_name="user_task_completions")
    op.drop_index("ix_user_task_completions_user", table_name="user_task_completions")
    op.drop_table("user_task_completions")
    op.drop_index("ix_user_quests_quest", table_name="user_quests")
    op.drop_index("ix_user_quests_user_status", table_name="user_quests")
    op.drop_index("uq_user_quests_one_active", table_name="user_quests")
    op.drop_table("user_quests")
    op.drop_index("ix_quest_tasks_quest_position", table_name="quest_tasks")
    op.drop_table("quest_tasks")
    op.drop_index("ix_quests_guild_active", table_name="quests")
    op.drop_table("quests")
