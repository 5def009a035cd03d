"""
questline.bot.cogs.quests — Quest Commands
===========================================

Hybrid commands for members:
- /quest — get (or see) your active quest
- /confirm — verify your quest, or one task of a task-based quest
- /xp — your XP total, recent quests and current quest
- /leaderboard — top members by XP

Every command is gated by ``bot.rate_limiter`` before any DB work.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from questline.constants import MAX_IDENTIFIER_LENGTH, MIN_IDENTIFIER_LENGTH
from questline.database.engine import run_db
from questline.errors import (
    NoActiveQuest,
    NoQuestsAvailable,
    StoreUnavailable,
    TaskExhausted,
    TaskNotFound,
)
from questline.services import messages
from questline.services.assignment_service import (
    assign_quest,
    get_active_quest,
    get_completed_quest_ids,
)
from questline.services.catalog_service import get_active_tasks
from questline.services.completion_service import (
    CompletionOutcome,
    CompletionStatus,
    complete_unit,
)
from questline.services.ledger_service import get_user_progress, leaderboard

if TYPE_CHECKING:
    from questline.bot.core import QuestlineBot

logger = logging.getLogger(__name__)


class Quests(commands.Cog, name="Quests"):
    """Quest assignment, verification and XP."""

    def __init__(self, bot: QuestlineBot) -> None:
        self.bot = bot

    async def _admit(self, ctx: commands.Context, command: str) -> bool:
        """Rate-limit gate; replies and returns False when the user must wait."""
        if ctx.guild is None:
            await ctx.send(messages.GUILD_ONLY, ephemeral=True)
            return False
        decision = self.bot.rate_limiter.check(ctx.author.id, command)
        if not decision.allowed:
            await ctx.send(
                messages.rate_limited(command, decision.retry_after_ms or 0),
                ephemeral=True,
            )
            return False
        return True

    # -------------------------------------------------------------------
    # /quest
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="quest",
        description="Get a quest to complete for XP.",
    )
    async def quest(self, ctx: commands.Context) -> None:
        if not await self._admit(ctx, "quest"):
            return
        await ctx.defer(ephemeral=True)
        user_id, guild_id = ctx.author.id, ctx.guild.id

        try:
            result = await run_db(assign_quest, self.bot.engine, user_id, guild_id)
        except NoQuestsAvailable:
            completed = await run_db(get_completed_quest_ids, self.bot.engine, user_id, guild_id)
            await ctx.send(
                messages.ALL_QUESTS_COMPLETED if completed else messages.NO_QUESTS_AVAILABLE,
                ephemeral=True,
            )
            return
        except StoreUnavailable:
            await ctx.send(messages.STORE_UNAVAILABLE, ephemeral=True)
            return
        except Exception:
            logger.exception("/quest failed for user %s in guild %s", user_id, guild_id)
            await ctx.send(messages.GENERIC_ERROR, ephemeral=True)
            return

        quest = result.assignment
        if result.already_had:
            await ctx.send(
                messages.active_quest_exists(
                    quest.quest_name, quest.xp_reward, quest.assigned_at
                ),
                ephemeral=True,
            )
            return

        titles = None
        if quest.is_task_based:
            tasks = await run_db(get_active_tasks, self.bot.engine, quest.quest_id)
            titles = [t.title for t in tasks]
        await ctx.send(
            messages.quest_assigned(
                quest.quest_name,
                quest.quest_description,
                quest.xp_reward,
                quest.verification_kind,
                quest.user_input_description,
                titles,
            ),
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /confirm
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="confirm",
        description="Confirm your quest completion.",
    )
    @app_commands.describe(
        identifier="Your email, wallet address, handle or other verification info",
        task="Task number for task-based quests (defaults to the next open task)",
    )
    async def confirm(
        self,
        ctx: commands.Context,
        identifier: str | None = None,
        task: int | None = None,
    ) -> None:
        if not await self._admit(ctx, "confirm"):
            return
        identifier = (identifier or "").strip() or None
        if identifier is not None and not (
            MIN_IDENTIFIER_LENGTH <= len(identifier) <= MAX_IDENTIFIER_LENGTH
        ):
            await ctx.send(
                f"Please provide a valid identifier ({MIN_IDENTIFIER_LENGTH}–"
                f"{MAX_IDENTIFIER_LENGTH} characters).",
                ephemeral=True,
            )
            return

        await ctx.defer(ephemeral=True)
        user_id, guild_id = ctx.author.id, ctx.guild.id
        logger.info("Processing /confirm for user %s in guild %s", user_id, guild_id)

        try:
            task_id = await self._resolve_task_number(user_id, guild_id, task)
            outcome = await complete_unit(
                self.bot.engine,
                self.bot.verifier,
                user_id,
                guild_id,
                identifier,
                task_id,
                max_attempts=self.bot.cfg.max_verification_attempts,
                timeout=self.bot.cfg.verification_timeout_seconds,
            )
        except NoActiveQuest:
            await ctx.send(messages.NO_ACTIVE_QUEST, ephemeral=True)
            return
        except TaskNotFound:
            await ctx.send("That task isn't open in your current quest.", ephemeral=True)
            return
        except TaskExhausted as exc:
            await ctx.send(f"⛔ {exc}. Try again later.", ephemeral=True)
            return
        except StoreUnavailable:
            await ctx.send(messages.STORE_UNAVAILABLE, ephemeral=True)
            return
        except Exception:
            logger.exception("/confirm failed for user %s in guild %s", user_id, guild_id)
            await ctx.send(
                "An error occurred while verifying your quest. Please try again later.",
                ephemeral=True,
            )
            return

        await ctx.send(self._render_outcome(outcome), ephemeral=True)

    async def _resolve_task_number(
        self, user_id: int, guild_id: int, number: int | None
    ) -> str | None:
        """Map a 1-based task number to its ID within the active quest."""
        if number is None:
            return None
        active = await run_db(get_active_quest, self.bot.engine, user_id, guild_id)
        if active is None:
            raise NoActiveQuest(f"User {user_id} has no active quest")
        tasks = await run_db(get_active_tasks, self.bot.engine, active.quest_id)
        if not 1 <= number <= len(tasks):
            raise TaskNotFound(f"Task number {number} out of range")
        return tasks[number - 1].id

    @staticmethod
    def _render_outcome(outcome) -> str:
        if isinstance(outcome, CompletionOutcome):
            if outcome.status == CompletionStatus.COMPLETED:
                return messages.quest_completed(
                    outcome.quest_name, outcome.xp_awarded, outcome.total_xp
                )
            if outcome.status == CompletionStatus.ALREADY_COMPLETED:
                return "This quest was already completed. Run `/quest` for a new one."
            if outcome.status == CompletionStatus.NO_ACTIVE_QUEST:
                return messages.NO_ACTIVE_QUEST
            if outcome.status in (CompletionStatus.FAILED, CompletionStatus.ATTEMPTS_EXHAUSTED):
                return messages.quest_failed(outcome.quest_name, outcome.details)
            return messages.verification_failed(
                outcome.quest_name, outcome.details, outcome.attempts_remaining
            )

        completion, verification = outcome
        if completion is None:
            return f"❌ {verification.details}"
        if completion.already_completed:
            return messages.task_already_completed(completion.task_title)
        return messages.task_completed(
            completion.task_title,
            completion.xp_awarded,
            completion.tasks_completed,
            completion.tasks_total,
            completion.quest_fully_completed,
        )

    # -------------------------------------------------------------------
    # /xp
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="xp",
        description="View your XP and quest progress.",
    )
    async def xp(self, ctx: commands.Context) -> None:
        if not await self._admit(ctx, "xp"):
            return
        try:
            progress = await run_db(
                get_user_progress, self.bot.engine, ctx.author.id, ctx.guild.id
            )
        except StoreUnavailable:
            await ctx.send(messages.STORE_UNAVAILABLE, ephemeral=True)
            return

        current = None
        if progress.current_quest_name:
            current = (
                progress.current_quest_name,
                progress.current_quest_xp or 0,
                progress.current_assigned_at,
            )
        await ctx.send(
            messages.progress(
                progress.total_xp,
                progress.quests_completed,
                [(q.name, q.xp_awarded, q.completed_at) for q in progress.recent_quests],
                current,
            ),
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /leaderboard
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="leaderboard",
        description="View the top members by XP.",
    )
    async def leaderboard(self, ctx: commands.Context) -> None:
        if not await self._admit(ctx, "leaderboard"):
            return
        guild = ctx.guild
        try:
            rows = await run_db(
                leaderboard, self.bot.engine, guild.id, self.bot.cfg.leaderboard_size
            )
        except StoreUnavailable:
            await ctx.send(messages.STORE_UNAVAILABLE, ephemeral=True)
            return

        if not rows:
            await ctx.send(
                "No XP earned yet! Run `/quest` to get started.", ephemeral=True
            )
            return

        def _name(user_id: int) -> str:
            member = guild.get_member(user_id)
            return member.display_name if member else f"User {user_id}"

        embed = discord.Embed(
            title=f"\U0001f3c6 Leaderboard — Top {len(rows)} by XP",
            description=messages.leaderboard_lines(
                [(_name(r.user_id), r.total_xp, r.quests_completed) for r in rows]
            ),
            color=discord.Color.gold(),
        )
        embed.set_footer(text=self.bot.cfg.community_name)
        await ctx.send(embed=embed)


async def setup(bot: QuestlineBot) -> None:
    await bot.add_cog(Quests(bot))
