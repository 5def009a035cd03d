"""
questline.bot.cogs.tasks — Periodic Background Tasks
=====================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Conversation sweep** — every 10 minutes, deletes expired quest-authoring
  conversations.
- **Rate-limiter cleanup** — every 5 minutes, drops idle limiter keys so
  memory stays bounded by recently active users.

DB work goes through ``run_db()`` to avoid blocking the event loop.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from questline.database.engine import run_db
from questline.services.conversation_service import cleanup_expired_conversations

if TYPE_CHECKING:
    from questline.bot.core import QuestlineBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background maintenance tasks."""

    def __init__(self, bot: QuestlineBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.conversation_sweep.start()
        self.rate_limit_cleanup.start()

    async def cog_unload(self) -> None:
        self.conversation_sweep.cancel()
        self.rate_limit_cleanup.cancel()

    # -------------------------------------------------------------------
    # Expired conversations
    # -------------------------------------------------------------------
    @tasks.loop(minutes=10)
    async def conversation_sweep(self):
        try:
            removed = await run_db(cleanup_expired_conversations, self.bot.engine)
            if removed:
                logger.info("Conversation sweep removed %d rows", removed)
        except Exception:
            logger.exception("Conversation sweep failed", extra={"task": "conversations"})

    @conversation_sweep.before_loop
    async def _wait_conversations(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Rate limiter housekeeping
    # -------------------------------------------------------------------
    @tasks.loop(minutes=5)
    async def rate_limit_cleanup(self):
        pruned = self.bot.rate_limiter.cleanup()
        if pruned:
            logger.debug("Rate limiter pruned %d idle keys", pruned)


async def setup(bot: QuestlineBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
