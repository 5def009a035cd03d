"""
questline.bot.cogs.activity — Activity Capture
===============================================

Records the minimal metadata that Discord-native verification counts:
messages sent, reactions received (never self-reactions) and polls created.
Message content is never stored.

Uses raw reaction events to avoid cache misses on old messages.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from questline.database.engine import run_db
from questline.services import activity_service

if TYPE_CHECKING:
    from questline.bot.core import QuestlineBot

logger = logging.getLogger(__name__)


class Activity(commands.Cog, name="Activity"):
    """Feeds the message / reaction / poll tables."""

    def __init__(self, bot: QuestlineBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        try:
            await run_db(
                activity_service.record_message,
                self.bot.engine,
                message.id,
                message.guild.id,
                message.channel.id,
                message.author.id,
                message.created_at,
            )
            if message.poll is not None:
                await run_db(
                    activity_service.record_poll,
                    self.bot.engine,
                    message.id,
                    message.channel.id,
                    message.guild.id,
                    message.author.id,
                    message.poll.question,
                    message.created_at,
                )
        except Exception:
            logger.exception("Failed to record message %s", message.id)

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        if payload.guild_id is None:
            return
        try:
            author_id = payload.message_author_id
            if author_id is None:
                channel = self.bot.get_channel(payload.channel_id)
                if not isinstance(channel, discord.abc.Messageable):
                    return
                message = await channel.fetch_message(payload.message_id)
                author_id = message.author.id
            await run_db(
                activity_service.record_reaction,
                self.bot.engine,
                payload.message_id,
                payload.channel_id,
                payload.guild_id,
                author_id,
                payload.user_id,
                str(payload.emoji),
            )
        except Exception:
            logger.exception(
                "Error recording reaction on message %s from user %s",
                payload.message_id, payload.user_id,
            )

    @commands.Cog.listener()
    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        if payload.guild_id is None:
            return
        try:
            await run_db(
                activity_service.remove_reaction,
                self.bot.engine,
                payload.message_id,
                payload.user_id,
                str(payload.emoji),
            )
        except Exception:
            logger.exception(
                "Error removing reaction on message %s from user %s",
                payload.message_id, payload.user_id,
            )


async def setup(bot: QuestlineBot) -> None:
    await bot.add_cog(Activity(bot))
