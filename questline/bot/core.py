"""
questline.bot.core — Bot Instance & Cog Loader
===============================================

:class:`QuestlineBot` is a ``commands.Bot`` subclass that carries the
project-wide state every cog needs:

- ``bot.cfg``          — parsed :class:`~questline.config.QuestlineConfig`
- ``bot.engine``       — SQLAlchemy engine (all DB work goes through ``run_db``)
- ``bot.rate_limiter`` — the per-user command limiter, owned by the bot
- ``bot.verifier``     — dispatching verification provider

Cogs are loaded from :data:`EXTENSIONS` in ``setup_hook``; the slash-command
tree is synced on ready (guild-scoped when ``DEV_GUILD_ID`` is set).
"""

from __future__ import annotations

import logging
import os

import discord
import httpx
from discord.ext import commands
from sqlalchemy import Engine

from questline.config import QuestlineConfig
from questline.engine.ratelimit import CommandRateLimiter
from questline.services.verification_service import (
    DiscordNativeVerifier,
    HttpVerifier,
    QuestVerifier,
)

logger = logging.getLogger(__name__)

EXTENSIONS: list[str] = [
    "questline.bot.cogs.quests",
    "questline.bot.cogs.activity",
    "questline.bot.cogs.tasks",
]


class QuestlineBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`QuestlineConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: QuestlineConfig, engine: Engine) -> None:
        intents = discord.Intents.default()
        intents.message_content = False   # only metadata is recorded
        intents.members = True            # Privileged: role checks need the member cache
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} quests",
        )

        self.cfg = cfg
        self.engine = engine
        self.rate_limiter = CommandRateLimiter(cfg.rate_limits)
        self.http_client = httpx.AsyncClient()
        self.verifier = QuestVerifier(
            http=HttpVerifier(self.http_client, timeout=cfg.verification_timeout_seconds),
            native=DiscordNativeVerifier(engine, self),
        )

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all cog extensions; a broken cog is logged, not fatal."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        await self.http_client.aclose()
        await super().close()
