"""
questline.services.verification_service — Verification Providers
=================================================================

Concrete implementations of the
:class:`~questline.engine.verification.VerificationProvider` contract:

- :class:`HttpVerifier` — calls the quest's external API with httpx and
  evaluates the configured success condition.
- :class:`DiscordNativeVerifier` — role membership from the guild member
  cache, message / reaction / poll counts from the activity tables.
- :class:`QuestVerifier` — dispatches on verification kind.

Failure classification is explicit: ``VerificationResult.reject`` (permanent)
only for configuration problems; everything the user can still fix, and
every network hiccup, is ``VerificationResult.retry``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import discord
import httpx

from questline.constants import VerificationKind, utcnow
from questline.database.engine import get_session, run_db
from questline.engine.verification import (
    ActivityCountCheck,
    HttpCheck,
    RoleCheck,
    VerificationConfig,
    VerificationResult,
    build_request,
    compare,
    evaluate_condition,
)
from questline.services import activity_service

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 10.0


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------
class HttpVerifier:
    """Verify identifiers against an external JSON API.

    Pass a shared :class:`httpx.AsyncClient` (tests inject one built on
    ``httpx.MockTransport``); otherwise a client is created per call.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self._client = client
        self.timeout = timeout

    async def verify(
        self,
        kind: VerificationKind,
        config: VerificationConfig,
        identifier: str | None,
        *,
        user_id: int,
        guild_id: int,
    ) -> VerificationResult:
        if not isinstance(config, HttpCheck):
            return VerificationResult.reject(f"{kind} quests need an HTTP check")
        if not identifier:
            return VerificationResult.retry("An identifier is required for this quest.")

        url, params = build_request(config, identifier)
        headers = {"Content-Type": "application/json", **config.headers}
        request_kwargs: dict = {"headers": headers, "timeout": self.timeout}
        if config.method == "GET":
            request_kwargs["params"] = params
        elif params:
            request_kwargs["json"] = params

        # Log only the host: URLs may embed the user's identifier.
        logger.info(
            "Calling verification API host=%s method=%s",
            urlsplit(url).hostname, config.method,
        )
        try:
            if self._client is not None:
                response = await self._client.request(config.method, url, **request_kwargs)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(config.method, url, **request_kwargs)
        except httpx.TimeoutException:
            logger.warning("Verification API timed out (host=%s)", urlsplit(url).hostname)
            return VerificationResult.retry("The verification service timed out.")
        except httpx.HTTPError as exc:
            logger.warning("Verification API request failed: %s", type(exc).__name__)
            return VerificationResult.retry("The verification service is unreachable.")

        if not response.is_success:
            logger.warning(
                "Verification API returned %d %s", response.status_code, response.reason_phrase
            )
            return VerificationResult.retry(
                f"The verification service answered with HTTP {response.status_code}."
            )

        try:
            data = response.json()
        except ValueError:
            return VerificationResult.retry("The verification service returned invalid JSON.")

        if evaluate_condition(data, config.success_condition):
            return VerificationResult.ok("Verified by the external service.")
        return VerificationResult.retry(
            "We couldn't confirm this yet. Make sure the action is complete."
        )


# ---------------------------------------------------------------------------
# Discord-native
# ---------------------------------------------------------------------------
def _count_activity(
    engine: Engine,
    kind: VerificationKind,
    user_id: int,
    guild_id: int,
    check: ActivityCountCheck,
) -> int:
    since = utcnow() - timedelta(days=check.since_days) if check.since_days else None
    counter = {
        VerificationKind.PLATFORM_MESSAGE_COUNT: activity_service.count_messages,
        VerificationKind.PLATFORM_REACTION_COUNT: activity_service.count_reactions_received,
        VerificationKind.PLATFORM_POLL_COUNT: activity_service.count_polls,
    }[kind]
    with get_session(engine) as session:
        return counter(session, user_id, guild_id, channel_id=check.channel_id, since=since)


_ACTIVITY_NOUNS = {
    VerificationKind.PLATFORM_MESSAGE_COUNT: "messages sent",
    VerificationKind.PLATFORM_REACTION_COUNT: "reactions received",
    VerificationKind.PLATFORM_POLL_COUNT: "polls created",
}


class DiscordNativeVerifier:
    """Checks that need no identifier: roles and activity counts."""

    def __init__(self, engine: Engine, client: discord.Client | None = None) -> None:
        self.engine = engine
        self.client = client

    async def verify(
        self,
        kind: VerificationKind,
        config: VerificationConfig,
        identifier: str | None,
        *,
        user_id: int,
        guild_id: int,
    ) -> VerificationResult:
        if isinstance(config, RoleCheck):
            return await self._verify_role(user_id, guild_id, config)
        if isinstance(config, ActivityCountCheck) and kind in _ACTIVITY_NOUNS:
            return await self._verify_count(kind, user_id, guild_id, config)
        return VerificationResult.reject(f"Unsupported Discord verification kind: {kind}")

    async def _verify_role(
        self, user_id: int, guild_id: int, check: RoleCheck
    ) -> VerificationResult:
        role_name = check.role_name or str(check.role_id)
        if self.client is None or not self.client.is_ready():
            return VerificationResult.retry("The bot is still starting up. Try again shortly.")

        guild = self.client.get_guild(guild_id)
        if guild is None:
            return VerificationResult.retry("Could not access the server. Please try again.")

        member = guild.get_member(user_id)
        if member is None:
            try:
                member = await guild.fetch_member(user_id)
            except discord.NotFound:
                return VerificationResult.retry("Could not find you in this server.")
            except discord.HTTPException:
                logger.exception("Member fetch failed for role check in guild %s", guild_id)
                return VerificationResult.retry("Discord is unavailable. Please try again.")

        if any(role.id == check.role_id for role in member.roles):
            return VerificationResult.ok(
                f'You have the "{role_name}" role!',
                current_value=role_name,
                required_value=role_name,
            )
        return VerificationResult.retry(
            f'You need the "{role_name}" role to complete this quest.',
            required_value=role_name,
        )

    async def _verify_count(
        self,
        kind: VerificationKind,
        user_id: int,
        guild_id: int,
        check: ActivityCountCheck,
    ) -> VerificationResult:
        count = await run_db(_count_activity, self.engine, kind, user_id, guild_id, check)
        window = f" in the last {check.since_days} days" if check.since_days else ""
        noun = _ACTIVITY_NOUNS[kind]
        if compare(count, check.operator, check.threshold):
            return VerificationResult.ok(
                f"{count} {noun}{window}. Quest complete!",
                current_value=count,
                required_value=check.threshold,
            )
        return VerificationResult.retry(
            f"{count} {noun}{window}; you need {check.operator} {check.threshold}.",
            current_value=count,
            required_value=check.threshold,
        )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------
class QuestVerifier:
    """Route each kind to the provider that can check it."""

    def __init__(self, http: HttpVerifier, native: DiscordNativeVerifier) -> None:
        self.http = http
        self.native = native

    async def verify(
        self,
        kind: VerificationKind,
        config: VerificationConfig,
        identifier: str | None,
        *,
        user_id: int,
        guild_id: int,
    ) -> VerificationResult:
        provider = self.native if kind.is_platform_native else self.http
        return await provider.verify(
            kind, config, identifier, user_id=user_id, guild_id=guild_id
        )
