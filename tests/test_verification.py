"""
tests/test_verification.py — Verification Config & Provider Tests
==================================================================
Pure parsing/evaluation, the httpx provider against a MockTransport, and
the Discord-native provider against recorded activity.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import httpx
import pytest

from conftest import GUILD_ID, run_async
from questline.constants import VerificationKind
from questline.engine.verification import (
    ActivityCountCheck,
    HttpCheck,
    RoleCheck,
    SuccessCondition,
    VerificationResult,
    build_request,
    evaluate_condition,
    parse_verification,
    substitute_placeholders,
)
from questline.errors import ValidationError
from questline.services import activity_service
from questline.services.verification_service import (
    DiscordNativeVerifier,
    HttpVerifier,
    QuestVerifier,
)

EMAIL_CONFIG = {
    "endpoint": "https://api.example.com/subscribers",
    "params": {"email": "[EMAIL]"},
    "success_condition": {"field": "data.subscribed", "operator": "=", "value": True},
}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------
class TestParseVerification:
    def test_http_check(self):
        config = parse_verification("email", EMAIL_CONFIG)
        assert isinstance(config, HttpCheck)
        assert config.method == "GET"
        assert config.success_condition.field == "data.subscribed"

    def test_camel_case_keys(self):
        config = parse_verification(
            "wallet_address",
            {"api_endpoint": "https://chain.example/[WALLET_ADDRESS]",
             "successCondition": {"field": "balance", "operator": ">", "value": 0}},
        )
        assert config.endpoint == "https://chain.example/[WALLET_ADDRESS]"

    def test_rejects_non_http_endpoint(self):
        with pytest.raises(ValidationError) as exc:
            parse_verification("email", {"endpoint": "ftp://nope"})
        assert exc.value.field == "endpoint"

    def test_rejects_unknown_kind(self):
        with pytest.raises(ValidationError):
            parse_verification("carrier_pigeon", {})

    def test_role_check(self):
        config = parse_verification("discord_role", {"roleId": "123456", "role_name": "OG"})
        assert config == RoleCheck(role_id=123456, role_name="OG")

    def test_role_requires_id(self):
        with pytest.raises(ValidationError):
            parse_verification("discord_role", {})

    def test_activity_defaults(self):
        config = parse_verification("discord_poll_count", None)
        assert config == ActivityCountCheck(threshold=1, operator=">=")

    def test_lookback_bounds(self):
        with pytest.raises(ValidationError):
            parse_verification("discord_message_count", {"since_days": 400})
        config = parse_verification("discord_message_count", {"sinceDays": 7, "threshold": 3})
        assert config.since_days == 7

    def test_round_trip_through_to_dict(self):
        config = parse_verification("discord_reaction_count", {"threshold": 5, "channel_id": "77"})
        assert parse_verification("discord_reaction_count", config.to_dict()) == config


class TestEvaluation:
    def test_placeholders(self):
        assert substitute_placeholders("/u/[email]", "a b@c.io", encode=True) == "/u/a%20b%40c.io"
        assert substitute_placeholders("[DISCORD_ID]", "42") == "42"

    def test_build_request(self):
        check = parse_verification("email", {
            "endpoint": "https://api.example.com/check/[EMAIL]",
            "params": {"email": "[EMAIL]", "list": 7},
        })
        url, params = build_request(check, "a@b.io")
        assert url == "https://api.example.com/check/a%40b.io"
        assert params == {"email": "a@b.io", "list": "7"}

    @pytest.mark.parametrize(
        ("data", "condition", "expected"),
        [
            ({"balance": 5}, SuccessCondition("balance", ">", 0), True),
            ({"balance": "0"}, SuccessCondition("balance", ">", 0), False),
            ({"a": {"b": 3}}, SuccessCondition("a.b", ">=", 3), True),
            ({"status": "active"}, SuccessCondition("status", "=", "active"), True),
            ({"status": "active"}, SuccessCondition("status", "!=", "banned"), True),
            ({}, SuccessCondition("id", "exists"), False),
            ({"id": 0}, SuccessCondition("id", "exists"), True),
            ({"items": []}, SuccessCondition("items", "not_empty"), False),
            ({"items": [1]}, SuccessCondition("items", "not_empty"), True),
            ({"flag": True}, SuccessCondition("flag", "=", True), True),
        ],
    )
    def test_conditions(self, data, condition, expected):
        assert evaluate_condition(data, condition) is expected


# ---------------------------------------------------------------------------
# HTTP provider
# ---------------------------------------------------------------------------
def _http_verifier(handler) -> HttpVerifier:
    return HttpVerifier(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _verify(provider, kind, config, identifier):
    return run_async(provider.verify(kind, config, identifier, user_id=1, guild_id=GUILD_ID))


class TestHttpVerifier:
    config = parse_verification("email", EMAIL_CONFIG)

    def test_success(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"subscribed": True}})

        result = _verify(_http_verifier(handler), VerificationKind.EMAIL, self.config, "a@b.io")
        assert result.success
        assert seen[0].url.params["email"] == "a@b.io"
        assert seen[0].method == "GET"

    def test_condition_not_met_is_retry(self):
        provider = _http_verifier(
            lambda request: httpx.Response(200, json={"data": {"subscribed": False}})
        )
        result = _verify(provider, VerificationKind.EMAIL, self.config, "a@b.io")
        assert not result.success
        assert not result.permanent_failure

    def test_http_error_status_is_retry(self):
        provider = _http_verifier(lambda request: httpx.Response(503))
        result = _verify(provider, VerificationKind.EMAIL, self.config, "a@b.io")
        assert not result.permanent_failure
        assert "503" in result.details

    def test_timeout_is_retry(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = _verify(_http_verifier(handler), VerificationKind.EMAIL, self.config, "a@b.io")
        assert not result.success
        assert not result.permanent_failure
        assert "timed out" in result.details

    def test_invalid_json_is_retry(self):
        provider = _http_verifier(lambda request: httpx.Response(200, text="<html>"))
        result = _verify(provider, VerificationKind.EMAIL, self.config, "a@b.io")
        assert "invalid JSON" in result.details

    def test_post_sends_json_body(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": 1})

        config = parse_verification("twitter_handle", {
            "endpoint": "https://social.example/follows",
            "method": "post",
            "params": {"handle": "[TWITTER_HANDLE]"},
            "success_condition": {"field": "ok", "operator": "exists"},
        })
        result = _verify(_http_verifier(handler), VerificationKind.SOCIAL_HANDLE, config, "@me")
        assert result.success
        assert bodies == [{"handle": "@me"}]

    def test_missing_identifier(self):
        provider = _http_verifier(lambda request: httpx.Response(200, json={}))
        result = _verify(provider, VerificationKind.EMAIL, self.config, None)
        assert not result.success
        assert not result.permanent_failure

    def test_wrong_config_shape_is_permanent(self):
        provider = _http_verifier(lambda request: httpx.Response(200, json={}))
        result = _verify(provider, VerificationKind.EMAIL, RoleCheck(role_id=1), "a@b.io")
        assert result.permanent_failure


# ---------------------------------------------------------------------------
# Discord-native provider
# ---------------------------------------------------------------------------
def _fake_client(roles=(), member_cached=True):
    member = SimpleNamespace(roles=[SimpleNamespace(id=r) for r in roles])
    guild = MagicMock()
    guild.get_member.return_value = member if member_cached else None
    guild.fetch_member = AsyncMock(
        side_effect=discord.NotFound(MagicMock(status=404), "Unknown Member")
    )
    client = MagicMock()
    client.is_ready.return_value = True
    client.get_guild.return_value = guild
    return client


class TestDiscordNativeVerifier:
    def test_message_count(self, db_engine):
        for message_id in range(1, 4):
            activity_service.record_message(db_engine, message_id, GUILD_ID, 10, 1)
        provider = DiscordNativeVerifier(db_engine)
        kind = VerificationKind.PLATFORM_MESSAGE_COUNT

        assert _verify(provider, kind, ActivityCountCheck(threshold=3), None).success
        result = _verify(provider, kind, ActivityCountCheck(threshold=4), None)
        assert not result.success
        assert result.current_value == 3

    def test_channel_filter(self, db_engine):
        activity_service.record_message(db_engine, 1, GUILD_ID, 10, 1)
        activity_service.record_message(db_engine, 2, GUILD_ID, 11, 1)
        provider = DiscordNativeVerifier(db_engine)
        result = _verify(
            provider, VerificationKind.PLATFORM_MESSAGE_COUNT,
            ActivityCountCheck(threshold=2, channel_id=10), None,
        )
        assert result.current_value == 1

    def test_reactions_received(self, db_engine):
        activity_service.record_reaction(db_engine, 1, 10, GUILD_ID, 1, 2, "👍")
        activity_service.record_reaction(db_engine, 1, 10, GUILD_ID, 1, 3, "👍")
        provider = DiscordNativeVerifier(db_engine)
        result = _verify(
            provider, VerificationKind.PLATFORM_REACTION_COUNT,
            ActivityCountCheck(threshold=2), None,
        )
        assert result.success

    def test_role_present(self, db_engine):
        provider = DiscordNativeVerifier(db_engine, _fake_client(roles=[5, 6]))
        result = _verify(provider, VerificationKind.PLATFORM_ROLE, RoleCheck(6, "OG"), None)
        assert result.success

    def test_role_missing_is_retry(self, db_engine):
        provider = DiscordNativeVerifier(db_engine, _fake_client(roles=[5]))
        result = _verify(provider, VerificationKind.PLATFORM_ROLE, RoleCheck(6, "OG"), None)
        assert not result.success
        assert not result.permanent_failure

    def test_member_not_found(self, db_engine):
        provider = DiscordNativeVerifier(db_engine, _fake_client(member_cached=False))
        result = _verify(provider, VerificationKind.PLATFORM_ROLE, RoleCheck(6), None)
        assert not result.success
        assert "Could not find you" in result.details

    def test_no_client_is_retry(self, db_engine):
        provider = DiscordNativeVerifier(db_engine)
        result = _verify(provider, VerificationKind.PLATFORM_ROLE, RoleCheck(6), None)
        assert not result.permanent_failure


class TestQuestVerifier:
    def test_routes_by_kind(self):
        http = MagicMock()
        http.verify = AsyncMock(return_value=VerificationResult.ok("http"))
        native = MagicMock()
        native.verify = AsyncMock(return_value=VerificationResult.ok("native"))
        verifier = QuestVerifier(http, native)

        assert _verify(verifier, VerificationKind.WALLET, None, "0xabc").details == "http"
        assert _verify(verifier, VerificationKind.PLATFORM_ROLE, None, None).details == "native"
