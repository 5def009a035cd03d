"""
questline.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for identity and tuning settings (Discord guild,
admin role, rate limits, verification timeouts).  Secrets such as
``DISCORD_TOKEN``, ``DATABASE_URL`` and ``JWT_SECRET`` stay in ``.env``.

Usage::

    from questline.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Questline Dev"
    print(cfg.rate_limits["quest"].window_seconds)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from questline.engine.ratelimit import DEFAULT_RATE_LIMIT_RULES, RateLimitRule


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class QuestlineConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int  # Primary guild snowflake

    # Dashboard
    dashboard_port: int

    # Admin
    admin_role_id: int

    # Quest tuning
    verification_timeout_seconds: float = 10.0
    max_verification_attempts: int = 10
    leaderboard_size: int = 10

    # command name → rule
    rate_limits: dict[str, RateLimitRule] = field(
        default_factory=lambda: dict(DEFAULT_RATE_LIMIT_RULES)
    )


def _parse_rate_limits(raw: dict | None) -> dict[str, RateLimitRule]:
    """Merge ``rate_limits`` overrides from YAML onto the defaults.

    Each entry is either a mapping with ``max_calls`` / ``window_seconds`` or
    a bare number meaning a one-call cooldown of that many seconds.
    """
    rules = dict(DEFAULT_RATE_LIMIT_RULES)
    for command, value in (raw or {}).items():
        if isinstance(value, dict):
            rules[command] = RateLimitRule(
                max_calls=int(value.get("max_calls", 1)),
                window_seconds=float(value["window_seconds"]),
            )
        else:
            rules[command] = RateLimitRule(max_calls=1, window_seconds=float(value))
    return rules


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> QuestlineConfig:
    """Read *path* and return a :class:`QuestlineConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    quests: dict = raw.get("quests") or {}

    return QuestlineConfig(
        community_name=raw["community_name"],
        bot_prefix=raw.get("bot_prefix", "!"),
        guild_id=int(raw["guild_id"]),
        dashboard_port=int(raw.get("dashboard_port", 8000)),
        admin_role_id=int(raw["admin_role_id"]),
        verification_timeout_seconds=float(
            quests.get("verification_timeout_seconds", 10)
        ),
        max_verification_attempts=int(quests.get("max_verification_attempts", 10)),
        leaderboard_size=int(quests.get("leaderboard_size", 10)),
        rate_limits=_parse_rate_limits(raw.get("rate_limits")),
    )
