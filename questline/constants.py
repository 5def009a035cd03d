"""
questline.constants — Shared Constants & Helpers
=================================================

Single source of truth for verification-kind metadata, quest limits and
datetime normalisation.  Import from here instead of duplicating in cogs,
services, and the API.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime


# ---------------------------------------------------------------------------
# Verification kinds, stored verbatim in quests.verification_kind
# ---------------------------------------------------------------------------
class VerificationKind(enum.StrEnum):
    """How a quest or task proves completion."""
    EMAIL = "email"
    EXTERNAL_ID = "discord_id"
    WALLET = "wallet_address"
    SOCIAL_HANDLE = "twitter_handle"
    PLATFORM_ROLE = "discord_role"
    PLATFORM_MESSAGE_COUNT = "discord_message_count"
    PLATFORM_REACTION_COUNT = "discord_reaction_count"
    PLATFORM_POLL_COUNT = "discord_poll_count"

    @property
    def is_platform_native(self) -> bool:
        return self in PLATFORM_NATIVE_KINDS


PLATFORM_NATIVE_KINDS: frozenset[VerificationKind] = frozenset({
    VerificationKind.PLATFORM_ROLE,
    VerificationKind.PLATFORM_MESSAGE_COUNT,
    VerificationKind.PLATFORM_REACTION_COUNT,
    VerificationKind.PLATFORM_POLL_COUNT,
})

# Human-readable names used in prompts ("Run /confirm with your …")
KIND_LABELS: dict[VerificationKind, str] = {
    VerificationKind.EMAIL: "email address",
    VerificationKind.EXTERNAL_ID: "Discord ID",
    VerificationKind.WALLET: "wallet address",
    VerificationKind.SOCIAL_HANDLE: "Twitter/X handle",
    VerificationKind.PLATFORM_ROLE: "server role",
    VerificationKind.PLATFORM_MESSAGE_COUNT: "message activity",
    VerificationKind.PLATFORM_REACTION_COUNT: "reactions received",
    VerificationKind.PLATFORM_POLL_COUNT: "polls created",
}


class AssignmentStatus(enum.StrEnum):
    """Lifecycle of a user_quests row."""
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------
MIN_XP_REWARD = 1
MAX_XP_REWARD = 10_000
MAX_QUEST_NAME_LENGTH = 100
MAX_TASK_TITLE_LENGTH = 200
MAX_LOOKBACK_DAYS = 365
MIN_IDENTIFIER_LENGTH = 3
MAX_IDENTIFIER_LENGTH = 200

ATTEMPTS_EXCEEDED_REASON = "Maximum verification attempts exceeded"

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉


# ---------------------------------------------------------------------------
# Datetime helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
