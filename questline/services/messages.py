"""
questline.services.messages — User-Facing Message Templates
============================================================

Plain-text replies used by the quest cog.  Kept free of discord.py types so
they can be unit-tested and reused by the API.
"""

from __future__ import annotations

import math
from datetime import datetime

from questline.constants import KIND_LABELS, RANK_BADGES, VerificationKind

COMMAND_VERBS = {
    "quest": "requesting a new quest",
    "confirm": "confirming again",
    "xp": "checking your XP again",
    "leaderboard": "checking the leaderboard again",
}

NO_QUESTS_AVAILABLE = (
    "\U0001f50d **No Quests Available**\n\n"
    "There are no quests available right now. "
    "Check back later or ask a moderator to create some quests!"
)
ALL_QUESTS_COMPLETED = (
    "\U0001f31f **You've completed every quest!**\n\n"
    "New quests will show up here as moderators add them."
)
NO_ACTIVE_QUEST = "You don't have an active quest. Run `/quest` to get one!"
GUILD_ONLY = "This command can only be used in a server."
GENERIC_ERROR = "Something went wrong. Please try again later."
STORE_UNAVAILABLE = "The quest database is busy right now. Please try again in a moment."


def _short_date(value: datetime | None) -> str:
    return value.strftime("%b %d") if value else "recently"


def rate_limited(command: str, retry_after_ms: int) -> str:
    seconds = max(1, math.ceil(retry_after_ms / 1000))
    verb = COMMAND_VERBS.get(command, "using this command again")
    return f"⏳ Please wait {seconds} seconds before {verb}."


def confirm_hint(kind: VerificationKind | str, user_input_description: str | None = None) -> str:
    kind = VerificationKind(kind)
    if kind.is_platform_native:
        return "Run `/confirm` when you're done. No identifier needed, we'll check Discord for you."
    label = user_input_description or KIND_LABELS[kind]
    return f"Run `/confirm` with your {label}."


def quest_assigned(
    name: str,
    description: str,
    xp_reward: int,
    kind: VerificationKind | str,
    user_input_description: str | None = None,
    task_titles: list[str] | None = None,
) -> str:
    lines = [
        f"\U0001f3af **Quest Assigned: {name}**",
        "",
        description,
        "",
        f"\U0001f3c6 **Reward:** {xp_reward} XP",
        "",
    ]
    if task_titles:
        lines.append("**Tasks:**")
        lines.extend(f"{i}. {title}" for i, title in enumerate(task_titles, 1))
        lines.append("")
        lines.append("Run `/confirm` after each task (use the `task` option to pick one).")
    else:
        lines.append("**How to complete:**")
        lines.append("1. Complete the quest action described above")
        lines.append(f"2. {confirm_hint(kind, user_input_description)}")
    return "\n".join(lines)


def active_quest_exists(name: str, xp_reward: int, assigned_at: datetime | None) -> str:
    return (
        "\U0001f4cc **You Already Have an Active Quest**\n\n"
        f"You were assigned this quest on {_short_date(assigned_at)}:\n\n"
        f"\U0001f3af **{name}** ({xp_reward} XP)\n\n"
        "Complete it and run `/confirm` before requesting a new one."
    )


def quest_completed(name: str, xp_awarded: int, total_xp: int | None) -> str:
    total = f"\n\U0001f4b0 **Total XP:** {total_xp}" if total_xp is not None else ""
    return (
        f"✅ **Quest Complete: {name}**\n\n"
        f"\U0001f389 You earned **{xp_awarded} XP**!{total}\n\n"
        "Run `/quest` to get your next adventure!"
    )


def verification_failed(name: str | None, details: str, attempts_remaining: int | None) -> str:
    remaining = (
        f"\n\nAttempts remaining: {attempts_remaining}"
        if attempts_remaining is not None else ""
    )
    return (
        f"❌ We couldn't verify your quest completion for \"{name}\".\n\n"
        f"**Reason:** {details}{remaining}\n\n"
        "Please ensure you've completed the quest and try again later."
    )


def quest_failed(name: str | None, details: str) -> str:
    return (
        f"⛔ **Quest Closed: {name}**\n\n"
        f"{details}\n\nRun `/quest` to get a different quest."
    )


def task_completed(
    title: str, points: int, done: int, total: int, quest_finished: bool
) -> str:
    text = f"✅ **Task complete: {title}** (+{points} XP) — {done}/{total} tasks done."
    if quest_finished:
        text += "\n\n\U0001f389 **Quest complete!** Run `/quest` for your next one."
    return text


def task_already_completed(title: str) -> str:
    return f"You've already completed **{title}**. No extra XP this time."


def progress(
    total_xp: int,
    quests_completed: int,
    recent: list[tuple[str, int, datetime | None]],
    current: tuple[str, int, datetime | None] | None,
) -> str:
    if recent:
        completed = "\n".join(
            f"└─ {name} (+{xp} XP) {_short_date(when)}" for name, xp, when in recent
        )
    else:
        completed = "└─ No quests completed yet"
    if current:
        name, xp, assigned_at = current
        current_text = (
            f"\U0001f3af **Current Quest:**\n└─ {name} ({xp} XP) "
            f"- Assigned {_short_date(assigned_at)}"
        )
    else:
        current_text = "\U0001f4a1 Run `/quest` to get a new quest!"
    return (
        "\U0001f4ca **Your Quest Progress**\n\n"
        f"\U0001f4b0 **Total XP:** {total_xp}\n"
        f"\U0001f3c6 **Completed Quests ({quests_completed}):**\n{completed}\n\n"
        f"{current_text}\n\n"
        "Keep questing to climb the leaderboard!"
    )


def leaderboard_lines(rows: list[tuple[str, int, int]]) -> str:
    """``rows`` are ``(display_name, total_xp, quests_completed)``."""
    lines = []
    for i, (name, xp, quests) in enumerate(rows, 1):
        medal = RANK_BADGES[i - 1] if i <= len(RANK_BADGES) else f"**{i}.**"
        lines.append(f"{medal} **{name}** — {xp:,} XP ({quests} quests)")
    return "\n".join(lines)
