"""
questline.engine.ratelimit — Per-user per-command cooldowns
============================================================

Advisory admission control for slash commands.  Purely in-memory and
process-local: the "one active quest" guarantee lives in the database
transaction, not here.

The limiter is an explicit instance owned by the bot (``bot.rate_limiter``)
with an injectable clock so tests can move time without sleeping.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    """At most ``max_calls`` within ``window_seconds`` (1 call = cooldown)."""

    max_calls: int
    window_seconds: float

    def __post_init__(self) -> None:
        if self.max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    retry_after_ms: int | None = None

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds to wait, rounded up (0 when allowed)."""
        if self.retry_after_ms is None:
            return 0
        return math.ceil(self.retry_after_ms / 1000)


DEFAULT_RATE_LIMIT_RULES: dict[str, RateLimitRule] = {
    "quest": RateLimitRule(max_calls=1, window_seconds=30),
    "confirm": RateLimitRule(max_calls=1, window_seconds=15),
    "xp": RateLimitRule(max_calls=1, window_seconds=10),
    "leaderboard": RateLimitRule(max_calls=1, window_seconds=10),
}


class CommandRateLimiter:
    """Sliding-window limiter keyed by ``(user_id, command)``.

    Thread-safe: calls arrive both from the event loop and from
    ``asyncio.to_thread`` workers.
    """

    def __init__(
        self,
        rules: dict[str, RateLimitRule] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rules = dict(DEFAULT_RATE_LIMIT_RULES if rules is None else rules)
        self._clock = clock
        self._lock = Lock()
        self._calls: dict[tuple[int, str], list[float]] = {}

    def check(self, user_id: int, command: str) -> RateLimitDecision:
        """Admit or deny one call, recording it when admitted.

        Commands without a configured rule are always allowed.
        """
        rule = self.rules.get(command)
        if rule is None:
            return RateLimitDecision(allowed=True)

        now = self._clock()
        cutoff = now - rule.window_seconds
        key = (user_id, command)

        with self._lock:
            stamps = [t for t in self._calls.get(key, []) if t > cutoff]
            if len(stamps) >= rule.max_calls:
                self._calls[key] = stamps
                remaining = stamps[0] + rule.window_seconds - now
                retry_ms = max(1, math.ceil(remaining * 1000))
                logger.debug(
                    "Rate limited user %s on /%s (retry in %d ms)",
                    user_id, command, retry_ms,
                )
                return RateLimitDecision(allowed=False, retry_after_ms=retry_ms)
            stamps.append(now)
            self._calls[key] = stamps
            return RateLimitDecision(allowed=True)

    def cleanup(self) -> int:
        """Drop keys whose every timestamp has left its window."""
        now = self._clock()
        with self._lock:
            stale = [
                key
                for key, stamps in self._calls.items()
                if key[1] not in self.rules
                or all(t <= now - self.rules[key[1]].window_seconds for t in stamps)
            ]
            for key in stale:
                del self._calls[key]
        if stale:
            logger.debug("Cleaned up %d expired rate-limit entries", len(stale))
        return len(stale)

    def reset(self, user_id: int | None = None) -> None:
        """Clear state for one user, or for everyone when *user_id* is None."""
        with self._lock:
            if user_id is None:
                self._calls.clear()
                return
            for key in [k for k in self._calls if k[0] == user_id]:
                del self._calls[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._calls)
