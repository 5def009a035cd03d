"""
questline.errors — Exception Taxonomy
======================================

Every error the quest engine raises derives from :class:`QuestlineError` so
command handlers can catch the whole family in one place and turn it into a
short user-facing reply.

Conflicts (duplicate task completion, a concurrent duplicate assignment) are
deliberately *not* represented here: they resolve to idempotent results.
"""

from __future__ import annotations


class QuestlineError(Exception):
    """Base class for all quest-engine errors."""


class ValidationError(QuestlineError):
    """Malformed quest/task parameters, rejected before any store access."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StoreUnavailable(QuestlineError):
    """Transient store failure.  The transaction was rolled back; retry."""


class NoQuestsAvailable(QuestlineError):
    """No eligible quest exists for this user right now."""


class NoActiveQuest(QuestlineError):
    """The user has no assigned quest matching the request."""


class TaskExhausted(QuestlineError):
    """A task reached its overall or per-day completion cap."""


class TaskNotFound(QuestlineError):
    """The task does not exist, is inactive, or belongs to another quest."""
