"""
Questline — Quest & XP Engine for Discord Communities
======================================================
Hands out gamified quests, verifies completion against external APIs or
Discord-native activity, and keeps an exactly-once XP ledger per member.

Package layout::

    questline/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Shared constants (verification kinds, limits)
    ├── errors.py          # Exception taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, transactional sessions, async bridge
    │   ├── models.py      # All ORM models
    │   └── queries.py     # Locking / eligibility queries shared by services
    ├── engine/
    │   ├── ratelimit.py   # Per-user per-command cooldowns
    │   └── verification.py # Verification config union + pure evaluation
    ├── services/
    │   ├── assignment_service.py   # Race-safe quest assignment
    │   ├── completion_service.py   # Single + task-based completion
    │   ├── ledger_service.py       # XP ledger + leaderboard
    │   ├── catalog_service.py      # Quest/task reads + validated creation
    │   ├── conversation_service.py # TTL scratch state for authoring dialogues
    │   ├── activity_service.py     # Message/reaction/poll capture + counts
    │   ├── verification_service.py # HTTP + Discord-native verifiers
    │   └── messages.py             # User-facing text
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/
    │       ├── quests.py  # /quest, /confirm, /xp, /leaderboard
    │       ├── activity.py # on_message / reactions / polls capture
    │       └── tasks.py   # Periodic cleanup loops
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine + JWT admin dependencies
        └── routes/        # Public + admin REST endpoints
"""

__version__ = "0.1.0"
