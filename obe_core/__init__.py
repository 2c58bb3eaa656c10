"""
obe-core — Gamification & Outcome-Attainment Core
==================================================
Event-triggered server functions behind an outcome-based-education
platform: an append-only XP ledger with derived levels, a daily login
streak with freezes and milestones, a three-tier outcome attainment
rollup (CLO → PLO → ILO) driven by finalized grades, and badges
unlocked by streaks, grades and engagement.

Package layout::

    obe_core/
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Domain error taxonomy (validation / not-found / storage)
    ├── logging_setup.py   # Root logger + Uvicorn propagation
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + session + async helper
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── leveling.py    # Level table, level derivation, bonus multipliers
    │   ├── streak.py      # Streak transitions + milestones
    │   ├── attainment.py  # Attainment bands, means, weighted means
    │   └── badges.py      # Badge definitions + condition registry
    ├── services/
    │   ├── xp_service.py        # AwardXP + streak freeze purchase
    │   ├── streak_service.py    # ProcessStreak
    │   ├── rollup_service.py    # RollUp + attainment rebuild
    │   ├── badge_service.py     # Badge checks + badge XP
    │   ├── notification_service.py  # Notification sink + peer fan-out
    │   ├── dispatch.py          # Fire-and-forget background tasks
    │   └── reconciliation_service.py  # Ledger → cache drift repair
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Dependency injection
        └── routes/        # JSON endpoints
"""

__version__ = "0.1.0"
