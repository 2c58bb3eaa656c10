"""
obe_core.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for **infrastructure-only** settings (API port, log
level, background worker count, notification switches).  The database URL
is a secret and comes from the ``DATABASE_URL`` environment variable; the
gamification constants (level table, milestones, attainment bands) are fixed
and live in :mod:`obe_core.engine`.

Usage::

    from obe_core.config import load_config

    cfg = load_config()          # reads ./config.yaml (or $OBE_CONFIG)
    print(cfg.institution_name)  # "Demo University"
    print(cfg.dispatcher_workers)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ObeConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    institution_name: str

    # API
    api_port: int
    log_level: str

    # Background side effects (streak → XP, notifications, peer fan-out)
    dispatcher_workers: int = 4
    peer_milestone_notifications: bool = True
    grade_notifications: bool = True

    # Optional
    cors_allow_origins: tuple[str, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def default_config_path() -> Path:
    """``$OBE_CONFIG`` if set, else ``config.yaml`` in the working directory."""
    return Path(os.getenv("OBE_CONFIG", "config.yaml"))


def load_config(path: str | Path | None = None) -> ObeConfig:
    """Read *path* and return an :class:`ObeConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to :func:`default_config_path`.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path) if path is not None else default_config_path()
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    origins = raw.get("cors_allow_origins") or []
    if isinstance(origins, str):
        origins = origins.split(",")

    return ObeConfig(
        institution_name=raw["institution_name"],
        api_port=int(raw["api_port"]),
        log_level=str(raw["log_level"]).upper(),
        dispatcher_workers=int(raw.get("dispatcher_workers", 4)),
        peer_milestone_notifications=bool(raw.get("peer_milestone_notifications", True)),
        grade_notifications=bool(raw.get("grade_notifications", True)),
        cors_allow_origins=tuple(o.strip().rstrip("/") for o in origins if o.strip()),
    )
