"""
obe_core.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy import Engine

from obe_core.config import ObeConfig, load_config
from obe_core.database.engine import create_db_engine
from obe_core.services.dispatch import TaskDispatcher
from obe_core.services.dispatch import get_dispatcher as _global_dispatcher


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> ObeConfig:
    return load_config()


def get_dispatcher(
    config: Annotated[ObeConfig, Depends(get_config)],
) -> TaskDispatcher:
    return _global_dispatcher(max_workers=config.dispatcher_workers)
