"""
obe_core.logging_setup — Root Logger Configuration
===================================================

One stream handler on the root logger; every module logs through
``logging.getLogger(__name__)`` and propagates here.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_HANDLER_NAME = "obe-core"


def configure_logging(level: str | int = "INFO") -> logging.Handler:
    """Install (or re-level) the obe-core handler on the root logger.

    Safe to call more than once; the handler is replaced, not duplicated.
    Uvicorn loggers are forced to propagate so access and error records
    share the same format.
    """
    if isinstance(level, str):
        name = level.upper()
        if name not in VALID_LEVELS:
            raise ValueError(f"Invalid log level {level!r}; expected one of {VALID_LEVELS}")
        numeric = getattr(logging, name)
    else:
        numeric = level

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(numeric)

    # Uvicorn often disables propagation for these
    for logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        log = logging.getLogger(logger_name)
        log.handlers.clear()
        log.propagate = True
        log.setLevel(logging.INFO)

    return handler
