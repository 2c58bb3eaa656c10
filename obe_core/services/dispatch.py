"""
obe_core.services.dispatch — Fire-and-Forget Side Effects
==========================================================

Everything downstream of "the core fact has been durably recorded" runs
here: milestone XP grants, peer fan-out, grade notifications.  A submitted
task may fail; the failure is logged and never reaches the submitter.

Two implementations share one contract:

* :class:`TaskDispatcher` — a small ``ThreadPoolExecutor``; the default for
  the API process.
* :class:`InlineDispatcher` — runs the task immediately on the caller's
  thread.  Used by tests and maintenance scripts that want deterministic
  ordering.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4

_dispatcher: TaskDispatcher | None = None
_lock = threading.Lock()


class TaskDispatcher:
    """Background executor for best-effort side effects."""

    def __init__(self, max_workers: int = DEFAULT_WORKERS) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="obe-side-effect"
        )

    def submit(
        self, label: str, func: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> Future | None:
        """Schedule ``func(*args, **kwargs)``; returns its future, or ``None``
        if the executor is already shut down."""
        try:
            future = self._executor.submit(func, *args, **kwargs)
        except RuntimeError:
            logger.error("Dispatcher is shut down; dropped side effect %r", label)
            return None
        future.add_done_callback(lambda f: _log_failure(label, f))
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineDispatcher(TaskDispatcher):
    """Runs each task synchronously; failures are still logged and swallowed."""

    def __init__(self) -> None:
        self.completed: list[str] = []
        self.failed: list[str] = []

    def submit(
        self, label: str, func: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> Future | None:
        future: Future = Future()
        try:
            future.set_result(func(*args, **kwargs))
            self.completed.append(label)
        except Exception as exc:
            logger.exception("Side effect %r failed", label)
            future.set_exception(exc)
            self.failed.append(label)
        return future

    def shutdown(self, wait: bool = True) -> None:
        return None


def _log_failure(label: str, future: Future) -> None:
    if future.cancelled():
        logger.warning("Side effect %r was cancelled", label)
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Side effect %r failed: %s", label, exc, exc_info=exc)


# ---------------------------------------------------------------------------
# Process-wide singleton
# ---------------------------------------------------------------------------
def get_dispatcher(max_workers: int = DEFAULT_WORKERS) -> TaskDispatcher:
    """Return (or create) the process-global dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        with _lock:
            if _dispatcher is None:
                _dispatcher = TaskDispatcher(max_workers=max_workers)
    return _dispatcher


def shutdown_dispatcher(wait: bool = True) -> None:
    """Drain and discard the global dispatcher (API shutdown)."""
    global _dispatcher
    with _lock:
        if _dispatcher is not None:
            _dispatcher.shutdown(wait=wait)
            _dispatcher = None
