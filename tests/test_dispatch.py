"""
tests/test_dispatch.py — Side-Effect Dispatcher & Logging Tests
================================================================
"""

from __future__ import annotations

import logging
import threading

import pytest

from obe_core.logging_setup import LOG_FORMAT, configure_logging
from obe_core.services import dispatch
from obe_core.services.dispatch import InlineDispatcher, TaskDispatcher


def _boom():
    raise RuntimeError("side effect exploded")


# ===========================================================================
# TaskDispatcher
# ===========================================================================
class TestTaskDispatcher:
    def test_runs_on_worker_thread(self):
        pool = TaskDispatcher(max_workers=1)
        try:
            future = pool.submit("name", lambda: threading.current_thread().name)
            assert future.result(timeout=5).startswith("obe-side-effect")
        finally:
            pool.shutdown()

    def test_failure_is_logged_not_raised(self, caplog):
        pool = TaskDispatcher(max_workers=1)
        with caplog.at_level(logging.ERROR, logger="obe_core.services.dispatch"):
            future = pool.submit("explode", _boom)
            pool.shutdown(wait=True)

        assert isinstance(future.exception(), RuntimeError)
        assert any("'explode' failed" in r.getMessage() for r in caplog.records)

    def test_submit_after_shutdown_drops_task(self):
        pool = TaskDispatcher(max_workers=1)
        pool.shutdown()
        assert pool.submit("late", lambda: 1) is None


class TestInlineDispatcher:
    def test_records_completed_and_failed(self):
        inline = InlineDispatcher()
        ok = inline.submit("ok", lambda x: x * 2, 21)
        bad = inline.submit("bad", _boom)

        assert ok.result() == 42
        assert isinstance(bad.exception(), RuntimeError)
        assert inline.completed == ["ok"]
        assert inline.failed == ["bad"]


class TestGlobalDispatcher:
    @pytest.fixture(autouse=True)
    def _reset(self):
        dispatch.shutdown_dispatcher()
        yield
        dispatch.shutdown_dispatcher()

    def test_singleton(self):
        assert dispatch.get_dispatcher() is dispatch.get_dispatcher(max_workers=8)

    def test_shutdown_discards_instance(self):
        first = dispatch.get_dispatcher()
        dispatch.shutdown_dispatcher()
        assert dispatch.get_dispatcher() is not first


# ===========================================================================
# Logging
# ===========================================================================
class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_installs_single_handler(self):
        configure_logging("debug")
        configure_logging("INFO")

        root = logging.getLogger()
        ours = [h for h in root.handlers if h.get_name() == "obe-core"]
        assert len(ours) == 1
        assert ours[0].formatter._fmt == LOG_FORMAT
        assert root.level == logging.INFO

    def test_uvicorn_loggers_propagate(self):
        logging.getLogger("uvicorn.access").propagate = False
        configure_logging("WARNING")
        assert logging.getLogger("uvicorn.access").propagate is True

    def test_rejects_unknown_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            configure_logging("LOUD")
