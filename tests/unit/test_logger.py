"""Unit tests for infrastructure.logger"""
import logging
import os
from logging.handlers import RotatingFileHandler

import pytest

from infrastructure.logger import RecentLogHandler, ReelcastLogger, get_logger


@pytest.fixture
def fresh_root(tmp_path, monkeypatch):
    """Reset the reelcast logger so setup runs again into tmp_path"""
    monkeypatch.setenv("REELCAST_LOG_DIR", str(tmp_path / "logs"))
    root = logging.getLogger("reelcast")
    saved_handlers = root.handlers[:]
    saved_level = root.level
    ReelcastLogger._initialized = False
    root.handlers = []
    yield root
    for handler in root.handlers:
        if isinstance(handler, RotatingFileHandler):
            handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)
    ReelcastLogger._initialized = True


@pytest.mark.unit
def test_get_logger_returns_child_and_sets_up_once(fresh_root, tmp_path):
    """Should create the reelcast logger once and prefix child names"""
    logger = get_logger("module")
    assert logger.name == "reelcast.module"
    assert os.path.exists(tmp_path / "logs" / "reelcast.log")

    # Second call should not add duplicate handlers
    before = len(fresh_root.handlers)
    get_logger("module2")
    assert len(fresh_root.handlers) == before


@pytest.mark.unit
def test_already_prefixed_names_are_kept(fresh_root):
    assert get_logger("reelcast.queue").name == "reelcast.queue"
    assert get_logger().name == "reelcast"


@pytest.mark.unit
def test_setup_root_logger_skips_when_handler_exists(fresh_root):
    """If handlers already present, setup should not add duplicates."""
    fresh_root.handlers = [logging.StreamHandler()]

    logger = get_logger("already")

    assert len(fresh_root.handlers) == 1
    assert logger.name.startswith("reelcast.")


@pytest.mark.unit
def test_unwritable_log_dir_disables_file_logging(fresh_root, tmp_path, monkeypatch):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    monkeypatch.setenv("REELCAST_LOG_DIR", str(blocker / "logs"))

    get_logger("nofile")

    assert not any(isinstance(h, RotatingFileHandler) for h in fresh_root.handlers)
    assert RecentLogHandler.get_instance() in fresh_root.handlers


@pytest.mark.unit
def test_set_level_updates_console_handler(fresh_root):
    """set_level should adjust console handler levels"""
    get_logger("levels")

    ReelcastLogger.set_level(logging.WARNING)

    consoles = [h for h in fresh_root.handlers
                if isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)]
    assert fresh_root.level == logging.WARNING
    assert consoles
    assert all(h.level == logging.WARNING for h in consoles if not isinstance(h, RecentLogHandler))


class TestRecentLogHandler:

    @pytest.mark.unit
    def test_keeps_recent_lines_newest_first(self):
        handler = RecentLogHandler()
        logger = logging.getLogger("recent-log-test")
        logger.propagate = False
        logger.addHandler(handler)
        try:
            logger.warning("first")
            logger.warning("second")
        finally:
            logger.removeHandler(handler)

        logs = handler.get_logs()
        assert logs[0].endswith("second")
        assert logs[1].endswith("first")
        assert handler.get_logs_text(newest_first=False).splitlines()[-1].endswith("second")

    @pytest.mark.unit
    def test_buffer_is_bounded(self):
        handler = RecentLogHandler()
        for index in range(RecentLogHandler.MAX_LINES + 20):
            handler.emit(logging.LogRecord("t", logging.INFO, __file__, 1, f"line {index}", None, None))

        assert len(handler.get_logs(lines=1000)) == RecentLogHandler.MAX_LINES

        handler.clear()
        assert handler.get_logs() == []

    @pytest.mark.unit
    def test_singleton(self):
        assert RecentLogHandler.get_instance() is RecentLogHandler.get_instance()
