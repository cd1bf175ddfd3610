"""Logging setup shared by every REELCAST module.

All loggers hang off the ``reelcast`` logger, which gets three handlers on
first use: console (INFO), a rotating file under the log directory (DEBUG)
and an in-memory ring buffer of recent lines for scripts and diagnostics.
"""
import logging
import os
from collections import deque
from logging.handlers import RotatingFileHandler
from typing import Optional, List

ROOT_NAME = "reelcast"
LOG_FILE = "reelcast.log"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s"
RECENT_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _log_dir() -> str:
    """REELCAST_LOG_DIR when set, ~/.reelcast/logs otherwise."""
    configured = os.environ.get("REELCAST_LOG_DIR", "").strip()
    if configured:
        return os.path.expanduser(configured)
    return os.path.join(os.path.expanduser("~"), ".reelcast", "logs")


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    return handler


def _file_handler(log_dir: str) -> logging.Handler:
    os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        os.path.join(log_dir, LOG_FILE),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _is_console(handler: logging.Handler) -> bool:
    return isinstance(handler, logging.StreamHandler) and not isinstance(handler, RotatingFileHandler)


class ReelcastLogger:
    """Configures the ``reelcast`` logger tree exactly once per process."""

    _initialized: bool = False

    @classmethod
    def get_logger(cls, name: str = ROOT_NAME) -> logging.Logger:
        """
        Return ``name`` as a child of the ``reelcast`` logger

        Args:
            name: Usually the calling module's ``__name__``
        """
        if not cls._initialized:
            cls._configure()
            cls._initialized = True

        if name != ROOT_NAME and not name.startswith(ROOT_NAME + "."):
            name = f"{ROOT_NAME}.{name}"
        return logging.getLogger(name)

    @classmethod
    def _configure(cls):
        root = logging.getLogger(ROOT_NAME)
        # Handlers filter; the logger itself lets everything through.
        root.setLevel(logging.DEBUG)

        if root.handlers:
            return

        root.addHandler(_console_handler())

        log_dir = _log_dir()
        try:
            root.addHandler(_file_handler(log_dir))
        except OSError as exc:
            root.warning(f"File logging disabled ({log_dir}): {exc}")

        root.addHandler(RecentLogHandler.get_instance())

    @classmethod
    def set_level(cls, level: int):
        """Apply ``level`` to the logger and its console output. The file keeps DEBUG."""
        root = logging.getLogger(ROOT_NAME)
        root.setLevel(level)
        for handler in filter(_is_console, root.handlers):
            handler.setLevel(level)


class RecentLogHandler(logging.Handler):
    """Ring buffer of the last formatted INFO+ lines."""

    _instance: Optional["RecentLogHandler"] = None
    MAX_LINES = 100

    def __init__(self):
        super().__init__(level=logging.INFO)
        self._lines: deque = deque(maxlen=self.MAX_LINES)
        self.setFormatter(logging.Formatter(RECENT_FORMAT, datefmt="%H:%M:%S"))

    @classmethod
    def get_instance(cls) -> "RecentLogHandler":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._lines.append(self.format(record))
        except Exception:
            self.handleError(record)

    def get_logs(self, lines: int = 50, newest_first: bool = True) -> List[str]:
        recent = list(self._lines)[-lines:]
        return recent[::-1] if newest_first else recent

    def get_logs_text(self, lines: int = 50, newest_first: bool = True) -> str:
        return "\n".join(self.get_logs(lines, newest_first))

    def clear(self) -> None:
        self._lines.clear()


def get_logger(name: str = ROOT_NAME) -> logging.Logger:
    """
    Shortcut for ``ReelcastLogger.get_logger``

    Usage:
        from infrastructure.logger import get_logger
        logger = get_logger(__name__)
        logger.info("Starting queue...")
    """
    return ReelcastLogger.get_logger(name)


__all__ = ["ReelcastLogger", "get_logger", "RecentLogHandler"]
