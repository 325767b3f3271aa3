"""Mostaql Hub — Logging Setup.

Centralized logging with colored console output and a rotating file
handler. Every module obtains its logger through get_logger(); the
console level can be changed later with configure_logging() once the
settings file has been read.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# ── Constants ─────────────────────────────────────────────
LOG_DIR = Path(__file__).resolve().parent.parent.parent / "logs"
LOG_FILE = LOG_DIR / "mostaql_hub.log"
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5
_LINE_FORMAT = "%(asctime)s │ %(levelname)s │ %(name)s │ %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# ── ANSI Color Codes ─────────────────────────────────────
COLORS = {
    "DEBUG": "\033[36m",     # Cyan
    "INFO": "\033[32m",      # Green
    "WARNING": "\033[33m",   # Yellow
    "ERROR": "\033[31m",     # Red
    "CRITICAL": "\033[41m",  # Red background
}
RESET = "\033[0m"

_console_handler: Optional[logging.Handler] = None


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name.

    The record is copied before coloring so the file handler, which
    shares the same record, keeps plain text.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the record with ANSI colors.

        Args:
            record: The log record to format.

        Returns:
            Formatted log line.
        """
        colored = logging.makeLogRecord(record.__dict__)
        color = COLORS.get(record.levelname, "")
        colored.levelname = f"{color}{record.levelname:<8}{RESET}"
        return super().format(colored)


def _setup_logging() -> logging.Handler:
    """Attach the console and file handlers to the root logger once.

    - Console handler: INFO by default, colored.
    - Rotating file handler: DEBUG, 10MB max, 5 backups.

    A file handler that cannot be created (read-only checkout) is
    skipped; console logging still works.

    Returns:
        The console handler, so callers can adjust its level.
    """
    global _console_handler
    if _console_handler is not None:
        return _console_handler

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # ── Console Handler ──────────────────────────────────
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(ColoredFormatter(fmt=_LINE_FORMAT, datefmt=_DATE_FORMAT))
    root_logger.addHandler(console_handler)
    _console_handler = console_handler

    # ── Rotating File Handler (DEBUG) ────────────────────
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=str(LOG_FILE),
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as e:
        root_logger.warning("File logging disabled: %s", e)
        return console_handler

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt=_DATE_FORMAT,
    ))
    root_logger.addHandler(file_handler)
    return console_handler


def configure_logging(level: str) -> None:
    """Apply the configured console level (e.g. "DEBUG", "INFO").

    Args:
        level: Standard logging level name.

    Raises:
        ValueError: If the level name is unknown.
    """
    console_handler = _setup_logging()
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level!r}")
    console_handler.setLevel(numeric)

    # Third-party chatter stays at WARNING unless we are debugging
    noisy = logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    for name in ("httpx", "httpcore", "apscheduler", "aiohttp.access"):
        logging.getLogger(name).setLevel(noisy)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger with the global configuration applied.

    Args:
        name: The logger name, typically __name__ of the calling module.

    Returns:
        A configured logging.Logger instance.
    """
    _setup_logging()
    return logging.getLogger(name)
