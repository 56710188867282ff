"""Talent Radar — Logging Setup.

Provides a centralized logging configuration with colored console output
and rotating file handler. All modules should use get_logger() to obtain
a named logger instance.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# ── Constants ─────────────────────────────────────────────
LOG_DIR = Path(
    os.environ.get(
        "TALENT_RADAR_LOG_DIR",
        Path(__file__).resolve().parent.parent.parent / "logs",
    )
)
LOG_FILE = LOG_DIR / "talent_radar.log"
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# ── ANSI Color Codes ─────────────────────────────────────
COLORS = {
    "DEBUG": "\033[36m",     # Cyan
    "INFO": "\033[32m",      # Green
    "WARNING": "\033[33m",   # Yellow
    "ERROR": "\033[31m",     # Red
    "CRITICAL": "\033[41m",  # Red background
}
RESET = "\033[0m"

# Track whether logging has been initialized
_initialized = False
_console_handler: logging.Handler | None = None


class ColoredFormatter(logging.Formatter):
    """Formatter that adds ANSI colors to the level name and timestamp."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the record without mutating it for other handlers.

        Args:
            record: The log record to format.

        Returns:
            Formatted log string with ANSI color codes.
        """
        color = COLORS.get(record.levelname, "")
        original = record.levelname
        record.levelname = f"{color}{original:<8}{RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _setup_logging() -> None:
    """Initialize the global logging configuration.

    Sets up two handlers on the root logger:
    - Console handler: INFO level with colored level names.
    - Rotating file handler: DEBUG level, 10MB max, 5 backups.

    Idempotent; only the first call installs handlers.
    """
    global _initialized, _console_handler
    if _initialized:
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # ── Console Handler (INFO) ───────────────────────────
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(ColoredFormatter(
        fmt="%(asctime)s │ %(levelname)s │ %(name)s │ %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
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
        # Read-only install locations still get console logging
        root_logger.warning("File logging disabled (%s): %s", LOG_FILE, e)
    else:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    _initialized = True


def set_level(level: str) -> None:
    """Apply the configured level (e.g. "DEBUG") to console output.

    Args:
        level: Standard logging level name.
    """
    _setup_logging()
    if _console_handler is not None:
        _console_handler.setLevel(level.upper())


def get_logger(name: str) -> logging.Logger:
    """Get a named logger instance with the global configuration applied.

    Args:
        name: The logger name, typically __name__ of the calling module.

    Returns:
        A configured logging.Logger instance.
    """
    _setup_logging()
    return logging.getLogger(name)
