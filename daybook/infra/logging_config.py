"""Centralized logging configuration.

Single entry point: configure_logging() sets root logger level, format,
optional file handler with rotation, and suppresses noisy third-party loggers.
LOG_LEVEL and LOG_FILE are read from environment; no secrets are logged.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

_DEFAULT_LEVEL = "INFO"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_BACKUP_COUNT = 3
_NOISY_LOGGERS = ("httpx", "httpcore", "telegram", "telegram.ext", "uvicorn.access")


def _get_level() -> int:
    raw = os.environ.get("LOG_LEVEL", _DEFAULT_LEVEL).strip().upper()
    return getattr(logging, raw, logging.INFO)


def _get_log_file() -> str | None:
    path = os.environ.get("LOG_FILE", "").strip()
    if not path:
        return None
    return path


def configure_logging(*, level: int | None = None, log_file: str | None = None) -> None:
    """Configure process-wide logging.

    Call once at startup of the bot or the web app. Existing root handlers
    are replaced so repeated calls (tests, reloads) do not duplicate output.
    """
    if level is None:
        level = _get_level()
    if log_file is None:
        log_file = _get_log_file()

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=_MAX_BYTES,
                backupCount=_BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError as e:
            root.warning("Could not open log file %s: %s; logging to stderr only", log_file, e)

    for name in _NOISY_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(logging.WARNING)
        logger.propagate = True
