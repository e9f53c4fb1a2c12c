"""
Local file logging for shopsync.

Two sinks under ``<home>/logs``:

- ``local-<date>.log``: the ``shopsync`` logger hierarchy.
- ``sync-events-<date>.log``: one line per sync cycle, for tracing what a
  device pushed and pulled without turning on debug logging.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .utils import get_shopsync_home

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _log_dir() -> Path:
    path = get_shopsync_home() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_shopsync_logging(user_id: str = "default", level: str = "INFO") -> logging.Logger:
    """Attach a dated file handler to the ``shopsync`` logger.

    Safe to call repeatedly; handlers are only added once. DEBUG also echoes
    to stderr.
    """
    logger = logging.getLogger("shopsync")
    log_level = getattr(logging, str(level).upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.INFO
    logger.setLevel(log_level)

    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(_log_dir() / f"local-{_today()}.log", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if log_level <= logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console)

    logger.debug("Logging initialised for user=%s", user_id)
    return logger


def log_sync_event(event_type: str, details: str, user_id: str = "default") -> None:
    """Append one line to the sync event log."""
    timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    line = f"{timestamp} | {event_type} | user={user_id} | {details}\n"
    with open(_log_dir() / f"sync-events-{_today()}.log", "a", encoding="utf-8") as fh:
        fh.write(line)


def log_sync(user_id: str, operation: str, status: str, pushed: int = 0, pulled: int = 0, **extra: Any) -> None:
    """Record the outcome of one orchestrator operation."""
    parts = [f"op={operation}", f"status={status}", f"pushed={pushed}", f"pulled={pulled}"]
    parts.extend(f"{k}={v}" for k, v in sorted(extra.items()) if v is not None)
    log_sync_event("sync", ", ".join(parts), user_id=user_id)
