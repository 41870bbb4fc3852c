"""
adminkit logging infrastructure.

Two outputs share the ``adminkit`` logger hierarchy:
- Console output in a short human-readable form
- A rotating JSONL file (one JSON object per line) for tooling to tail

Modules log through ``logging.getLogger(__name__)``; the dispatcher and
storage layers use component loggers from :func:`get_logger` so every entry
carries a ``component`` tag.
"""

from __future__ import annotations

import json
import logging
import sys
from collections import deque
from collections.abc import Iterator
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from adminkit.runtime.config import AdminConfig

LOG_FILE_NAME = "adminkit.log"
DEFAULT_COMPONENT = "core"

# =============================================================================
# Formatters
# =============================================================================


class JSONLFormatter(logging.Formatter):
    """
    One JSON object per record.

    Keys: ``timestamp`` (UTC ISO-8601), ``level``, ``component``, ``logger``
    and ``message``. Structured ``context`` passed through ``extra`` is kept
    as-is; warnings and above also get a ``source`` location, and records
    with ``exc_info`` an ``exception`` summary.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "component": record.__dict__.get("component", DEFAULT_COMPONENT),
            "logger": record.name,
            "message": record.getMessage(),
        }

        if context := record.__dict__.get("context"):
            entry["context"] = context

        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {"type": exc_type.__name__, "message": str(exc_value)}

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """``[HH:MM:SS] [component] LEVEL: message``; the level is omitted for INFO."""

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        component = record.__dict__.get("component", DEFAULT_COMPONENT)
        parts = [f"[{clock}]", f"[{component}]"]
        if record.levelno != logging.INFO:
            parts.append(f"{record.levelname}:")
        parts.append(record.getMessage())
        text = " ".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


# =============================================================================
# Setup
# =============================================================================


_loggers: dict[str, logging.Logger] = {}
_log_dir: Path | None = None


def setup_logging(
    config: AdminConfig | None = None,
    *,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path:
    """
    Attach console and JSONL file handlers to the ``adminkit`` logger.

    Calling it again replaces the handlers, so tests can point logging at a
    fresh directory.

    Args:
        config: Runtime configuration (uses get_config() if None)
        max_bytes: Size at which the JSONL file rotates
        backup_count: Rotated files kept

    Returns:
        The log directory
    """
    global _log_dir

    if config is None:
        from adminkit.runtime.config import get_config

        config = get_config()

    level = config.log_level_number
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    _log_dir = log_dir

    handlers: list[tuple[logging.Handler, logging.Formatter]] = [
        (logging.StreamHandler(sys.stderr), ConsoleFormatter()),
        (
            RotatingFileHandler(
                log_dir / LOG_FILE_NAME,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            ),
            JSONLFormatter(),
        ),
    ]

    package_logger = logging.getLogger("adminkit")
    package_logger.setLevel(level)
    package_logger.handlers.clear()
    for handler, formatter in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        package_logger.addHandler(handler)

    package_logger.debug(
        "Logging to %s", log_dir, extra={"context": {"level": logging.getLevelName(level)}}
    )
    return log_dir


class _ComponentFilter(logging.Filter):
    """Tags records that carry no ``component`` with the logger's component."""

    def __init__(self, component: str) -> None:
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        record.__dict__.setdefault("component", self.component)
        return True


def get_logger(component: str) -> logging.Logger:
    """Return the ``adminkit.<component>`` logger, e.g. ``get_logger("dispatch")``."""
    logger = _loggers.get(component)
    if logger is None:
        logger = logging.getLogger(f"adminkit.{component.lower().replace(' ', '_')}")
        logger.addFilter(_ComponentFilter(component))
        _loggers[component] = logger
    return logger


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    **fields: Any,
) -> None:
    """Log ``message`` with ``context`` and ``fields`` merged into the JSONL ``context``."""
    merged = {**(context or {}), **fields}
    logger.log(level, message, extra={"context": merged} if merged else None)


# =============================================================================
# Reading back
# =============================================================================


def get_log_file() -> Path | None:
    return _log_dir / LOG_FILE_NAME if _log_dir else None


def _read_entries(log_file: Path) -> Iterator[dict[str, Any]]:
    with log_file.open(encoding="utf-8") as handle:
        for raw in handle:
            if not raw.strip():
                continue
            try:
                yield json.loads(raw)
            except json.JSONDecodeError:
                continue


def get_recent_logs(count: int = 50, level: str | None = None) -> list[dict[str, Any]]:
    """
    Return the last ``count`` JSONL entries, oldest first.

    Args:
        count: Maximum number of entries
        level: Keep only entries of this level name (case-insensitive)
    """
    log_file = get_log_file()
    if log_file is None or not log_file.exists():
        return []

    wanted = level.upper() if level else None
    recent: deque[dict[str, Any]] = deque(maxlen=max(count, 0))
    for entry in _read_entries(log_file):
        if wanted is None or entry.get("level") == wanted:
            recent.append(entry)
    return list(recent)
