"""
Centralized runtime configuration for adminkit.

Single source of truth for database selection, view lookup, dispatcher
defaults and logging, read from environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import cache
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminConfig:
    """adminkit configuration from environment variables.

    Attributes:
        database_url: PostgreSQL URL; when set it takes precedence over db_path
        db_path: SQLite database file used when no database_url is given
        views_dir: Directory the template locator searches for views
        default_action: Action used when the route action is not allowed
        hook_cascade_limit: Maximum number of action changes during view preparation
        log_dir: Directory for JSONL log files
        log_level: Minimum log level name
    """

    database_url: str | None = None
    db_path: Path = Path(".adminkit/data.db")
    views_dir: Path = Path("views")
    default_action: str = "list"
    hook_cascade_limit: int = 10
    log_dir: Path = Path(".adminkit/logs")
    log_level: str = "INFO"

    @property
    def uses_postgres(self) -> bool:
        return bool(self.database_url)

    @property
    def log_level_number(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


@cache
def get_config() -> AdminConfig:
    """Load adminkit configuration from environment variables.

    Environment variables:
        - ADMINKIT_DATABASE_URL / DATABASE_URL → database_url
        - ADMINKIT_DB_PATH → db_path
        - ADMINKIT_VIEWS_DIR → views_dir
        - ADMINKIT_DEFAULT_ACTION → default_action
        - ADMINKIT_HOOK_CASCADE_LIMIT → hook_cascade_limit
        - ADMINKIT_LOG_DIR → log_dir
        - ADMINKIT_LOG_LEVEL → log_level

    Returns:
        AdminConfig with validated settings.
    """
    database_url = os.environ.get("ADMINKIT_DATABASE_URL") or os.environ.get("DATABASE_URL")
    # Normalize Heroku's postgres:// to postgresql://
    if database_url and database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return AdminConfig(
        database_url=database_url or None,
        db_path=Path(os.environ.get("ADMINKIT_DB_PATH") or ".adminkit/data.db"),
        views_dir=Path(os.environ.get("ADMINKIT_VIEWS_DIR") or "views"),
        default_action=(os.environ.get("ADMINKIT_DEFAULT_ACTION") or "list").strip().lower(),
        hook_cascade_limit=max(1, _int_env("ADMINKIT_HOOK_CASCADE_LIMIT", 10)),
        log_dir=Path(os.environ.get("ADMINKIT_LOG_DIR") or ".adminkit/logs"),
        log_level=(os.environ.get("ADMINKIT_LOG_LEVEL") or "INFO").strip().upper(),
    )
