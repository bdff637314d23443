"""Runtime configuration taken from the environment."""

from __future__ import annotations

import enum
import os
import sys

_VERSION = "1.3.0"
_NAME = "s-ui"


class LogLevel(str, enum.Enum):
    """Log levels accepted in ``SUI_LOG_LEVEL``."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def get_version() -> str:
    """Return the panel version."""
    return _VERSION.strip()


def get_name() -> str:
    """Return the panel name."""
    return _NAME.strip()


def is_debug() -> bool:
    """Return True when ``SUI_DEBUG`` is exactly ``true``."""
    return os.environ.get("SUI_DEBUG") == "true"


def get_log_level() -> LogLevel:
    """Return the configured log level; debug mode forces ``debug``.

    Raises ValueError for a level that is not known.
    """
    if is_debug():
        return LogLevel.DEBUG
    value = os.environ.get("SUI_LOG_LEVEL", "")
    if not value:
        return LogLevel.INFO
    try:
        return LogLevel(value)
    except ValueError:
        raise ValueError(f"unknown log level: {value}") from None


def get_db_folder_path() -> str:
    """Return the folder holding the database file."""
    folder = os.environ.get("SUI_DB_FOLDER", "")
    if folder:
        return folder
    program = sys.argv[0] if sys.argv and sys.argv[0] else "."
    try:
        base = os.path.abspath(os.path.dirname(program))
    except (OSError, ValueError):
        if sys.platform == "win32":
            return "C:\\Program Files\\s-ui\\db"
        return "/usr/local/s-ui/db"
    return os.path.join(base, "db")


def get_db_path() -> str:
    """Return the full path of the database file."""
    return f"{get_db_folder_path()}/{get_name()}.db"