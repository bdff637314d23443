"""Application logging with an in-memory buffer of recent messages."""

from __future__ import annotations

import enum
import logging
import logging.handlers
import sys
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime

_TIME_FORMAT = "%Y/%m/%d %H:%M:%S"
_LOGGER_NAME = "s-ui"
_DEFAULT_CAPACITY = 10240


class _Level(enum.IntEnum):
    CRITICAL = 0
    ERROR = 1
    WARNING = 2
    NOTICE = 3
    INFO = 4
    DEBUG = 5


def _parse_level(name) -> _Level:
    text = str(getattr(name, "value", name))
    for level in _Level:
        if level.name.lower() == text.lower():
            return level
    return _Level.ERROR


@dataclass(frozen=True)
class _Entry:
    time: str
    level: _Level
    message: str


class LogBuffer:
    """A bounded, thread-safe buffer of log lines; the oldest are dropped."""

    def __init__(self, capacity=_DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._entries: deque[_Entry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def add(self, level, message):
        """Record a message under a level name such as ``INFO``."""
        entry = _Entry(datetime.now().strftime(_TIME_FORMAT), _parse_level(level), message)
        with self._lock:
            self._entries.append(entry)

    def get_logs(self, count, level):
        """Return newest-first lines at or above ``level``.

        Collection stops once more than ``count`` lines were gathered, so up
        to ``count + 1`` lines come back. Unknown level names mean ``error``.
        """
        threshold = _parse_level(level)
        with self._lock:
            entries = list(reversed(self._entries))
        output = []
        for entry in entries:
            if len(output) > count:
                break
            if entry.level <= threshold:
                output.append(f"{entry.time} {entry.level.name} - {entry.message}")
        return output

    def __len__(self):
        with self._lock:
            return len(self._entries)


_logger = logging.getLogger(_LOGGER_NAME)
_buffer = LogBuffer()

_PY_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def init_logger(level):
    """Configure the application logger; syslog is used when available."""
    name = str(getattr(level, "value", level)).lower()
    if name not in _PY_LEVELS:
        raise ValueError(f"unknown log level: {level}")
    try:
        handler: logging.Handler = logging.handlers.SysLogHandler(address="/dev/log")
        formatter = logging.Formatter("%(levelname)s - %(message)s")
    except OSError as exc:
        print(f"Unable to use syslog: {exc}")
        handler = logging.StreamHandler(sys.stderr)
        formatter = logging.Formatter("%(asctime)s %(levelname)s - %(message)s", _TIME_FORMAT)
    handler.setFormatter(formatter)
    for old in list(_logger.handlers):
        _logger.removeHandler(old)
        old.close()
    _logger.addHandler(handler)
    _logger.setLevel(_PY_LEVELS[name])
    _logger.propagate = False


def _format_value(value) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _sprint(args) -> str:
    parts = []
    previous_is_str = True
    for index, arg in enumerate(args):
        is_str = isinstance(arg, str)
        if index > 0 and not is_str and not previous_is_str:
            parts.append(" ")
        parts.append(_format_value(arg))
        previous_is_str = is_str
    return "".join(parts)


def debug(*args):
    """Log at debug level."""
    message = _sprint(args)
    _logger.debug(message)
    _buffer.add("DEBUG", message)


def info(*args):
    """Log at info level."""
    message = _sprint(args)
    _logger.info(message)
    _buffer.add("INFO", message)


def warning(*args):
    """Log at warning level."""
    message = _sprint(args)
    _logger.warning(message)
    _buffer.add("WARNING", message)


def error(*args):
    """Log at error level."""
    message = _sprint(args)
    _logger.error(message)
    _buffer.add("ERROR", message)


def get_logs(count, level):
    """Return recent lines from the application buffer."""
    return _buffer.get_logs(count, level)