"""
Logging helpers for cartsync.

The package only creates loggers under the ``cartsync`` namespace; handlers
belong to the host application. Command-line entry points call
``configure_logging()`` to get console output.

Usage:
    from cartsync.logging import get_logger
    logger = get_logger(__name__)
"""

import logging
import os
import sys
from functools import cache
from typing import Optional, TextIO

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
LOG_FORMAT_EMBEDDED = "%(levelname)s [%(name)s] %(message)s"

# Libraries whose per-request INFO lines drown out cart events
NOISY_LOGGERS = ("httpx", "httpcore")

logging.getLogger("cartsync").addHandler(logging.NullHandler())


def level_from_env(default: str = "INFO") -> int:
    """Resolve ``LOG_LEVEL`` to a logging level, falling back to ``default``."""
    name = os.environ.get("LOG_LEVEL", default).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.getLevelName(default.upper())


def configure_logging(level: Optional[int] = None, stream: Optional[TextIO] = None) -> None:
    """
    Send cartsync records to a console handler.

    Intended for scripts and standalone runs. Does nothing if the root logger
    already has handlers, so an embedding app keeps its own setup.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    level = level_from_env() if level is None else level
    handler = logging.StreamHandler(stream or sys.stdout)
    embedded = os.environ.get("CARTSYNC_EMBEDDED") == "1"
    handler.setFormatter(logging.Formatter(LOG_FORMAT_EMBEDDED if embedded else LOG_FORMAT))

    root.addHandler(handler)
    root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@cache
def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name``, typically the calling module's ``__name__``."""
    return logging.getLogger(name)


_LOG_ESCAPES = str.maketrans({"\n": "\\n", "\r": "\\r", "\t": "\\t", "\x00": None})


def _escape(value) -> str:
    # CWE-117: a product id or server message must not start a forged log line
    return str(value).translate(_LOG_ESCAPES)


def sanitize_id_for_logging(id_value: Optional[str], keep: int = 8) -> str:
    """Escaped prefix of a product or user id, "N/A" when empty."""
    if not id_value:
        return "N/A"
    return _escape(id_value)[:keep]


def sanitize_string_for_logging(value: Optional[str], max_length: int = 50) -> str:
    """Escaped free text (server messages, product names) cut to ``max_length``."""
    if not value:
        return "N/A"
    text = _escape(value)
    return text if len(text) <= max_length else f"{text[:max_length]}..."


__all__ = [
    "configure_logging",
    "get_logger",
    "level_from_env",
    "sanitize_id_for_logging",
    "sanitize_string_for_logging",
]
