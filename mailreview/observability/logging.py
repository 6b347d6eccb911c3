"""Package logging

All mailreview loggers hang off the "mailreview" logger, which gets one
stream handler on first use. The root logger is left alone so the host
(uvicorn, a test runner) keeps control of its own output.

Log lines never carry message content, API keys or full digests; use
short_digest() when a digest has to appear.
"""

from __future__ import annotations

import logging
import os
from typing import Final

PACKAGE_LOGGER: Final[str] = "mailreview"
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

_configured_level: int | None = None


def _resolve_level() -> int:
    level_name = os.getenv("MAILREVIEW_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def _configure_package_logger(level: int) -> None:
    global _configured_level

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if _configured_level is None:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
        package_logger.addHandler(handler)
    if level != _configured_level:
        package_logger.setLevel(level)
        _configured_level = level


def get_logger(name: str) -> logging.Logger:
    """Return a module logger under the package logger (level from MAILREVIEW_LOG_LEVEL)."""
    _configure_package_logger(_resolve_level())
    return logging.getLogger(name)


def short_digest(digest: str | None) -> str:
    """Truncate a content digest for log lines."""
    if not digest:
        return "<none>"
    return digest[:12]
