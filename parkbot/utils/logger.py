"""Process-wide logging setup for the reservation engine."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from parkbot.utils.config import get_settings


_LOGGER_INITIALIZED = False

# Chatty third-party loggers kept at WARNING unless the engine runs at DEBUG.
_QUIET_LOGGERS = ("httpx", "uvicorn.access")


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler once; later calls are no-ops."""

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    if resolved_level != "DEBUG":
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
