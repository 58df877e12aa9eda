"""Logger module for docload

Usage:
    from docload.logger import Logger, ConsoleLogger, session_logger

    # Use the shared logger
    session_logger.info("run.start", scenario="load")

    # Or implement your own
    class MyCustomLogger(Logger):
        def info(self, message: str, **kwargs):
            # Your custom implementation
            pass
"""

import logging
import os

from .base import Logger
from .console_logger import ConsoleLogger


def _level_from_env() -> int:
    raw = os.environ.get("DOCLOAD_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


# Shared logger instance for modules that just need basic console logging
session_logger: Logger = ConsoleLogger(
    level=_level_from_env(),
    json_output=os.environ.get("DOCLOAD_LOG_JSON", "").lower() in ("1", "true", "yes"),
)

__all__ = [
    "Logger",
    "ConsoleLogger",
    "session_logger",
]
