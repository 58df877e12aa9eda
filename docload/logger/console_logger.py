from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog

from .base import Logger


class ConsoleLogger(Logger):
    """Logger writing structlog events to a text stream (stderr by default).

    ``json_output`` switches from the human console renderer to one JSON
    object per line, which is what CI log collectors expect.
    """

    def __init__(
        self,
        level: int = logging.INFO,
        *,
        json_output: bool = False,
        stream: TextIO | None = None,
    ) -> None:
        self.level = level
        renderer: Any = (
            structlog.processors.JSONRenderer()
            if json_output
            else structlog.dev.ConsoleRenderer(colors=False)
        )
        self._logger = structlog.wrap_logger(
            structlog.PrintLogger(file=stream or sys.stderr),
            wrapper_class=structlog.make_filtering_bound_logger(level),
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                renderer,
            ],
        )

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(message, **kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._logger.critical(message, **kwargs)
