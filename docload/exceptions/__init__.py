"""Project exception classes for docload."""

from docload.exceptions.base import (
    ConfigurationError,
    DocloadError,
    ScheduleError,
    ThresholdError,
    ValidationError,
)

__all__ = [
    "DocloadError",
    "ValidationError",
    "ConfigurationError",
    "ScheduleError",
    "ThresholdError",
]
