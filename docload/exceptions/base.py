"""Base exception classes for docload.

Every error carries a machine-readable ``code``, a human ``message`` and an
optional ``details`` dict so that the CLI can log it with enough context to
recover.
"""

from __future__ import annotations

from typing import Any


class DocloadError(Exception):
    """Root of the docload exception hierarchy."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.code}: {self.message} ({detail_str})"
        return f"{self.code}: {self.message}"


class ValidationError(DocloadError):
    """Input data failed validation."""


class ConfigurationError(DocloadError):
    """The run cannot start because its configuration is invalid."""


class ScheduleError(ConfigurationError):
    """A stage schedule is malformed (empty, negative duration or target)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None, *, code: str = "INVALID_SCHEDULE") -> None:
        super().__init__(code, message, details)


class ThresholdError(ConfigurationError):
    """A threshold expression cannot be parsed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None, *, code: str = "INVALID_THRESHOLD") -> None:
        super().__init__(code, message, details)
