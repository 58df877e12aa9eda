from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from docload.exceptions import ConfigurationError

# Status recorded for a step that never received an HTTP response.
TRANSPORT_ERROR_STATUS = 0


class IdentityMode(str, Enum):
    """How a VU index maps to the patient identity it targets.

    isolated: every VU gets its own patient, so concurrency is the only variable
    shared: every VU targets the same patient, so its documents accumulate
    """

    ISOLATED = "isolated"
    SHARED = "shared"

    @classmethod
    def parse(cls, raw: "str | IdentityMode") -> "IdentityMode":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError as exc:
            raise ConfigurationError(
                "UNKNOWN_IDENTITY_MODE",
                f"Unknown identity mode {raw!r}",
                {"allowed": [m.value for m in cls]},
            ) from exc


@dataclass(frozen=True)
class Stage:
    """One leg of the ramp: reach ``target`` VUs over ``duration_seconds``."""

    duration_seconds: float
    target: int


@dataclass(frozen=True)
class StepOutcome:
    """Result of one workflow step, emitted to the metrics collector."""

    step: str
    method: str
    url: str
    status: int
    latency_ms: float
    checks: tuple[tuple[str, bool], ...] = ()
    error_type: str | None = None
    vu: int = 0
    iteration: int = 0

    @property
    def transport_error(self) -> bool:
        return self.status == TRANSPORT_ERROR_STATUS

    @property
    def failed(self) -> bool:
        """True when the request itself failed (transport error or non 2xx/3xx)."""
        return self.transport_error or not (200 <= self.status < 400)

    @property
    def checks_passed(self) -> bool:
        return all(passed for _, passed in self.checks)


@dataclass(frozen=True)
class Scenario:
    name: str
    stages: tuple[Stage, ...]
    thresholds: Mapping[str, tuple[str, ...]]
    identity_mode: IdentityMode | str
    think_time_seconds: float


@dataclass(frozen=True)
class RunConfig:
    scenario: Scenario
    base_url: str
    timeout_seconds: float = 60.0
    tick_seconds: float = 0.1
    graceful_stop_seconds: float | None = None


@dataclass
class RunResult:
    started_at_monotonic: float
    ended_at_monotonic: float
    max_vus: int
    vus_started: int
    interrupted_vus: int
    metrics_report: dict[str, Any] | None = None
    threshold_results: list[dict[str, Any]] = field(default_factory=list)
    passed: bool = True

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.ended_at_monotonic - self.started_at_monotonic)

    @property
    def request_count(self) -> int:
        if not self.metrics_report:
            return 0
        return int(self.metrics_report["http_reqs"]["count"])

    @property
    def throughput_rps(self) -> float:
        duration = self.duration_seconds
        return (self.request_count / duration) if duration > 0 else 0.0
