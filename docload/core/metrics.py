from __future__ import annotations

import asyncio
import math
import random
from dataclasses import dataclass, field
from typing import Any, Iterable

from docload.core.models import StepOutcome
from docload.logger import Logger, session_logger

DEFAULT_PERCENTILES: tuple[float, ...] = (90.0, 95.0, 99.0)


def _percentile(sorted_values: list[float], p: float) -> float | None:
    """Compute percentile using linear interpolation.

    Expects sorted_values sorted ascending and p in [0, 1].
    """

    if not sorted_values:
        return None

    if p <= 0:
        return float(sorted_values[0])
    if p >= 1:
        return float(sorted_values[-1])

    k = (len(sorted_values) - 1) * p
    f = int(math.floor(k))
    c = int(math.ceil(k))
    if f == c:
        return float(sorted_values[f])
    d0 = sorted_values[f] * (c - k)
    d1 = sorted_values[c] * (k - f)
    return float(d0 + d1)


def percentile_key(p: float) -> str:
    """Aggregate name for a percentile, e.g. 95 -> 'p(95)'."""
    return f"p({p:g})"


class _ReservoirSampler:
    """Fixed-size reservoir sampler for latency values.

    This avoids unbounded memory growth during long runs.
    """

    def __init__(self, max_size: int, *, seed: int | None = None) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self._max_size = max_size
        self._rng = random.Random(seed)
        self._seen = 0
        self._values: list[float] = []

    def add(self, value: float) -> None:
        self._seen += 1
        if len(self._values) < self._max_size:
            self._values.append(value)
            return

        # Replace elements with decreasing probability.
        idx = self._rng.randrange(self._seen)
        if idx < self._max_size:
            self._values[idx] = value

    def values(self) -> list[float]:
        return list(self._values)


@dataclass
class _TrendAgg:
    count: int = 0
    sum_ms: float = 0.0
    min_ms: float | None = None
    max_ms: float | None = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.sum_ms += value
        if self.min_ms is None or value < self.min_ms:
            self.min_ms = value
        if self.max_ms is None or value > self.max_ms:
            self.max_ms = value


@dataclass
class _EndpointAgg:
    trend: _TrendAgg = field(default_factory=_TrendAgg)
    error_count: int = 0
    error_types: dict[str, int] = field(default_factory=dict)


@dataclass
class _CheckAgg:
    passes: int = 0
    fails: int = 0


def _rate(part: int, total: int) -> float | None:
    return (part / total) if total else None


class MetricsCollector:
    """Aggregates step outcomes into k6-style run metrics.

    The report exposes the metrics thresholds are written against:
    ``http_req_duration`` (trend), ``http_req_failed`` (rate), ``checks``
    (rate), ``http_reqs`` and ``iterations`` (counters), plus per-endpoint and
    per-check breakdowns.
    """

    def __init__(
        self,
        *,
        sample_size: int = 5000,
        logger: Logger | None = None,
    ) -> None:
        self._logger = logger or session_logger
        self._lock = asyncio.Lock()

        self._sample_size = sample_size
        self._duration = _TrendAgg()
        self._duration_sample = _ReservoirSampler(sample_size)
        self._failed = 0

        self._iterations = _TrendAgg()
        self._iterations_sample = _ReservoirSampler(sample_size)

        self._checks = _CheckAgg()
        self._by_check: dict[str, _CheckAgg] = {}

        self._by_endpoint: dict[str, _EndpointAgg] = {}
        self._by_endpoint_sample: dict[str, _ReservoirSampler] = {}

    async def record(self, outcome: StepOutcome) -> None:
        """Record a single step outcome."""

        latency = max(0.0, outcome.latency_ms)

        async with self._lock:
            self._duration.observe(latency)
            self._duration_sample.add(latency)
            if outcome.failed:
                self._failed += 1

            endpoint = self._by_endpoint.get(outcome.step)
            if endpoint is None:
                endpoint = _EndpointAgg()
                self._by_endpoint[outcome.step] = endpoint
                self._by_endpoint_sample[outcome.step] = _ReservoirSampler(self._sample_size)
            endpoint.trend.observe(latency)
            self._by_endpoint_sample[outcome.step].add(latency)
            if outcome.failed:
                endpoint.error_count += 1
                et = outcome.error_type or "unknown"
                endpoint.error_types[et] = endpoint.error_types.get(et, 0) + 1

            for name, passed in outcome.checks:
                check = self._by_check.setdefault(name, _CheckAgg())
                if passed:
                    check.passes += 1
                    self._checks.passes += 1
                else:
                    check.fails += 1
                    self._checks.fails += 1

        if outcome.failed:
            self._logger.debug(
                "metrics.request_failed",
                step=outcome.step,
                status=outcome.status,
                error_type=outcome.error_type,
                vu=outcome.vu,
                iteration=outcome.iteration,
            )

    async def record_iteration(self, *, vu: int, duration_ms: float) -> None:
        """Record one completed iteration of a VU."""
        duration_ms = max(0.0, duration_ms)
        async with self._lock:
            self._iterations.observe(duration_ms)
            self._iterations_sample.add(duration_ms)

    async def build_report(self, *, percentiles: Iterable[float] = DEFAULT_PERCENTILES) -> dict[str, Any]:
        wanted = sorted(set(DEFAULT_PERCENTILES) | {float(p) for p in percentiles})

        async with self._lock:
            requests = self._duration.count
            total_checks = self._checks.passes + self._checks.fails

            by_endpoint: dict[str, Any] = {}
            for name, agg in self._by_endpoint.items():
                report = self._trend_report(agg.trend, self._by_endpoint_sample[name], wanted)
                report["error_count"] = agg.error_count
                report["error_rate"] = _rate(agg.error_count, agg.trend.count)
                report["error_types"] = dict(agg.error_types)
                by_endpoint[name] = report

            by_check = {
                name: {
                    "passes": agg.passes,
                    "fails": agg.fails,
                    "rate": _rate(agg.passes, agg.passes + agg.fails),
                }
                for name, agg in self._by_check.items()
            }

            return {
                "http_reqs": {"count": requests},
                "http_req_failed": {
                    "count": requests,
                    "failed": self._failed,
                    "rate": _rate(self._failed, requests),
                },
                "http_req_duration": self._trend_report(self._duration, self._duration_sample, wanted),
                "checks": {
                    "count": total_checks,
                    "passes": self._checks.passes,
                    "fails": self._checks.fails,
                    "rate": _rate(self._checks.passes, total_checks),
                },
                "iterations": {"count": self._iterations.count},
                "iteration_duration": self._trend_report(self._iterations, self._iterations_sample, wanted),
                "by_endpoint": by_endpoint,
                "by_check": by_check,
            }

    def _trend_report(self, agg: _TrendAgg, sample: _ReservoirSampler, percentiles: list[float]) -> dict[str, Any]:
        values = sample.values()
        values.sort()

        report: dict[str, Any] = {
            "count": agg.count,
            "avg": (agg.sum_ms / agg.count) if agg.count else None,
            "min": agg.min_ms,
            "max": agg.max_ms,
            "med": _percentile(values, 0.50),
            "sample_size": len(values),
        }
        for p in percentiles:
            report[percentile_key(p)] = _percentile(values, p / 100.0)
        return report
