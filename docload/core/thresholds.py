"""Threshold parsing and evaluation.

Thresholds are written the way k6 writes them: a metric name mapped to a
list of ``<aggregate> <op> <number>`` expressions, for example::

    {
        "http_req_failed": ["rate<0.01"],
        "http_req_duration": ["p(95)<500", "avg<200"],
        "http_req_duration{endpoint:POST /documents}": ["p(99)<800"],
    }

The run passes only if every threshold passes. A threshold whose aggregate
has no value (no samples) fails.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Sequence

from docload.core.metrics import percentile_key
from docload.exceptions import ThresholdError

KNOWN_METRICS = frozenset(
    {
        "http_reqs",
        "http_req_failed",
        "http_req_duration",
        "checks",
        "iterations",
        "iteration_duration",
    }
)
# Metrics that can be narrowed to one endpoint tag.
_ENDPOINT_METRICS = frozenset({"http_req_failed", "http_req_duration"})

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_METRIC_RE = re.compile(r"^(?P<name>[a-z_]+)(?:\{endpoint:(?P<endpoint>[^}]+)\})?$")
_EXPRESSION_RE = re.compile(
    r"^\s*(?P<agg>rate|count|avg|min|max|med|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*(?P<value>-?\d+(?:\.\d+)?)\s*$"
)


@dataclass(frozen=True)
class Threshold:
    metric: str
    expression: str
    aggregate: str
    operator: str
    limit: float
    endpoint: str | None = None
    percentile: float | None = None

    @property
    def name(self) -> str:
        return f"{self.metric}: {self.expression}"


@dataclass(frozen=True)
class ThresholdResult:
    threshold: Threshold
    observed: float | None
    passed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.threshold.metric,
            "expression": self.threshold.expression,
            "observed": self.observed,
            "passed": self.passed,
        }


@dataclass(frozen=True)
class ThresholdReport:
    results: tuple[ThresholdResult, ...]

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failures(self) -> list[ThresholdResult]:
        return [result for result in self.results if not result.passed]


def parse_threshold(metric: str, expression: str) -> Threshold:
    """Parse one ``metric`` / ``expression`` pair; raises ThresholdError."""
    metric_match = _METRIC_RE.match(metric.strip())
    if not metric_match or metric_match.group("name") not in KNOWN_METRICS:
        raise ThresholdError(
            f"Unknown threshold metric {metric!r}",
            {"known_metrics": sorted(KNOWN_METRICS)},
        )

    name = metric_match.group("name")
    endpoint = metric_match.group("endpoint")
    if endpoint is not None and name not in _ENDPOINT_METRICS:
        raise ThresholdError(
            f"Metric {name!r} cannot be narrowed to an endpoint",
            {"metric": metric},
        )

    match = _EXPRESSION_RE.match(expression)
    if not match:
        raise ThresholdError(
            f"Cannot parse threshold expression {expression!r}",
            {"metric": metric, "expected": "<aggregate><op><number>, e.g. p(95)<500"},
        )

    pct = match.group("pct")
    percentile = float(pct) if pct is not None else None
    if percentile is not None and not 0 <= percentile <= 100:
        raise ThresholdError(
            f"Percentile out of range in {expression!r}",
            {"metric": metric},
        )

    return Threshold(
        metric=metric.strip(),
        expression=expression.strip(),
        aggregate=percentile_key(percentile) if percentile is not None else match.group("agg"),
        operator=match.group("op"),
        limit=float(match.group("value")),
        endpoint=endpoint,
        percentile=percentile,
    )


def validate_thresholds(thresholds: Mapping[str, Sequence[str]]) -> list[Threshold]:
    parsed: list[Threshold] = []
    for metric, expressions in thresholds.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        for expression in expressions:
            parsed.append(parse_threshold(metric, expression))
    return parsed


def required_percentiles(thresholds: Iterable[Threshold]) -> set[float]:
    return {t.percentile for t in thresholds if t.percentile is not None}


def _observed(threshold: Threshold, report: Mapping[str, Any]) -> float | None:
    name = _METRIC_RE.match(threshold.metric).group("name")  # type: ignore[union-attr]

    if threshold.endpoint is None:
        node = report.get(name) or {}
        value = node.get(threshold.aggregate)
    else:
        node = (report.get("by_endpoint") or {}).get(threshold.endpoint) or {}
        if name == "http_req_failed" and threshold.aggregate == "rate":
            value = node.get("error_rate")
        elif name == "http_req_failed" and threshold.aggregate == "count":
            value = node.get("error_count")
        else:
            value = node.get(threshold.aggregate)

    return float(value) if value is not None else None


def evaluate_thresholds(
    thresholds: Mapping[str, Sequence[str]] | Sequence[Threshold],
    report: Mapping[str, Any],
) -> ThresholdReport:
    """Evaluate thresholds against a metrics report from ``MetricsCollector``."""
    if isinstance(thresholds, Mapping):
        parsed = validate_thresholds(thresholds)
    else:
        parsed = list(thresholds)

    results = []
    for threshold in parsed:
        observed = _observed(threshold, report)
        passed = observed is not None and _OPERATORS[threshold.operator](observed, threshold.limit)
        results.append(ThresholdResult(threshold=threshold, observed=observed, passed=passed))
    return ThresholdReport(results=tuple(results))
