"""Correlated multi-step workflow execution.

A workflow is an ordered list of ``WorkflowStep`` templates. For every
iteration the executor renders each step against a fresh
``CorrelationContext``, sends it, copies declared response fields back into
the context for later steps, and records one ``StepOutcome`` per step.

Every step runs every iteration. A failed step never stops the iteration;
later steps that needed one of its values see the literal ``undefined`` in
their place and their own checks record the damage.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Protocol, Sequence
from urllib.parse import quote

from docload.core.identity import unique_suffix
from docload.core.models import StepOutcome
from docload.core.transport import Transport, TransportResponse
from docload.exceptions import ConfigurationError
from docload.logger import Logger, session_logger

# Rendered in place of a correlation value that was never set.
MISSING_VALUE = "undefined"

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_ABSENT = object()


class CorrelationContext:
    """Values carried between the steps of a single iteration.

    Seeded with ``patientId``, ``vu``, ``iteration`` and ``uniqueSuffix``;
    extraction rules add to it. Never shared between iterations.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})

    @classmethod
    def for_iteration(cls, *, vu: int, iteration: int, identity: str) -> "CorrelationContext":
        return cls(
            {
                "patientId": identity,
                "vu": vu,
                "iteration": iteration,
                "uniqueSuffix": unique_suffix(vu, iteration),
            }
        )

    @property
    def vu(self) -> int:
        return int(self._values.get("vu", 0))

    @property
    def iteration(self) -> int:
        return int(self._values.get("iteration", 0))

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def discard(self, key: str) -> None:
        self._values.pop(key, None)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"CorrelationContext({self._values!r})"


def render_template(template: str, context: CorrelationContext, *, quote_values: bool = False) -> str:
    """Substitute ``{name}`` placeholders from the context.

    Missing (or None) values render as ``undefined``.
    """

    def _replace(match: re.Match[str]) -> str:
        value = context.get(match.group(1))
        text = MISSING_VALUE if value is None else str(value)
        return quote(text, safe="") if quote_values else text

    return _PLACEHOLDER_RE.sub(_replace, template)


def _render_body(body: Any, context: CorrelationContext) -> Any:
    if isinstance(body, str):
        return render_template(body, context)
    if isinstance(body, Mapping):
        return {key: _render_body(value, context) for key, value in body.items()}
    if isinstance(body, (list, tuple)):
        return [_render_body(value, context) for value in body]
    return body


def _lookup(payload: Any, path: str) -> Any:
    """Follow a dotted path (``document.id``) through decoded JSON."""
    current = payload
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _ABSENT
    return current


@dataclass(frozen=True)
class Extraction:
    """Copy ``field`` from the JSON response body into context ``key``."""

    field: str
    key: str

    def apply(self, response: TransportResponse, context: CorrelationContext) -> bool:
        value = _lookup(response.json(), self.field)
        if value is _ABSENT or value is None:
            context.discard(self.key)
            return False
        context.set(self.key, value)
        return True


@dataclass(frozen=True)
class Check:
    name: str
    predicate: Callable[[TransportResponse], bool]


def status_is(*codes: int) -> Callable[[TransportResponse], bool]:
    """Predicate that passes when the response status is one of ``codes``."""
    expected = frozenset(codes)

    def _predicate(response: TransportResponse) -> bool:
        return response.status in expected

    return _predicate


@dataclass(frozen=True)
class StepRequest:
    method: str
    url: str
    headers: dict[str, str]
    body: bytes | None


@dataclass(frozen=True)
class WorkflowStep:
    """Template for one HTTP call of the workflow.

    ``name`` is the endpoint tag used for metrics. ``path``, header values
    and string leaves of ``body`` may contain ``{name}`` placeholders.
    """

    name: str
    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    extract: tuple[Extraction, ...] = ()
    checks: tuple[Check, ...] = ()

    def build_request(self, context: CorrelationContext, base_url: str) -> StepRequest:
        path = render_template(self.path, context, quote_values=True)
        headers = {name: render_template(value, context) for name, value in self.headers.items()}
        body = None
        if self.body is not None:
            body = json.dumps(_render_body(self.body, context)).encode("utf-8")
        return StepRequest(
            method=self.method.upper(),
            url=base_url.rstrip("/") + path,
            headers=headers,
            body=body,
        )


class MetricsSink(Protocol):
    async def record(self, outcome: StepOutcome) -> None: ...


class WorkflowExecutor:
    """Runs the workflow steps of one iteration strictly in order."""

    def __init__(
        self,
        steps: Sequence[WorkflowStep],
        transport: Transport,
        *,
        base_url: str,
        metrics: MetricsSink | None = None,
        logger: Logger | None = None,
    ) -> None:
        if not steps:
            raise ConfigurationError("EMPTY_WORKFLOW", "workflow must contain at least one step")

        self._steps = tuple(steps)
        self._transport = transport
        self._base_url = base_url
        self._metrics = metrics
        self._logger = logger or session_logger

    @property
    def steps(self) -> tuple[WorkflowStep, ...]:
        return self._steps

    async def run_iteration(self, context: CorrelationContext) -> list[StepOutcome]:
        outcomes: list[StepOutcome] = []
        for step in self._steps:
            outcomes.append(await self._run_step(step, context))
        return outcomes

    async def _run_step(self, step: WorkflowStep, context: CorrelationContext) -> StepOutcome:
        request = step.build_request(context, self._base_url)
        response = await self._transport.send(
            request.method,
            request.url,
            headers=request.headers,
            body=request.body,
            tags={"endpoint": step.name},
        )

        for rule in step.extract:
            if not rule.apply(response, context):
                self._logger.debug(
                    "workflow.extraction_missing",
                    step=step.name,
                    field=rule.field,
                    key=rule.key,
                    status=response.status,
                    vu=context.vu,
                    iteration=context.iteration,
                )

        outcome = StepOutcome(
            step=step.name,
            method=request.method,
            url=request.url,
            status=response.status,
            latency_ms=response.latency_ms,
            checks=tuple((check.name, self._evaluate(check, response)) for check in step.checks),
            error_type=response.error_type,
            vu=context.vu,
            iteration=context.iteration,
        )

        if self._metrics is not None:
            await self._metrics.record(outcome)

        if not outcome.checks_passed:
            self._logger.debug(
                "workflow.check_failed",
                step=step.name,
                status=outcome.status,
                failed_checks=[name for name, passed in outcome.checks if not passed],
                error_type=outcome.error_type,
                vu=context.vu,
                iteration=context.iteration,
            )

        return outcome

    def _evaluate(self, check: Check, response: TransportResponse) -> bool:
        try:
            return bool(check.predicate(response))
        except Exception as exc:
            self._logger.warning(
                "workflow.check_error",
                check=check.name,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
