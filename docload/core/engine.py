from __future__ import annotations

import asyncio
import signal
import time
from typing import Sequence

from docload.core.metrics import MetricsCollector
from docload.core.models import IdentityMode, RunConfig, RunResult
from docload.core.schedule import Schedule, StageScheduler
from docload.core.thresholds import evaluate_thresholds, required_percentiles, validate_thresholds
from docload.core.transport import HttpxTransport, Transport
from docload.core.vu import VirtualUser
from docload.core.workflow import WorkflowExecutor, WorkflowStep
from docload.exceptions import ConfigurationError
from docload.logger import Logger, session_logger


class LoadRunner:
    """Runs one scenario end to end and returns the verdict.

    Everything that can be wrong with the configuration (schedule, run
    settings, thresholds, identity mode, workflow) is checked before the
    transport is opened, and raises a ``ConfigurationError``.
    """

    def __init__(
        self,
        config: RunConfig,
        *,
        logger: Logger | None = None,
        transport: Transport | None = None,
        steps: Sequence[WorkflowStep] | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or session_logger
        self._transport = transport
        self._steps = steps

    async def run(self) -> RunResult:
        config = self._config
        scenario = config.scenario

        schedule = Schedule(scenario.stages)
        thresholds = validate_thresholds(scenario.thresholds)
        identity_mode = IdentityMode.parse(scenario.identity_mode)
        _check_run_settings(config)

        steps = self._steps
        if steps is None:
            from docload.scenarios.documents import build_document_workflow

            steps = build_document_workflow()
        if not steps:
            raise ConfigurationError("EMPTY_WORKFLOW", "workflow must contain at least one step")

        metrics = MetricsCollector(logger=self._logger)
        transport = self._transport or HttpxTransport(
            timeout_seconds=config.timeout_seconds,
            logger=self._logger,
            max_connections=max(100, schedule.max_target),
        )

        try:
            executor = WorkflowExecutor(
                steps,
                transport,
                base_url=config.base_url,
                metrics=metrics,
                logger=self._logger,
            )

            def _vu_factory(index: int) -> VirtualUser:
                return VirtualUser(
                    index,
                    executor=executor,
                    identity_mode=identity_mode,
                    think_time_seconds=scenario.think_time_seconds,
                    metrics=metrics,
                    logger=self._logger,
                )

            scheduler = StageScheduler(
                schedule,
                _vu_factory,
                tick_seconds=config.tick_seconds,
                graceful_stop_seconds=config.graceful_stop_seconds,
                logger=self._logger,
            )

            stop_event = asyncio.Event()
            loop = asyncio.get_running_loop()

            def _handle_signal(signum: int, _frame) -> None:  # pragma: no cover
                self._logger.warning("run.signal", signum=signum)
                loop.call_soon_threadsafe(stop_event.set)

            self._logger.info(
                "run.start",
                scenario=scenario.name,
                base_url=config.base_url,
                stages=schedule.describe(),
                identity_mode=identity_mode.value,
                think_time_seconds=scenario.think_time_seconds,
                steps=[step.name for step in steps],
                thresholds=[t.name for t in thresholds],
            )

            started = time.monotonic()
            with _SignalHandlers(_handle_signal):
                stats = await scheduler.run(stop_event)
        finally:
            if self._transport is None:
                await transport.aclose()
        ended = time.monotonic()

        metrics_report = await metrics.build_report(percentiles=required_percentiles(thresholds))
        verdict = evaluate_thresholds(thresholds, metrics_report)

        for failure in verdict.failures:
            self._logger.warning(
                "run.threshold_failed",
                threshold=failure.threshold.name,
                observed=failure.observed,
            )

        result = RunResult(
            started_at_monotonic=started,
            ended_at_monotonic=ended,
            max_vus=stats.max_vus,
            vus_started=stats.vus_started,
            interrupted_vus=stats.interrupted,
            metrics_report=metrics_report,
            threshold_results=[r.to_dict() for r in verdict.results],
            passed=verdict.passed,
        )

        self._logger.info(
            "run.end",
            scenario=scenario.name,
            passed=result.passed,
            request_count=result.request_count,
            iterations=metrics_report["iterations"]["count"],
            error_rate=metrics_report["http_req_failed"]["rate"],
            duration_seconds=round(result.duration_seconds, 3),
            throughput_rps=round(result.throughput_rps, 2),
        )

        return result


def _check_run_settings(config: RunConfig) -> None:
    """Reject run settings the scheduler, VUs or transport would refuse later."""
    numeric = (
        ("timeout_seconds", config.timeout_seconds, "INVALID_TIMEOUT"),
        ("tick_seconds", config.tick_seconds, "INVALID_TICK"),
    )
    for name, value, code in numeric:
        if value is None or value <= 0:
            raise ConfigurationError(code, f"{name} must be > 0", {name: value})

    if config.graceful_stop_seconds is not None and config.graceful_stop_seconds < 0:
        raise ConfigurationError(
            "INVALID_GRACEFUL_STOP",
            "graceful_stop_seconds must be >= 0",
            {"graceful_stop_seconds": config.graceful_stop_seconds},
        )

    think = config.scenario.think_time_seconds
    if think is None or think < 0:
        raise ConfigurationError(
            "INVALID_THINK_TIME",
            "think_time_seconds must be >= 0",
            {"scenario": config.scenario.name, "think_time_seconds": think},
        )


class _SignalHandlers:
    def __init__(self, handler) -> None:
        self._handler = handler
        self._previous: dict[int, object] = {}

    def __enter__(self):
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous[signum] = signal.signal(signum, self._handler)
            except (ValueError, OSError):
                # Only the main thread may install handlers.
                pass
        return self

    def __exit__(self, exc_type, exc, tb):
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)  # type: ignore[arg-type]
        return False
