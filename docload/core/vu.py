from __future__ import annotations

import asyncio
import time

from docload.core.identity import DEFAULT_IDENTITY_PREFIX, DEFAULT_SHARED_SUFFIX, resolve_identity
from docload.core.metrics import MetricsCollector
from docload.core.models import IdentityMode, StepOutcome
from docload.core.workflow import CorrelationContext, WorkflowExecutor
from docload.logger import Logger, session_logger


class VirtualUser:
    """A single simulated user looping over the workflow.

    The scheduler keeps one VirtualUser per index for the whole run, so the
    iteration counter keeps increasing when an index is reactivated.
    Retirement is only honoured between iterations.
    """

    def __init__(
        self,
        index: int,
        *,
        executor: WorkflowExecutor,
        identity_mode: IdentityMode,
        think_time_seconds: float,
        metrics: MetricsCollector | None = None,
        logger: Logger | None = None,
        identity_prefix: str = DEFAULT_IDENTITY_PREFIX,
        shared_suffix: str = DEFAULT_SHARED_SUFFIX,
    ) -> None:
        if think_time_seconds < 0:
            raise ValueError("think_time_seconds must be >= 0")

        self.index = index
        self.identity = resolve_identity(
            index,
            identity_mode,
            prefix=identity_prefix,
            shared_suffix=shared_suffix,
        )
        self.iteration = 0
        self.in_iteration = False

        self._executor = executor
        self._think_time_seconds = think_time_seconds
        self._metrics = metrics
        self._logger = logger or session_logger

    async def run(self, retire: asyncio.Event) -> int:
        """Loop until ``retire`` is set; returns the number of iterations run."""
        completed = 0
        while not retire.is_set():
            await self.run_iteration()
            completed += 1
            await _sleep_unless_set(retire, self._think_time_seconds)

        self._logger.debug(
            "vu.retired",
            vu=self.index,
            identity=self.identity,
            iterations=completed,
            next_iteration=self.iteration,
        )
        return completed

    async def run_iteration(self) -> list[StepOutcome]:
        # Claim the index first so a cancelled iteration is never repeated.
        iteration = self.iteration
        self.iteration += 1

        context = CorrelationContext.for_iteration(
            vu=self.index,
            iteration=iteration,
            identity=self.identity,
        )

        start = time.monotonic()
        self.in_iteration = True
        try:
            outcomes = await self._executor.run_iteration(context)
        finally:
            self.in_iteration = False
        duration_ms = (time.monotonic() - start) * 1000

        if self._metrics is not None:
            await self._metrics.record_iteration(vu=self.index, duration_ms=duration_ms)

        failed_steps = [o.step for o in outcomes if o.failed or not o.checks_passed]
        self._logger.debug(
            "vu.iteration_done",
            vu=self.index,
            iteration=iteration,
            duration_ms=round(duration_ms, 2),
            steps=len(outcomes),
            failed_steps=failed_steps,
        )
        return outcomes


async def _sleep_unless_set(event: asyncio.Event, seconds: float) -> None:
    if seconds <= 0:
        # Yield to the event loop between back-to-back iterations.
        await asyncio.sleep(0)
        return
    try:
        await asyncio.wait_for(event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
