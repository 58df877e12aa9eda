"""Stage schedules and the live VU ramp.

A ``Schedule`` is an immutable list of stages. ``Schedule.target_at`` gives
the desired VU count at any elapsed time by interpolating linearly from the
previous stage's target (0 before the first stage) to the current stage's
target. A single-stage schedule is flat: it holds its target for its whole
duration.

``StageScheduler`` turns that curve into running ``VirtualUser`` tasks. It
starts VUs on the lowest free indices when the target rises and asks the
highest-indexed VUs to retire when it falls. Retired VUs finish their
current iteration before exiting.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from docload.core.models import Stage
from docload.core.timeparse import format_seconds, parse_duration_to_seconds
from docload.core.vu import VirtualUser
from docload.exceptions import ScheduleError
from docload.logger import Logger, session_logger


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _coerce_stage(raw: Stage | Mapping[str, Any] | tuple, position: int) -> Stage:
    if isinstance(raw, Stage):
        duration, target = raw.duration_seconds, raw.target
    elif isinstance(raw, Mapping):
        if "duration" not in raw or "target" not in raw:
            raise ScheduleError(
                "stage must define 'duration' and 'target'",
                {"stage": position, "value": dict(raw)},
            )
        duration, target = raw["duration"], raw["target"]
    elif isinstance(raw, tuple) and len(raw) == 2:
        duration, target = raw
    else:
        raise ScheduleError("unsupported stage definition", {"stage": position, "value": repr(raw)})

    try:
        duration_seconds = parse_duration_to_seconds(duration)
    except (ValueError, TypeError, AttributeError) as exc:
        raise ScheduleError(
            f"invalid stage duration {duration!r}",
            {"stage": position, "error": str(exc)},
        ) from exc

    if duration_seconds < 0:
        raise ScheduleError("stage duration must be non-negative", {"stage": position, "duration": duration})
    if isinstance(target, bool) or not isinstance(target, int):
        raise ScheduleError("stage target must be an integer", {"stage": position, "target": target})
    if target < 0:
        raise ScheduleError("stage target must be non-negative", {"stage": position, "target": target})

    return Stage(duration_seconds=duration_seconds, target=target)


class Schedule:
    """Immutable, validated sequence of stages."""

    def __init__(self, stages: Iterable[Stage | Mapping[str, Any] | tuple]) -> None:
        coerced = tuple(_coerce_stage(raw, i) for i, raw in enumerate(stages))
        if not coerced:
            raise ScheduleError("schedule must contain at least one stage")
        self._stages = coerced

    @classmethod
    def parse(cls, text: str) -> "Schedule":
        """Parse the compact CLI form ``30s:20,1m:20,10s:0``."""
        stages: list[tuple[str, int]] = []
        for position, chunk in enumerate(part.strip() for part in text.split(",")):
            duration, sep, target = chunk.partition(":")
            if not sep:
                raise ScheduleError("stage must look like <duration>:<target>", {"stage": position, "value": chunk})
            try:
                stages.append((duration.strip(), int(target.strip())))
            except ValueError as exc:
                raise ScheduleError("stage target must be an integer", {"stage": position, "value": chunk}) from exc
        return cls(stages)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def total_duration(self) -> float:
        return sum(stage.duration_seconds for stage in self._stages)

    @property
    def max_target(self) -> int:
        return max(stage.target for stage in self._stages)

    def target_at(self, elapsed: float) -> int:
        """Desired VU count ``elapsed`` seconds after the run started."""
        if len(self._stages) == 1:
            return self._stages[0].target

        elapsed = max(0.0, elapsed)
        start_target = 0
        offset = 0.0
        for stage in self._stages:
            end = offset + stage.duration_seconds
            if elapsed < end:
                progress = (elapsed - offset) / stage.duration_seconds
                return _round_half_up(start_target + (stage.target - start_target) * progress)
            start_target = stage.target
            offset = end
        return start_target

    def describe(self) -> str:
        return ", ".join(f"{format_seconds(s.duration_seconds)}->{s.target}" for s in self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Schedule) and other._stages == self._stages

    def __hash__(self) -> int:
        return hash(self._stages)

    def __repr__(self) -> str:
        return f"Schedule({self.describe()})"


@dataclass
class SchedulerStats:
    max_vus: int = 0
    vus_started: int = 0
    interrupted: int = 0
    crashed: int = 0


@dataclass
class _Activation:
    vu: VirtualUser
    retire: asyncio.Event
    task: asyncio.Task[int]


class StageScheduler:
    def __init__(
        self,
        schedule: Schedule,
        vu_factory: Callable[[int], VirtualUser],
        *,
        tick_seconds: float = 0.1,
        graceful_stop_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Logger | None = None,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be > 0")
        if graceful_stop_seconds is not None and graceful_stop_seconds < 0:
            raise ValueError("graceful_stop_seconds must be >= 0")

        self._schedule = schedule
        self._vu_factory = vu_factory
        self._tick_seconds = tick_seconds
        self._graceful_stop_seconds = graceful_stop_seconds
        self._clock = clock
        self._logger = logger or session_logger

        self._vus: dict[int, VirtualUser] = {}
        self._active: dict[int, _Activation] = {}
        self._draining: dict[int, _Activation] = {}
        self._stats = SchedulerStats()

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def draining_count(self) -> int:
        return len(self._draining)

    def active_indices(self) -> list[int]:
        return sorted(self._active)

    def vu(self, index: int) -> VirtualUser | None:
        return self._vus.get(index)

    async def run(self, stop_event: asyncio.Event | None = None) -> SchedulerStats:
        """Follow the schedule until it ends or ``stop_event`` is set, then drain."""
        stop_event = stop_event or asyncio.Event()
        total = self._schedule.total_duration
        started = self._clock()

        self._logger.info(
            "scheduler.start",
            stages=self._schedule.describe(),
            total_duration_seconds=total,
            max_target=self._schedule.max_target,
        )

        try:
            while not stop_event.is_set():
                elapsed = self._clock() - started
                if elapsed >= total:
                    break
                self.reconcile(elapsed)
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self._tick_seconds)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            self._cancel_all()
            raise

        await self.stop()

        self._logger.info(
            "scheduler.end",
            elapsed_seconds=round(self._clock() - started, 3),
            stopped_early=stop_event.is_set(),
            max_vus=self._stats.max_vus,
            vus_started=self._stats.vus_started,
            interrupted=self._stats.interrupted,
        )
        return self._stats

    def reconcile(self, elapsed: float) -> int:
        """Start or retire VUs so the active count matches the schedule at ``elapsed``."""
        self._reap()

        desired = self._schedule.target_at(elapsed)
        current = len(self._active)

        if desired > current:
            for _ in range(desired - current):
                self._start_vu(self._next_free_index())
        elif desired < current:
            for index in sorted(self._active, reverse=True)[: current - desired]:
                self._retire(index)

        if desired != current:
            self._logger.debug(
                "scheduler.reconciled",
                elapsed_seconds=round(elapsed, 3),
                desired=desired,
                previous=current,
                draining=len(self._draining),
            )

        self._stats.max_vus = max(self._stats.max_vus, len(self._active))
        return desired

    async def stop(self) -> None:
        """Retire every VU and wait for in-flight iterations to finish."""
        for index in list(self._active):
            self._retire(index)

        pending = {index: act.task for index, act in self._draining.items() if not act.task.done()}
        if pending:
            _, not_done = await asyncio.wait(pending.values(), timeout=self._graceful_stop_seconds)
            if not_done:
                for task in not_done:
                    task.cancel()
                await asyncio.gather(*not_done, return_exceptions=True)
                self._stats.interrupted += len(not_done)
                self._logger.warning(
                    "scheduler.graceful_stop_exceeded",
                    interrupted=len(not_done),
                    graceful_stop_seconds=self._graceful_stop_seconds,
                    recovery="Raise --graceful-stop or lower --timeout-seconds",
                )

        self._reap()

    def _next_free_index(self) -> int:
        # Indices still draining stay reserved until their task exits.
        index = 1
        while index in self._active or index in self._draining:
            index += 1
        return index

    def _start_vu(self, index: int) -> None:
        vu = self._vus.get(index)
        if vu is None:
            vu = self._vu_factory(index)
            self._vus[index] = vu

        retire = asyncio.Event()
        task = asyncio.create_task(vu.run(retire), name=f"vu-{index}")
        self._active[index] = _Activation(vu=vu, retire=retire, task=task)
        self._stats.vus_started += 1

        self._logger.debug("scheduler.vu_started", vu=index, identity=vu.identity)

    def _retire(self, index: int) -> None:
        activation = self._active.pop(index)
        activation.retire.set()
        self._draining[index] = activation

        self._logger.debug(
            "scheduler.vu_retiring",
            vu=index,
            in_iteration=activation.vu.in_iteration,
        )

    def _reap(self) -> None:
        for pool in (self._active, self._draining):
            for index, activation in list(pool.items()):
                if not activation.task.done():
                    continue
                del pool[index]
                if activation.task.cancelled():
                    continue
                exc = activation.task.exception()
                if exc is not None:
                    self._stats.crashed += 1
                    self._logger.error(
                        "scheduler.vu_crashed",
                        vu=index,
                        error_type=type(exc).__name__,
                        error=str(exc),
                        recovery="The slot is freed and refilled on the next tick",
                    )

    def _cancel_all(self) -> None:
        for pool in (self._active, self._draining):
            for activation in pool.values():
                activation.task.cancel()
