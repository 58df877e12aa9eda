"""Named scenarios: load, stress, spike and volume.

Usage as library::

    from docload.scenarios import run_scenario

    result = await run_scenario("spike", base_url="http://localhost:18081")
"""

from __future__ import annotations

from typing import Mapping, Sequence

from docload.core.engine import LoadRunner
from docload.core.models import IdentityMode, RunConfig, RunResult, Scenario
from docload.core.schedule import Schedule
from docload.core.transport import Transport
from docload.logger import Logger, session_logger

DEFAULT_SCENARIO = "load"
DEFAULT_BASE_URL = "http://localhost:18081"

DEFAULT_THRESHOLDS: Mapping[str, tuple[str, ...]] = {
    "http_req_failed": ("rate<0.01",),
    "http_req_duration": ("p(95)<500",),
}

_STAGES: dict[str, list[tuple[str, int]]] = {
    "load": [("30s", 20), ("1m", 20), ("10s", 0)],
    "stress": [("30s", 50), ("30s", 100), ("1m", 100), ("10s", 0)],
    "spike": [("30s", 5), ("5s", 100), ("15s", 100), ("5s", 5), ("30s", 5)],
    # Every VU shares patient-1, so the list response grows for the whole run.
    "volume": [("2m", 10)],
}


def _build(name: str) -> Scenario:
    volume = name == "volume"
    return Scenario(
        name=name,
        stages=Schedule(_STAGES[name]).stages,
        thresholds=dict(DEFAULT_THRESHOLDS),
        identity_mode=IdentityMode.SHARED if volume else IdentityMode.ISOLATED,
        think_time_seconds=0.1 if volume else 0.5,
    )


SCENARIOS: dict[str, Scenario] = {name: _build(name) for name in _STAGES}


def select_scenario(name: str | None, *, logger: Logger | None = None) -> Scenario:
    """Return the named scenario, falling back to ``load`` for unknown names."""
    logger = logger or session_logger
    key = (name or DEFAULT_SCENARIO).strip().lower()
    scenario = SCENARIOS.get(key)
    if scenario is None:
        logger.warning(
            "scenario.unknown",
            requested=name,
            fallback=DEFAULT_SCENARIO,
            known=sorted(SCENARIOS),
        )
        scenario = SCENARIOS[DEFAULT_SCENARIO]
    return scenario


def build_run_config(
    scenario: str | Scenario = DEFAULT_SCENARIO,
    *,
    base_url: str = DEFAULT_BASE_URL,
    stages: Schedule | Sequence[object] | None = None,
    thresholds: Mapping[str, Sequence[str]] | None = None,
    timeout_seconds: float = 60.0,
    tick_seconds: float = 0.1,
    graceful_stop_seconds: float | None = None,
    logger: Logger | None = None,
) -> RunConfig:
    """Build a ``RunConfig`` for a named scenario, optionally overriding its stages or thresholds."""
    chosen = scenario if isinstance(scenario, Scenario) else select_scenario(scenario, logger=logger)

    if stages is not None:
        schedule = stages if isinstance(stages, Schedule) else Schedule(stages)  # type: ignore[arg-type]
        chosen = Scenario(
            name=chosen.name,
            stages=schedule.stages,
            thresholds=chosen.thresholds,
            identity_mode=chosen.identity_mode,
            think_time_seconds=chosen.think_time_seconds,
        )
    if thresholds is not None:
        chosen = Scenario(
            name=chosen.name,
            stages=chosen.stages,
            thresholds={metric: tuple(exprs) for metric, exprs in thresholds.items()},
            identity_mode=chosen.identity_mode,
            think_time_seconds=chosen.think_time_seconds,
        )

    return RunConfig(
        scenario=chosen,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
        tick_seconds=tick_seconds,
        graceful_stop_seconds=graceful_stop_seconds,
    )


async def run_scenario(
    scenario: str | Scenario = DEFAULT_SCENARIO,
    *,
    base_url: str = DEFAULT_BASE_URL,
    stages: Schedule | Sequence[object] | None = None,
    timeout_seconds: float = 60.0,
    graceful_stop_seconds: float | None = None,
    transport: Transport | None = None,
    logger: Logger | None = None,
) -> RunResult:
    """Run a scenario with the document workflow and return the result.

    This is the programmatic entry point used by integration tests and CI.
    """
    config = build_run_config(
        scenario,
        base_url=base_url,
        stages=stages,
        timeout_seconds=timeout_seconds,
        graceful_stop_seconds=graceful_stop_seconds,
        logger=logger,
    )
    return await LoadRunner(config, transport=transport, logger=logger).run()
