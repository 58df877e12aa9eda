from __future__ import annotations

from typing import Any

from docload.core.models import IdentityMode, RunConfig, RunResult


def build_run_report(config: RunConfig, result: RunResult) -> dict[str, Any]:
    scenario = config.scenario
    config_payload = {
        "scenario": scenario.name,
        "base_url": config.base_url,
        "stages": [
            {"duration_seconds": stage.duration_seconds, "target": stage.target}
            for stage in scenario.stages
        ],
        "thresholds": {metric: list(exprs) for metric, exprs in scenario.thresholds.items()},
        "identity_mode": IdentityMode.parse(scenario.identity_mode).value,
        "think_time_seconds": scenario.think_time_seconds,
        "timeout_seconds": config.timeout_seconds,
        "graceful_stop_seconds": config.graceful_stop_seconds,
    }
    return {
        "config": config_payload,
        "result": {
            "passed": result.passed,
            "request_count": result.request_count,
            "duration_seconds": result.duration_seconds,
            "throughput_rps": result.throughput_rps,
            "max_vus": result.max_vus,
            "vus_started": result.vus_started,
            "interrupted_vus": result.interrupted_vus,
        },
        "thresholds": result.threshold_results,
        "metrics": result.metrics_report,
    }
