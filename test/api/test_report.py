from __future__ import annotations

import json

from docload.api.report import build_run_report
from docload.core.models import RunConfig, RunResult, Scenario
from docload.scenarios import build_run_config


def test_report_shape(quiet_logger):
    config = build_run_config("spike", base_url="http://docs.test", logger=quiet_logger)
    result = RunResult(
        started_at_monotonic=10.0,
        ended_at_monotonic=14.0,
        max_vus=100,
        vus_started=120,
        interrupted_vus=0,
        metrics_report={"http_reqs": {"count": 200}},
        threshold_results=[{"metric": "http_req_failed", "expression": "rate<0.01", "observed": 0.0, "passed": True}],
        passed=True,
    )

    report = build_run_report(config, result)

    assert report["config"]["scenario"] == "spike"
    assert report["config"]["identity_mode"] == "isolated"
    assert report["config"]["stages"][1] == {"duration_seconds": 5.0, "target": 100}
    assert report["config"]["thresholds"]["http_req_duration"] == ["p(95)<500"]
    assert report["result"]["passed"] is True
    assert report["result"]["request_count"] == 200
    assert report["result"]["throughput_rps"] == 50.0
    assert report["thresholds"][0]["passed"] is True
    # The report is written as JSON by the CLI.
    json.dumps(report)


def test_empty_metrics_report(quiet_logger):
    config = build_run_config("load", logger=quiet_logger)
    result = RunResult(
        started_at_monotonic=0.0,
        ended_at_monotonic=0.0,
        max_vus=0,
        vus_started=0,
        interrupted_vus=0,
    )

    report = build_run_report(config, result)

    assert report["result"]["request_count"] == 0
    assert report["result"]["throughput_rps"] == 0.0
    assert report["metrics"] is None


def test_report_accepts_identity_mode_given_as_text(quiet_logger):
    base = build_run_config("volume", logger=quiet_logger)
    config = RunConfig(
        scenario=Scenario(
            name=base.scenario.name,
            stages=base.scenario.stages,
            thresholds=base.scenario.thresholds,
            identity_mode="Shared",
            think_time_seconds=base.scenario.think_time_seconds,
        ),
        base_url=base.base_url,
    )
    result = RunResult(
        started_at_monotonic=0.0,
        ended_at_monotonic=1.0,
        max_vus=10,
        vus_started=10,
        interrupted_vus=0,
    )

    report = build_run_report(config, result)

    assert report["config"]["identity_mode"] == "shared"
