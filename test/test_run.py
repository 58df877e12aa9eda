"""Tests for the docload CLI entry point."""

from __future__ import annotations

import json

import pytest

from docload import run


class TestConfigurationErrors:
    @pytest.mark.parametrize(
        "argv",
        [
            ["--stages", "10s:-1"],
            ["--stages", "10s"],
            ["--graceful-stop", "soon"],
            ["--timeout-seconds", "0"],
            ["--tick-seconds", "0"],
        ],
    )
    def test_exit_code_two(self, argv):
        assert run.main(argv) == run.EXIT_CONFIG_ERROR


class TestRunAgainstUnreachableService:
    def test_failed_thresholds_exit_one_and_write_report(self, tmp_path):
        output = tmp_path / "reports" / "summary.json"

        # Nothing listens on the discard port, so every request fails fast.
        code = run.main(
            [
                "--test-type",
                "no-such-scenario",
                "--base-url",
                "http://127.0.0.1:9",
                "--stages",
                "200ms:1",
                "--timeout-seconds",
                "2",
                "--graceful-stop",
                "5s",
                "--output",
                str(output),
            ]
        )

        assert code == run.EXIT_THRESHOLD_BREACH
        report = json.loads(output.read_text(encoding="utf-8"))
        assert report["config"]["scenario"] == "load"
        assert report["config"]["stages"] == [{"duration_seconds": 0.2, "target": 1}]
        assert report["result"]["passed"] is False
        assert report["metrics"]["http_req_failed"]["rate"] == 1.0
        assert report["metrics"]["http_reqs"]["count"] % 5 == 0


def test_test_type_defaults_from_env(monkeypatch):
    monkeypatch.setenv("TEST_TYPE", "spike")
    args = run._build_parser().parse_args([])
    assert args.test_type == "spike"
