from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path

from docload.api.report import build_run_report
from docload.core.engine import LoadRunner
from docload.core.schedule import Schedule
from docload.core.timeparse import parse_duration_to_seconds
from docload.exceptions import ConfigurationError
from docload.logger import session_logger as logger
from docload.scenarios import DEFAULT_BASE_URL, DEFAULT_SCENARIO, SCENARIOS, build_run_config

EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="docload staged load generator for the document service")
    parser.add_argument(
        "--test-type",
        type=str,
        default=os.environ.get("TEST_TYPE", DEFAULT_SCENARIO),
        help=f"Scenario to run: {'|'.join(SCENARIOS)}. Unknown values fall back to {DEFAULT_SCENARIO}. (env: TEST_TYPE)",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=os.environ.get("DOCLOAD_BASE_URL", DEFAULT_BASE_URL),
        help="Document service base URL (env: DOCLOAD_BASE_URL)",
    )
    parser.add_argument(
        "--stages",
        type=str,
        default=None,
        help="Override the scenario stages, e.g. 30s:20,1m:20,10s:0",
    )
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        default=60.0,
        help="HTTP timeout per request",
    )
    parser.add_argument(
        "--graceful-stop",
        type=str,
        default=None,
        help="Max time to wait for in-flight iterations at the end (e.g. 30s). Default: wait for all.",
    )
    parser.add_argument(
        "--tick-seconds",
        type=float,
        default=0.1,
        help="How often the scheduler re-evaluates the VU target",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write summary report JSON to this path",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    graceful_stop_seconds = None
    if args.graceful_stop is not None:
        try:
            graceful_stop_seconds = parse_duration_to_seconds(args.graceful_stop)
        except ValueError as exc:
            logger.error(
                "run.invalid_graceful_stop",
                provided=args.graceful_stop,
                error=str(exc),
            )
            return EXIT_CONFIG_ERROR

    if args.timeout_seconds <= 0:
        logger.error(
            "run.invalid_timeout",
            provided=args.timeout_seconds,
            recovery="Provide --timeout-seconds > 0",
        )
        return EXIT_CONFIG_ERROR

    if args.tick_seconds <= 0:
        logger.error(
            "run.invalid_tick",
            provided=args.tick_seconds,
            recovery="Provide --tick-seconds > 0",
        )
        return EXIT_CONFIG_ERROR

    try:
        config = build_run_config(
            args.test_type,
            base_url=args.base_url.strip(),
            stages=Schedule.parse(args.stages) if args.stages else None,
            timeout_seconds=args.timeout_seconds,
            tick_seconds=args.tick_seconds,
            graceful_stop_seconds=graceful_stop_seconds,
            logger=logger,
        )
        result = asyncio.run(LoadRunner(config, logger=logger).run())
    except ConfigurationError as exc:
        logger.error(
            "run.invalid_configuration",
            error_type=type(exc).__name__,
            code=exc.code,
            error=exc.message,
            details=exc.details,
            recovery="Fix the scenario, --stages or thresholds and rerun",
        )
        return EXIT_CONFIG_ERROR

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = build_run_report(config, result)
        output_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

        logger.info("run.report_written", path=str(output_path))

    return EXIT_PASS if result.passed else EXIT_THRESHOLD_BREACH


if __name__ == "__main__":
    raise SystemExit(main())
