"""Integration tests for the LoadRunner engine.

These run short real schedules against the in-memory document service and
check the result and verdict.
"""

from __future__ import annotations

import pytest

from docload.core.engine import LoadRunner
from docload.core.models import IdentityMode, RunConfig, Scenario, Stage
from docload.exceptions import ConfigurationError, ScheduleError, ThresholdError

_THRESHOLDS = {"http_req_failed": ("rate<0.01",), "http_req_duration": ("p(95)<500",)}


def _config(
    *,
    stages=(Stage(0.2, 2), Stage(0.1, 0)),
    thresholds=_THRESHOLDS,
    identity_mode=IdentityMode.ISOLATED,
    think=0.01,
    **settings,
) -> RunConfig:
    return RunConfig(
        scenario=Scenario(
            name="test",
            stages=tuple(stages),
            thresholds=thresholds,
            identity_mode=identity_mode,
            think_time_seconds=think,
        ),
        base_url="http://docs.test",
        **{"timeout_seconds": 5.0, "tick_seconds": 0.01, **settings},
    )


class TestLoadRunner:
    @pytest.mark.asyncio
    async def test_healthy_service_passes(self, document_service, quiet_logger):
        service = document_service(latency_seconds=0.002)
        result = await LoadRunner(_config(), transport=service, logger=quiet_logger).run()

        assert result.passed
        assert result.request_count > 0
        assert result.request_count % 5 == 0
        assert result.max_vus == 2
        assert result.interrupted_vus == 0
        assert result.duration_seconds >= 0.25
        assert result.throughput_rps > 0
        assert {r["metric"] for r in result.threshold_results} == {"http_req_failed", "http_req_duration"}
        assert result.metrics_report["checks"]["fails"] == 0
        # A caller-supplied transport is left open for the caller.
        assert not service.closed

    @pytest.mark.asyncio
    async def test_failing_endpoint_fails_verdict(self, document_service, quiet_logger):
        service = document_service(fail_endpoints={"PATCH /documents/:id/review": 500})
        result = await LoadRunner(_config(), transport=service, logger=quiet_logger).run()

        assert not result.passed
        report = result.metrics_report
        assert report["http_req_failed"]["rate"] == pytest.approx(0.2)
        # Every step still ran every iteration.
        assert report["http_reqs"]["count"] == 5 * report["iterations"]["count"]
        failed = [r for r in result.threshold_results if not r["passed"]]
        assert [r["metric"] for r in failed] == ["http_req_failed"]

    @pytest.mark.asyncio
    async def test_shared_identity_targets_one_patient(self, document_service, quiet_logger):
        service = document_service()
        await LoadRunner(
            _config(identity_mode=IdentityMode.SHARED),
            transport=service,
            logger=quiet_logger,
        ).run()

        patients = {r.headers["X-Patient-Id"] for r in service.requests if r.headers.get("X-Role") == "PATIENT"}
        assert patients == {"patient-1"}
        link_urls = [r.url for r in service.requests if "links" in r.url]
        assert len(link_urls) == len(set(link_urls))

    @pytest.mark.asyncio
    async def test_isolated_identity_targets_one_patient_per_vu(self, document_service, quiet_logger):
        service = document_service()
        await LoadRunner(_config(), transport=service, logger=quiet_logger).run()

        patients = {r.headers["X-Patient-Id"] for r in service.requests if r.headers.get("X-Role") == "PATIENT"}
        assert patients == {"patient-1", "patient-2"}

    @pytest.mark.asyncio
    async def test_bad_schedule_fails_before_any_request(self, document_service, quiet_logger):
        service = document_service()
        with pytest.raises(ScheduleError):
            await LoadRunner(_config(stages=(Stage(1.0, -2),)), transport=service, logger=quiet_logger).run()
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_bad_threshold_fails_before_any_request(self, document_service, quiet_logger):
        service = document_service()
        with pytest.raises(ThresholdError):
            await LoadRunner(
                _config(thresholds={"http_req_duration": ("p95<500",)}),
                transport=service,
                logger=quiet_logger,
            ).run()
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_bad_identity_mode_fails_before_any_request(self, document_service, quiet_logger):
        service = document_service()
        with pytest.raises(ConfigurationError):
            await LoadRunner(
                _config(identity_mode="everyone"),  # type: ignore[arg-type]
                transport=service,
                logger=quiet_logger,
            ).run()
        assert service.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("config_kwargs", "code"),
        [
            ({"think": -1.0}, "INVALID_THINK_TIME"),
            ({"tick_seconds": 0}, "INVALID_TICK"),
            ({"graceful_stop_seconds": -1.0}, "INVALID_GRACEFUL_STOP"),
            ({"timeout_seconds": 0}, "INVALID_TIMEOUT"),
        ],
    )
    async def test_bad_run_settings_fail_before_any_request(self, document_service, quiet_logger, config_kwargs, code):
        service = document_service()
        with pytest.raises(ConfigurationError) as excinfo:
            await LoadRunner(_config(**config_kwargs), transport=service, logger=quiet_logger).run()
        assert excinfo.value.code == code
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_bad_run_settings_never_open_a_client(self, monkeypatch, quiet_logger):
        opened = []

        def _fake_transport(**kwargs):
            opened.append(kwargs)
            raise AssertionError("transport must not be created for an invalid run")

        monkeypatch.setattr("docload.core.engine.HttpxTransport", _fake_transport)

        with pytest.raises(ConfigurationError):
            await LoadRunner(_config(tick_seconds=-0.5), logger=quiet_logger).run()
        assert opened == []

    @pytest.mark.asyncio
    async def test_owned_transport_closed_when_setup_fails(self, document_service, monkeypatch, quiet_logger):
        service = document_service()
        monkeypatch.setattr("docload.core.engine.HttpxTransport", lambda **kwargs: service)

        def _broken_scheduler(*args, **kwargs):
            raise RuntimeError("scheduler setup failed")

        monkeypatch.setattr("docload.core.engine.StageScheduler", _broken_scheduler)

        with pytest.raises(RuntimeError):
            await LoadRunner(_config(), logger=quiet_logger).run()
        assert service.closed
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_endpoint_threshold_on_link_step(self, document_service, quiet_logger):
        link = "POST /documents/:id/links/.../medical-records/:id"
        service = document_service(fail_endpoints={link: 500})
        config = _config(thresholds={f"http_req_failed{{endpoint:{link}}}": ("rate<0.01",)})

        result = await LoadRunner(config, transport=service, logger=quiet_logger).run()

        assert not result.passed
        assert result.threshold_results[0]["observed"] == 1.0
        assert result.metrics_report["by_endpoint"][link]["error_count"] > 0
