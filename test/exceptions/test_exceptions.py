"""Tests for the docload exception hierarchy."""

import pytest

from docload.exceptions import (
    ConfigurationError,
    DocloadError,
    ScheduleError,
    ThresholdError,
    ValidationError,
)


class TestDocloadError:
    def test_basic_construction(self):
        error = DocloadError("TEST_CODE", "Test message")

        assert error.code == "TEST_CODE"
        assert error.message == "Test message"
        assert error.details == {}

    def test_str_without_details(self):
        assert str(DocloadError("TEST_CODE", "Test message")) == "TEST_CODE: Test message"

    def test_str_with_details(self):
        result = str(DocloadError("TEST_CODE", "Test message", details={"stage": 2}))

        assert "TEST_CODE" in result
        assert "Test message" in result
        assert "stage=2" in result


class TestScheduleError:
    def test_is_configuration_error(self):
        error = ScheduleError("bad stage")
        assert isinstance(error, ConfigurationError)
        assert isinstance(error, DocloadError)

    def test_default_code(self):
        assert ScheduleError("bad stage").code == "INVALID_SCHEDULE"

    def test_custom_code(self):
        assert ScheduleError("bad stage", code="EMPTY").code == "EMPTY"


class TestThresholdError:
    def test_default_code_and_details(self):
        error = ThresholdError("cannot parse", {"metric": "checks"})

        assert error.code == "INVALID_THRESHOLD"
        assert error.details["metric"] == "checks"

    def test_caught_as_configuration_error(self):
        with pytest.raises(ConfigurationError):
            raise ThresholdError("cannot parse")


class TestHierarchy:
    def test_validation_error_is_not_configuration_error(self):
        assert not isinstance(ValidationError("CODE", "message"), ConfigurationError)
