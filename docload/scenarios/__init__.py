"""Scenario catalog and the document workflow."""

from docload.scenarios.catalog import (
    DEFAULT_BASE_URL,
    DEFAULT_SCENARIO,
    DEFAULT_THRESHOLDS,
    SCENARIOS,
    build_run_config,
    run_scenario,
    select_scenario,
)
from docload.scenarios.documents import build_document_workflow

__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_SCENARIO",
    "DEFAULT_THRESHOLDS",
    "SCENARIOS",
    "build_document_workflow",
    "build_run_config",
    "run_scenario",
    "select_scenario",
]
