"""Staged load generator for the document service.

This package drives virtual users through a correlated document workflow
on a ramping concurrency schedule and reports a threshold verdict.
"""

from __future__ import annotations

__all__ = []
