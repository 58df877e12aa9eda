"""Pytest configuration and fixtures

Provides an in-memory stand-in for the document service so that workflow,
VU and scheduler tests never touch the network.
"""

import asyncio
import io
import json
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path

import pytest

# Add project root to sys.path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docload.core.transport import TransportResponse, classify_http_error
from docload.logger import ConsoleLogger


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: dict
    body: bytes | None
    endpoint: str

    def json(self):
        return json.loads(self.body) if self.body else None


class FakeDocumentService:
    """Transport double answering like the document service.

    - create returns 201 with a fresh ``documentId``
    - everything else returns 200
    - ``fail_endpoints`` maps an endpoint tag to a forced HTTP status
    - ``timeout_endpoints`` answer like a transport timeout (status 0)
    """

    def __init__(
        self,
        *,
        latency_seconds: float = 0.0,
        fail_endpoints: dict[str, int] | None = None,
        timeout_endpoints: tuple[str, ...] = (),
    ) -> None:
        self.requests: list[RecordedRequest] = []
        self.closed = False
        self._latency_seconds = latency_seconds
        self._fail_endpoints = dict(fail_endpoints or {})
        self._timeout_endpoints = set(timeout_endpoints)
        self._next_id = 0

    async def send(self, method, url, *, headers, body, tags):
        endpoint = tags.get("endpoint", "")
        self.requests.append(RecordedRequest(method, url, dict(headers), body, endpoint))

        start = time.monotonic()
        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)
        latency_ms = (time.monotonic() - start) * 1000

        if endpoint in self._timeout_endpoints:
            return TransportResponse(
                status=0,
                body=b"",
                latency_ms=latency_ms,
                error_type="network_timeout",
                error="timed out",
            )

        status = self._fail_endpoints.get(endpoint)
        if status is not None:
            return TransportResponse(
                status=status,
                body=b'{"error": "forced"}',
                latency_ms=latency_ms,
                error_type=classify_http_error(status),
            )

        if endpoint == "POST /documents":
            self._next_id += 1
            payload = {"documentId": f"doc-{self._next_id}"}
            return TransportResponse(status=201, body=json.dumps(payload).encode(), latency_ms=latency_ms)

        return TransportResponse(status=200, body=b"{}", latency_ms=latency_ms)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def document_service():
    """Factory for FakeDocumentService instances."""
    return FakeDocumentService


@pytest.fixture
def log_stream():
    return io.StringIO()


@pytest.fixture
def quiet_logger(log_stream):
    """Logger that only writes critical events, into an in-memory stream."""
    return ConsoleLogger(level=logging.CRITICAL, stream=log_stream)
