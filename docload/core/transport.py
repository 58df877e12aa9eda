from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import httpx

from docload.core.models import TRANSPORT_ERROR_STATUS
from docload.logger import Logger, session_logger

_USER_AGENT = "docload/0.1"


@dataclass(frozen=True)
class TransportResponse:
    """What the executor sees of one request: status, raw body, latency."""

    status: int
    body: bytes
    latency_ms: float
    error_type: str | None = None
    error: str | None = None

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any | None:
        """Decoded JSON body, or None when the body is empty or not JSON."""
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except ValueError:
            return None


class Transport(Protocol):
    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        body: bytes | None,
        tags: Mapping[str, str],
    ) -> TransportResponse: ...

    async def aclose(self) -> None: ...


class HttpxTransport:
    """Transport over a shared ``httpx.AsyncClient``.

    Request failures never raise: they come back as a response with status 0
    and a canonical ``error_type``. Nothing is retried.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float,
        logger: Logger | None = None,
        max_connections: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self._logger = logger or session_logger
        self._http = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=max_connections),
            headers={"User-Agent": _USER_AGENT},
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        body: bytes | None,
        tags: Mapping[str, str],
    ) -> TransportResponse:
        start = time.monotonic()
        try:
            response = await self._http.request(method, url, headers=dict(headers), content=body)
        except Exception as exc:
            latency_ms = (time.monotonic() - start) * 1000
            error_type = classify_exception(exc)
            self._logger.debug(
                "transport.request_failed",
                method=method,
                url=url,
                endpoint=tags.get("endpoint"),
                latency_ms=round(latency_ms, 2),
                error_type=error_type,
                error=str(exc),
            )
            return TransportResponse(
                status=TRANSPORT_ERROR_STATUS,
                body=b"",
                latency_ms=latency_ms,
                error_type=error_type,
                error=str(exc) or type(exc).__name__,
            )

        latency_ms = (time.monotonic() - start) * 1000
        return TransportResponse(
            status=response.status_code,
            body=response.content,
            latency_ms=latency_ms,
            error_type=classify_http_error(response.status_code),
        )


# ---------------------------------------------------------------------------
# Helpers: error classification
# ---------------------------------------------------------------------------

def classify_http_error(status_code: int) -> str | None:
    """Map an HTTP status code to a canonical error_type, or None if success."""
    if 200 <= status_code < 400:
        return None
    if status_code == 401:
        return "auth_unauthorized"
    if status_code == 403:
        return "auth_forbidden"
    if status_code == 404:
        return "not_found"
    if status_code == 429:
        return "rate_limited"
    if 400 <= status_code < 500:
        return "client_error"
    if 500 <= status_code < 600:
        return "server_error"
    return f"http_{status_code}"


def classify_exception(exc: Exception) -> str:
    """Map a network-level exception to a canonical error_type."""
    if isinstance(exc, httpx.TimeoutException):
        return "network_timeout"
    if isinstance(exc, httpx.ConnectError):
        return "network_connect"
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.LocalProtocolError)):
        return "network_protocol"
    if isinstance(exc, httpx.HTTPError):
        return "network_error"
    return type(exc).__name__
