"""
HTTP transport protocol: the network boundary.

The authenticator, the Horizon submitter and the connectivity probe all
talk HTTP through this seam, not through httpx directly, so tests can
swap in a fake without monkeypatching.

Concrete implementations:
    - HttpxTransport (default, uses httpx.AsyncClient)
    - FakeTransport (tests, returns canned responses)

Contract:
    - Every call is bounded by a timeout.
    - Transport-level failures (DNS, refused connection, TLS, timeout)
      propagate as httpx exceptions. Callers map them to NetworkError.
    - Any HTTP status is a *response*, not an exception. Callers decide
      what a non-2xx status means.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

import httpx

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class TransportResponse:
    """A completed HTTP exchange.

    Attributes:
        status_code: HTTP status.
        text: Decoded response body.
        headers: Response headers (lower-cased keys).
    """

    status_code: int
    text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        """Parse the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON.
        """
        return json.loads(self.text)


@runtime_checkable
class HttpTransport(Protocol):
    """Async transport for the handful of HTTP calls this package makes."""

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Mapping[str, Any] | None = None,
        form: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        """Send a request and return the response, whatever its status.

        Raises:
            httpx.TransportError: On transport-level failure, including
                ``httpx.TimeoutException``.
        """
        ...


class HttpxTransport:
    """Default transport using httpx.AsyncClient.

    Args:
        timeout: Per-request timeout in seconds.
        headers: Extra headers sent with every request.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._timeout = timeout
        self._headers = dict(headers or {})

    @property
    def timeout(self) -> float:
        return self._timeout

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Mapping[str, Any] | None = None,
        form: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        headers = {"Accept": "application/json", **self._headers}
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.request(
                method,
                url,
                json=dict(json_body) if json_body is not None else None,
                data=dict(form) if form is not None else None,
                params=dict(params) if params is not None else None,
                headers=headers,
            )
        return TransportResponse(
            status_code=response.status_code,
            text=response.text,
            headers={k.lower(): v for k, v in response.headers.items()},
        )
