"""
Connectivity monitor: turns probe results into explicit events.

The monitor owns the "are we online" observation and nothing else. When
the observed state changes it hands a ``ConnectivityLost`` or
``ConnectivityRestored`` event to a sink. The transaction queue is the
usual sink (``TransactionQueue.handle_event``); the composition root
wires the two together, so the causality "reconnect → retry sweep" is a
visible call, not a side effect hidden in a constructor.

Events fire on transitions only. Two consecutive failed probes produce
one ``ConnectivityLost``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Awaitable, Callable, Union

import httpx
import structlog

from stellar_submit.transport import HttpTransport

log = structlog.get_logger(__name__)


def _now_utc() -> str:
    """RFC3339 UTC timestamp."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S+00:00")


@dataclass(frozen=True)
class ConnectivityLost:
    """The network became unreachable."""

    observed_at: str
    reason: str | None = None


@dataclass(frozen=True)
class ConnectivityRestored:
    """The network became reachable again."""

    observed_at: str


ConnectivityEvent = Union[ConnectivityLost, ConnectivityRestored]
EventSink = Callable[[ConnectivityEvent], Awaitable[None]]
Probe = Callable[[], Awaitable[bool]]


def http_probe(transport: HttpTransport, url: str) -> Probe:
    """Build a probe that GETs ``url``.

    Any HTTP response below 500 counts as online; transport failures and
    5xx count as offline.
    """

    async def probe() -> bool:
        try:
            response = await transport.request("GET", url)
        except httpx.TransportError as exc:
            log.debug("connectivity.probe_failed", url=url, error=str(exc))
            return False
        return response.status_code < 500

    return probe


class ConnectivityMonitor:
    """Polls a probe and emits events on state changes.

    Args:
        probe: Async callable returning True when online.
        interval: Seconds between probes in ``run``.
        initial_online: State assumed before the first probe.
        now_fn: Callable returning RFC3339 UTC timestamps.
        sleep: Awaitable sleep; inject for tests.
    """

    def __init__(
        self,
        probe: Probe,
        *,
        interval: float = 5.0,
        initial_online: bool = True,
        now_fn: Callable[[], str] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got: {interval}")
        self._probe = probe
        self._interval = interval
        self._online = initial_online
        self._now_fn = now_fn or _now_utc
        self._sleep = sleep
        self._stopped = asyncio.Event()

    @property
    def online(self) -> bool:
        return self._online

    async def check_once(self, sink: EventSink) -> ConnectivityEvent | None:
        """Probe once; deliver and return an event if the state changed."""
        online = await self._probe()
        if online == self._online:
            return None
        self._online = online
        event: ConnectivityEvent
        if online:
            event = ConnectivityRestored(observed_at=self._now_fn())
            log.info("connectivity.restored")
        else:
            event = ConnectivityLost(observed_at=self._now_fn(), reason="probe failed")
            log.warning("connectivity.lost")
        await sink(event)
        return event

    async def run(self, sink: EventSink) -> None:
        """Probe every ``interval`` seconds until ``stop()`` is called."""
        self._stopped.clear()
        while not self._stopped.is_set():
            await self.check_once(sink)
            if self._stopped.is_set():
                break
            await self._sleep(self._interval)

    def stop(self) -> None:
        self._stopped.set()
