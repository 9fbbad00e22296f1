"""
Composition root: one place that builds and wires the process objects.

    settings ─┬─ transport ─┬─ Sep10Authenticator (registry from settings)
              │             ├─ HorizonSubmitter ── TransactionQueue
              │             └─ http_probe ── ConnectivityMonitor
              └─ configure_logging

The monitor's events are delivered to ``queue.handle_event``; that call
in ``start()`` is the only link between connectivity and retries.

There is exactly one queue per Runtime. Callers that need the queue
receive this Runtime (or the queue) by reference.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable

import structlog

from stellar_submit.config import Settings, load_settings
from stellar_submit.horizon import HorizonSubmitter
from stellar_submit.observability import configure_logging
from stellar_submit.retry.connectivity import ConnectivityMonitor, http_probe
from stellar_submit.retry.policy import RetryPolicy
from stellar_submit.retry.queue import TransactionQueue
from stellar_submit.sep10.authenticator import Sep10Authenticator
from stellar_submit.sep10.signer import IdentitySigner
from stellar_submit.transport import HttpTransport, HttpxTransport

log = structlog.get_logger(__name__)


@dataclass
class Runtime:
    """The wired object graph for one process."""

    settings: Settings
    transport: HttpTransport
    authenticator: Sep10Authenticator
    submitter: HorizonSubmitter
    queue: TransactionQueue
    monitor: ConnectivityMonitor
    _monitor_task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def running(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    def start(self) -> None:
        """Start the connectivity monitor. Requires a running event loop."""
        if self.running:
            return
        self._monitor_task = asyncio.get_running_loop().create_task(
            self.monitor.run(self.queue.handle_event), name="connectivity-monitor"
        )
        self._monitor_task.add_done_callback(_log_monitor_exit)
        log.info("runtime.started", horizon_url=self.settings.horizon_url)

    async def stop(self) -> None:
        """Stop the monitor and wait for in-flight queue attempts."""
        self.monitor.stop()
        task, self._monitor_task = self._monitor_task, None
        # A crashed monitor was already reported by _log_monitor_exit.
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.queue.drain()
        log.info("runtime.stopped")


def _log_monitor_exit(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.error(
            "runtime.monitor_crashed",
            error_type=type(exc).__name__,
            error=str(exc),
            exc_info=exc,
        )


def build_runtime(
    settings: Settings | None = None,
    *,
    transport: HttpTransport | None = None,
    signer_factory: Callable[[], IdentitySigner] | None = None,
    policy: RetryPolicy | None = None,
    environment: str | None = None,
) -> Runtime:
    """Build a Runtime from settings.

    Args:
        settings: Process settings. Defaults to ``load_settings()``.
        transport: Shared HTTP transport. Defaults to HttpxTransport with
            the settings' timeout.
        signer_factory: Identity signer factory for the authenticator.
        policy: Retry policy applied inside each queue attempt. None
            means one submit call per attempt.
        environment: Logging mode passed to ``configure_logging``. None
            leaves logging configuration untouched.
    """
    if settings is None:
        settings = load_settings()
    if environment is not None:
        configure_logging(environment)

    transport = transport or HttpxTransport(timeout=settings.http_timeout)
    authenticator = Sep10Authenticator(
        settings.registry(),
        transport,
        signer_factory=signer_factory,
        network_passphrase=settings.network_passphrase,
        default_counterparty=settings.anchor_domain,
    )
    submitter = HorizonSubmitter(settings.horizon_url, transport)
    queue = TransactionQueue(
        submitter,
        policy=policy,
        poll_interval=settings.status_poll_interval,
    )
    monitor = ConnectivityMonitor(
        http_probe(transport, settings.horizon_url),
        interval=settings.connectivity_interval,
    )
    return Runtime(
        settings=settings,
        transport=transport,
        authenticator=authenticator,
        submitter=submitter,
        queue=queue,
        monitor=monitor,
    )
