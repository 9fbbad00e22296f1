"""
Transaction queue: in-flight submissions, their status and attempt history.

Turns "submit once" into "submit, and keep trying until someone says stop."

The queue provides:
    - An in-memory ledger of submitted-but-unconfirmed transactions,
      in insertion order.
    - A per-entry attempt history (one AttemptRecord per attempt).
    - Explicit retry of failed entries, singly or all at once.
    - Reaction to connectivity events: offline defers new attempts,
      reconnect retries entries that failed for network reasons.

The queue does NOT provide:
    - Durable persistence (one queue per process, built by the
      composition root and passed by reference).
    - Automatic give-up policy. Any failed entry can be retried;
      ``ClassifiedError.retriable`` is for callers to inspect first.

Status transitions:
    PENDING → PROCESSING (first attempt starts)
    PROCESSING → COMPLETED (submit returned)
    PROCESSING → FAILED (submit raised, or offline)
    FAILED → PROCESSING (retry)
    COMPLETED → (terminal)

Attempt sequencing:
    The queue owns attempt numbers: attempt = attempts + 1, assigned
    synchronously when the attempt starts. An entry with an attempt in
    flight refuses a second one, so ``attempts`` and ``last_attempt_at``
    always describe a single attempt.

Dequeue during an attempt:
    The in-flight submit is not cancelled. When it lands, its result is
    dropped because the entry is no longer in the ledger.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, AsyncIterator, Awaitable, Callable

import structlog

from stellar_submit.config import STATUS_POLL_INTERVAL
from stellar_submit.errors import ClassifiedError, ErrorKind, NetworkError, classify
from stellar_submit.retry.connectivity import (
    ConnectivityEvent,
    ConnectivityLost,
    ConnectivityRestored,
)
from stellar_submit.retry.policy import RetryPolicy, compute_delay, with_retry

log = structlog.get_logger(__name__)

Submitter = Callable[[Any], Awaitable[Any]]


def _now_utc() -> str:
    """RFC3339 UTC timestamp."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S+00:00")


def _new_id() -> str:
    return f"tx_{uuid.uuid4().hex}"


def _content_digest(obj: dict[str, object]) -> str:
    """Prefixed SHA256 of sorted-key, compact, UTF-8 JSON."""
    encoded = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return "sha256:" + hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class TransactionStatus(StrEnum):
    """Status of a queued transaction."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED})


# =========================================================================
# Records
# =========================================================================


@dataclass(frozen=True)
class AttemptRecord:
    """One submission attempt and its outcome.

    Attributes:
        attempt: 1-indexed attempt number.
        started_at: RFC3339 UTC start time.
        finished_at: RFC3339 UTC end time.
        outcome: COMPLETED or FAILED.
        error_kind: Taxonomy kind when the attempt failed.
        detail: Error detail when the attempt failed.
    """

    attempt: int
    started_at: str
    finished_at: str
    outcome: TransactionStatus
    error_kind: ErrorKind | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {
            "attempt": self.attempt,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "outcome": str(self.outcome),
        }
        if self.error_kind is not None:
            result["error_kind"] = str(self.error_kind)
        if self.detail is not None:
            result["detail"] = self.detail
        return result

    def record_digest(self) -> str:
        """Content digest ("sha256:...") of the canonical record."""
        return _content_digest(self.to_dict())


@dataclass(frozen=True)
class QueuedTransaction:
    """Read-only snapshot of a queue entry.

    Snapshots are detached from the queue: holding or discarding one has
    no effect on the entry it was taken from.
    """

    id: str
    payload: Any
    status: TransactionStatus
    attempts: int
    created_at: str
    last_attempt_at: str | None = None
    error: ClassifiedError | None = None
    result: Any = None
    history: tuple[AttemptRecord, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class _Entry:
    id: str
    payload: Any
    created_at: str
    status: TransactionStatus = TransactionStatus.PENDING
    attempts: int = 0
    last_attempt_at: str | None = None
    error: ClassifiedError | None = None
    result: Any = None
    history: list[AttemptRecord] = field(default_factory=list)
    in_flight: bool = False

    def snapshot(self) -> QueuedTransaction:
        return QueuedTransaction(
            id=self.id,
            payload=self.payload,
            status=self.status,
            attempts=self.attempts,
            created_at=self.created_at,
            last_attempt_at=self.last_attempt_at,
            error=self.error,
            result=self.result,
            history=tuple(self.history),
        )


# =========================================================================
# Queue
# =========================================================================


class TransactionQueue:
    """In-memory retry queue for blockchain submissions.

    Args:
        submit: Async callable that submits one payload. Its return value
            is stored as the entry's result; any exception fails the attempt.
        policy: If set, each attempt runs ``submit`` under ``with_retry``
            and ``next_retry_delay`` uses its ceiling.
        online: Initial connectivity assumption.
        attempt_timeout: Seconds an attempt may take before it fails with
            a NETWORK error. None leaves bounding to the submitter.
        now_fn: Callable returning RFC3339 UTC timestamps.
        id_fn: Callable returning fresh transaction ids.
        sleep: Awaitable sleep used for backoff and ``watch``.
        poll_interval: Default seconds between ``watch`` snapshots.
    """

    def __init__(
        self,
        submit: Submitter,
        *,
        policy: RetryPolicy | None = None,
        online: bool = True,
        attempt_timeout: float | None = None,
        now_fn: Callable[[], str] | None = None,
        id_fn: Callable[[], str] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        poll_interval: float = STATUS_POLL_INTERVAL,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got: {poll_interval}")
        self._submit = submit
        self._policy = policy
        self._online = online
        self._attempt_timeout = attempt_timeout
        self._now_fn = now_fn or _now_utc
        self._id_fn = id_fn or _new_id
        self._sleep = sleep
        self._poll_interval = poll_interval
        self._entries: dict[str, _Entry] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    # -----------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------

    def enqueue(self, payload: Any, *, tx_id: str | None = None) -> str:
        """Add a payload and schedule its first attempt.

        If no event loop is running the entry stays PENDING until
        ``process_pending()`` or a reconnect sweep picks it up.

        Args:
            payload: Opaque value handed to ``submit``. Must not be None.
            tx_id: Caller-chosen id. Generated when omitted.

        Returns:
            The entry id. The attempt may not have finished (or started).

        Raises:
            ValueError: If payload is None or tx_id is already queued.
        """
        if payload is None:
            raise ValueError("payload is required")
        if tx_id is None:
            tx_id = self._id_fn()
        elif not tx_id:
            raise ValueError("tx_id must be non-empty")
        if tx_id in self._entries:
            raise ValueError(f"transaction {tx_id!r} is already queued")

        self._entries[tx_id] = _Entry(id=tx_id, payload=payload, created_at=self._now_fn())
        log.info("queue.enqueued", tx_id=tx_id, online=self._online)
        self._schedule(tx_id)
        return tx_id

    async def retry(self, tx_id: str) -> None:
        """Retry a failed entry and wait for the attempt to finish.

        No-op if the entry is missing, not FAILED, or already in flight.
        """
        entry = self._entries.get(tx_id)
        if entry is None or entry.status != TransactionStatus.FAILED or entry.in_flight:
            return
        await self._attempt(entry)

    async def retry_all(self) -> None:
        """Retry every FAILED entry, one at a time, in insertion order."""
        for tx_id in [e.id for e in self._entries.values() if e.status == TransactionStatus.FAILED]:
            await self.retry(tx_id)

    async def process_pending(self) -> None:
        """Start every PENDING entry, one at a time, in insertion order."""
        for entry in [e for e in self._entries.values() if e.status == TransactionStatus.PENDING]:
            if not entry.in_flight and self._entries.get(entry.id) is entry:
                await self._attempt(entry)

    def dequeue(self, tx_id: str) -> None:
        """Remove an entry whatever its status. No-op if absent."""
        if self._entries.pop(tx_id, None) is not None:
            log.info("queue.dequeued", tx_id=tx_id)

    def clear_completed(self) -> None:
        """Remove every COMPLETED entry."""
        done = [e.id for e in self._entries.values() if e.status == TransactionStatus.COMPLETED]
        for tx_id in done:
            del self._entries[tx_id]
        if done:
            log.info("queue.cleared_completed", count=len(done))

    def clear_all(self) -> None:
        """Remove every entry. In-flight attempts land harmlessly."""
        self._entries.clear()

    async def handle_event(self, event: ConnectivityEvent) -> None:
        """Consume a connectivity event.

        ``ConnectivityLost`` marks the queue offline; attempts started
        while offline fail immediately with a NETWORK error.
        ``ConnectivityRestored`` marks it online, then starts a background
        sweep that retries entries that failed with a NETWORK error and
        starts entries still pending. The sweep is tracked like any other
        attempt, so ``drain()`` waits for it and the caller is not blocked.
        """
        if isinstance(event, ConnectivityLost):
            self._online = False
            log.warning("queue.offline", observed_at=event.observed_at)
            return
        if isinstance(event, ConnectivityRestored):
            self._online = True
            log.info("queue.online", observed_at=event.observed_at)
            self._track(
                asyncio.get_running_loop().create_task(
                    self._reconnect_sweep(), name="queue-reconnect-sweep"
                )
            )
            return
        raise TypeError(f"unknown connectivity event: {event!r}")

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def get_transaction(self, tx_id: str) -> QueuedTransaction | None:
        entry = self._entries.get(tx_id)
        return entry.snapshot() if entry is not None else None

    def get_all_transactions(self) -> list[QueuedTransaction]:
        """Snapshots of every entry, in insertion order."""
        return [e.snapshot() for e in self._entries.values()]

    def get_pending_transactions(self) -> list[QueuedTransaction]:
        return [s for s in self.get_all_transactions() if s.status == TransactionStatus.PENDING]

    def get_failed_transactions(self) -> list[QueuedTransaction]:
        return [s for s in self.get_all_transactions() if s.status == TransactionStatus.FAILED]

    def get_online_status(self) -> bool:
        return self._online

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def replay(self, tx_id: str) -> list[AttemptRecord]:
        """Attempt history for an entry, in attempt order. Empty if unknown."""
        entry = self._entries.get(tx_id)
        return list(entry.history) if entry is not None else []

    def next_retry_delay(self, tx_id: str) -> float | None:
        """Backoff before retrying a FAILED entry; None for other states.

        Zero-based on the retry count: the first retry after one failed
        attempt waits ``delay_for(0)``.
        """
        entry = self._entries.get(tx_id)
        if entry is None or entry.status != TransactionStatus.FAILED:
            return None
        retry_number = max(0, entry.attempts - 1)
        if self._policy is not None:
            return self._policy.delay_for(retry_number)
        return compute_delay(retry_number)

    async def watch(
        self, tx_id: str, *, interval: float | None = None
    ) -> AsyncIterator[QueuedTransaction]:
        """Poll an entry, yielding a snapshot every ``interval`` seconds.

        ``interval`` defaults to the queue's ``poll_interval``.

        Stops after yielding a terminal snapshot, or when the entry is gone.
        """
        if interval is None:
            interval = self._poll_interval
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got: {interval}")
        while True:
            snapshot = self.get_transaction(tx_id)
            if snapshot is None:
                return
            yield snapshot
            if snapshot.is_terminal:
                return
            await self._sleep(interval)

    async def drain(self) -> None:
        """Wait for every scheduled attempt task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, tx_id: object) -> bool:
        return tx_id in self._entries

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _schedule(self, tx_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        entry = self._entries[tx_id]
        self._track(loop.create_task(self._attempt(entry), name=f"queue-attempt:{tx_id}"))

    def _track(self, task: asyncio.Task[None]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _reconnect_sweep(self) -> None:
        for entry in list(self._entries.values()):
            if self._entries.get(entry.id) is not entry or entry.in_flight:
                continue
            if entry.status == TransactionStatus.PENDING:
                await self._attempt(entry)
            elif (
                entry.status == TransactionStatus.FAILED
                and entry.error is not None
                and entry.error.kind == ErrorKind.NETWORK
            ):
                await self._attempt(entry)

    async def _submit_once(self, payload: Any) -> Any:
        if self._policy is None:
            call = self._submit(payload)
        else:
            call = with_retry(lambda: self._submit(payload), self._policy, sleep=self._sleep)
        if self._attempt_timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self._attempt_timeout)

    async def _attempt(self, entry: _Entry) -> None:
        # PENDING/FAILED → PROCESSING happens before the first await.
        if entry.in_flight or entry.status not in (
            TransactionStatus.PENDING,
            TransactionStatus.FAILED,
        ):
            return
        entry.in_flight = True
        entry.status = TransactionStatus.PROCESSING
        entry.attempts += 1
        entry.last_attempt_at = started_at = self._now_fn()
        attempt = entry.attempts
        log.info("queue.attempt.started", tx_id=entry.id, attempt=attempt)

        if not self._online:
            self._finish(
                entry,
                attempt,
                started_at,
                error=NetworkError(
                    "offline: submission deferred until connectivity is restored",
                    details={"tx_id": entry.id},
                ),
            )
            return

        try:
            result = await self._submit_once(entry.payload)
        except asyncio.CancelledError:
            self._finish(entry, attempt, started_at, error=NetworkError("attempt cancelled"))
            raise
        except Exception as exc:
            self._finish(entry, attempt, started_at, error=exc)
        else:
            self._finish(entry, attempt, started_at, result=result)

    def _finish(
        self,
        entry: _Entry,
        attempt: int,
        started_at: str,
        *,
        result: Any = None,
        error: BaseException | None = None,
    ) -> None:
        entry.in_flight = False
        if self._entries.get(entry.id) is not entry:
            log.info("queue.attempt.discarded", tx_id=entry.id, attempt=attempt)
            return

        finished_at = self._now_fn()
        if error is None:
            entry.status = TransactionStatus.COMPLETED
            entry.error = None
            entry.result = result
            entry.history.append(
                AttemptRecord(
                    attempt=attempt,
                    started_at=started_at,
                    finished_at=finished_at,
                    outcome=TransactionStatus.COMPLETED,
                )
            )
            log.info("queue.attempt.completed", tx_id=entry.id, attempt=attempt)
            return

        classified = classify(error)
        entry.status = TransactionStatus.FAILED
        entry.error = classified
        entry.history.append(
            AttemptRecord(
                attempt=attempt,
                started_at=started_at,
                finished_at=finished_at,
                outcome=TransactionStatus.FAILED,
                error_kind=classified.kind,
                detail=classified.detail,
            )
        )
        log.warning(
            "queue.attempt.failed",
            tx_id=entry.id,
            attempt=attempt,
            error_kind=str(classified.kind),
            retriable=classified.retriable,
            detail=classified.detail,
        )
