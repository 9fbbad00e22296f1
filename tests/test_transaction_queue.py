"""
Tests for TransactionQueue: scripted submitters, no network.

Test plan:
- Enqueue: returns id, first attempt scheduled, outside a loop stays
  pending, None payload and duplicate id rejected
- Attempt lifecycle: success → COMPLETED with result, failure → FAILED
  with classified error, attempts/last_attempt_at/history kept
- Retry: failed → completed with error cleared, no-op on completed,
  processing and unknown entries, retry_all in insertion order
- Connectivity: offline attempts fail with NETWORK without calling
  submit; reconnect retries NETWORK failures and pending entries only;
  no double submission when reconnect races the scheduled attempt;
  the reconnect sweep runs in the background
- Dequeue while in flight: late result discarded
- Clearing: clear_completed keeps others, clear_all empties
- Snapshots: detached from queue state
- replay / next_retry_delay / watch (queue poll_interval default) /
  attempt_timeout / policy
"""

import asyncio
from typing import Any

import pytest

from stellar_submit.errors import ErrorKind, NetworkError, TransactionFailed
from stellar_submit.retry.connectivity import ConnectivityLost, ConnectivityRestored
from stellar_submit.retry.policy import RetryPolicy
from stellar_submit.retry.queue import (
    AttemptRecord,
    TransactionQueue,
    TransactionStatus,
)

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSubmitter:
    """Fails with the scripted errors in order, then succeeds.

    Result is ``{"hash": "<payload>-hash"}``. Records payloads in call order.
    """

    def __init__(self, *errors: Exception) -> None:
        self._errors = list(errors)
        self.payloads: list[Any] = []

    async def __call__(self, payload: Any) -> dict[str, str]:
        self.payloads.append(payload)
        if self._errors:
            raise self._errors.pop(0)
        return {"hash": f"{payload}-hash"}


class GatedSubmitter:
    """Blocks every call until ``gate`` is set."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.payloads: list[Any] = []

    async def __call__(self, payload: Any) -> str:
        self.payloads.append(payload)
        await self.gate.wait()
        return "done"


class Unclassified(Exception):
    """Failure outside the taxonomy (kind UNKNOWN, never retried by a policy)."""


class FakeClock:
    def __init__(self) -> None:
        self.ticks = 0

    def __call__(self) -> str:
        self.ticks += 1
        return f"2025-01-15T12:00:{self.ticks:02d}+00:00"


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _queue(submit: Any, **kwargs: Any) -> TransactionQueue:
    counter = iter(range(1, 1000))
    kwargs.setdefault("now_fn", FakeClock())
    kwargs.setdefault("id_fn", lambda: f"tx_{next(counter)}")
    kwargs.setdefault("sleep", FakeSleep())
    return TransactionQueue(submit, **kwargs)


LOST = ConnectivityLost(observed_at="2025-01-15T12:00:00+00:00")
RESTORED = ConnectivityRestored(observed_at="2025-01-15T12:01:00+00:00")


# ---------------------------------------------------------------------------
# Enqueue
# ---------------------------------------------------------------------------


class TestEnqueue:
    def test_outside_loop_stays_pending(self) -> None:
        submit = FakeSubmitter()
        queue = _queue(submit)

        tx_id = queue.enqueue("AAAA")

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.PENDING
        assert snap.attempts == 0
        assert snap.last_attempt_at is None
        assert submit.payloads == []

    @pytest.mark.asyncio
    async def test_first_attempt_scheduled(self) -> None:
        submit = FakeSubmitter()
        queue = _queue(submit)

        tx_id = queue.enqueue("AAAA")
        await queue.drain()

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.COMPLETED
        assert snap.attempts == 1
        assert snap.result == {"hash": "AAAA-hash"}
        assert snap.error is None
        assert submit.payloads == ["AAAA"]

    def test_generated_ids_unique(self) -> None:
        queue = TransactionQueue(FakeSubmitter())
        ids = {queue.enqueue(f"p{i}") for i in range(20)}
        assert len(ids) == 20
        assert all(i.startswith("tx_") for i in ids)

    def test_caller_id(self) -> None:
        queue = _queue(FakeSubmitter())
        assert queue.enqueue("AAAA", tx_id="mine") == "mine"
        assert "mine" in queue

    def test_none_payload_rejected(self) -> None:
        with pytest.raises(ValueError, match="payload"):
            _queue(FakeSubmitter()).enqueue(None)

    def test_duplicate_id_rejected(self) -> None:
        queue = _queue(FakeSubmitter())
        queue.enqueue("AAAA", tx_id="dup")
        with pytest.raises(ValueError, match="already queued"):
            queue.enqueue("BBBB", tx_id="dup")


# ---------------------------------------------------------------------------
# Attempt lifecycle
# ---------------------------------------------------------------------------


class TestAttemptLifecycle:
    @pytest.mark.asyncio
    async def test_failure_recorded(self) -> None:
        queue = _queue(FakeSubmitter(TransactionFailed(400, "{}", message="tx_failed")))

        tx_id = queue.enqueue("AAAA")
        await queue.drain()

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.FAILED
        assert snap.attempts == 1
        assert snap.error is not None
        assert snap.error.kind == ErrorKind.TRANSACTION_FAILED
        assert snap.error.retriable is False

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_unknown(self) -> None:
        queue = _queue(FakeSubmitter(RuntimeError("boom")))
        tx_id = queue.enqueue("AAAA")
        await queue.drain()
        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.error is not None
        assert snap.error.kind == ErrorKind.UNKNOWN
        assert snap.error.detail == "boom"

    @pytest.mark.asyncio
    async def test_processing_visible_while_in_flight(self) -> None:
        submit = GatedSubmitter()
        queue = _queue(submit)

        tx_id = queue.enqueue("AAAA")
        await asyncio.sleep(0)

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.PROCESSING
        assert snap.attempts == 1
        assert snap.last_attempt_at is not None

        submit.gate.set()
        await queue.drain()
        assert queue.get_transaction(tx_id).status == TransactionStatus.COMPLETED  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_history_records_each_attempt(self) -> None:
        queue = _queue(FakeSubmitter(NetworkError("down")))
        tx_id = queue.enqueue("AAAA")
        await queue.drain()
        await queue.retry(tx_id)

        history = queue.replay(tx_id)
        assert [r.attempt for r in history] == [1, 2]
        assert history[0].outcome == TransactionStatus.FAILED
        assert history[0].error_kind == ErrorKind.NETWORK
        assert history[1].outcome == TransactionStatus.COMPLETED
        assert history[1].error_kind is None

    def test_attempt_record_digest(self) -> None:
        record = AttemptRecord(
            attempt=1,
            started_at="2025-01-15T12:00:00+00:00",
            finished_at="2025-01-15T12:00:01+00:00",
            outcome=TransactionStatus.COMPLETED,
        )
        same = AttemptRecord(
            attempt=1,
            started_at="2025-01-15T12:00:00+00:00",
            finished_at="2025-01-15T12:00:01+00:00",
            outcome=TransactionStatus.COMPLETED,
        )
        assert record.record_digest().startswith("sha256:")
        assert record.record_digest() == same.record_digest()
        assert "error_kind" not in record.to_dict()

    def test_replay_unknown_is_empty(self) -> None:
        assert _queue(FakeSubmitter()).replay("nope") == []


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_failed_completes(self) -> None:
        submit = FakeSubmitter(NetworkError("down"))
        queue = _queue(submit)
        tx_id = queue.enqueue("AAAA")
        await queue.drain()

        await queue.retry(tx_id)

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.COMPLETED
        assert snap.attempts == 2
        assert snap.error is None
        assert submit.payloads == ["AAAA", "AAAA"]

    @pytest.mark.asyncio
    async def test_retry_completed_is_noop(self) -> None:
        submit = FakeSubmitter()
        queue = _queue(submit)
        tx_id = queue.enqueue("AAAA")
        await queue.drain()
        before = queue.get_transaction(tx_id)

        await queue.retry(tx_id)

        assert queue.get_transaction(tx_id) == before
        assert len(submit.payloads) == 1

    @pytest.mark.asyncio
    async def test_retry_processing_is_noop(self) -> None:
        submit = GatedSubmitter()
        queue = _queue(submit)
        tx_id = queue.enqueue("AAAA")
        await asyncio.sleep(0)

        await queue.retry(tx_id)

        assert len(submit.payloads) == 1
        submit.gate.set()
        await queue.drain()
        assert queue.get_transaction(tx_id).attempts == 1  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_retry_unknown_is_noop(self) -> None:
        await _queue(FakeSubmitter()).retry("nope")

    @pytest.mark.asyncio
    async def test_retry_all_in_insertion_order(self) -> None:
        submit = FakeSubmitter(
            NetworkError("1"), NetworkError("2"), NetworkError("3")
        )
        queue = _queue(submit)
        ids = [queue.enqueue(p) for p in ("A", "B", "C")]
        await queue.drain()
        assert len(queue.get_failed_transactions()) == 3

        submit.payloads.clear()
        await queue.retry_all()

        assert submit.payloads == ["A", "B", "C"]
        assert all(
            queue.get_transaction(i).status == TransactionStatus.COMPLETED  # type: ignore[union-attr]
            for i in ids
        )

    @pytest.mark.asyncio
    async def test_non_retriable_failure_still_retryable_on_request(self) -> None:
        queue = _queue(FakeSubmitter(TransactionFailed(400, "{}")))
        tx_id = queue.enqueue("AAAA")
        await queue.drain()
        await queue.retry(tx_id)
        assert queue.get_transaction(tx_id).status == TransactionStatus.COMPLETED  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class TestConnectivity:
    @pytest.mark.asyncio
    async def test_offline_then_reconnect(self) -> None:
        submit = FakeSubmitter()
        queue = _queue(submit)

        await queue.handle_event(LOST)
        assert queue.get_online_status() is False

        tx_id = queue.enqueue("AAAA")
        await queue.drain()

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.FAILED
        assert snap.error is not None
        assert snap.error.kind == ErrorKind.NETWORK
        assert submit.payloads == []

        await queue.handle_event(RESTORED)
        await queue.drain()

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert queue.get_online_status() is True
        assert snap.status == TransactionStatus.COMPLETED
        assert snap.attempts == 2
        assert submit.payloads == ["AAAA"]

    @pytest.mark.asyncio
    async def test_reconnect_skips_non_network_failures(self) -> None:
        submit = FakeSubmitter(TransactionFailed(400, "{}"))
        queue = _queue(submit)
        tx_id = queue.enqueue("AAAA")
        await queue.drain()

        await queue.handle_event(LOST)
        await queue.handle_event(RESTORED)
        await queue.drain()

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.FAILED
        assert snap.attempts == 1

    @pytest.mark.asyncio
    async def test_reconnect_starts_pending_once(self) -> None:
        submit = FakeSubmitter()
        queue = _queue(submit)

        tx_id = queue.enqueue("AAAA")
        await queue.handle_event(RESTORED)
        await queue.drain()

        assert submit.payloads == ["AAAA"]
        assert queue.get_transaction(tx_id).attempts == 1  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_reconnect_does_not_block_caller(self) -> None:
        submit = GatedSubmitter()
        queue = _queue(submit)
        await queue.handle_event(LOST)
        tx_id = queue.enqueue("AAAA")
        await queue.drain()

        await queue.handle_event(RESTORED)
        await asyncio.sleep(0)

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.PROCESSING
        assert submit.payloads == ["AAAA"]

        submit.gate.set()
        await queue.drain()
        assert queue.get_transaction(tx_id).status == TransactionStatus.COMPLETED  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_process_pending(self) -> None:
        submit = FakeSubmitter()
        queue = _queue(submit)
        queue.enqueue("AAAA")
        await queue.process_pending()
        await queue.drain()
        assert submit.payloads == ["AAAA"]
        assert queue.get_pending_transactions() == []

    @pytest.mark.asyncio
    async def test_unknown_event_rejected(self) -> None:
        with pytest.raises(TypeError):
            await _queue(FakeSubmitter()).handle_event("online")  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Dequeue and clearing
# ---------------------------------------------------------------------------


class TestDequeueAndClear:
    @pytest.mark.asyncio
    async def test_dequeue_in_flight_discards_result(self) -> None:
        submit = GatedSubmitter()
        queue = _queue(submit)
        tx_id = queue.enqueue("AAAA")
        await asyncio.sleep(0)

        queue.dequeue(tx_id)
        submit.gate.set()
        await queue.drain()

        assert queue.get_transaction(tx_id) is None
        assert len(queue) == 0

    def test_dequeue_unknown_is_noop(self) -> None:
        _queue(FakeSubmitter()).dequeue("nope")

    @pytest.mark.asyncio
    async def test_clear_completed_keeps_others(self) -> None:
        submit = FakeSubmitter(TransactionFailed(400, "{}"))
        queue = _queue(submit)
        failed = queue.enqueue("F")
        await queue.drain()
        done = queue.enqueue("D")
        await queue.drain()

        assert len(queue) == 2

        queue.clear_completed()

        assert queue.get_transaction(done) is None
        assert queue.get_transaction(failed) is not None
        assert len(queue) == 1
        assert all(
            s.status != TransactionStatus.COMPLETED for s in queue.get_all_transactions()
        )

    def test_clear_all(self) -> None:
        queue = _queue(FakeSubmitter())
        queue.enqueue("A")
        queue.enqueue("B")
        queue.clear_all()
        assert queue.get_all_transactions() == []


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class TestSnapshots:
    def test_list_is_detached(self) -> None:
        queue = _queue(FakeSubmitter())
        queue.enqueue("A")
        snapshots = queue.get_all_transactions()
        snapshots.clear()
        assert len(queue.get_all_transactions()) == 1

    def test_snapshot_is_frozen(self) -> None:
        queue = _queue(FakeSubmitter())
        tx_id = queue.enqueue("A")
        snap = queue.get_transaction(tx_id)
        assert snap is not None
        with pytest.raises(AttributeError):
            snap.status = TransactionStatus.COMPLETED  # type: ignore[misc]

    def test_insertion_order(self) -> None:
        queue = _queue(FakeSubmitter())
        ids = [queue.enqueue(p) for p in ("A", "B", "C")]
        assert [s.id for s in queue.get_all_transactions()] == ids
        assert [s.id for s in queue.get_pending_transactions()] == ids


# ---------------------------------------------------------------------------
# Backoff, watch, timeouts, policy
# ---------------------------------------------------------------------------


class TestBackoffAndWatch:
    @pytest.mark.asyncio
    async def test_next_retry_delay_grows(self) -> None:
        queue = _queue(FakeSubmitter(NetworkError("1"), NetworkError("2")))
        tx_id = queue.enqueue("A")
        await queue.drain()
        assert queue.next_retry_delay(tx_id) == 1.0

        await queue.retry(tx_id)
        assert queue.next_retry_delay(tx_id) == 2.0

        await queue.retry(tx_id)
        assert queue.next_retry_delay(tx_id) is None

    @pytest.mark.asyncio
    async def test_next_retry_delay_uses_policy(self) -> None:
        queue = _queue(
            FakeSubmitter(Unclassified("x")),
            policy=RetryPolicy(initial_delay=0.5),
        )
        tx_id = queue.enqueue("A")
        await queue.drain()
        assert queue.next_retry_delay(tx_id) == 0.5

    def test_next_retry_delay_unknown(self) -> None:
        assert _queue(FakeSubmitter()).next_retry_delay("nope") is None

    @pytest.mark.asyncio
    async def test_watch_until_terminal(self) -> None:
        submit = GatedSubmitter()
        queue: TransactionQueue

        async def release(delay: float) -> None:
            submit.gate.set()
            await queue.drain()

        queue = _queue(submit, sleep=release)
        tx_id = queue.enqueue("A")
        await asyncio.sleep(0)

        statuses = [snap.status async for snap in queue.watch(tx_id, interval=0.01)]

        assert statuses == [TransactionStatus.PROCESSING, TransactionStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_watch_unknown_yields_nothing(self) -> None:
        queue = _queue(FakeSubmitter())
        assert [s async for s in queue.watch("nope")] == []

    @pytest.mark.asyncio
    async def test_watch_defaults_to_queue_poll_interval(self) -> None:
        submit = GatedSubmitter()
        delays: list[float] = []
        queue: TransactionQueue

        async def release(delay: float) -> None:
            delays.append(delay)
            submit.gate.set()
            await queue.drain()

        queue = _queue(submit, sleep=release, poll_interval=7.0)
        tx_id = queue.enqueue("A")
        await asyncio.sleep(0)

        snapshots = [snap async for snap in queue.watch(tx_id)]

        assert queue.poll_interval == 7.0
        assert delays == [7.0]
        assert snapshots[-1].status == TransactionStatus.COMPLETED

    @pytest.mark.parametrize("interval", [0, -1.0])
    def test_poll_interval_must_be_positive(self, interval: float) -> None:
        with pytest.raises(ValueError):
            _queue(FakeSubmitter(), poll_interval=interval)

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_network_failure(self) -> None:
        async def slow(payload: Any) -> None:
            await asyncio.sleep(10)

        queue = _queue(slow, attempt_timeout=0.01)
        tx_id = queue.enqueue("A")
        await queue.drain()

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.FAILED
        assert snap.error is not None
        assert snap.error.kind == ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_policy_retries_inside_one_attempt(self) -> None:
        submit = FakeSubmitter(NetworkError("blip"))
        sleep = FakeSleep()
        queue = _queue(submit, policy=RetryPolicy(), sleep=sleep)

        tx_id = queue.enqueue("A")
        await queue.drain()

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.COMPLETED
        assert snap.attempts == 1
        assert submit.payloads == ["A", "A"]
        assert sleep.delays == [1.0]
