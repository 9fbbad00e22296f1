"""
Submission retries: backoff policy, transaction queue, connectivity.

Public API:

    Policy (pure):
        - ``compute_delay()``: uncapped exponential backoff curve.
        - ``RetryPolicy``: capped backoff and retryable kinds.
        - ``with_retry()``: run an async operation under a policy.

    Queue:
        - ``TransactionQueue``: in-memory ledger of submissions.
        - ``QueuedTransaction``: read-only entry snapshot.
        - ``AttemptRecord``: one attempt in an entry's history.
        - ``TransactionStatus``: pending / processing / completed / failed.

    Connectivity:
        - ``ConnectivityMonitor``: probe loop emitting transition events.
        - ``ConnectivityLost`` / ``ConnectivityRestored``: the events.
        - ``http_probe()``: probe built on an HttpTransport.
"""

from stellar_submit.retry.connectivity import (
    ConnectivityEvent,
    ConnectivityLost,
    ConnectivityMonitor,
    ConnectivityRestored,
    http_probe,
)
from stellar_submit.retry.policy import RetryPolicy, compute_delay, with_retry
from stellar_submit.retry.queue import (
    AttemptRecord,
    QueuedTransaction,
    TransactionQueue,
    TransactionStatus,
)

__all__ = [
    "AttemptRecord",
    "ConnectivityEvent",
    "ConnectivityLost",
    "ConnectivityMonitor",
    "ConnectivityRestored",
    "QueuedTransaction",
    "RetryPolicy",
    "TransactionQueue",
    "TransactionStatus",
    "compute_delay",
    "http_probe",
    "with_retry",
]
