"""
Retry policy: exponential backoff.

``compute_delay`` is the pure curve: ``base * 2**n``, zero-based, no
ceiling. ``RetryPolicy`` adds the ceiling and the knobs callers tune.
``with_retry`` runs an async operation under a policy.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import structlog

from stellar_submit.errors import ErrorKind, kind_of

log = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_BASE_DELAY = 1.0


def compute_delay(attempt_number: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Backoff delay in seconds before retry ``attempt_number``.

    Args:
        attempt_number: Zero-based (the first retry is 0). Negative values
            are treated as 0.
        base_delay: Delay for the first retry, in seconds.

    Returns:
        ``base_delay * 2 ** attempt_number``. Unbounded.
    """
    n = max(0, attempt_number)
    return max(0.0, base_delay) * (2**n)


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff.

    Attributes:
        max_retries: Total tries per ``with_retry`` call (>= 1).
        initial_delay: Delay before the first retry, seconds.
        max_delay: Ceiling applied to every delay, seconds.
        multiplier: Growth factor between consecutive delays.
        retryable: Error kinds worth another try.
    """

    max_retries: int = 3
    initial_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = 30.0
    multiplier: float = 2.0
    retryable: frozenset[ErrorKind] = field(
        default_factory=lambda: frozenset({ErrorKind.NETWORK, ErrorKind.TRANSACTION_FAILED})
    )

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got: {self.max_retries}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got: {self.multiplier}")

    def delay_for(self, attempt_number: int) -> float:
        """Capped delay before retry ``attempt_number`` (zero-based)."""
        n = max(0, attempt_number)
        return min(self.initial_delay * (self.multiplier**n), self.max_delay)

    def should_retry(self, exc: BaseException) -> bool:
        return kind_of(exc) in self.retryable


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> T:
    """Run ``operation`` with retries and backoff.

    Args:
        operation: Zero-argument coroutine factory; called once per try.
        policy: Retry policy. Defaults to ``RetryPolicy()``.
        sleep: Awaitable sleep; inject for tests.
        on_retry: Called with (retry number, error) before each sleep.

    Returns:
        The operation's result.

    Raises:
        The last error, unchanged. Errors whose kind is not retryable are
        raised immediately.
    """
    if policy is None:
        policy = RetryPolicy()

    for attempt in range(policy.max_retries):
        try:
            return await operation()
        except Exception as exc:
            if not policy.should_retry(exc) or attempt == policy.max_retries - 1:
                raise
            delay = policy.delay_for(attempt)
            log.info(
                "retry.scheduled",
                retry=attempt + 1,
                max_retries=policy.max_retries,
                delay=delay,
                error=str(exc),
            )
            if on_retry is not None:
                on_retry(attempt + 1, exc)
            await sleep(delay)

    # max_retries >= 1, the loop always returns or raises
    raise AssertionError("unreachable")
