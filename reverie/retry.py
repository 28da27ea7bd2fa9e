"""Deadline-aware retry with backoff.

The controller never imposes a deadline itself. Callers wrap it (or each
attempt) in ``anyio.fail_after`` so that one chunk's retries cannot eat into
another chunk's time budget. Cancellation is delivered as a BaseException by
anyio, so a deadline that elapses during a backoff wait propagates out of
the sleep at once and no further attempt starts.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

import anyio

from reverie.config import INITIAL_BACKOFF

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
RetryCallback = Callable[[int, Exception, float], None]


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    *,
    initial_backoff: float = INITIAL_BACKOFF,
    multiplier: float = 2.0,
    sleep: Sleep = anyio.sleep,
    on_retry: RetryCallback | None = None,
) -> T:
    """Run operation until it succeeds or max_retries attempts have failed.

    Waits ``initial_backoff`` after the first failure and multiplies the wait
    by ``multiplier`` after each further one. Pass ``multiplier=1.0`` for a
    fixed delay. No wait happens after the final attempt.

    Args:
        operation: Zero-argument coroutine function to invoke.
        max_retries: Total number of attempts, at least 1.
        initial_backoff: First wait in seconds.
        multiplier: Growth factor applied to the wait after each retry.
        sleep: Awaitable sleep, injectable for tests.
        on_retry: Called as (attempt, error, delay) before each wait.

    Returns:
        The operation's result from the first successful attempt.

    Raises:
        ValueError: If max_retries is less than 1.
        Exception: The last attempt's error when every attempt fails.

    """
    if max_retries < 1:
        raise ValueError(f"max_retries must be at least 1, got {max_retries}")

    delay = initial_backoff
    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except Exception as exc:
            if attempt == max_retries:
                raise
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            await sleep(delay)
            delay *= multiplier

    raise AssertionError("unreachable")  # pragma: no cover
