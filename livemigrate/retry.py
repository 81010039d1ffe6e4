"""Rate limiting and exponential backoff for migration runs."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from .errors import is_retryable

logger = logging.getLogger(__name__)

MAX_BACKOFF_MS = 30000


def backoff_delay(attempt: int, base_delay_ms: int, max_delay_ms: int = MAX_BACKOFF_MS) -> float:
    """
    Delay in seconds before retry number ``attempt + 1``.

    ``base_delay_ms * 2 ** attempt``, capped at ``max_delay_ms``.
    """
    return min(base_delay_ms * (2 ** attempt), max_delay_ms) / 1000.0


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    max_retries: int,
    base_delay_ms: int,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    max_delay_ms: int = MAX_BACKOFF_MS,
) -> Any:
    """
    Await ``operation`` until it succeeds or retries run out.

    Args:
        operation: Zero-argument coroutine function
        max_retries: Retries after the first attempt
        base_delay_ms: Backoff base
        should_retry: Predicate deciding whether an error is worth retrying
        on_retry: Called with (retry number, error, delay seconds) before each retry

    Raises:
        The last error once retries are exhausted or the error is not retryable
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_retries or not should_retry(e):
                raise
            delay = backoff_delay(attempt, base_delay_ms, max_delay_ms)
            attempt += 1
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await asyncio.sleep(delay)


class RateLimiter:
    """
    Enforces a minimum interval between dispatches.

    ``wait()`` is a suspension point, not a lock: callers are expected to
    dispatch sequentially.
    """

    def __init__(self, min_interval_ms: int, clock: Callable[[], float] = time.monotonic):
        self.min_interval = max(min_interval_ms, 0) / 1000.0
        self._clock = clock
        self._last_dispatch: Optional[float] = None
        self.delays_applied = 0
        self.total_wait_seconds = 0.0

    async def wait(self) -> float:
        """Sleep until the next dispatch is allowed; returns the time waited."""
        waited = 0.0
        if self.min_interval > 0 and self._last_dispatch is not None:
            remaining = self.min_interval - (self._clock() - self._last_dispatch)
            if remaining > 0:
                await asyncio.sleep(remaining)
                waited = remaining
                self.delays_applied += 1
                self.total_wait_seconds += remaining
        self._last_dispatch = self._clock()
        return waited
