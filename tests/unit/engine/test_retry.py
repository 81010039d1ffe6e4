"""Tests for backoff, retry_async and RateLimiter."""

import pytest

from livemigrate.errors import PermanentWriteError, TransientStoreError
from livemigrate.retry import MAX_BACKOFF_MS, RateLimiter, backoff_delay, retry_async


class TestBackoff:
    """Tests for backoff_delay()."""

    def test_doubles_per_attempt(self):
        assert [backoff_delay(a, 100) for a in range(4)] == [0.1, 0.2, 0.4, 0.8]

    def test_capped(self):
        assert backoff_delay(20, 1000) == MAX_BACKOFF_MS / 1000.0
        assert backoff_delay(3, 1000, max_delay_ms=2000) == 2.0


class TestRetryAsync:
    """Tests for retry_async()."""

    @pytest.mark.asyncio
    async def test_succeeds_after_retries(self):
        calls = []
        retries = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TransientStoreError("timeout")
            return "ok"

        result = await retry_async(flaky, 3, 0, on_retry=lambda n, e, d: retries.append(n))

        assert result == "ok"
        assert retries == [1, 2]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        calls = []

        async def always_fails():
            calls.append(1)
            raise TransientStoreError("timeout")

        with pytest.raises(TransientStoreError):
            await retry_async(always_fails, 2, 0)

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_errors_raise_immediately(self):
        calls = []

        async def denied():
            calls.append(1)
            raise PermanentWriteError("denied")

        with pytest.raises(PermanentWriteError):
            await retry_async(denied, 5, 0)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_custom_predicate(self):
        calls = []

        async def fails():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await retry_async(fails, 5, 0, should_retry=lambda e: False)

        assert len(calls) == 1


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.mark.asyncio
    async def test_first_dispatch_is_free(self):
        limiter = RateLimiter(1000)

        assert await limiter.wait() == 0.0
        assert limiter.delays_applied == 0

    @pytest.mark.asyncio
    async def test_enforces_interval(self):
        now = [100.0]
        limiter = RateLimiter(50, clock=lambda: now[0])

        await limiter.wait()
        now[0] += 0.01
        waited = await limiter.wait()

        assert waited == pytest.approx(0.04)
        assert limiter.delays_applied == 1
        assert limiter.total_wait_seconds == pytest.approx(0.04)

    @pytest.mark.asyncio
    async def test_no_wait_when_interval_elapsed(self):
        now = [0.0]
        limiter = RateLimiter(50, clock=lambda: now[0])

        await limiter.wait()
        now[0] += 1.0

        assert await limiter.wait() == 0.0

    @pytest.mark.asyncio
    async def test_zero_interval(self):
        limiter = RateLimiter(0)

        await limiter.wait()
        assert await limiter.wait() == 0.0
