"""Unit tests for src/core/retry.py: RetryPolicy and the async_retry decorator."""

import asyncio
import pytest

from src.core.retry import RetryPolicy, async_retry


class TransientError(Exception):
    pass


class TestAsyncRetry:
    """Tests for the @async_retry decorator."""

    async def test_returns_on_first_success(self):
        call_count = 0

        @async_retry(max_attempts=3, backoff_base=0.01)
        async def succeed():
            nonlocal call_count
            call_count += 1
            return "ok"

        assert await succeed() == "ok"
        assert call_count == 1

    async def test_retries_on_failure_then_succeeds(self):
        call_count = 0

        @async_retry(max_attempts=3, backoff_base=0.01)
        async def fail_then_succeed():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise RuntimeError("transient error")
            return "ok"

        assert await fail_then_succeed() == "ok"
        assert call_count == 3

    async def test_raises_after_all_attempts_exhausted(self):
        call_count = 0

        @async_retry(max_attempts=3, backoff_base=0.01)
        async def always_fail():
            nonlocal call_count
            call_count += 1
            raise RuntimeError("permanent error")

        with pytest.raises(RuntimeError, match="permanent error"):
            await always_fail()
        assert call_count == 3

    async def test_only_retries_selected_errors(self):
        call_count = 0

        @async_retry(max_attempts=3, backoff_base=0.01, retry_on=(TransientError,))
        async def rejected():
            nonlocal call_count
            call_count += 1
            raise ValueError("bad request")

        with pytest.raises(ValueError):
            await rejected()
        assert call_count == 1

    async def test_retries_selected_errors(self):
        call_count = 0

        @async_retry(max_attempts=2, backoff_base=0.01, retry_on=(TransientError,))
        async def flaky():
            nonlocal call_count
            call_count += 1
            raise TransientError("503")

        with pytest.raises(TransientError):
            await flaky()
        assert call_count == 2

    async def test_exponential_backoff_timing(self):
        """Verify that retries take at least the expected backoff time."""

        @async_retry(max_attempts=3, backoff_base=0.05)
        async def always_fail():
            raise RuntimeError("fail")

        loop = asyncio.get_running_loop()
        start = loop.time()
        with pytest.raises(RuntimeError):
            await always_fail()
        elapsed = loop.time() - start

        # backoff_base=0.05: sleep 0.05 + 0.10 = 0.15s minimum
        assert elapsed >= 0.14


class TestRetryPolicy:
    def test_delay_is_capped(self):
        policy = RetryPolicy(backoff_base=2.0, max_delay=5.0)
        assert [policy.delay(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 5.0, 5.0]

    async def test_call_passes_arguments(self):
        policy = RetryPolicy(max_attempts=2, backoff_base=0.0)

        async def add(a, b, scale=1):
            return (a + b) * scale

        assert await policy.call(add, 1, 2, scale=3) == 9

    async def test_zero_attempts_still_calls_once(self):
        calls = 0

        async def once():
            nonlocal calls
            calls += 1
            raise TransientError("503")

        with pytest.raises(TransientError):
            await RetryPolicy(max_attempts=0, backoff_base=0.0).call(once, label="once")
        assert calls == 1
