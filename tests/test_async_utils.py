"""Tests for async_utils.py: retry, bounded_call, timeout_with_fallback."""

import asyncio

import pytest

from memory_rank.core.async_utils import async_retry, bounded_call, timeout_with_fallback
from memory_rank.core.exceptions import (
    UpstreamCancelledError,
    UpstreamError,
    UpstreamTimeoutError,
)

# ============================================================
# async_retry
# ============================================================


class TestAsyncRetry:
    @pytest.mark.asyncio
    async def test_success_no_retry(self):
        call_count = 0

        @async_retry(max_attempts=3)
        async def succeed():
            nonlocal call_count
            call_count += 1
            return "ok"

        assert await succeed() == "ok"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        call_count = 0

        @async_retry(max_attempts=3, base_delay=0.001)
        async def flaky():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise UpstreamError("temporarily unavailable")
            return "ok"

        assert await flaky() == "ok"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        call_count = 0

        @async_retry(max_attempts=3, base_delay=0.001)
        async def broken():
            nonlocal call_count
            call_count += 1
            raise UpstreamError("bad request", retryable=False)

        with pytest.raises(UpstreamError):
            await broken()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        call_count = 0

        @async_retry(max_attempts=2, base_delay=0.001)
        async def always_fails():
            nonlocal call_count
            call_count += 1
            raise UpstreamError("service unavailable")

        with pytest.raises(UpstreamError):
            await always_fails()
        assert call_count == 2


# ============================================================
# bounded_call
# ============================================================


class TestBoundedCall:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def fast():
            return 42

        assert await bounded_call(fast(), timeout=1.0, operation="test") == 42

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await bounded_call(slow(), timeout=0.01, operation="slow op")
        assert exc_info.value.timeout == 0.01

    @pytest.mark.asyncio
    async def test_cancel_event_aborts_call(self):
        cancelled = asyncio.Event()
        started = asyncio.Event()

        async def slow():
            started.set()
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        cancel_event = asyncio.Event()

        async def trigger():
            await started.wait()
            cancel_event.set()

        trigger_task = asyncio.create_task(trigger())
        with pytest.raises(UpstreamCancelledError):
            await bounded_call(slow(), timeout=5.0, operation="slow op", cancel_event=cancel_event)
        await trigger_task
        await asyncio.sleep(0.01)
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_failure_wrapped(self):
        async def broken():
            raise ValueError("kaput")

        with pytest.raises(UpstreamError) as exc_info:
            await bounded_call(broken(), timeout=1.0, operation="broken op")
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert "broken op" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_upstream_error_passes_through(self):
        async def broken():
            raise UpstreamError("already mapped", retryable=False)

        with pytest.raises(UpstreamError, match="already mapped"):
            await bounded_call(broken(), timeout=1.0, operation="op")

    @pytest.mark.asyncio
    async def test_task_cancellation_cancels_inner_call(self):
        inner_cancelled = asyncio.Event()
        started = asyncio.Event()

        async def slow():
            started.set()
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                inner_cancelled.set()
                raise

        outer = asyncio.create_task(bounded_call(slow(), timeout=5.0, operation="op"))
        await started.wait()
        outer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await outer
        await asyncio.sleep(0.01)
        assert inner_cancelled.is_set()


# ============================================================
# timeout_with_fallback
# ============================================================


class TestTimeoutWithFallback:
    @pytest.mark.asyncio
    async def test_success(self):
        async def fast():
            return "result"

        value, error = await timeout_with_fallback(fast(), timeout=1.0, fallback="default")
        assert value == "result"
        assert error is None

    @pytest.mark.asyncio
    async def test_timeout_returns_fallback(self):
        async def slow():
            await asyncio.sleep(5)

        value, error = await timeout_with_fallback(slow(), timeout=0.01, fallback="default")
        assert value == "default"
        assert isinstance(error, UpstreamTimeoutError)

    @pytest.mark.asyncio
    async def test_callable_fallback(self):
        async def broken():
            raise RuntimeError("nope")

        value, error = await timeout_with_fallback(broken(), timeout=1.0, fallback=lambda: [1, 2])
        assert value == [1, 2]
        assert isinstance(error, UpstreamError)
