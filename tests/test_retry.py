"""Tests for retry, timeout and bounded concurrency helpers."""

import asyncio

import pytest

from polymarket_trade_indexer.errors import (
    OperationTimeoutError,
    RetryError,
    TransientTransportError,
    ValidationError,
)
from polymarket_trade_indexer.retry import (
    RetryPolicy,
    gather_limited,
    retry_with_backoff,
    with_retry,
    with_timeout,
)


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_exponential_delays(self) -> None:
        policy = RetryPolicy(base_delay_seconds=2.0)
        assert [policy.delay_for(n) for n in range(3)] == [2.0, 4.0, 8.0]

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        sleep = _RecordingSleep()
        call_count = 0

        async def succeed() -> str:
            nonlocal call_count
            call_count += 1
            return "success"

        assert await retry_with_backoff(succeed, sleep=sleep) == "success"
        assert call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_success_after_retries(self) -> None:
        sleep = _RecordingSleep()
        call_count = 0

        async def succeed_eventually() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise TransientTransportError("Not yet")
            return "success"

        result = await retry_with_backoff(
            succeed_eventually, RetryPolicy(max_attempts=3, base_delay_seconds=1.0), sleep=sleep
        )

        assert result == "success"
        assert call_count == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted(self) -> None:
        sleep = _RecordingSleep()

        async def always_fail() -> None:
            raise TransientTransportError("down")

        with pytest.raises(RetryError) as exc_info:
            await retry_with_backoff(
                always_fail, RetryPolicy(max_attempts=2), description="fetch", sleep=sleep
            )

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_exception, TransientTransportError)
        assert "fetch" in str(exc_info.value)
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self) -> None:
        sleep = _RecordingSleep()
        call_count = 0

        async def invalid() -> None:
            nonlocal call_count
            call_count += 1
            raise ValidationError("bad id")

        with pytest.raises(ValidationError):
            await retry_with_backoff(invalid, sleep=sleep)
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_retried(self) -> None:
        sleep = _RecordingSleep()
        call_count = 0

        async def slow_then_fast() -> str:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                await asyncio.sleep(1)
            return "done"

        policy = RetryPolicy(max_attempts=2, base_delay_seconds=0, attempt_timeout_seconds=0.01)
        assert await retry_with_backoff(slow_then_fast, policy, sleep=sleep) == "done"
        assert call_count == 2


@pytest.mark.asyncio
async def test_with_retry_decorator() -> None:
    call_count = 0

    @with_retry(RetryPolicy(max_attempts=3, base_delay_seconds=0))
    async def flaky(value: int) -> int:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            raise TransientTransportError("once")
        return value * 2

    assert await flaky(21) == 42
    assert call_count == 2


class TestWithTimeout:
    """Tests for with_timeout."""

    @pytest.mark.asyncio
    async def test_returns_result(self) -> None:
        async def quick() -> int:
            return 1

        assert await with_timeout(quick(), 1.0) == 1

    @pytest.mark.asyncio
    async def test_raises_on_deadline(self) -> None:
        with pytest.raises(OperationTimeoutError, match="slow call"):
            await with_timeout(asyncio.sleep(1), 0.01, message="slow call")

    @pytest.mark.asyncio
    async def test_timeout_is_a_timeout_error(self) -> None:
        with pytest.raises(TimeoutError):
            await with_timeout(asyncio.sleep(1), 0.01)


class TestGatherLimited:
    """Tests for gather_limited."""

    @pytest.mark.asyncio
    async def test_preserves_order_and_captures_errors(self) -> None:
        async def work(n: int) -> int:
            if n == 2:
                raise ValueError("two")
            await asyncio.sleep(0.001 * (5 - n))
            return n * 10

        results = await gather_limited([1, 2, 3], work, concurrency=2)

        assert results[0] == 10
        assert isinstance(results[1], ValueError)
        assert results[2] == 30

    @pytest.mark.asyncio
    async def test_respects_concurrency(self) -> None:
        in_flight = 0
        peak = 0

        async def work(_: int) -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        await gather_limited(range(10), work, concurrency=3)
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_invalid_concurrency(self) -> None:
        async def work(n: int) -> int:
            return n

        with pytest.raises(ValueError):
            await gather_limited([1], work, concurrency=0)
