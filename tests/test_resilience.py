"""
Tests for the circuit breaker, retry logic and the background ticker.
"""

import asyncio
from typing import Any, List

import pytest

from learning_companion.core.exceptions import CircuitOpenError, ProviderError
from learning_companion.core.resilience import (
    CircuitBreaker,
    CircuitState,
    RetryConfig,
    retry_with_backoff,
)
from learning_companion.core.scheduler import Ticker


class TestCircuitBreaker:
    """Test circuit breaker state changes."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self) -> None:
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60, clock=lambda: now[0])

        async def fail() -> None:
            raise ProviderError("down", status_code=500)

        for _ in range(2):
            with pytest.raises(ProviderError):
                await breaker.call(fail)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.call(fail)

    @pytest.mark.asyncio
    async def test_half_open_trial_call_closes_on_success(self) -> None:
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=lambda: now[0])

        async def fail() -> None:
            raise ProviderError("down")

        async def ok() -> str:
            return "ok"

        with pytest.raises(ProviderError):
            await breaker.call(fail)
        now[0] = 31.0

        assert await breaker.call(ok) == "ok"
        assert breaker.is_closed
        assert breaker.get_state()["failure_count"] == 0


class TestRetry:
    """Test capped exponential backoff."""

    def test_delay_schedule(self) -> None:
        config = RetryConfig(base_delay=1.0, max_delay=10.0)
        assert [config.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    @pytest.mark.asyncio
    async def test_retries_until_success(self) -> None:
        delays: List[float] = []
        calls = []

        async def sleep(delay: float) -> Any:
            delays.append(delay)

        async def flaky() -> str:
            calls.append(1)
            if len(calls) < 3:
                raise ProviderError("timeout")
            return "done"

        result = await retry_with_backoff(flaky, RetryConfig(max_attempts=3), sleep=sleep)
        assert result == "done"
        assert delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates(self) -> None:
        calls = []

        async def auth_failure() -> None:
            calls.append(1)
            raise ProviderError("bad key", status_code=401)

        with pytest.raises(ProviderError):
            await retry_with_backoff(
                auth_failure, RetryConfig(max_attempts=3), should_retry=lambda e: False
            )
        assert len(calls) == 1


class TestTicker:
    """Test the periodic job runner."""

    @pytest.mark.asyncio
    async def test_run_now_counts_runs_and_failures(self) -> None:
        ticker = Ticker()
        runs = []

        async def job() -> None:
            runs.append(1)

        async def broken() -> None:
            raise RuntimeError("boom")

        ticker.add_job("job", 60, job)
        ticker.add_job("broken", 60, broken)
        await ticker.run_now("job")
        await ticker.run_now("broken")

        assert runs == [1]
        assert ticker.get_job("job").runs == 1
        assert ticker.get_job("broken").failures == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        ticker = Ticker()
        ran = asyncio.Event()

        async def job() -> None:
            ran.set()

        ticker.add_job("immediate", 3600, job, run_immediately=True)
        ticker.start()
        await asyncio.wait_for(ran.wait(), timeout=1)
        assert ticker.running

        await ticker.stop()
        assert not ticker.running

    def test_rejects_duplicate_and_bad_interval(self) -> None:
        ticker = Ticker()

        async def job() -> None:
            return None

        ticker.add_job("job", 10, job)
        with pytest.raises(ValueError):
            ticker.add_job("job", 10, job)
        with pytest.raises(ValueError):
            ticker.add_job("other", 0, job)
