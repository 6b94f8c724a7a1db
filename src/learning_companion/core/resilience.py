"""
Resilience patterns for provider calls.

Implements the circuit breaker pattern and retry logic with capped exponential
backoff so a failing LLM provider degrades the tutor instead of stalling it.
"""

import asyncio
import logging
import random
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Calls fail fast
    HALF_OPEN = "half_open"  # Testing if service is back


class CircuitBreaker:
    """Circuit breaker for resilient async service calls."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: str = "provider",
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker with failure detection settings."""
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self._clock = clock

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Execute an async callable with circuit breaker protection."""
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitState.HALF_OPEN
                logger.info(f"Circuit '{self.name}' half-open, probing")
            else:
                raise CircuitOpenError(provider=self.name)

        try:
            result = await func()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt reset."""
        if self.last_failure_time is None:
            return True

        return self._clock() - self.last_failure_time >= self.recovery_timeout

    def _on_success(self) -> None:
        if self.state != CircuitState.CLOSED:
            logger.info(f"Circuit '{self.name}' closed")
        self.failure_count = 0
        self.state = CircuitState.CLOSED

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN or (
            self.failure_count >= self.failure_threshold
        ):
            self.state = CircuitState.OPEN
            logger.warning(
                f"Circuit '{self.name}' opened after {self.failure_count} failures"
            )

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }


class RetryConfig:
    """Configuration for retry logic."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        exponential_backoff: bool = True,
        jitter: bool = False,
    ):
        """Initialize retry configuration."""
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_backoff = exponential_backoff
        self.jitter = jitter

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based): min(base * 2^n, max)."""
        delay = self.base_delay
        if self.exponential_backoff:
            delay = delay * (2**attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= 0.5 + random.random() * 0.5

        return delay


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    should_retry: Callable[[BaseException], bool] = lambda e: True,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Execute an async callable with retry logic and capped exponential backoff.

    ``should_retry`` decides per exception whether another attempt is worth
    making; non-retryable errors propagate immediately.
    """
    for attempt in range(config.max_attempts):
        try:
            return await func()

        except Exception as e:
            if attempt == config.max_attempts - 1 or not should_retry(e):
                if attempt > 0:
                    logger.error(f"Giving up after {attempt + 1} attempts: {e}")
                raise

            delay = config.delay_for(attempt)
            logger.warning(
                f"Attempt {attempt + 1} failed, retrying in {delay:.2f}s: {e}"
            )
            await sleep(delay)

    raise RuntimeError("retry_with_backoff called with max_attempts < 1")
