"""
Retry Policy: Bounded Attempts with Increasing Backoff

Implements the retry strategy for backend calls:
- Linear backoff by default: base_delay × attempt
- Exponential backoff selectable: base_delay × 2^(attempt-1)
- No jitter, so consecutive waits strictly increase (until the cap)
- Validation, configuration and not-found errors are never retried

Timeouts (asyncio.TimeoutError or a backend timeout error) count as
ordinary transient failures.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from memorymesh.core import constants as C
from memorymesh.core.config import BackoffStrategy, RetryConfig
from memorymesh.core.errors import ErrorKind, ReliabilityError, describe, kind_of

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryListener = Callable[[int, BaseException, float], None]
Sleeper = Callable[[float], Awaitable[None]]

NON_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.VALIDATION,
    ErrorKind.CONFIGURATION,
    ErrorKind.NOT_FOUND,
    ErrorKind.EXHAUSTED,
})


@dataclass
class RetryPolicy:
    """Retry configuration."""

    max_attempts: int = C.RETRY_MAX_ATTEMPTS
    base_delay_ms: int = C.RETRY_BASE_DELAY_MS
    max_delay_ms: int = C.RETRY_MAX_DELAY_MS
    backoff: BackoffStrategy = BackoffStrategy.LINEAR
    exponential_base: float = C.RETRY_EXPONENTIAL_BASE
    non_retryable_kinds: frozenset[ErrorKind] = field(default=NON_RETRYABLE_KINDS)

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Single attempt."""
        return cls(max_attempts=1)

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
            backoff=config.backoff,
        )

    def delay_ms(self, attempt: int) -> float:
        """Wait after the ``attempt``-th failure (1-based)."""
        return calculate_backoff(
            attempt=attempt,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            strategy=self.backoff,
            exponential_base=self.exponential_base,
        )

    def is_retryable(self, error: BaseException) -> bool:
        kind = kind_of(error)
        return kind is None or kind not in self.non_retryable_kinds


@dataclass
class RetryStats:
    """Retry attempt statistics."""
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    total_delay_ms: float = 0.0
    exhausted: int = 0
    last_error: Optional[str] = None


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    strategy: BackoffStrategy = BackoffStrategy.LINEAR,
    exponential_base: float = C.RETRY_EXPONENTIAL_BASE,
) -> float:
    """
    Delay in milliseconds before the next attempt.

    Linear: base × attempt. Exponential: base × exponential_base^(attempt-1).
    """
    if strategy is BackoffStrategy.EXPONENTIAL:
        delay = base_delay_ms * (exponential_base ** (attempt - 1))
    else:
        delay = base_delay_ms * attempt
    return float(min(max_delay_ms, delay))


class RetryEngine:
    """
    Runs an async operation up to ``max_attempts`` times.

    Usage:
        engine = RetryEngine(RetryPolicy(max_attempts=3, base_delay_ms=100))
        reply = await engine.run(lambda: adapter.chat(messages), "chat completion")
    """

    __slots__ = ("_policy", "_sleep", "_stats")

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._policy = policy or RetryPolicy.default()
        self._sleep = sleep
        self._stats = RetryStats()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def stats(self) -> RetryStats:
        return self._stats

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str,
        on_retry: Optional[RetryListener] = None,
    ) -> T:
        """
        Execute ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            context: Operation name used in logs and the exhaustion message
            on_retry: Called with (attempt, error, delay_ms) before each backoff

        Raises:
            The original error if it is not retryable
            ReliabilityError: After the final attempt fails
        """
        policy = self._policy
        last_error: Optional[BaseException] = None

        for attempt in range(1, policy.max_attempts + 1):
            self._stats.total_attempts += 1
            try:
                result = await operation()
                self._stats.successful_attempts += 1
                return result
            except Exception as e:
                self._stats.failed_attempts += 1
                self._stats.last_error = describe(e)
                if not policy.is_retryable(e):
                    raise
                last_error = e
                logger.debug(f"{context}: attempt {attempt} failed: {describe(e)}")

            if attempt < policy.max_attempts:
                delay = policy.delay_ms(attempt)
                self._stats.total_delay_ms += delay
                if on_retry is not None:
                    on_retry(attempt, last_error, delay)
                logger.debug(f"{context}: retrying in {delay:.0f}ms (attempt {attempt + 1})")
                await self._sleep(delay / 1000)

        self._stats.exhausted += 1
        logger.warning(
            f"{context} failed after {policy.max_attempts} attempts",
            extra={"operation": context, "attempts": policy.max_attempts},
        )
        raise ReliabilityError.retry_exhausted(
            operation=context,
            attempts=policy.max_attempts,
            last_error=last_error,
        ) from last_error
