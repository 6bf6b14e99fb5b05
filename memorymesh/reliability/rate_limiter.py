"""
Rate Limiter: Sliding One-Minute Request and Token Windows

Before every remote call the limiter estimates the call's cost (one request
plus an estimated token count) and admits it only when both windows have
room. When a window is full it sleeps until the oldest entry expires and
checks again.

Invariant: after acquire() returns, neither window's sum within the last
60 seconds exceeds its ceiling.

Check-and-record runs without an intervening await, so concurrent
acquirers on one event loop never both take the last slot.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from memorymesh.core import constants as C
from memorymesh.core.config import RateLimitConfig
from memorymesh.core.errors import ConfigurationError, ValidationError
from memorymesh.core.types import Message

logger = logging.getLogger(__name__)

TokenEstimator = Callable[[str], int]
Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / C.CHARS_PER_TOKEN)


class SlidingWindow:
    """
    Time-ordered (timestamp, amount) entries bounded by a ceiling.

    Entries older than the window span are dropped on every check.
    """

    __slots__ = ("_ceiling", "_span_s", "_entries", "_total")

    def __init__(self, ceiling: int, span_s: float = C.RATE_WINDOW_S) -> None:
        self._ceiling = ceiling
        self._span_s = span_s
        self._entries: deque[tuple[float, int]] = deque()
        self._total = 0

    def prune(self, now: float) -> None:
        horizon = now - self._span_s
        while self._entries and self._entries[0][0] <= horizon:
            _, amount = self._entries.popleft()
            self._total -= amount

    def fits(self, amount: int) -> bool:
        return self._total + amount <= self._ceiling

    def wait_time(self, now: float) -> float:
        """Seconds until the oldest entry leaves the window."""
        if not self._entries:
            return 0.0
        return max(0.0, self._entries[0][0] + self._span_s - now)

    def record(self, now: float, amount: int) -> None:
        self._entries.append((now, amount))
        self._total += amount

    @property
    def total(self) -> int:
        return self._total

    @property
    def ceiling(self) -> int:
        return self._ceiling

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True, slots=True)
class RateLimitUsage:
    """Point-in-time view of one limiter's windows."""
    identity: str
    requests: int
    request_ceiling: int
    tokens: int
    token_ceiling: int
    total_wait_s: float


class RateLimiter:
    """
    Per-backend admission control.

    Usage:
        limiter = RateLimiter("openai", RateLimitConfig())
        await limiter.acquire_for_messages(messages)
        reply = await adapter.chat(messages)
    """

    __slots__ = (
        "_identity", "_requests", "_tokens", "_estimator",
        "_clock", "_sleep", "_total_wait_s",
    )

    def __init__(
        self,
        identity: str,
        config: Optional[RateLimitConfig] = None,
        estimator: TokenEstimator = estimate_tokens,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        config = config or RateLimitConfig()
        self._identity = identity
        self._requests = SlidingWindow(config.requests_per_minute)
        self._tokens = SlidingWindow(config.tokens_per_minute)
        self._estimator = estimator
        self._clock = clock
        self._sleep = sleep
        self._total_wait_s = 0.0

    @property
    def identity(self) -> str:
        return self._identity

    def estimate(self, texts: Iterable[str]) -> int:
        return sum(self._estimator(text) for text in texts)

    async def acquire_for_messages(self, messages: Iterable[Message]) -> float:
        return await self.acquire(self.estimate(m.content for m in messages))

    async def acquire_for_text(self, text: str) -> float:
        return await self.acquire(self.estimate([text]))

    async def acquire(self, tokens: int) -> float:
        """
        Wait until one request of ``tokens`` fits both windows, then record it.

        Returns:
            Seconds spent waiting

        Raises:
            ConfigurationError: If a ceiling is below one
            ValidationError: If ``tokens`` alone exceeds the token ceiling
        """
        if self._requests.ceiling < 1 or self._tokens.ceiling < 1:
            raise ConfigurationError.invalid_value(
                f"rate limits for {self._identity} admit no requests "
                f"({self._requests.ceiling} requests, {self._tokens.ceiling} tokens per minute)"
            )
        if tokens > self._tokens.ceiling:
            raise ValidationError.request_too_large(tokens, self._tokens.ceiling)

        waited = 0.0
        while True:
            now = self._clock()
            self._requests.prune(now)
            self._tokens.prune(now)

            blocked = [
                window for window, amount in ((self._requests, 1), (self._tokens, tokens))
                if not window.fits(amount)
            ]
            if not blocked:
                self._requests.record(now, 1)
                self._tokens.record(now, tokens)
                self._total_wait_s += waited
                return waited

            delay = max(window.wait_time(now) for window in blocked)
            logger.debug(
                f"Rate limit reached for {self._identity}, waiting {delay:.3f}s",
                extra={"backend": self._identity, "tokens": tokens},
            )
            await self._sleep(delay)
            waited += delay

    def usage(self) -> RateLimitUsage:
        now = self._clock()
        self._requests.prune(now)
        self._tokens.prune(now)
        return RateLimitUsage(
            identity=self._identity,
            requests=self._requests.total,
            request_ceiling=self._requests.ceiling,
            tokens=self._tokens.total,
            token_ceiling=self._tokens.ceiling,
            total_wait_s=self._total_wait_s,
        )
