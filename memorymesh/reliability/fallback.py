"""
Fallback Orchestration: Primary Backend, Then Secondary

The primary operation runs through its retry engine. Once those retries
are exhausted, and only if a fallback backend is configured together with
the credentials it needs, a separate fallback operation (bound to the
fallback's own adapter and limiter) runs through the fallback's retry
engine.

Outcomes:
    primary succeeds                 → primary result
    primary non-retryable error      → that error, unchanged
    primary exhausted, no fallback   → the primary error, unchanged
    fallback succeeds                → fallback result
    fallback fails too               → ExhaustionError naming both causes
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from memorymesh.core.config import BackendConfig
from memorymesh.core.errors import (
    ErrorCode,
    ExhaustionError,
    ReliabilityError,
    describe,
)
from memorymesh.reliability.retry import RetryEngine, RetryListener

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]


class FallbackOrchestrator:
    """
    Routes a failed primary request to the configured fallback backend.
    """

    __slots__ = ("_primary_retry", "_fallback_retry", "_fallback_config", "_fallbacks_used")

    def __init__(
        self,
        primary_retry: RetryEngine,
        fallback_retry: Optional[RetryEngine] = None,
        fallback_config: Optional[BackendConfig] = None,
    ) -> None:
        self._primary_retry = primary_retry
        self._fallback_retry = fallback_retry or primary_retry
        self._fallback_config = fallback_config
        self._fallbacks_used = 0

    @property
    def fallback_available(self) -> bool:
        """Fallback configured with a model and the credentials it needs."""
        config = self._fallback_config
        return config is not None and bool(config.model) and config.has_credentials

    @property
    def fallbacks_used(self) -> int:
        return self._fallbacks_used

    async def run(
        self,
        primary: Operation[T],
        fallback: Optional[Operation[T]],
        context: str,
        on_primary_retry: Optional[RetryListener] = None,
        on_fallback: Optional[Callable[[BaseException], None]] = None,
    ) -> T:
        """
        Execute ``primary`` with retries, falling back when allowed.

        Raises:
            The primary error when no fallback may run
            ExhaustionError: If primary and fallback both fail
        """
        try:
            return await self._primary_retry.run(primary, context, on_retry=on_primary_retry)
        except Exception as primary_error:
            if fallback is None or not self._should_fall_back(primary_error):
                raise
            self._fallbacks_used += 1
            logger.warning(
                f"Primary {context} failed, attempting fallback",
                extra={
                    "operation": context,
                    "fallback_backend": self._fallback_config.identity,
                    "primary_error": describe(primary_error),
                },
            )
            if on_fallback is not None:
                on_fallback(primary_error)
            try:
                return await self._fallback_retry.run(fallback, f"Fallback {context}")
            except Exception as fallback_error:
                raise ExhaustionError.both_failed(
                    context, primary_error, fallback_error,
                ) from fallback_error

    def _should_fall_back(self, error: BaseException) -> bool:
        if not self.fallback_available:
            return False
        if isinstance(error, ReliabilityError):
            return True
        # A primary that lacks the capability (e.g. embeddings) defers to the fallback.
        return getattr(error, "code", None) is ErrorCode.CONFIG_UNSUPPORTED_OPERATION
