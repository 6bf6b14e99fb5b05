"""
Request Queue: Per-Backend Serialization

Each backend identity owns one pending-operation chain. An operation
starts only after the previously submitted operation for the same
identity has settled, whether it succeeded or failed. Identities never
block each other.

The chain is a single "tail" future per identity: every submission swaps
in its own completion future and waits on the one it replaced.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class QueueMetrics:
    """Per-identity queue statistics."""
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    depth: int = 0
    max_depth: int = 0


class RequestQueue:
    """
    Serializes async operations per key.

    Usage:
        queue = RequestQueue()
        reply = await queue.submit("openai", lambda: adapter.chat(messages))
    """

    __slots__ = ("_tails", "_metrics")

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Future[None]] = {}
        self._metrics: dict[str, QueueMetrics] = {}

    async def submit(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` after every earlier submission for ``key`` settled.

        The operation's result or exception is returned to this caller
        only; later submissions run regardless.
        """
        loop = asyncio.get_running_loop()
        metrics = self._metrics.setdefault(key, QueueMetrics())
        previous = self._tails.get(key)
        settled: asyncio.Future[None] = loop.create_future()
        self._tails[key] = settled

        metrics.submitted += 1
        metrics.depth += 1
        metrics.max_depth = max(metrics.max_depth, metrics.depth)

        try:
            if previous is not None and not previous.done():
                try:
                    await asyncio.shield(previous)
                except asyncio.CancelledError:
                    # Successors wait on this future; settle it once the predecessor does.
                    previous.add_done_callback(lambda _: _settle(settled))
                    raise
            try:
                result = await operation()
            except Exception:
                metrics.failed += 1
                raise
            metrics.completed += 1
            return result
        finally:
            metrics.depth -= 1
            if previous is None or previous.done():
                _settle(settled)
            if self._tails.get(key) is settled and settled.done():
                del self._tails[key]

    def metrics(self, key: str) -> QueueMetrics:
        return self._metrics.setdefault(key, QueueMetrics())

    def pending(self, key: str) -> int:
        return self.metrics(key).depth

    def keys(self) -> list[str]:
        return list(self._metrics)


def _settle(future: Optional[asyncio.Future[None]]) -> None:
    if future is not None and not future.done():
        future.set_result(None)
