"""
Conversation Compactor: Buffer, Summarize, Persist

Incoming and outgoing messages accumulate in an in-memory buffer. When the
buffer reaches the flush threshold (ten messages by default) it is written
to memory as a single ``conversation`` entry whose metadata records the
message count and a summary, and the buffer is cleared.

A failed flush is logged and swallowed; the buffer is kept so the next
flush retries with everything still in it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from memorymesh.core import constants as C
from memorymesh.core.errors import describe
from memorymesh.core.types import Message
from memorymesh.core.validation import validate_messages
from memorymesh.memory.models import MemoryEntry, MemoryKind
from memorymesh.memory.store import MemoryStore

logger = logging.getLogger(__name__)

Summarizer = Callable[[Sequence[Message]], Awaitable[str]]


async def extractive_summary(messages: Sequence[Message]) -> str:
    """
    Network-free summary: message count, first user turn, last assistant turn.
    """
    first_user = next((m.content for m in messages if m.role_name == "user"), None)
    last_assistant = next(
        (m.content for m in reversed(messages) if m.role_name == "assistant"), None,
    )
    parts = [f"Conversation of {len(messages)} messages."]
    if first_user:
        parts.append(f"User asked: {_clip(first_user)}")
    if last_assistant:
        parts.append(f"Assistant concluded: {_clip(last_assistant)}")
    return " ".join(parts)[:C.SUMMARY_MAX_CHARS]


def _clip(text: str, limit: int = 160) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit - 3] + "..."


@dataclass(slots=True)
class CompactionStats:
    flushes: int = 0
    failed_flushes: int = 0
    messages_persisted: int = 0


class ConversationCompactor:
    """
    Owns the conversation buffer of one client.

    Usage:
        compactor = ConversationCompactor(store)
        compactor.extend([user_message, reply])
        await compactor.maybe_flush()
    """

    __slots__ = ("_store", "_threshold", "_summarizer", "_buffer", "_lock", "_stats")

    def __init__(
        self,
        store: MemoryStore,
        threshold: int = C.FLUSH_THRESHOLD_MESSAGES,
        summarizer: Optional[Summarizer] = None,
    ) -> None:
        self._store = store
        self._threshold = threshold
        self._summarizer = summarizer or extractive_summary
        self._buffer: list[Message] = []
        self._lock = asyncio.Lock()
        self._stats = CompactionStats()

    @property
    def buffer(self) -> list[Message]:
        return list(self._buffer)

    @property
    def stats(self) -> CompactionStats:
        return self._stats

    @property
    def should_flush(self) -> bool:
        return len(self._buffer) >= self._threshold

    def extend(self, messages: Sequence[Message]) -> None:
        self._buffer.extend(messages)

    async def summarize(self, messages: Sequence[Message]) -> str:
        return await self._summarizer(messages)

    async def persist(self, messages: Sequence[Message]) -> MemoryEntry:
        """
        Store ``messages`` as one conversation entry.

        Raises:
            ValidationError: Bad role or content in ``messages``
            StorageError: Persistence failed
        """
        validate_messages(messages)
        summary = await self._summarizer(messages)
        return await self._store.add(
            "\n".join(m.render() for m in messages),
            MemoryKind.CONVERSATION,
            {
                "messageCount": len(messages),
                "summary": summary,
                "startedAt": messages[0].timestamp.millis,
                "endedAt": messages[-1].timestamp.millis,
            },
        )

    async def maybe_flush(self) -> Optional[MemoryEntry]:
        """Flush if the threshold is reached. Never raises."""
        if not self.should_flush:
            return None
        return await self.flush()

    async def flush(self) -> Optional[MemoryEntry]:
        """
        Persist the whole buffer. Never raises; returns None on failure
        or when there is nothing to flush.
        """
        async with self._lock:
            snapshot = list(self._buffer)
            if not snapshot:
                return None
            try:
                entry = await self.persist(snapshot)
            except Exception as e:
                self._stats.failed_flushes += 1
                logger.error(
                    f"Failed to store conversation memory, keeping buffer: {describe(e)}",
                    extra={"buffered_messages": len(snapshot)},
                )
                return None

            # Messages appended while persisting stay for the next flush.
            del self._buffer[:len(snapshot)]
            self._stats.flushes += 1
            self._stats.messages_persisted += len(snapshot)
            logger.info(f"Compacted {len(snapshot)} messages into memory {entry.id}")
            return entry


class BackendSummarizer:
    """
    Summarizer that asks a language model for the summary.

    ``chat`` is a client's chat call; the reply's content is the summary.
    """

    __slots__ = ("_chat",)

    PROMPT = "Summarize the following conversation in a few sentences."

    def __init__(self, chat: Callable[[Sequence[Message]], Awaitable[Message]]) -> None:
        self._chat = chat

    async def __call__(self, messages: Sequence[Message]) -> str:
        transcript = "\n".join(m.render() for m in messages)
        reply = await self._chat([Message.system(self.PROMPT), Message.user(transcript)])
        return reply.content[:C.SUMMARY_MAX_CHARS]
