"""
Relevance Retriever: Memory Context for Outgoing Requests

The most recent messages of a request (three by default) are joined into
a query, the memory store is searched, and the matches are rendered into
one system message placed in front of the caller's messages. Retrieval
never blocks a request: failures are logged and yield no context.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from memorymesh.core import constants as C
from memorymesh.core.errors import describe
from memorymesh.core.types import Message
from memorymesh.memory.models import MemoryEntry, MemoryKind, MemoryQuery
from memorymesh.memory.store import MemoryStore

logger = logging.getLogger(__name__)


class RelevanceRetriever:
    """
    Similarity search plus context assembly.

    Usage:
        retriever = RelevanceRetriever(store)
        outgoing = await retriever.augment(messages)
    """

    __slots__ = ("_store", "_window", "_limit", "_min_relevance", "_kind")

    def __init__(
        self,
        store: MemoryStore,
        window: int = C.CONTEXT_WINDOW_MESSAGES,
        limit: int = C.RETRIEVAL_LIMIT,
        min_relevance: Optional[float] = C.MIN_RELEVANCE,
        kind: Optional[MemoryKind] = None,
    ) -> None:
        self._store = store
        self._window = window
        self._limit = limit
        self._min_relevance = min_relevance
        self._kind = kind

    def query_text(self, messages: Sequence[Message]) -> str:
        """``role: content`` lines of the last ``window`` messages."""
        recent = list(messages)[-self._window:]
        return "\n".join(m.render() for m in recent)

    async def retrieve(self, messages: Sequence[Message]) -> list[MemoryEntry]:
        text = self.query_text(messages)
        if not text.strip():
            return []
        try:
            return await self._store.search(MemoryQuery(
                text=text,
                kind=self._kind,
                limit=self._limit,
                min_relevance=self._min_relevance,
            ))
        except Exception as e:
            logger.warning(f"Memory retrieval failed, continuing without context: {describe(e)}")
            return []

    @staticmethod
    def render_context(entries: Sequence[MemoryEntry]) -> str:
        """Entries are expected highest relevance first."""
        return "\n".join(f"{entry.kind.value}: {entry.content}" for entry in entries)

    @staticmethod
    def context_message(context: str) -> Message:
        return Message.system(f"{C.CONTEXT_PREAMBLE}\n{context}\n\n{C.CONTEXT_POSTAMBLE}")

    async def augment(self, messages: Sequence[Message]) -> list[Message]:
        """
        Caller's messages, preceded by a context message when memory matched.

        The caller's own system messages are kept in place.
        """
        entries = await self.retrieve(messages)
        if not entries:
            return list(messages)
        logger.debug(f"Injecting {len(entries)} memories as context")
        return [self.context_message(self.render_context(entries)), *messages]
