"""
Knowledge Base: Topic-Tagged Facts on Top of the Memory Store

Application-facing helpers that combine the store, the association graph
and the compactor's summarizer:

    store_knowledge(content, topic)      → knowledge entry tagged with topic
    search_knowledge(query, topic)       → relevance search within knowledge
    retrieve_relevant(text)              → relevance search across all kinds
    associate / get_associated           → directed links between entries
    summarize_conversation(messages)     → summary text
    store_conversation(messages)         → one conversation entry
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from memorymesh.core import constants as C
from memorymesh.core.errors import ValidationError
from memorymesh.core.types import Message
from memorymesh.memory.compactor import ConversationCompactor
from memorymesh.memory.graph import AssociationGraph
from memorymesh.memory.models import Association, MemoryEntry, MemoryKind, MemoryQuery
from memorymesh.memory.store import MemoryStore


class KnowledgeBase:

    __slots__ = ("_store", "_graph", "_compactor")

    def __init__(
        self,
        store: MemoryStore,
        graph: Optional[AssociationGraph] = None,
        compactor: Optional[ConversationCompactor] = None,
    ) -> None:
        self._store = store
        self._graph = graph or AssociationGraph(store)
        self._compactor = compactor or ConversationCompactor(store)

    @property
    def store(self) -> MemoryStore:
        return self._store

    @property
    def graph(self) -> AssociationGraph:
        return self._graph

    async def store_knowledge(
        self,
        content: str,
        topic: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> MemoryEntry:
        """
        Raises:
            ValidationError: Empty content or topic
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError.invalid_content("knowledge content must be non-empty text")
        if not isinstance(topic, str) or not topic.strip():
            raise ValidationError.missing_field("topic", "knowledge entry")
        return await self._store.add(
            content,
            MemoryKind.KNOWLEDGE,
            {**(metadata or {}), "topic": topic},
        )

    async def search_knowledge(
        self,
        query: str,
        topic: Optional[str] = None,
        limit: int = C.RETRIEVAL_LIMIT,
        min_relevance: Optional[float] = None,
    ) -> list[MemoryEntry]:
        return await self._store.search(MemoryQuery(
            text=query,
            kind=MemoryKind.KNOWLEDGE,
            metadata={"topic": topic} if topic else None,
            limit=limit,
            min_relevance=min_relevance,
        ))

    async def retrieve_relevant(
        self,
        text: str,
        limit: int = C.RETRIEVAL_LIMIT,
        min_relevance: Optional[float] = None,
    ) -> list[MemoryEntry]:
        return await self._store.search(MemoryQuery(
            text=text,
            limit=limit,
            min_relevance=min_relevance,
        ))

    async def associate(
        self,
        source_id: str,
        target_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Association:
        return await self._graph.associate(source_id, target_id, metadata)

    async def get_associated(self, entry_id: str) -> list[MemoryEntry]:
        return await self._graph.get_associated(entry_id)

    async def summarize_conversation(self, messages: Sequence[Message]) -> str:
        return await self._compactor.summarize(messages)

    async def store_conversation(self, messages: Sequence[Message]) -> MemoryEntry:
        return await self._compactor.persist(messages)
