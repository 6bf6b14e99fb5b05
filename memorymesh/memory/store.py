"""
Memory Store: Embedding-Indexed Associative Memory

Provides:
- add: assign id + timestamp, embed, persist (all-or-nothing)
- search: kind / metadata / time-range filters, then cosine ranking
- update: partial change, re-embedding when content changes
- delete / clear / get / count

Search Algorithm:
    1. Scan candidates by kind and inclusive time range
    2. Keep candidates whose metadata contains every query key with an equal value
    3. With query text: score each by cosine similarity (numpy, batched),
       drop scores below min_relevance, sort by score descending
       Without text: sort newest first
    4. Truncate to limit

Persistence Fallback:
    If the durable record store cannot connect during initialize(), the
    store switches to an in-memory table with the same contract and logs
    a warning. Callers see no difference apart from durability.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Sequence
from uuid import uuid4

import numpy as np

from memorymesh.core.errors import NotFoundError, StorageError, ValidationError
from memorymesh.core.types import Result
from memorymesh.memory.embeddings import Embedder
from memorymesh.memory.models import MemoryEntry, MemoryKind, MemoryPatch, MemoryQuery
from memorymesh.memory.persistence import InMemoryRecordStore, RecordStore
from memorymesh.memory.similarity import cosine_similarity_batch

logger = logging.getLogger(__name__)


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


class MemoryStore:
    """
    Associative memory over a pluggable record store.

    Usage:
        store = MemoryStore(HashingEmbedder())
        await store.initialize()
        entry = await store.add("Paris is the capital of France", MemoryKind.KNOWLEDGE)
        hits = await store.search(MemoryQuery(text="capital of France", limit=3))
    """

    __slots__ = ("_embedder", "_records", "_clock", "_fell_back", "_initialized")

    def __init__(
        self,
        embedder: Embedder,
        records: Optional[RecordStore] = None,
        clock: Callable[[], int] = _now_millis,
    ) -> None:
        self._embedder = embedder
        self._records: RecordStore = records or InMemoryRecordStore()
        self._clock = clock
        self._fell_back = False
        self._initialized = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    @property
    def embedder(self) -> Embedder:
        return self._embedder

    @property
    def dimension(self) -> int:
        return self._embedder.dimension

    @property
    def backend_name(self) -> str:
        return self._records.name

    @property
    def fell_back(self) -> bool:
        """True when the durable backend was unavailable at startup."""
        return self._fell_back

    async def initialize(self) -> None:
        if self._initialized:
            return
        result = await self._records.connect()
        if result.is_err():
            logger.warning(
                f"Persistent memory backend '{self._records.name}' unavailable, "
                f"using in-memory store: {result.error}"
            )
            self._records = InMemoryRecordStore()
            self._fell_back = True
        self._initialized = True

    async def close(self) -> None:
        await self._records.close()
        self._initialized = False

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------
    async def add(
        self,
        content: str,
        kind: MemoryKind = MemoryKind.KNOWLEDGE,
        metadata: Optional[dict[str, Any]] = None,
        *,
        embedding: Optional[Sequence[float]] = None,
        associations: Optional[Sequence[str]] = None,
        source: Optional[str] = None,
    ) -> MemoryEntry:
        """
        Create and persist an entry.

        The embedding is computed before anything is written; any failure
        leaves the store unchanged.

        Raises:
            ValidationError: Empty content or wrong embedding dimension
            StorageError: Persistence failed
        """
        _require_text(content)
        vector = await self._embedding_for(content, embedding)

        entry = MemoryEntry(
            id=str(uuid4()),
            kind=kind,
            content=content,
            embedding=vector,
            timestamp=self._clock(),
            metadata=dict(metadata or {}),
            associations=list(associations or []),
            source=source,
        )
        self._check(await self._records.put(entry.to_dict()), "add")
        logger.debug(f"Stored {kind.value} memory {entry.id}")
        return entry

    async def get(self, entry_id: str) -> Optional[MemoryEntry]:
        record = self._check(await self._records.get(entry_id), "get")
        return MemoryEntry.from_dict(record) if record is not None else None

    async def get_many(self, entry_ids: Sequence[str]) -> list[MemoryEntry]:
        """Resolve ids in order, silently skipping missing ones."""
        entries = []
        for entry_id in entry_ids:
            entry = await self.get(entry_id)
            if entry is not None:
                entries.append(entry)
        return entries

    async def search(self, query: MemoryQuery) -> list[MemoryEntry]:
        start = query.time_range.start if query.time_range else None
        end = query.time_range.end if query.time_range else None
        records = self._check(
            await self._records.scan(
                kind=query.kind.value if query.kind else None,
                start=start,
                end=end,
            ),
            "search",
        )

        candidates = [
            MemoryEntry.from_dict(record) for record in records
            if _metadata_matches(record.get("metadata") or {}, query.metadata)
        ]

        if query.text:
            results = await self._rank(candidates, query.text, query.min_relevance)
        else:
            results = sorted(candidates, key=lambda e: e.timestamp, reverse=True)

        if query.limit is not None:
            results = results[:max(query.limit, 0)]
        return results

    async def update(self, entry_id: str, patch: MemoryPatch) -> MemoryEntry:
        """
        Apply a partial update, re-embedding when the content changes.

        Raises:
            NotFoundError: Unknown id
            ValidationError: Empty replacement content
        """
        record = self._check(await self._records.get(entry_id), "update")
        if record is None:
            raise NotFoundError.memory_entry(entry_id)
        entry = MemoryEntry.from_dict(record)

        if patch.content is not None and patch.content != entry.content:
            _require_text(patch.content)
            entry.embedding = await self._embedding_for(patch.content, None)
            entry.content = patch.content
        if patch.kind is not None:
            entry.kind = patch.kind
        if patch.metadata is not None:
            entry.metadata = dict(patch.metadata)
        if patch.associations is not None:
            entry.associations = list(patch.associations)
        if patch.source is not None:
            entry.source = patch.source

        self._check(await self._records.put(entry.to_dict()), "update")
        return entry

    async def delete(self, entry_id: str) -> bool:
        """Remove an entry. Returns False if it did not exist."""
        return self._check(await self._records.delete(entry_id), "delete")

    async def clear(self) -> int:
        removed = self._check(await self._records.clear(), "clear")
        logger.info(f"Cleared {removed} memory entries")
        return removed

    async def count(self) -> int:
        return len(self._check(await self._records.scan(), "count"))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    async def _embedding_for(
        self,
        content: str,
        embedding: Optional[Sequence[float]],
    ) -> list[float]:
        vector = list(embedding) if embedding is not None else await self._embedder.embed(content)
        if len(vector) != self.dimension:
            raise ValidationError.dimension_mismatch(self.dimension, len(vector))
        return [float(x) for x in vector]

    async def _rank(
        self,
        candidates: list[MemoryEntry],
        text: str,
        min_relevance: Optional[float],
    ) -> list[MemoryEntry]:
        if not candidates:
            return []
        query_vector = await self._embedder.embed(text)
        dim = len(query_vector)

        # Entries of another dimensionality are never mixed in; they score 0.
        comparable = [i for i, e in enumerate(candidates) if e.dimension == dim]
        scores = np.zeros(len(candidates), dtype=np.float64)
        if comparable:
            matrix = np.array([candidates[i].embedding for i in comparable], dtype=np.float64)
            scores[comparable] = cosine_similarity_batch(query_vector, matrix)

        scored = [entry.with_score(float(score)) for entry, score in zip(candidates, scores)]
        if min_relevance is not None:
            scored = [e for e in scored if e.relevance_score >= min_relevance]
        scored.sort(key=lambda e: e.relevance_score, reverse=True)
        return scored

    @staticmethod
    def _check(result: Result[Any, str], operation: str) -> Any:
        if result.is_err():
            raise StorageError.operation_failed(operation, result.error)
        return result.value


def _require_text(content: Any) -> None:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError.invalid_content("memory content must be non-empty text")


def _metadata_matches(metadata: dict[str, Any], wanted: Optional[dict[str, Any]]) -> bool:
    if not wanted:
        return True
    return all(key in metadata and metadata[key] == value for key, value in wanted.items())
