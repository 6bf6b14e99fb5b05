"""
Memory Data Model

MemoryEntry is the unit of associative memory: text content, its
embedding, free-form metadata and outgoing association ids. Entries are
created by MemoryStore.add, changed only by MemoryStore.update and removed
only by delete/clear.

relevance_score is computed per search and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class MemoryKind(Enum):
    """Classification of stored fragments."""
    CONVERSATION = "conversation"
    SUMMARY = "summary"
    KNOWLEDGE = "knowledge"
    CONTEXT = "context"
    SYSTEM = "system"


# Key under which association edge metadata lives in the owner's metadata.
ASSOCIATION_META_KEY = "association_meta"


@dataclass(slots=True)
class MemoryEntry:
    """
    Stored memory fragment.

    ``timestamp`` is epoch milliseconds. ``embedding`` always has the
    owning store's dimensionality.
    """
    id: str
    kind: MemoryKind
    content: str
    embedding: list[float]
    timestamp: int
    metadata: dict[str, Any] = field(default_factory=dict)
    associations: list[str] = field(default_factory=list)
    source: Optional[str] = None
    relevance_score: Optional[float] = None

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    def with_score(self, score: float) -> MemoryEntry:
        return replace(self, relevance_score=score)

    def to_dict(self) -> dict[str, Any]:
        """Persistable form; omits the derived relevance score."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "content": self.content,
            "embedding": list(self.embedding),
            "timestamp": self.timestamp,
            "metadata": self.metadata,
            "associations": list(self.associations),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryEntry:
        return cls(
            id=data["id"],
            kind=MemoryKind(data["kind"]),
            content=data["content"],
            embedding=[float(x) for x in data.get("embedding") or []],
            timestamp=int(data["timestamp"]),
            metadata=dict(data.get("metadata") or {}),
            associations=list(data.get("associations") or []),
            source=data.get("source"),
        )


@dataclass(frozen=True, slots=True)
class TimeRange:
    """Inclusive epoch-millisecond bounds; either side may be open."""
    start: Optional[int] = None
    end: Optional[int] = None

    def contains(self, timestamp: int) -> bool:
        if self.start is not None and timestamp < self.start:
            return False
        if self.end is not None and timestamp > self.end:
            return False
        return True


@dataclass(frozen=True, slots=True)
class MemoryQuery:
    """
    Search criteria.

    Without ``text`` results are filtered only and come back newest first.
    With ``text`` every surviving candidate is scored by cosine similarity.
    """
    text: Optional[str] = None
    kind: Optional[MemoryKind] = None
    metadata: Optional[dict[str, Any]] = None
    time_range: Optional[TimeRange] = None
    limit: Optional[int] = None
    min_relevance: Optional[float] = None


@dataclass(frozen=True, slots=True)
class MemoryPatch:
    """Partial update; None fields are left unchanged."""
    content: Optional[str] = None
    kind: Optional[MemoryKind] = None
    metadata: Optional[dict[str, Any]] = None
    associations: Optional[list[str]] = None
    source: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Association:
    """Directed edge owned by ``source_id``."""
    source_id: str
    target_id: str
    metadata: dict[str, Any] = field(default_factory=dict)
