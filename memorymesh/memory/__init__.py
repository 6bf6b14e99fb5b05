"""
Memory: embedding-indexed associative storage.

Components:
- MemoryStore: add / search / update / delete / clear
- AssociationGraph: directed links between entries
- RelevanceRetriever: context assembly for outgoing requests
- ConversationCompactor: buffered conversation persistence
- KnowledgeBase: topic-tagged knowledge helpers
"""

from memorymesh.memory.models import (
    Association,
    MemoryEntry,
    MemoryKind,
    MemoryPatch,
    MemoryQuery,
    TimeRange,
)
from memorymesh.memory.similarity import cosine_similarity, cosine_similarity_batch
from memorymesh.memory.embeddings import BackendEmbedder, Embedder, HashingEmbedder
from memorymesh.memory.persistence import InMemoryRecordStore, RecordStore, RedisRecordStore
from memorymesh.memory.store import MemoryStore
from memorymesh.memory.graph import AssociationGraph
from memorymesh.memory.retriever import RelevanceRetriever
from memorymesh.memory.compactor import (
    BackendSummarizer,
    ConversationCompactor,
    extractive_summary,
)
from memorymesh.memory.knowledge import KnowledgeBase

__all__ = [
    "Association",
    "MemoryEntry",
    "MemoryKind",
    "MemoryPatch",
    "MemoryQuery",
    "TimeRange",
    "cosine_similarity",
    "cosine_similarity_batch",
    "BackendEmbedder",
    "Embedder",
    "HashingEmbedder",
    "InMemoryRecordStore",
    "RecordStore",
    "RedisRecordStore",
    "MemoryStore",
    "AssociationGraph",
    "RelevanceRetriever",
    "BackendSummarizer",
    "ConversationCompactor",
    "extractive_summary",
    "KnowledgeBase",
]
