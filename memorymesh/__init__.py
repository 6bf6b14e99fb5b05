"""
Memory-Augmented Language-Model Backend Mesh

A client library that routes conversational requests to language-model
backends and enriches them with associative memory:
- Backend adapters: OpenAI, Anthropic, Ollama behind one contract
- Reliability: sliding-window rate limits, bounded retries, fallback backend
- Pipeline: per-backend request serialization and lifecycle tracking
- Memory: embedding-indexed store, association graph, context retrieval,
  conversation compaction

Usage:
    client = await create_client(MemoryMeshConfig.from_env().unwrap())
    reply = await client.chat([Message.user("Hello")])
    await client.cleanup()
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from memorymesh.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    Message,
    MessageRole,
)
from memorymesh.core.errors import (
    ErrorCode,
    ErrorKind,
    MemoryMeshError,
    ValidationError,
    BackendError,
    ConfigurationError,
    NotFoundError,
    StorageError,
    ReliabilityError,
    ExhaustionError,
)
from memorymesh.core.config import (
    BackendKind,
    BackendConfig,
    MemoryConfig,
    MemoryMeshConfig,
    ObservabilityConfig,
    RateLimitConfig,
    RetryConfig,
)

# Memory exports
from memorymesh.memory import (
    MemoryEntry,
    MemoryKind,
    MemoryPatch,
    MemoryQuery,
    TimeRange,
    MemoryStore,
    AssociationGraph,
    KnowledgeBase,
)

# Client
from memorymesh.facade import (
    BackendChannel,
    MemoryAugmentedClient,
    create_client,
)

__all__ = [
    # Version
    "__version__",
    # Result monad
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    # Messages
    "Message",
    "MessageRole",
    # Errors
    "ErrorCode",
    "ErrorKind",
    "MemoryMeshError",
    "ValidationError",
    "BackendError",
    "ConfigurationError",
    "NotFoundError",
    "StorageError",
    "ReliabilityError",
    "ExhaustionError",
    # Config
    "BackendKind",
    "BackendConfig",
    "MemoryConfig",
    "MemoryMeshConfig",
    "ObservabilityConfig",
    "RateLimitConfig",
    "RetryConfig",
    # Memory
    "MemoryEntry",
    "MemoryKind",
    "MemoryPatch",
    "MemoryQuery",
    "TimeRange",
    "MemoryStore",
    "AssociationGraph",
    "KnowledgeBase",
    # Client
    "BackendChannel",
    "MemoryAugmentedClient",
    "create_client",
]
