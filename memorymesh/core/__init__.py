"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the mesh:
- Result monad and the immutable conversation Message
- Error hierarchy with kind tags for retry/fallback decisions
- Configuration management with validation
"""

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
    BackoffStrategy,
    BackendConfig,
    RateLimitConfig,
    RetryConfig,
    MemoryConfig,
    ObservabilityConfig,
    MemoryMeshConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "Message",
    "MessageRole",
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
    "BackendKind",
    "BackoffStrategy",
    "BackendConfig",
    "RateLimitConfig",
    "RetryConfig",
    "MemoryConfig",
    "ObservabilityConfig",
    "MemoryMeshConfig",
]
