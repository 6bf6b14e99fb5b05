"""
Error Hierarchy for the Memory-Augmented Backend Mesh

Every failure raised by the library is a MemoryMeshError carrying:
- Unique error code for programmatic handling
- Kind tag (validation, transient, configuration, not-found, exhausted,
  storage) that drives retry and fallback decisions
- Human-readable message for logging
- Optional cause for root cause analysis
- Timestamp for correlation with request logs

Retry and fallback logic branch on ``error.kind`` only. Message text is
for humans and is never parsed.

Usage:
    try:
        reply = await client.chat(messages)
    except MemoryMeshError as e:
        if e.kind is ErrorKind.VALIDATION:
            reject_input(e)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from memorymesh.core.types import Timestamp


# =============================================================================
# ERROR KIND TAGS
# =============================================================================
class ErrorKind(Enum):
    """Classification consumed by the retry and fallback layers."""

    VALIDATION = "validation"
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    NOT_FOUND = "not_found"
    EXHAUSTED = "exhausted"
    STORAGE = "storage"

    @property
    def is_retryable(self) -> bool:
        """Only transient failures are worth another attempt."""
        return self in (ErrorKind.TRANSIENT, ErrorKind.STORAGE)


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Validation errors
    - 2xxx: Backend (transient) errors
    - 3xxx: Configuration errors
    - 4xxx: Memory lookup errors
    - 5xxx: Storage errors
    - 6xxx: Reliability errors
    """

    # Validation errors (1xxx)
    VALIDATION_UNSUPPORTED_ROLE = 1001
    VALIDATION_INVALID_CONTENT = 1002
    VALIDATION_MISSING_FIELD = 1003
    VALIDATION_REQUEST_TOO_LARGE = 1004
    VALIDATION_DIMENSION_MISMATCH = 1005

    # Backend errors (2xxx)
    BACKEND_NETWORK = 2001
    BACKEND_TIMEOUT = 2002
    BACKEND_HTTP_STATUS = 2003
    BACKEND_MALFORMED_RESPONSE = 2004
    BACKEND_UNAVAILABLE = 2005

    # Configuration errors (3xxx)
    CONFIG_MISSING_CREDENTIAL = 3001
    CONFIG_MISSING_MODEL = 3002
    CONFIG_INVALID_FALLBACK = 3003
    CONFIG_UNSUPPORTED_BACKEND = 3004
    CONFIG_UNSUPPORTED_OPERATION = 3005
    CONFIG_INVALID_VALUE = 3006

    # Memory errors (4xxx)
    MEMORY_ENTRY_NOT_FOUND = 4001

    # Storage errors (5xxx)
    STORAGE_UNAVAILABLE = 5001
    STORAGE_OPERATION_FAILED = 5002

    # Reliability errors (6xxx)
    RELIABILITY_RETRY_EXHAUSTED = 6001
    RELIABILITY_FALLBACK_EXHAUSTED = 6002

    @property
    def kind(self) -> ErrorKind:
        return _KIND_BY_GROUP[self.value // 1000]


_KIND_BY_GROUP: dict[int, ErrorKind] = {
    1: ErrorKind.VALIDATION,
    2: ErrorKind.TRANSIENT,
    3: ErrorKind.CONFIGURATION,
    4: ErrorKind.NOT_FOUND,
    5: ErrorKind.STORAGE,
    6: ErrorKind.EXHAUSTED,
}


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass(eq=False)
class MemoryMeshError(Exception):
    """
    Base class for all library errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Error code and kind for programmatic handling
    - Timestamp for correlation
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def kind(self) -> ErrorKind:
        return self.code.kind

    @property
    def retryable(self) -> bool:
        return self.kind.is_retryable

    def with_context(self, **kwargs: Any) -> MemoryMeshError:
        """Add context to error (returns new instance of the same class)."""
        return dataclasses.replace(self, context={**self.context, **kwargs})

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for structured logs."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "kind": self.kind.value,
            "message": self.message,
            "timestamp_ms": self.timestamp.millis,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


def describe(error: BaseException) -> str:
    """Plain message of any error, without the code/id decoration."""
    if isinstance(error, MemoryMeshError):
        return error.message
    return str(error) or error.__class__.__name__


def kind_of(error: BaseException) -> Optional[ErrorKind]:
    """Kind tag of a library error, None for foreign exceptions."""
    if isinstance(error, MemoryMeshError):
        return error.kind
    return None


# =============================================================================
# VALIDATION ERRORS
# =============================================================================
@dataclass(eq=False)
class ValidationError(MemoryMeshError):
    """
    Malformed input: never retried, never routed to a fallback.
    """

    @classmethod
    def unsupported_role(cls, role: Any) -> ValidationError:
        """Message role outside system/user/assistant."""
        return cls(
            code=ErrorCode.VALIDATION_UNSUPPORTED_ROLE,
            message=f"Unsupported message role: {role}",
            context={"role": str(role)},
        )

    @classmethod
    def invalid_content(cls, reason: str, index: Optional[int] = None) -> ValidationError:
        """Message or entry content is empty or not text."""
        return cls(
            code=ErrorCode.VALIDATION_INVALID_CONTENT,
            message=f"Invalid content: {reason}",
            context={"reason": reason, "index": index},
        )

    @classmethod
    def missing_field(cls, name: str, owner: str) -> ValidationError:
        """Required field absent."""
        return cls(
            code=ErrorCode.VALIDATION_MISSING_FIELD,
            message=f"Missing required field '{name}' on {owner}",
            context={"field": name, "owner": owner},
        )

    @classmethod
    def request_too_large(cls, tokens: int, ceiling: int) -> ValidationError:
        """Single request can never fit the token window."""
        return cls(
            code=ErrorCode.VALIDATION_REQUEST_TOO_LARGE,
            message=f"Request of ~{tokens} tokens exceeds the per-minute ceiling of {ceiling}",
            context={"tokens": tokens, "ceiling": ceiling},
        )

    @classmethod
    def dimension_mismatch(cls, expected: int, actual: int) -> ValidationError:
        """Embedding dimensionality differs from the store's."""
        return cls(
            code=ErrorCode.VALIDATION_DIMENSION_MISMATCH,
            message=f"Embedding dimension mismatch: expected {expected}, got {actual}",
            context={"expected": expected, "actual": actual},
        )


# =============================================================================
# BACKEND ERRORS (TRANSIENT)
# =============================================================================
@dataclass(eq=False)
class BackendError(MemoryMeshError):
    """
    Network, timeout, status and payload failures from a backend.

    Retryable; exhausting retries makes the request eligible for fallback.
    """

    @classmethod
    def network(cls, backend: str, cause: Optional[BaseException] = None) -> BackendError:
        return cls(
            code=ErrorCode.BACKEND_NETWORK,
            message=f"Network connection to {backend} failed",
            cause=cause,
            context={"backend": backend},
        )

    @classmethod
    def timeout(cls, backend: str, operation: str, timeout_s: float) -> BackendError:
        """Remote call aborted after its deadline."""
        return cls(
            code=ErrorCode.BACKEND_TIMEOUT,
            message=f"{backend} {operation} timed out after {timeout_s:g}s",
            context={"backend": backend, "operation": operation, "timeout_s": timeout_s},
        )

    @classmethod
    def http_status(cls, backend: str, status: int, detail: str = "") -> BackendError:
        message = f"{backend} returned HTTP {status}"
        if detail:
            message = f"{message}: {detail[:200]}"
        return cls(
            code=ErrorCode.BACKEND_HTTP_STATUS,
            message=message,
            context={"backend": backend, "status": status},
        )

    @classmethod
    def malformed_response(cls, backend: str, reason: str) -> BackendError:
        """Backend answered with an unusable payload."""
        return cls(
            code=ErrorCode.BACKEND_MALFORMED_RESPONSE,
            message=f"Invalid response from {backend}: {reason}",
            context={"backend": backend, "reason": reason},
        )

    @classmethod
    def unavailable(cls, backend: str, reason: str) -> BackendError:
        return cls(
            code=ErrorCode.BACKEND_UNAVAILABLE,
            message=f"{backend} unavailable: {reason}",
            context={"backend": backend, "reason": reason},
        )


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================
@dataclass(eq=False)
class ConfigurationError(MemoryMeshError):
    """
    Invalid or incomplete backend configuration. Never retried.
    """

    @classmethod
    def missing_credential(cls, backend: str, role: str = "primary") -> ConfigurationError:
        return cls(
            code=ErrorCode.CONFIG_MISSING_CREDENTIAL,
            message=f"API key is required for {role} backend '{backend}'",
            context={"backend": backend, "role": role},
        )

    @classmethod
    def missing_model(cls, backend: str, role: str = "primary") -> ConfigurationError:
        return cls(
            code=ErrorCode.CONFIG_MISSING_MODEL,
            message=f"Model name is required for {role} backend '{backend}'",
            context={"backend": backend, "role": role},
        )

    @classmethod
    def invalid_fallback(cls, reason: str) -> ConfigurationError:
        return cls(
            code=ErrorCode.CONFIG_INVALID_FALLBACK,
            message=f"Invalid fallback configuration: {reason}",
            context={"reason": reason},
        )

    @classmethod
    def unsupported_backend(cls, kind: Any) -> ConfigurationError:
        return cls(
            code=ErrorCode.CONFIG_UNSUPPORTED_BACKEND,
            message=f"Unsupported backend kind: {kind}",
            context={"kind": str(kind)},
        )

    @classmethod
    def unsupported_operation(cls, backend: str, operation: str) -> ConfigurationError:
        """Backend does not offer the requested capability."""
        return cls(
            code=ErrorCode.CONFIG_UNSUPPORTED_OPERATION,
            message=f"{backend} does not support {operation}",
            context={"backend": backend, "operation": operation},
        )

    @classmethod
    def invalid_value(cls, reason: str) -> ConfigurationError:
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid configuration: {reason}",
            context={"reason": reason},
        )


# =============================================================================
# MEMORY LOOKUP ERRORS
# =============================================================================
@dataclass(eq=False)
class NotFoundError(MemoryMeshError):
    """Referenced memory entry does not exist."""

    @classmethod
    def memory_entry(cls, entry_id: str) -> NotFoundError:
        return cls(
            code=ErrorCode.MEMORY_ENTRY_NOT_FOUND,
            message=f"Memory entry '{entry_id}' not found",
            context={"entry_id": entry_id},
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================
@dataclass(eq=False)
class StorageError(MemoryMeshError):
    """Persistence backend failures surfaced by the memory store."""

    @classmethod
    def unavailable(cls, backend: str, cause: Optional[BaseException] = None) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_UNAVAILABLE,
            message=f"Storage backend '{backend}' is unavailable",
            cause=cause,
            context={"backend": backend},
        )

    @classmethod
    def operation_failed(cls, operation: str, reason: str) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_OPERATION_FAILED,
            message=f"Storage operation '{operation}' failed: {reason}",
            context={"operation": operation, "reason": reason},
        )


# =============================================================================
# RELIABILITY ERRORS
# =============================================================================
@dataclass(eq=False)
class ReliabilityError(MemoryMeshError):
    """Retry budget spent without a successful attempt."""

    @classmethod
    def retry_exhausted(
        cls,
        operation: str,
        attempts: int,
        last_error: BaseException,
    ) -> ReliabilityError:
        """All retry attempts exhausted."""
        return cls(
            code=ErrorCode.RELIABILITY_RETRY_EXHAUSTED,
            message=f"{operation} failed after {attempts} attempts: {describe(last_error)}",
            cause=last_error,
            context={"operation": operation, "attempts": attempts},
        )


@dataclass(eq=False)
class ExhaustionError(MemoryMeshError):
    """Primary and fallback backends both failed."""

    @classmethod
    def both_failed(
        cls,
        operation: str,
        primary_error: BaseException,
        fallback_error: BaseException,
    ) -> ExhaustionError:
        return cls(
            code=ErrorCode.RELIABILITY_FALLBACK_EXHAUSTED,
            message=(
                f"Both primary and fallback {operation} failed. "
                f"Primary: {describe(primary_error)}. "
                f"Fallback: {describe(fallback_error)}"
            ),
            cause=fallback_error,
            context={
                "operation": operation,
                "primary_error": describe(primary_error),
                "fallback_error": describe(fallback_error),
            },
        )
