"""
Core Type Definitions for the Memory-Augmented Backend Mesh

Implements the Result/Either monad used by the persistence layer and the
value types shared by every subsystem: timestamps, message roles and the
immutable conversation message.

Design Principles:
- Never use null for absence (use Optional or Result)
- Messages are immutable once created
- Timestamps are epoch-based and comparable
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    TypeVar,
    Union,
)

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries the error value unchanged through monadic chains.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP
# =============================================================================
NANOS_PER_SECOND = 1_000_000_000
NANOS_PER_MILLI = 1_000_000


@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    High-precision timestamp for event ordering.

    Stores nanoseconds since Unix epoch. Memory entries persist the
    millisecond projection (``millis``).
    """

    nanos: int

    @classmethod
    def now(cls) -> Timestamp:
        """Capture current wall-clock time."""
        return cls(nanos=time.time_ns())

    @classmethod
    def from_millis(cls, millis: int) -> Timestamp:
        """Convert epoch milliseconds to Timestamp."""
        return cls(nanos=int(millis) * NANOS_PER_MILLI)

    @property
    def millis(self) -> int:
        """Epoch milliseconds (truncating)."""
        return self.nanos // NANOS_PER_MILLI

    @property
    def seconds(self) -> float:
        return self.nanos / NANOS_PER_SECOND

    def elapsed_millis(self) -> float:
        """Milliseconds elapsed since this timestamp."""
        return (time.time_ns() - self.nanos) / NANOS_PER_MILLI

    def __repr__(self) -> str:
        return f"Timestamp({self.nanos}ns)"


# =============================================================================
# CONVERSATION MESSAGES
# =============================================================================
class MessageRole(Enum):
    """
    Conversation roles understood by every backend.

    Anything outside this set is rejected before reaching a backend.
    """

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: Any) -> MessageRole:
        """
        Resolve a role from an enum member or its string value.

        Raises:
            ValueError: If the value names no supported role
        """
        if isinstance(value, cls):
            return value
        return cls(value)


@dataclass(frozen=True, slots=True)
class Message:
    """
    Immutable conversation message.

    ``degraded`` marks a deliberately low-confidence reply produced when a
    backend runs in limited mode; it is never set on a normal completion.
    """

    role: MessageRole
    content: str
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    degraded: bool = False

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        return cls(role=MessageRole.ASSISTANT, content=content)

    @property
    def role_name(self) -> str:
        """Role as plain text, tolerant of unvalidated input."""
        if isinstance(self.role, MessageRole):
            return self.role.value
        return str(self.role)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for persistence and logging."""
        return {
            "role": self.role_name,
            "content": self.content,
            "timestamp": self.timestamp.millis,
        }

    def render(self) -> str:
        """Render as a ``role: content`` line."""
        return f"{self.role_name}: {self.content}"
