"""
Chat Request Lifecycle: State Machine per Request

States:
    RECEIVED           → Request accepted by the client
    CONTEXT_RETRIEVED  → Memory context assembled (or skipped)
    DISPATCHED         → Handed to the backend queue
    BACKEND_ATTEMPTED  → A primary backend attempt is in flight
    RETRYING           → Waiting out backoff before another attempt
    FALLBACK_ATTEMPTED → Primary exhausted, fallback backend in use
    SUCCEEDED          → A backend produced a valid reply
    FAILED             → Terminal failure, error surfaced to caller
    COMPACTED          → Conversation buffer flushed to memory
    RETURNED           → Reply handed back to the caller

Transitions:
    RECEIVED           → CONTEXT_RETRIEVED | DISPATCHED | FAILED
    CONTEXT_RETRIEVED  → DISPATCHED
    DISPATCHED         → BACKEND_ATTEMPTED | FAILED
    BACKEND_ATTEMPTED  → SUCCEEDED | RETRYING | FALLBACK_ATTEMPTED | FAILED
    RETRYING           → BACKEND_ATTEMPTED
    FALLBACK_ATTEMPTED → FALLBACK_ATTEMPTED | SUCCEEDED | FAILED
    SUCCEEDED          → COMPACTED | RETURNED
    COMPACTED          → RETURNED
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional
from uuid import uuid4

from memorymesh.core.types import Result, Ok, Err, Timestamp

logger = logging.getLogger(__name__)


# =============================================================================
# REQUEST STATE ENUMERATION
# =============================================================================
class RequestState(Enum):
    """Chat request lifecycle states."""
    RECEIVED = auto()
    CONTEXT_RETRIEVED = auto()
    DISPATCHED = auto()
    BACKEND_ATTEMPTED = auto()
    RETRYING = auto()
    FALLBACK_ATTEMPTED = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    COMPACTED = auto()
    RETURNED = auto()

    @property
    def is_terminal(self) -> bool:
        """No transition leaves these states."""
        return self in (RequestState.FAILED, RequestState.RETURNED)

    @property
    def is_outcome(self) -> bool:
        """Backend phase finished, successfully or not."""
        return self in (RequestState.SUCCEEDED, RequestState.FAILED)


# =============================================================================
# TRANSITION DEFINITIONS
# =============================================================================
@dataclass(frozen=True, slots=True)
class RequestTransition:
    from_state: RequestState
    to_state: RequestState


_S = RequestState

VALID_TRANSITIONS: frozenset[RequestTransition] = frozenset({
    RequestTransition(_S.RECEIVED, _S.CONTEXT_RETRIEVED),
    RequestTransition(_S.RECEIVED, _S.DISPATCHED),
    RequestTransition(_S.RECEIVED, _S.FAILED),
    RequestTransition(_S.CONTEXT_RETRIEVED, _S.DISPATCHED),
    RequestTransition(_S.DISPATCHED, _S.BACKEND_ATTEMPTED),
    RequestTransition(_S.DISPATCHED, _S.FAILED),
    RequestTransition(_S.BACKEND_ATTEMPTED, _S.SUCCEEDED),
    RequestTransition(_S.BACKEND_ATTEMPTED, _S.RETRYING),
    RequestTransition(_S.BACKEND_ATTEMPTED, _S.FALLBACK_ATTEMPTED),
    RequestTransition(_S.BACKEND_ATTEMPTED, _S.FAILED),
    RequestTransition(_S.RETRYING, _S.BACKEND_ATTEMPTED),
    RequestTransition(_S.FALLBACK_ATTEMPTED, _S.FALLBACK_ATTEMPTED),
    RequestTransition(_S.FALLBACK_ATTEMPTED, _S.SUCCEEDED),
    RequestTransition(_S.FALLBACK_ATTEMPTED, _S.FAILED),
    RequestTransition(_S.SUCCEEDED, _S.COMPACTED),
    RequestTransition(_S.SUCCEEDED, _S.RETURNED),
    RequestTransition(_S.COMPACTED, _S.RETURNED),
})


def is_valid_transition(from_state: RequestState, to_state: RequestState) -> bool:
    return RequestTransition(from_state, to_state) in VALID_TRANSITIONS


@dataclass(frozen=True, slots=True)
class StateChange:
    state: RequestState
    at: Timestamp
    note: Optional[str] = None


# =============================================================================
# TRACKER
# =============================================================================
@dataclass
class ChatRequestTracker:
    """
    Records the path one chat request takes through the pipeline.

    Invalid transitions are refused (Err) and leave the state unchanged.
    """

    request_id: str = field(default_factory=lambda: uuid4().hex[:12])
    state: RequestState = RequestState.RECEIVED
    history: list[StateChange] = field(default_factory=list)
    attempts: int = 0
    used_fallback: bool = False

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(StateChange(self.state, Timestamp.now()))

    def advance(self, to_state: RequestState, note: Optional[str] = None) -> Result[RequestState, str]:
        if self.state.is_terminal:
            return Err(f"Request {self.request_id} already {self.state.name}")
        if not is_valid_transition(self.state, to_state):
            message = f"Invalid transition {self.state.name} -> {to_state.name}"
            logger.warning(message, extra={"request_id": self.request_id})
            return Err(message)

        if to_state in (RequestState.BACKEND_ATTEMPTED, RequestState.FALLBACK_ATTEMPTED):
            self.attempts += 1
        if to_state is RequestState.FALLBACK_ATTEMPTED:
            self.used_fallback = True

        logger.debug(
            f"Request {self.request_id}: {self.state.name} -> {to_state.name}",
            extra={"request_id": self.request_id, "note": note},
        )
        self.state = to_state
        self.history.append(StateChange(to_state, Timestamp.now(), note))
        return Ok(to_state)

    def fail(self, note: Optional[str] = None) -> Result[RequestState, str]:
        """Move to FAILED from wherever the request currently is."""
        return self.advance(RequestState.FAILED, note)

    @property
    def path(self) -> list[RequestState]:
        return [change.state for change in self.history]
