"""
Pipeline: per-backend request serialization and request lifecycle tracking.
"""

from memorymesh.pipeline.request_queue import RequestQueue, QueueMetrics
from memorymesh.pipeline.lifecycle import (
    RequestState,
    RequestTransition,
    VALID_TRANSITIONS,
    ChatRequestTracker,
    is_valid_transition,
)

__all__ = [
    "RequestQueue",
    "QueueMetrics",
    "RequestState",
    "RequestTransition",
    "VALID_TRANSITIONS",
    "ChatRequestTracker",
    "is_valid_transition",
]
