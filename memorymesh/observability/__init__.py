"""
Observability: structured logging and in-process metrics.
"""

from memorymesh.observability.logging import (
    LogLevel,
    JsonFormatter,
    StructuredLogger,
    log_context,
    current_context,
    setup_logging,
)
from memorymesh.observability.metrics import (
    Counter,
    Histogram,
    MetricsCollector,
    PerformanceMonitor,
)

__all__ = [
    "LogLevel",
    "JsonFormatter",
    "StructuredLogger",
    "log_context",
    "current_context",
    "setup_logging",
    "Counter",
    "Histogram",
    "MetricsCollector",
    "PerformanceMonitor",
]
