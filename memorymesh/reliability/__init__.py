"""
Reliability: rate limiting, retries and fallback routing.
"""

from memorymesh.reliability.rate_limiter import (
    RateLimiter,
    RateLimitUsage,
    SlidingWindow,
    estimate_tokens,
)
from memorymesh.reliability.retry import (
    RetryEngine,
    RetryPolicy,
    RetryStats,
    calculate_backoff,
)
from memorymesh.reliability.fallback import FallbackOrchestrator

__all__ = [
    "RateLimiter",
    "RateLimitUsage",
    "SlidingWindow",
    "estimate_tokens",
    "RetryEngine",
    "RetryPolicy",
    "RetryStats",
    "calculate_backoff",
    "FallbackOrchestrator",
]
