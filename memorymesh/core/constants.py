"""
System-Wide Constants for the Memory-Augmented Backend Mesh

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000
MINUTE_MS: Final[int] = 60 * SECOND_MS
RATE_WINDOW_S: Final[float] = 60.0

# =============================================================================
# RATE LIMITING
# =============================================================================
DEFAULT_REQUESTS_PER_MINUTE: Final[int] = 60
DEFAULT_TOKENS_PER_MINUTE: Final[int] = 90_000
CHARS_PER_TOKEN: Final[int] = 4

# =============================================================================
# RETRY
# =============================================================================
RETRY_MAX_ATTEMPTS: Final[int] = 3
RETRY_BASE_DELAY_MS: Final[int] = 1000
RETRY_MAX_DELAY_MS: Final[int] = 30 * SECOND_MS
RETRY_EXPONENTIAL_BASE: Final[float] = 2.0

# =============================================================================
# BACKEND DEFAULTS
# =============================================================================
DEFAULT_TEMPERATURE: Final[float] = 0.7
DEFAULT_MAX_TOKENS: Final[int] = 1000
DEFAULT_REQUEST_TIMEOUT_S: Final[float] = 30.0
OPENAI_EMBEDDING_MODEL: Final[str] = "text-embedding-3-small"
OLLAMA_BASE_URL: Final[str] = "http://localhost:11434"
ANTHROPIC_BASE_URL: Final[str] = "https://api.anthropic.com"
ANTHROPIC_API_VERSION: Final[str] = "2023-06-01"
LIMITED_MODE_REPLY: Final[str] = (
    "Ollama service is currently unavailable. Application is running in limited mode."
)

# =============================================================================
# MEMORY
# =============================================================================
EMBEDDING_DIMS: Final[int] = 768
CONTEXT_WINDOW_MESSAGES: Final[int] = 3
RETRIEVAL_LIMIT: Final[int] = 5
MIN_RELEVANCE: Final[float] = 0.0
FLUSH_THRESHOLD_MESSAGES: Final[int] = 10
SUMMARY_MAX_CHARS: Final[int] = 500
REDIS_KEY_PREFIX: Final[str] = "memorymesh"

CONTEXT_PREAMBLE: Final[str] = "Previous context:"
CONTEXT_POSTAMBLE: Final[str] = "Use this context to inform your responses when relevant."

# =============================================================================
# PERFORMANCE MONITORING
# =============================================================================
PERF_HISTORY_SIZE: Final[int] = 100
PERF_TREND_WINDOW: Final[int] = 5
PERF_SLOW_THRESHOLD_MS: Final[float] = 5 * SECOND_MS
