"""
Configuration Management for the Memory-Augmented Backend Mesh

Provides validated configuration with sensible defaults.
Supports environment variable overrides.

Design:
- Immutable after construction (frozen dataclasses)
- Fail-fast on invalid backend configuration
- Core components only read configuration, never mutate it
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from memorymesh.core.types import Result, Ok, Err
from memorymesh.core.errors import ConfigurationError
from memorymesh.core import constants as C


class BackendKind(Enum):
    """Language-model backends the mesh can talk to."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"

    @property
    def requires_api_key(self) -> bool:
        """Locally hosted backends run without credentials."""
        return self is not BackendKind.OLLAMA

    @classmethod
    def parse(cls, value: Any) -> BackendKind:
        """
        Resolve a backend kind from an enum member or its name.

        Raises:
            ConfigurationError: If the kind is unknown
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError.unsupported_backend(value) from None


class BackoffStrategy(Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-backend sliding one-minute budgets."""

    requests_per_minute: int = C.DEFAULT_REQUESTS_PER_MINUTE
    tokens_per_minute: int = C.DEFAULT_TOKENS_PER_MINUTE

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: If either ceiling admits nothing
        """
        if self.requests_per_minute < 1:
            raise ConfigurationError.invalid_value(
                f"requests_per_minute must be >= 1, got {self.requests_per_minute}"
            )
        if self.tokens_per_minute < 1:
            raise ConfigurationError.invalid_value(
                f"tokens_per_minute must be >= 1, got {self.tokens_per_minute}"
            )


@dataclass(frozen=True)
class RetryConfig:
    """Bounded re-attempt policy."""

    max_attempts: int = C.RETRY_MAX_ATTEMPTS
    base_delay_ms: int = C.RETRY_BASE_DELAY_MS
    max_delay_ms: int = C.RETRY_MAX_DELAY_MS
    backoff: BackoffStrategy = BackoffStrategy.LINEAR


@dataclass(frozen=True)
class BackendConfig:
    """
    Configuration of one backend identity.

    ``name`` overrides the identity used to key rate limits and the request
    queue; by default the backend kind is the identity.
    """

    kind: BackendKind
    model: str = ""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = C.DEFAULT_TEMPERATURE
    max_tokens: int = C.DEFAULT_MAX_TOKENS
    timeout_s: float = C.DEFAULT_REQUEST_TIMEOUT_S
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    fallback: Optional[BackendConfig] = None
    limited_mode: bool = False
    name: Optional[str] = None

    @property
    def identity(self) -> str:
        return self.name or self.kind.value

    @property
    def has_credentials(self) -> bool:
        """True when the backend can be called with what is configured."""
        return not self.kind.requires_api_key or bool(self.api_key)

    def validate(self, role: str = "primary") -> None:
        """
        Check the fields the core consumes.

        Raises:
            ConfigurationError: On the first violated requirement
        """
        if not self.model:
            raise ConfigurationError.missing_model(self.kind.value, role)
        if not self.has_credentials:
            raise ConfigurationError.missing_credential(self.kind.value, role)
        self.rate_limit.validate()

        if self.fallback is None:
            return
        if role != "primary":
            raise ConfigurationError.invalid_fallback("fallback backends cannot chain")
        if not isinstance(self.fallback.kind, BackendKind):
            raise ConfigurationError.invalid_fallback(
                f"unknown fallback backend {self.fallback.kind!r}"
            )
        if not self.fallback.model:
            raise ConfigurationError.invalid_fallback("fallback model is required")
        self.fallback.validate(role="fallback")


@dataclass(frozen=True)
class MemoryConfig:
    """Associative memory configuration."""

    enabled: bool = True
    backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = C.REDIS_KEY_PREFIX
    embedding_dimension: int = C.EMBEDDING_DIMS
    context_window: int = C.CONTEXT_WINDOW_MESSAGES
    retrieval_limit: int = C.RETRIEVAL_LIMIT
    min_relevance: float = C.MIN_RELEVANCE
    flush_threshold: int = C.FLUSH_THRESHOLD_MESSAGES


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    log_json: bool = True


@dataclass(frozen=True)
class MemoryMeshConfig:
    """Root configuration."""

    backend: BackendConfig
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Result[MemoryMeshConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with MEMORYMESH_.
        Example: MEMORYMESH_BACKEND=openai, MEMORYMESH_FALLBACK_BACKEND=ollama
        """
        env = os.environ if environ is None else environ
        try:
            rate_limit = RateLimitConfig(
                requests_per_minute=int(env.get(
                    "MEMORYMESH_RPM", C.DEFAULT_REQUESTS_PER_MINUTE)),
                tokens_per_minute=int(env.get(
                    "MEMORYMESH_TPM", C.DEFAULT_TOKENS_PER_MINUTE)),
            )
            retry = RetryConfig(
                max_attempts=int(env.get(
                    "MEMORYMESH_RETRY_MAX_ATTEMPTS", C.RETRY_MAX_ATTEMPTS)),
                base_delay_ms=int(env.get(
                    "MEMORYMESH_RETRY_BASE_MS", C.RETRY_BASE_DELAY_MS)),
                backoff=BackoffStrategy(env.get("MEMORYMESH_RETRY_BACKOFF", "linear")),
            )
            timeout_s = float(env.get("MEMORYMESH_TIMEOUT_S", C.DEFAULT_REQUEST_TIMEOUT_S))

            fallback = None
            if env.get("MEMORYMESH_FALLBACK_BACKEND"):
                fallback = BackendConfig(
                    kind=BackendKind.parse(env["MEMORYMESH_FALLBACK_BACKEND"]),
                    model=env.get("MEMORYMESH_FALLBACK_MODEL", ""),
                    api_key=env.get("MEMORYMESH_FALLBACK_API_KEY") or None,
                    base_url=env.get("MEMORYMESH_FALLBACK_BASE_URL") or None,
                    timeout_s=timeout_s,
                    rate_limit=rate_limit,
                    retry=retry,
                )

            backend = BackendConfig(
                kind=BackendKind.parse(env.get("MEMORYMESH_BACKEND", "openai")),
                model=env.get("MEMORYMESH_MODEL", ""),
                api_key=env.get("MEMORYMESH_API_KEY") or None,
                base_url=env.get("MEMORYMESH_BASE_URL") or None,
                timeout_s=timeout_s,
                rate_limit=rate_limit,
                retry=retry,
                fallback=fallback,
                limited_mode=env.get("MEMORYMESH_LIMITED_MODE", "false").lower() == "true",
            )

            memory = MemoryConfig(
                enabled=env.get("MEMORYMESH_MEMORY_ENABLED", "true").lower() == "true",
                backend=env.get("MEMORYMESH_MEMORY_BACKEND", "memory"),
                redis_url=env.get("MEMORYMESH_REDIS_URL", "redis://localhost:6379/0"),
                embedding_dimension=int(env.get(
                    "MEMORYMESH_EMBEDDING_DIMS", C.EMBEDDING_DIMS)),
            )

            observability = ObservabilityConfig(
                log_level=env.get("MEMORYMESH_LOG_LEVEL", "INFO"),
                log_json=env.get("MEMORYMESH_LOG_JSON", "true").lower() == "true",
            )

            return Ok(cls(backend=backend, memory=memory, observability=observability))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")
        except ConfigurationError as e:
            return Err(f"Configuration error: {e.message}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        try:
            self.backend.validate()
        except ConfigurationError as e:
            return Err(e.message)
        if self.memory.backend not in ("memory", "redis"):
            return Err(f"Unknown memory backend '{self.memory.backend}'")
        if self.memory.embedding_dimension < 1:
            return Err("Embedding dimension must be >= 1")
        if self.memory.flush_threshold < 1:
            return Err("Flush threshold must be >= 1")
        if self.memory.context_window < 1:
            return Err("Context window must be >= 1")
        if self.backend.retry.max_attempts < 1:
            return Err("Retry max_attempts must be >= 1")
        return Ok(None)
