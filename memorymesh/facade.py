"""
Memory-Augmented Client: The Single Entry Point

Composes the orchestration chain with associative memory:

    caller
      → validate messages
      → RelevanceRetriever (context message prepended)
      → RequestQueue slot of the primary backend identity
          → FallbackOrchestrator
              → RetryEngine → RateLimiter → primary adapter
              → RetryEngine → RateLimiter → fallback adapter
      → ConversationCompactor (buffer, flush at threshold)
      → reply

Retrieval and compaction run outside the queue slot. The fallback runs
inside the primary's slot; it has its own adapter and, unless it shares
the primary's identity, its own rate limiter.

Each client owns one component set per backend identity; nothing is
shared between clients.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

from memorymesh.backends.base import AdapterRole, BackendAdapter
from memorymesh.backends.registry import create_adapter
from memorymesh.core.config import BackendConfig, MemoryConfig, MemoryMeshConfig
from memorymesh.core.errors import ConfigurationError, describe
from memorymesh.core.types import Message
from memorymesh.core.validation import validate_messages
from memorymesh.memory.compactor import BackendSummarizer, ConversationCompactor
from memorymesh.memory.embeddings import BackendEmbedder, Embedder, HashingEmbedder
from memorymesh.memory.knowledge import KnowledgeBase
from memorymesh.memory.persistence import InMemoryRecordStore, RecordStore, RedisRecordStore
from memorymesh.memory.retriever import RelevanceRetriever
from memorymesh.memory.store import MemoryStore
from memorymesh.observability.logging import LogLevel, log_context, setup_logging
from memorymesh.observability.metrics import MetricsCollector, PerformanceMonitor
from memorymesh.pipeline.lifecycle import ChatRequestTracker, RequestState
from memorymesh.pipeline.request_queue import RequestQueue
from memorymesh.reliability.fallback import FallbackOrchestrator
from memorymesh.reliability.rate_limiter import RateLimiter
from memorymesh.reliability.retry import RetryEngine, RetryPolicy

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[BackendConfig, AdapterRole], BackendAdapter]


@dataclass
class BackendChannel:
    """Component set of one backend: adapter, limiter, retry engine."""
    config: BackendConfig
    adapter: BackendAdapter
    limiter: RateLimiter
    retry: RetryEngine

    @property
    def identity(self) -> str:
        return self.config.identity

    @classmethod
    def build(
        cls,
        config: BackendConfig,
        adapter: BackendAdapter,
        limiter: Optional[RateLimiter] = None,
    ) -> BackendChannel:
        return cls(
            config=config,
            adapter=adapter,
            limiter=limiter or RateLimiter(config.identity, config.rate_limit),
            retry=RetryEngine(RetryPolicy.from_config(config.retry)),
        )


class MemoryAugmentedClient:
    """
    Chat client with rate limiting, retries, fallback and memory.

    Usage:
        client = await create_client(BackendConfig(BackendKind.OPENAI, "gpt-4o-mini", api_key=key))
        reply = await client.chat([Message.user("What did we decide yesterday?")])
        await client.cleanup()
    """

    def __init__(
        self,
        primary: BackendChannel,
        fallback: Optional[BackendChannel] = None,
        *,
        store: Optional[MemoryStore] = None,
        memory: Optional[MemoryConfig] = None,
        summarize_with_backend: bool = False,
        queue: Optional[RequestQueue] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        memory = memory or MemoryConfig()
        self._primary = primary
        self._fallback = fallback
        self._queue = queue or RequestQueue()
        self._orchestrator = FallbackOrchestrator(
            primary_retry=primary.retry,
            fallback_retry=fallback.retry if fallback else None,
            fallback_config=fallback.config if fallback else None,
        )

        self._store = store
        self._retriever: Optional[RelevanceRetriever] = None
        self._compactor: Optional[ConversationCompactor] = None
        self._knowledge: Optional[KnowledgeBase] = None
        if store is not None:
            self._retriever = RelevanceRetriever(
                store,
                window=memory.context_window,
                limit=memory.retrieval_limit,
                min_relevance=memory.min_relevance,
            )
            self._compactor = ConversationCompactor(
                store,
                threshold=memory.flush_threshold,
                summarizer=BackendSummarizer(self.complete) if summarize_with_backend else None,
            )
            self._knowledge = KnowledgeBase(store, compactor=self._compactor)

        self._metrics = metrics or MetricsCollector()
        self._requests = self._metrics.counter("chat_requests_total", ["backend", "outcome"])
        self._retries = self._metrics.counter("backend_retries_total", ["backend"])
        self._fallbacks = self._metrics.counter("backend_fallbacks_total", ["backend"])
        self._flushes = self._metrics.counter("conversation_flushes_total", ["backend"])
        self._latency = self._metrics.histogram("chat_latency_seconds", ["backend"])
        self._performance = PerformanceMonitor()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------
    @property
    def primary(self) -> BackendChannel:
        return self._primary

    @property
    def fallback(self) -> Optional[BackendChannel]:
        return self._fallback

    @property
    def queue(self) -> RequestQueue:
        return self._queue

    @property
    def memory_enabled(self) -> bool:
        return self._store is not None

    @property
    def store(self) -> Optional[MemoryStore]:
        return self._store

    @property
    def knowledge(self) -> Optional[KnowledgeBase]:
        return self._knowledge

    @property
    def compactor(self) -> Optional[ConversationCompactor]:
        return self._compactor

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def performance(self) -> PerformanceMonitor:
        return self._performance

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def initialize(self) -> None:
        """
        Initialize the primary through its queue and retry engine; the
        fallback stays lazy. A backend embedder learns its dimension here,
        before the store is opened.
        """
        primary = self._primary
        await self._queue.submit(
            primary.identity,
            lambda: primary.retry.run(primary.adapter.initialize, "initialization"),
        )
        if self._fallback is not None:
            await self._fallback.adapter.initialize()
        if self._store is None:
            return

        embedder = self._store.embedder
        if isinstance(embedder, BackendEmbedder) and not embedder.calibrated:
            dimension = await embedder.calibrate()
            logger.info(
                f"Backend embedding dimension for {primary.identity} is {dimension}",
                extra={"dimension": dimension},
            )
        await self._store.initialize()

    async def cleanup(self) -> None:
        """Flush buffered conversation, then release adapters and storage."""
        if self._compactor is not None and self._compactor.buffer:
            await self._compactor.flush()
        await self._queue.submit(self._primary.identity, self._primary.adapter.cleanup)
        if self._fallback is not None:
            await self._fallback.adapter.cleanup()
        if self._store is not None:
            await self._store.close()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------
    async def chat(self, messages: Sequence[Message]) -> Message:
        """
        Memory-augmented chat.

        Raises:
            ValidationError: Bad roles or content (never retried)
            ReliabilityError: Primary retries exhausted and no usable fallback
            ExhaustionError: Primary and fallback both failed
        """
        tracker = ChatRequestTracker()
        started = time.perf_counter()
        backend = self._primary.identity

        with log_context(request_id=tracker.request_id, backend=backend):
            try:
                validate_messages(messages)
            except Exception as e:
                tracker.fail(describe(e))
                raise

            outgoing = list(messages)
            if self._retriever is not None:
                outgoing = await self._retriever.augment(messages)
                tracker.advance(RequestState.CONTEXT_RETRIEVED)
            tracker.advance(RequestState.DISPATCHED)

            try:
                reply = await self._dispatch_chat(outgoing, tracker)
            except Exception as e:
                tracker.fail(describe(e))
                self._record(started, len(messages), success=False)
                raise
            tracker.advance(RequestState.SUCCEEDED)

            if self._compactor is not None:
                self._compactor.extend([*messages, reply])
                if await self._compactor.maybe_flush() is not None:
                    self._flushes.inc(backend=backend)
                    tracker.advance(RequestState.COMPACTED)

            tracker.advance(RequestState.RETURNED)
            self._record(started, len(messages), success=True)
            return reply

    async def complete(self, messages: Sequence[Message]) -> Message:
        """Orchestrated chat without memory retrieval or buffering."""
        validate_messages(messages)
        tracker = ChatRequestTracker()
        tracker.advance(RequestState.DISPATCHED)
        return await self._dispatch_chat(list(messages), tracker)

    async def generate_embedding(self, text: str) -> list[float]:
        """Embedding through queue, rate limit, retry and fallback."""
        primary, fallback = self._primary, self._fallback

        async def primary_attempt() -> list[float]:
            await primary.limiter.acquire_for_text(text)
            return await primary.adapter.generate_embedding(text)

        fallback_attempt = None
        if fallback is not None:
            async def fallback_attempt() -> list[float]:
                await fallback.limiter.acquire_for_text(text)
                return await fallback.adapter.generate_embedding(text)

        return await self._queue.submit(
            primary.identity,
            lambda: self._orchestrator.run(
                primary_attempt,
                fallback_attempt,
                "embedding generation",
                on_primary_retry=self._count_retry,
                on_fallback=self._count_fallback,
            ),
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    async def _dispatch_chat(
        self,
        outgoing: list[Message],
        tracker: ChatRequestTracker,
    ) -> Message:
        primary, fallback = self._primary, self._fallback

        async def primary_attempt() -> Message:
            tracker.advance(RequestState.BACKEND_ATTEMPTED)
            await primary.limiter.acquire_for_messages(outgoing)
            return await primary.adapter.chat(outgoing)

        fallback_attempt = None
        if fallback is not None:
            async def fallback_attempt() -> Message:
                tracker.advance(RequestState.FALLBACK_ATTEMPTED)
                await fallback.limiter.acquire_for_messages(outgoing)
                return await fallback.adapter.chat(outgoing)

        def on_retry(attempt: int, error: BaseException, delay_ms: float) -> None:
            self._count_retry(attempt, error, delay_ms)
            tracker.advance(RequestState.RETRYING, f"attempt {attempt}: {describe(error)}")

        return await self._queue.submit(
            primary.identity,
            lambda: self._orchestrator.run(
                primary_attempt,
                fallback_attempt,
                "chat completion",
                on_primary_retry=on_retry,
                on_fallback=self._count_fallback,
            ),
        )

    def _count_retry(self, attempt: int, error: BaseException, delay_ms: float) -> None:
        self._retries.inc(backend=self._primary.identity)

    def _count_fallback(self, error: BaseException) -> None:
        self._fallbacks.inc(backend=self._primary.identity)

    def _record(self, started: float, message_count: int, success: bool) -> None:
        elapsed = time.perf_counter() - started
        backend = self._primary.identity
        self._requests.inc(backend=backend, outcome="success" if success else "failure")
        self._latency.observe(elapsed, backend=backend)
        self._performance.record(elapsed * 1000, message_count, success)


# =============================================================================
# FACTORY
# =============================================================================
async def create_client(
    config: Union[MemoryMeshConfig, BackendConfig],
    *,
    enable_memory: Optional[bool] = None,
    store: Optional[MemoryStore] = None,
    embedder: Optional[Embedder] = None,
    record_store: Optional[RecordStore] = None,
    use_backend_embeddings: bool = False,
    summarize_with_backend: bool = False,
    adapter_factory: AdapterFactory = create_adapter,
    configure_logging: bool = False,
    initialize: bool = True,
) -> MemoryAugmentedClient:
    """
    Validate configuration and assemble a client.

    Args:
        config: Root config, or a bare backend config with memory defaults
        enable_memory: Overrides ``config.memory.enabled``
        store: Ready-made memory store (skips store construction)
        embedder: Embedder for a newly built store (default HashingEmbedder)
        record_store: Persistence for a newly built store
        use_backend_embeddings: Embed memory through the client's backends
        summarize_with_backend: Summaries written by the backend, not extracted
        adapter_factory: Builds adapters; override to inject test doubles
        configure_logging: Apply ``config.observability`` to the root logger
        initialize: Run ``client.initialize()`` before returning

    Raises:
        ConfigurationError: Missing model or credentials, or invalid fallback
    """
    if isinstance(config, BackendConfig):
        config = MemoryMeshConfig(backend=config)
    if configure_logging:
        setup_logging(
            LogLevel.parse(config.observability.log_level),
            json_output=config.observability.log_json,
        )

    config.backend.validate()
    checked = config.validate()
    if checked.is_err():
        raise ConfigurationError.invalid_value(checked.error)

    primary_cfg = config.backend
    primary = BackendChannel.build(primary_cfg, adapter_factory(primary_cfg, AdapterRole.PRIMARY))

    fallback = None
    if primary_cfg.fallback is not None:
        fallback_cfg = primary_cfg.fallback
        shared = primary.limiter if fallback_cfg.identity == primary.identity else None
        fallback = BackendChannel.build(
            fallback_cfg,
            adapter_factory(fallback_cfg, AdapterRole.FALLBACK),
            limiter=shared,
        )

    memory_on = config.memory.enabled if enable_memory is None else enable_memory
    client: Optional[MemoryAugmentedClient] = None

    async def embed_via_backend(text: str) -> list[float]:
        return await client.generate_embedding(text)

    if memory_on and store is None:
        if embedder is None:
            if use_backend_embeddings:
                embedder = BackendEmbedder(embed_via_backend)
            else:
                embedder = HashingEmbedder(config.memory.embedding_dimension)
        if record_store is None:
            record_store = (
                RedisRecordStore(config.memory.redis_url, config.memory.key_prefix)
                if config.memory.backend == "redis"
                else InMemoryRecordStore()
            )
        store = MemoryStore(embedder, record_store)

    client = MemoryAugmentedClient(
        primary,
        fallback,
        store=store if memory_on else None,
        memory=config.memory,
        summarize_with_backend=summarize_with_backend,
    )
    logger.info(
        f"Created client for {primary.identity}",
        extra={
            "model": primary_cfg.model,
            "fallback": fallback.identity if fallback else None,
            "memory": memory_on,
        },
    )
    if initialize:
        await client.initialize()
    return client
