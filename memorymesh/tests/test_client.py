"""
Integration Tests: Memory-Augmented Client

Exercises the full request path with in-process backend adapters:
    validation → retrieval → queue → retry → fallback → compaction

Tests:
    - Plain chat, memory context injection and compaction
    - Retry and fallback accounting
    - Dual failure and validation failure
    - Per-backend serialization of concurrent requests
    - Configuration rejection and memory toggling
    - Embeddings through the client and learned embedding dimension
    - Initialization retries and logging setup
"""

import asyncio
import logging

import pytest

from memorymesh import (
    BackendConfig,
    BackendKind,
    ConfigurationError,
    ExhaustionError,
    MemoryConfig,
    MemoryKind,
    MemoryMeshConfig,
    MemoryQuery,
    Message,
    ObservabilityConfig,
    ReliabilityError,
    RetryConfig,
    ValidationError,
    create_client,
)
from memorymesh.backends.base import AdapterRole, BackendAdapter
from memorymesh.core.errors import BackendError, ErrorCode


# =============================================================================
# FIXTURES
# =============================================================================
class ScriptedBackend(BackendAdapter):
    """Adapter answering from a script, failing the first ``failures`` calls."""

    kind = BackendKind.OLLAMA

    def __init__(
        self, config, role=AdapterRole.PRIMARY, reply="ok", failures=0, delay=0.0,
        init_failures=0, embedding=(1.0, 0.0, 0.0, 0.0),
    ):
        super().__init__(config, role)
        self.reply = reply
        self.failures = failures
        self.delay = delay
        self.init_failures = init_failures
        self.embedding = list(embedding)
        self.calls = []
        self.init_calls = 0
        self.embed_calls = 0
        self.active = 0
        self.max_active = 0

    def _create_client(self):
        return object()

    async def _initialize_primary(self):
        self.init_calls += 1
        if self.init_failures > 0:
            self.init_failures -= 1
            raise BackendError.network(self.identity)

    async def _chat(self, native):
        self.calls.append(native)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.failures > 0:
                self.failures -= 1
                raise BackendError.network(self.identity)
            return Message.assistant(self.reply)
        finally:
            self.active -= 1

    async def _embed(self, text):
        self.embed_calls += 1
        return list(self.embedding)


FAST_RETRY = RetryConfig(max_attempts=3, base_delay_ms=1)


def backend_config(with_fallback=True):
    fallback = None
    if with_fallback:
        fallback = BackendConfig(BackendKind.OLLAMA, "mistral", name="backup", retry=FAST_RETRY)
    return BackendConfig(
        BackendKind.OLLAMA, "llama3", name="main", retry=FAST_RETRY, fallback=fallback,
    )


class Factory:
    """adapter_factory recording the adapters it builds."""

    def __init__(self, primary=None, fallback=None):
        self.options = {AdapterRole.PRIMARY: primary or {}, AdapterRole.FALLBACK: fallback or {}}
        self.adapters = {}

    def __call__(self, config, role):
        adapter = ScriptedBackend(config, role, **self.options[role])
        self.adapters[role] = adapter
        return adapter

    @property
    def primary(self):
        return self.adapters[AdapterRole.PRIMARY]

    @property
    def fallback(self):
        return self.adapters[AdapterRole.FALLBACK]


def build(factory, config=None, **kwargs):
    return create_client(config or backend_config(), adapter_factory=factory, **kwargs)


# =============================================================================
# TESTS
# =============================================================================
class TestClientChat:
    """Tests for the memory-augmented chat path."""

    def test_plain_chat(self):
        factory = Factory(primary={"reply": "Hello!"})

        async def run():
            client = await build(factory)
            reply = await client.chat([Message.user("Hi")])
            return client, reply

        client, reply = asyncio.run(run())

        assert reply.content == "Hello!"
        assert factory.primary.initialized
        assert not factory.fallback.initialized
        assert len(factory.fallback.calls) == 0
        assert [m.content for m in client.compactor.buffer] == ["Hi", "Hello!"]

    def test_memory_context_injected(self):
        """Test stored knowledge reaches the backend as a leading system message."""
        factory = Factory()

        async def run():
            client = await build(factory)
            await client.knowledge.store_knowledge("The project codename is Bluebird", "project")
            await client.chat([Message.user("What is the project codename?")])

        asyncio.run(run())

        sent = factory.primary.calls[0]
        assert len(sent) == 2
        assert sent[0]["role"] == "system"
        assert sent[0]["content"].startswith("Previous context:\n")
        assert "knowledge: The project codename is Bluebird" in sent[0]["content"]
        assert sent[1] == {"role": "user", "content": "What is the project codename?"}

    def test_compaction_after_ten_messages(self):
        """Test five exchanges flush into exactly one conversation entry."""
        factory = Factory()

        async def run():
            client = await build(factory)
            for i in range(5):
                await client.chat([Message.user(f"turn {i}")])
            entries = await client.store.search(MemoryQuery(kind=MemoryKind.CONVERSATION))
            return client, entries

        client, entries = asyncio.run(run())

        assert len(entries) == 1
        assert entries[0].metadata["messageCount"] == 10
        assert client.compactor.buffer == []
        assert client.metrics.counter("conversation_flushes_total").get(backend="main") == 1

    def test_cleanup_flushes_buffer(self):
        factory = Factory()

        async def run():
            client = await build(factory)
            await client.chat([Message.user("remember this")])
            await client.cleanup()
            return await client.store.search(MemoryQuery(kind=MemoryKind.CONVERSATION))

        entries = asyncio.run(run())
        assert len(entries) == 1
        assert entries[0].metadata["messageCount"] == 2

    def test_memory_disabled(self):
        factory = Factory()

        async def run():
            client = await build(factory, enable_memory=False)
            await client.chat([Message.user("Hi")])
            return client

        client = asyncio.run(run())

        assert not client.memory_enabled
        assert client.knowledge is None
        assert factory.primary.calls[0] == [{"role": "user", "content": "Hi"}]


class TestClientReliability:
    """Tests for retry and fallback through the client."""

    def test_retry_then_success(self):
        factory = Factory(primary={"failures": 2, "reply": "third time"})

        async def run():
            client = await build(factory)
            return client, await client.chat([Message.user("Hi")])

        client, reply = asyncio.run(run())

        assert reply.content == "third time"
        assert len(factory.primary.calls) == 3
        assert client.metrics.counter("backend_retries_total").get(backend="main") == 2
        assert len(factory.fallback.calls) == 0

    def test_fallback_after_exhaustion(self):
        """Test exactly three primary attempts precede the fallback."""
        factory = Factory(primary={"failures": 10}, fallback={"reply": "from backup"})

        async def run():
            client = await build(factory)
            return client, await client.chat([Message.user("Hi")])

        client, reply = asyncio.run(run())

        assert reply.content == "from backup"
        assert len(factory.primary.calls) == 3
        assert len(factory.fallback.calls) == 1
        assert client.metrics.counter("backend_fallbacks_total").get(backend="main") == 1

    def test_both_fail(self):
        factory = Factory(primary={"failures": 10}, fallback={"failures": 10})

        async def run():
            client = await build(factory)
            await client.chat([Message.user("Hi")])

        with pytest.raises(ExhaustionError) as exc_info:
            asyncio.run(run())

        message = exc_info.value.message
        assert message.startswith("Both primary and fallback chat completion failed. Primary: ")
        assert "Network connection to main failed" in message
        assert "Network connection to backup failed" in message

    def test_failure_without_fallback(self):
        factory = Factory(primary={"failures": 10})

        async def run():
            client = await build(factory, backend_config(with_fallback=False))
            await client.chat([Message.user("Hi")])

        with pytest.raises(Exception) as exc_info:
            asyncio.run(run())
        assert exc_info.value.code is ErrorCode.RELIABILITY_RETRY_EXHAUSTED

    def test_invalid_role_never_dispatched(self):
        factory = Factory()

        async def run():
            client = await build(factory)
            await client.chat([Message("tool", "output")])

        with pytest.raises(ValidationError):
            asyncio.run(run())
        assert factory.primary.calls == []

    def test_concurrent_requests_serialized(self):
        """Test requests to one backend never overlap."""
        factory = Factory(primary={"delay": 0.01})

        async def run():
            client = await build(factory, enable_memory=False)
            return await asyncio.gather(*(
                client.chat([Message.user(f"request {i}")]) for i in range(4)
            ))

        replies = asyncio.run(run())

        assert len(replies) == 4
        assert factory.primary.max_active == 1
        assert [c[0]["content"] for c in factory.primary.calls] == [
            f"request {i}" for i in range(4)
        ]


class TestClientConstruction:
    """Tests for create_client."""

    def test_missing_model_rejected(self):
        config = BackendConfig(BackendKind.OLLAMA)
        with pytest.raises(ConfigurationError) as exc_info:
            asyncio.run(create_client(config, adapter_factory=Factory()))
        assert exc_info.value.code is ErrorCode.CONFIG_MISSING_MODEL

    def test_missing_credentials_rejected(self):
        config = BackendConfig(BackendKind.OPENAI, "gpt-4o-mini")
        with pytest.raises(ConfigurationError) as exc_info:
            asyncio.run(create_client(config, adapter_factory=Factory()))
        assert exc_info.value.code is ErrorCode.CONFIG_MISSING_CREDENTIAL

    def test_invalid_memory_config_rejected(self):
        config = MemoryMeshConfig(backend=backend_config(), memory=MemoryConfig(flush_threshold=0))
        with pytest.raises(ConfigurationError):
            asyncio.run(create_client(config, adapter_factory=Factory()))

    def test_shared_identity_shares_limiter(self):
        fallback = BackendConfig(BackendKind.OLLAMA, "mistral", retry=FAST_RETRY)
        config = BackendConfig(BackendKind.OLLAMA, "llama3", retry=FAST_RETRY, fallback=fallback)

        client = asyncio.run(create_client(config, adapter_factory=Factory(), initialize=False))
        assert client.fallback.limiter is client.primary.limiter

    def test_backend_embeddings(self):
        """Test memory embeds through the backend when asked to."""
        factory = Factory()
        config = MemoryMeshConfig(
            backend=backend_config(),
            memory=MemoryConfig(embedding_dimension=4),
        )

        async def run():
            client = await build(factory, config, use_backend_embeddings=True)
            direct = await client.generate_embedding("hello")
            entry = await client.knowledge.store_knowledge("fact", "topic")
            return direct, entry

        direct, entry = asyncio.run(run())
        assert direct == [1.0, 0.0, 0.0, 0.0]
        assert entry.embedding == [1.0, 0.0, 0.0, 0.0]

    def test_backend_embedding_dimension_learned(self):
        """Test the store adopts the backend's vector size over the configured default."""
        factory = Factory(primary={"embedding": [0.5, 0.5, 0.5, 0.5]})

        async def run():
            client = await build(factory, use_backend_embeddings=True)
            for i in range(5):
                await client.chat([Message.user(f"turn {i}")])
            entries = await client.store.search(MemoryQuery(kind=MemoryKind.CONVERSATION))
            return client, entries

        client, entries = asyncio.run(run())

        assert MemoryConfig().embedding_dimension != 4
        assert client.store.dimension == 4
        assert client.compactor.stats.failed_flushes == 0
        assert client.compactor.stats.messages_persisted == 10
        assert len(entries) == 1
        assert len(entries[0].embedding) == 4

    def test_configure_logging_applies_observability(self):
        config = MemoryMeshConfig(
            backend=backend_config(),
            observability=ObservabilityConfig(log_level="DEBUG", log_json=False),
        )
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            asyncio.run(build(Factory(), config, configure_logging=True, initialize=False))
            level = root.level
            formatters = [type(h.formatter) for h in root.handlers]
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        assert level == logging.DEBUG
        assert formatters == [logging.Formatter]

    def test_initialize_retries_transient_failure(self):
        factory = Factory(primary={"init_failures": 1})

        asyncio.run(build(factory))

        assert factory.primary.init_calls == 2
        assert factory.primary.initialized

    def test_initialize_gives_up_after_max_attempts(self):
        factory = Factory(primary={"init_failures": 10})

        with pytest.raises(ReliabilityError) as exc_info:
            asyncio.run(build(factory))
        assert exc_info.value.code is ErrorCode.RELIABILITY_RETRY_EXHAUSTED
        assert factory.primary.init_calls == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
