"""
Unit Tests: Associative Memory

Tests:
    - Cosine similarity (single and batch)
    - Feature-hashing embedder
    - Memory store add / search / update / delete / clear
    - Persistence fallback when the durable backend is unreachable
    - Redis record store indexes over an in-process fake server
    - Association graph
    - Relevance retrieval and context assembly
    - Conversation compaction
    - Knowledge base helpers
"""

import asyncio
import itertools

from fakeredis.aioredis import FakeRedis
import numpy as np
import pytest

from memorymesh.core import constants as C
from memorymesh.core.errors import ErrorCode, NotFoundError, StorageError, ValidationError
from memorymesh.core.types import Err, Message
from memorymesh.memory import (
    AssociationGraph,
    BackendEmbedder,
    ConversationCompactor,
    HashingEmbedder,
    InMemoryRecordStore,
    KnowledgeBase,
    MemoryKind,
    MemoryPatch,
    MemoryQuery,
    MemoryStore,
    RedisRecordStore,
    RelevanceRetriever,
    TimeRange,
    cosine_similarity,
    cosine_similarity_batch,
    extractive_summary,
)
from memorymesh.memory.models import ASSOCIATION_META_KEY, MemoryEntry


# =============================================================================
# FIXTURES
# =============================================================================
DIM = 768


def make_store(records=None, start=1000, step=1000):
    """Store with a deterministic embedder and a stepping millisecond clock."""
    ticks = itertools.count(start, step)
    return MemoryStore(HashingEmbedder(DIM), records, clock=lambda: next(ticks))


class UnreachableRecordStore(InMemoryRecordStore):
    """Record store whose backend never answers."""

    @property
    def name(self):
        return "redis"

    async def connect(self):
        return Err("connection refused")


class ReadOnlyRecordStore(InMemoryRecordStore):
    """Record store that rejects writes."""

    async def put(self, record):
        return Err("disk full")


class FailingSearchStore:
    async def search(self, query):
        raise StorageError.operation_failed("search", "timeout")


# =============================================================================
# SIMILARITY
# =============================================================================
class TestCosineSimilarity:
    """Tests for cosine similarity."""

    def test_identical_vectors(self):
        v = [1.0, 2.0, 3.0]
        np.testing.assert_allclose(cosine_similarity(v, v), 1.0, rtol=1e-6)

    def test_orthogonal_vectors(self):
        np.testing.assert_allclose(cosine_similarity([1.0, 0.0], [0.0, 1.0]), 0.0, atol=1e-9)

    def test_zero_vector(self):
        """Test zero magnitude scores 0 instead of dividing by zero."""
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValidationError) as exc_info:
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])
        assert exc_info.value.code is ErrorCode.VALIDATION_DIMENSION_MISMATCH

    def test_batch(self):
        query = np.array([1.0, 0.0])
        candidates = np.array([
            [1.0, 0.0],
            [0.0, 1.0],
            [0.0, 0.0],
            [-2.0, 0.0],
        ])
        sims = cosine_similarity_batch(query, candidates)
        np.testing.assert_allclose(sims, [1.0, 0.0, 0.0, -1.0], atol=1e-9)


class TestHashingEmbedder:
    """Tests for the local embedder."""

    def test_deterministic_unit_vectors(self):
        embedder = HashingEmbedder(DIM)
        a = asyncio.run(embedder.embed("The quick brown fox"))
        b = asyncio.run(embedder.embed("the quick brown fox"))

        assert len(a) == DIM
        np.testing.assert_allclose(a, b)
        np.testing.assert_allclose(np.linalg.norm(a), 1.0, rtol=1e-6)

    def test_shared_vocabulary_scores_higher(self):
        embedder = HashingEmbedder(768)
        base = embedder.embed_sync("redis stores memory entries")
        near = embedder.embed_sync("memory entries live in redis")
        far = embedder.embed_sync("volcanoes erupt molten lava")

        assert cosine_similarity(base, near) > cosine_similarity(base, far)

    def test_empty_text_is_zero(self):
        vector = HashingEmbedder(DIM).embed_sync("...")
        assert not vector.any()


class TestBackendEmbedder:
    """Tests for the remote embedder's dimension handling."""

    def test_calibrate_adopts_backend_size(self):
        sizes = iter([3, 3, 5])

        async def generate(text):
            return [0.1] * next(sizes)

        embedder = BackendEmbedder(generate)
        assert not embedder.calibrated

        async def run():
            dimension = await embedder.calibrate()
            await embedder.embed("same size")
            with pytest.raises(ValidationError) as exc_info:
                await embedder.embed("different size")
            return dimension, exc_info.value

        dimension, error = asyncio.run(run())
        assert dimension == 3
        assert embedder.dimension == 3
        assert error.code is ErrorCode.VALIDATION_DIMENSION_MISMATCH

    def test_fixed_dimension_enforced(self):
        async def generate(text):
            return [0.1, 0.2]

        embedder = BackendEmbedder(generate, dimension=4)
        assert embedder.calibrated
        with pytest.raises(ValidationError):
            asyncio.run(embedder.embed("text"))


# =============================================================================
# STORE
# =============================================================================
class TestMemoryStore:
    """Tests for memory store operations."""

    def test_add_assigns_identity(self):
        store = make_store()
        entry = asyncio.run(store.add("Paris is the capital of France"))

        assert entry.id
        assert entry.timestamp == 1000
        assert entry.kind is MemoryKind.KNOWLEDGE
        assert len(entry.embedding) == DIM
        assert entry.relevance_score is None

    def test_add_rejects_empty_content(self):
        store = make_store()
        with pytest.raises(ValidationError):
            asyncio.run(store.add("   "))
        assert asyncio.run(store.count()) == 0

    def test_add_rejects_wrong_dimension(self):
        """Test a mismatched embedding leaves the store unchanged."""
        store = make_store()
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(store.add("text", embedding=[0.1, 0.2]))

        assert exc_info.value.code is ErrorCode.VALIDATION_DIMENSION_MISMATCH
        assert asyncio.run(store.count()) == 0

    def test_add_failure_is_storage_error(self):
        store = make_store(ReadOnlyRecordStore())
        with pytest.raises(StorageError):
            asyncio.run(store.add("text"))

    def test_search_ranks_by_similarity(self):
        store = make_store()

        async def run():
            await store.add("The Eiffel Tower is in Paris")
            await store.add("Bananas contain potassium")
            await store.add("Paris hosts the Louvre museum")
            return await store.search(MemoryQuery(text="What is in Paris", limit=2))

        results = asyncio.run(run())

        assert len(results) == 2
        assert all("Paris" in e.content for e in results)
        assert results[0].relevance_score >= results[1].relevance_score

    def test_min_relevance(self):
        store = make_store()

        async def run():
            await store.add("alpha beta gamma")
            await store.add("delta epsilon zeta")
            return await store.search(MemoryQuery(text="alpha beta gamma", min_relevance=0.99))

        results = asyncio.run(run())
        assert [e.content for e in results] == ["alpha beta gamma"]
        np.testing.assert_allclose(results[0].relevance_score, 1.0, rtol=1e-6)

    def test_filters(self):
        """Test kind, metadata and inclusive time range filtering."""
        store = make_store()

        async def run():
            await store.add("one", MemoryKind.KNOWLEDGE, {"topic": "a"})          # t=1000
            await store.add("two", MemoryKind.CONVERSATION, {"topic": "a"})       # t=2000
            await store.add("three", MemoryKind.KNOWLEDGE, {"topic": "b"})        # t=3000
            await store.add("four", MemoryKind.KNOWLEDGE, {"topic": "a", "x": 1})  # t=4000

            by_kind = await store.search(MemoryQuery(kind=MemoryKind.KNOWLEDGE))
            by_meta = await store.search(MemoryQuery(metadata={"topic": "a"}))
            by_time = await store.search(MemoryQuery(time_range=TimeRange(2000, 3000)))
            return by_kind, by_meta, by_time

        by_kind, by_meta, by_time = asyncio.run(run())

        assert [e.content for e in by_kind] == ["four", "three", "one"]
        assert [e.content for e in by_meta] == ["four", "two", "one"]
        assert [e.content for e in by_time] == ["three", "two"]

    def test_update_reembeds(self):
        store = make_store()

        async def run():
            entry = await store.add("old content", metadata={"v": 1})
            updated = await store.update(entry.id, MemoryPatch(content="new content"))
            return entry, updated, await store.get(entry.id)

        entry, updated, stored = asyncio.run(run())

        assert updated.id == entry.id
        assert updated.timestamp == entry.timestamp
        assert stored.content == "new content"
        assert stored.metadata == {"v": 1}
        assert stored.embedding != entry.embedding

    def test_update_unknown(self):
        with pytest.raises(NotFoundError):
            asyncio.run(make_store().update("missing", MemoryPatch(content="x")))

    def test_delete_and_clear(self):
        store = make_store()

        async def run():
            a = await store.add("a")
            await store.add("b")
            await store.add("c")
            first = await store.delete(a.id)
            second = await store.delete(a.id)
            removed = await store.clear()
            return first, second, removed, await store.count()

        assert asyncio.run(run()) == (True, False, 2, 0)

    def test_falls_back_to_memory(self):
        """Test an unreachable durable backend degrades to in-memory storage."""
        store = make_store(UnreachableRecordStore())

        async def run():
            await store.initialize()
            await store.add("still works")
            return await store.count()

        assert asyncio.run(run()) == 1
        assert store.fell_back
        assert store.backend_name == "memory"

    def test_entry_roundtrip_omits_score(self):
        entry = MemoryEntry("id", MemoryKind.SUMMARY, "text", [0.0], 5, relevance_score=0.5)
        data = entry.to_dict()

        assert "relevance_score" not in data
        assert MemoryEntry.from_dict(data).relevance_score is None


# =============================================================================
# REDIS PERSISTENCE
# =============================================================================
def record(record_id, kind="knowledge", timestamp=1000, content="text"):
    return {"id": record_id, "kind": kind, "timestamp": timestamp, "content": content}


async def connected_redis():
    """RedisRecordStore over an in-process fake server."""
    client = FakeRedis(decode_responses=True)
    store = RedisRecordStore(prefix="test", client=client)
    assert (await store.connect()).is_ok()
    return store, client


class TestRedisRecordStore:
    """Tests for the Redis record store and its kind / timestamp indexes."""

    def test_put_indexes_record(self):
        async def run():
            store, client = await connected_redis()
            await store.put(record("r1", timestamp=1234))
            return (
                (await store.get("r1")).unwrap(),
                await client.smembers("test:kind:knowledge"),
                await client.zscore("test:ts", "r1"),
            )

        stored, members, score = asyncio.run(run())
        assert stored == record("r1", timestamp=1234)
        assert members == {"r1"}
        assert score == 1234

    def test_kind_change_moves_index(self):
        """Test re-putting with a new kind leaves no stale kind membership."""
        async def run():
            store, client = await connected_redis()
            await store.put(record("r1", kind="knowledge"))
            await store.put(record("r1", kind="conversation"))
            return (
                await client.smembers("test:kind:knowledge"),
                await client.smembers("test:kind:conversation"),
                (await store.scan(kind="knowledge")).unwrap(),
            )

        old, new, knowledge = asyncio.run(run())
        assert old == set()
        assert new == {"r1"}
        assert knowledge == []

    def test_delete_removes_indexes(self):
        async def run():
            store, client = await connected_redis()
            await store.put(record("r1"))
            first = (await store.delete("r1")).unwrap()
            second = (await store.delete("r1")).unwrap()
            return (
                first,
                second,
                await client.exists("test:entry:r1"),
                await client.zscore("test:ts", "r1"),
                await client.smembers("test:kind:knowledge"),
            )

        assert asyncio.run(run()) == (True, False, 0, None, set())

    def test_scan_range_and_kind(self):
        """Test scans come back in timestamp order, filtered by kind and range."""
        async def run():
            store, _ = await connected_redis()
            await store.put(record("r3", "knowledge", 3000))
            await store.put(record("r1", "knowledge", 1000))
            await store.put(record("r2", "conversation", 2000))

            def ids(result):
                return [r["id"] for r in result.unwrap()]

            return (
                ids(await store.scan()),
                ids(await store.scan(kind="knowledge")),
                ids(await store.scan(start=1500, end=3000)),
                ids(await store.scan(kind="knowledge", start=2000)),
                ids(await store.scan(kind="summary")),
            )

        everything, knowledge, ranged, both, none = asyncio.run(run())
        assert everything == ["r1", "r2", "r3"]
        assert knowledge == ["r1", "r3"]
        assert ranged == ["r2", "r3"]
        assert both == ["r3"]
        assert none == []

    def test_clear_removes_all_keys(self):
        async def run():
            store, client = await connected_redis()
            await client.set("other:key", "kept")
            for i, kind in enumerate(["knowledge", "conversation", "summary"]):
                await store.put(record(f"r{i}", kind, 1000 + i))
            removed = (await store.clear()).unwrap()
            return removed, await client.keys("test:*"), await client.get("other:key")

        removed, remaining, other = asyncio.run(run())
        assert removed == 3
        assert remaining == []
        assert other == "kept"

    def test_corrupt_record(self):
        async def run():
            store, client = await connected_redis()
            await client.set("test:entry:bad", "{not json")
            await client.zadd("test:ts", {"bad": 1000})
            return await store.get("bad"), await store.scan()

        got, scanned = asyncio.run(run())
        assert got.is_err()
        assert "Corrupt record" in got.error
        assert scanned.is_err()

    def test_memory_store_over_redis(self):
        """Test the memory store persists and ranks through Redis."""
        async def run():
            records, _ = await connected_redis()
            store = make_store(records)
            await store.initialize()
            await store.add("Redis keeps sorted sets", MemoryKind.KNOWLEDGE)
            await store.add("Bananas contain potassium", MemoryKind.KNOWLEDGE)
            hits = await store.search(MemoryQuery(text="sorted sets in Redis", limit=1))
            return store, hits

        store, hits = asyncio.run(run())
        assert not store.fell_back
        assert store.backend_name == "redis"
        assert hits[0].content == "Redis keeps sorted sets"


# =============================================================================
# GRAPH
# =============================================================================
class TestAssociationGraph:
    """Tests for directed associations."""

    def test_associate_and_resolve(self):
        store = make_store()
        graph = AssociationGraph(store)

        async def run():
            a = await store.add("cause")
            b = await store.add("effect")
            edge = await graph.associate(a.id, b.id, {"relation": "leads_to"})
            return a, b, edge, await graph.get_associated(a.id), await graph.get_associated(b.id)

        a, b, edge, from_a, from_b = asyncio.run(run())

        assert edge.metadata["relation"] == "leads_to"
        assert "created_at" in edge.metadata
        assert [e.id for e in from_a] == [b.id]
        assert from_b == []

    def test_edge_metadata_stored_on_source(self):
        store = make_store()
        graph = AssociationGraph(store)

        async def run():
            a = await store.add("a")
            b = await store.add("b")
            await graph.associate(a.id, b.id, {"weight": 2})
            await graph.associate(a.id, b.id, {"weight": 3})
            return b, await store.get(a.id), await graph.edges(a.id)

        b, source, edges = asyncio.run(run())

        assert source.associations == [b.id]
        assert source.metadata[ASSOCIATION_META_KEY][b.id]["weight"] == 3
        assert len(edges) == 1

    def test_deleted_target_omitted(self):
        store = make_store()
        graph = AssociationGraph(store)

        async def run():
            a = await store.add("a")
            b = await store.add("b")
            c = await store.add("c")
            await graph.associate(a.id, b.id)
            await graph.associate(a.id, c.id)
            await store.delete(b.id)
            return c, await graph.get_associated(a.id)

        c, associated = asyncio.run(run())
        assert [e.id for e in associated] == [c.id]

    def test_unknown_entries(self):
        store = make_store()
        graph = AssociationGraph(store)

        async def run():
            a = await store.add("a")
            await graph.associate(a.id, "missing")

        with pytest.raises(NotFoundError):
            asyncio.run(run())
        with pytest.raises(NotFoundError):
            asyncio.run(graph.get_associated("missing"))

    def test_dissociate(self):
        store = make_store()
        graph = AssociationGraph(store)

        async def run():
            a = await store.add("a")
            b = await store.add("b")
            await graph.associate(a.id, b.id)
            removed = await graph.dissociate(a.id, b.id)
            again = await graph.dissociate(a.id, b.id)
            return removed, again, await graph.get_associated(a.id)

        assert asyncio.run(run()) == (True, False, [])


# =============================================================================
# RETRIEVAL
# =============================================================================
class TestRelevanceRetriever:
    """Tests for context assembly."""

    def test_query_uses_last_three_messages(self):
        retriever = RelevanceRetriever(make_store())
        messages = [
            Message.user("first"),
            Message.assistant("second"),
            Message.user("third"),
            Message.assistant("fourth"),
        ]
        assert retriever.query_text(messages) == "assistant: second\nuser: third\nassistant: fourth"

    def test_no_memory_no_context(self):
        retriever = RelevanceRetriever(make_store())
        messages = [Message.user("hello")]
        assert asyncio.run(retriever.augment(messages)) == messages

    def test_context_message_prepended(self):
        store = make_store()
        retriever = RelevanceRetriever(store)

        async def run():
            await store.add("The deployment region is eu-west-1")
            return await retriever.augment([
                Message.system("You are helpful."),
                Message.user("Which deployment region do we use?"),
            ])

        outgoing = asyncio.run(run())

        assert len(outgoing) == 3
        context = outgoing[0]
        assert context.role_name == "system"
        assert context.content == (
            "Previous context:\n"
            "knowledge: The deployment region is eu-west-1\n\n"
            "Use this context to inform your responses when relevant."
        )
        assert outgoing[1].content == "You are helpful."

    def test_retrieval_failure_is_swallowed(self):
        retriever = RelevanceRetriever(FailingSearchStore())
        messages = [Message.user("hello")]
        assert asyncio.run(retriever.augment(messages)) == messages


# =============================================================================
# COMPACTION
# =============================================================================
class TestConversationCompactor:
    """Tests for buffered conversation persistence."""

    @staticmethod
    def turns(n):
        return [
            Message.user(f"question {i}") if i % 2 == 0 else Message.assistant(f"answer {i}")
            for i in range(n)
        ]

    def test_flush_at_threshold(self):
        """Test exactly ten buffered messages become one conversation entry."""
        store = make_store()
        compactor = ConversationCompactor(store)

        async def run():
            compactor.extend(self.turns(9))
            early = await compactor.maybe_flush()
            compactor.extend(self.turns(1))
            entry = await compactor.maybe_flush()
            return early, entry, await store.search(MemoryQuery(kind=MemoryKind.CONVERSATION))

        early, entry, stored = asyncio.run(run())

        assert early is None
        assert entry is not None
        assert entry.metadata["messageCount"] == 10
        assert entry.metadata["summary"].startswith("Conversation of 10 messages.")
        assert compactor.buffer == []
        assert [e.id for e in stored] == [entry.id]

    def test_failed_flush_keeps_buffer(self):
        store = make_store(ReadOnlyRecordStore())
        compactor = ConversationCompactor(store, threshold=2)

        async def run():
            compactor.extend(self.turns(2))
            return await compactor.maybe_flush()

        assert asyncio.run(run()) is None
        assert len(compactor.buffer) == 2
        assert compactor.stats.failed_flushes == 1

    def test_custom_summarizer(self):
        async def summarizer(messages):
            return f"{len(messages)} turns"

        store = make_store()
        compactor = ConversationCompactor(store, threshold=2, summarizer=summarizer)
        compactor.extend(self.turns(2))

        entry = asyncio.run(compactor.flush())
        assert entry.metadata["summary"] == "2 turns"
        assert entry.content == "user: question 0\nassistant: answer 1"

    def test_extractive_summary(self):
        summary = asyncio.run(extractive_summary([
            Message.user("How do I rotate keys?"),
            Message.assistant("Use the rotate command."),
        ]))
        assert summary == (
            "Conversation of 2 messages. User asked: How do I rotate keys? "
            "Assistant concluded: Use the rotate command."
        )
        assert len(summary) <= C.SUMMARY_MAX_CHARS


# =============================================================================
# KNOWLEDGE BASE
# =============================================================================
class TestKnowledgeBase:
    """Tests for topic-tagged knowledge helpers."""

    def test_store_and_search_by_topic(self):
        kb = KnowledgeBase(make_store())

        async def run():
            await kb.store_knowledge("Use ruff for linting", "tooling")
            await kb.store_knowledge("Use ruff in CI pipelines", "ci")
            return await kb.search_knowledge("ruff linting", topic="tooling")

        results = asyncio.run(run())
        assert [e.content for e in results] == ["Use ruff for linting"]
        assert results[0].metadata["topic"] == "tooling"

    def test_topic_required(self):
        kb = KnowledgeBase(make_store())
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(kb.store_knowledge("fact", ""))
        assert exc_info.value.code is ErrorCode.VALIDATION_MISSING_FIELD

    def test_store_conversation(self):
        kb = KnowledgeBase(make_store())
        entry = asyncio.run(kb.store_conversation([
            Message.user("hi"),
            Message.assistant("hello"),
        ]))

        assert entry.kind is MemoryKind.CONVERSATION
        assert entry.metadata["messageCount"] == 2

    def test_associations(self):
        kb = KnowledgeBase(make_store())

        async def run():
            a = await kb.store_knowledge("Service A calls B", "arch")
            b = await kb.store_knowledge("Service B owns billing", "arch")
            await kb.associate(a.id, b.id, {"relation": "depends_on"})
            return b, await kb.get_associated(a.id)

        b, associated = asyncio.run(run())
        assert [e.id for e in associated] == [b.id]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
