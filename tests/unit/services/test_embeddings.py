"""Tests for the embedding service and its in-memory cache store."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FIXED_NOW, CountingEmbeddingBackend
from core.exceptions import EmbeddingError
from models.embeddings import ChunkContext, ChunkingConfig, EmbeddingCacheEntry
from services.embedding_cache import InMemoryEmbeddingCache
from services.embeddings import (
    EmbeddingService,
    cluster_by_threshold,
    cosine_similarity,
    embedding_cache_key,
    pairwise_cosine_matrix,
)


class MovableClock:
    def __init__(self):
        self.now = FIXED_NOW

    def __call__(self):
        return self.now


class TestInMemoryEmbeddingCache:
    @pytest.mark.asyncio
    async def test_set_and_get(self):
        cache = InMemoryEmbeddingCache()
        entry = EmbeddingCacheEntry(embedding=[0.1, 0.2], model="m")

        await cache.set("k", entry, ttl_seconds=60)

        assert await cache.get("k") == entry
        assert await cache.get("missing") is None
        metrics = cache.get_metrics()
        assert metrics["hits"] == 1
        assert metrics["misses"] == 1
        assert metrics["num_entries"] == 1

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self):
        clock = MovableClock()
        cache = InMemoryEmbeddingCache(clock=clock)
        await cache.set("k", EmbeddingCacheEntry(embedding=[1.0], model="m"), ttl_seconds=10)

        clock.now = FIXED_NOW + timedelta(seconds=11)

        assert await cache.get("k") is None
        assert len(cache) == 0
        assert cache.get_metrics()["expirations"] == 1

    @pytest.mark.asyncio
    async def test_least_recently_used_entry_is_evicted(self):
        cache = InMemoryEmbeddingCache(max_entries=2)
        for key in ("a", "b"):
            await cache.set(key, EmbeddingCacheEntry(embedding=[1.0], model="m"), ttl_seconds=60)
        await cache.get("a")

        await cache.set("c", EmbeddingCacheEntry(embedding=[1.0], model="m"), ttl_seconds=60)

        assert await cache.get("b") is None
        assert await cache.get("a") is not None
        assert await cache.get("c") is not None
        assert cache.get_metrics()["evictions"] == 1

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        cache = InMemoryEmbeddingCache()
        await cache.set("a", EmbeddingCacheEntry(embedding=[1.0], model="m"), ttl_seconds=60)
        await cache.set("b", EmbeddingCacheEntry(embedding=[1.0], model="m"), ttl_seconds=60)

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False
        assert await cache.clear() == 1
        assert cache.total_size_bytes == 0


class TestEmbeddingService:
    @pytest.mark.asyncio
    async def test_second_identical_call_is_served_from_cache(self, embedding_backend):
        service = EmbeddingService(embedding_backend)

        first = await service.embed(["chlorophyll"])
        second = await service.embed(["chlorophyll"])

        assert first == second
        assert embedding_backend.call_count == 1
        assert service.stats()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_recomputed(self, embedding_backend):
        clock = MovableClock()
        service = EmbeddingService(embedding_backend, InMemoryEmbeddingCache(clock=clock), cache_ttl_seconds=5)

        await service.embed(["stroma"])
        clock.now = FIXED_NOW + timedelta(seconds=6)
        await service.embed(["stroma"])

        assert embedding_backend.call_count == 2

    @pytest.mark.asyncio
    async def test_only_uncached_texts_reach_backend(self, embedding_backend):
        service = EmbeddingService(embedding_backend)
        await service.embed(["a", "b"])

        vectors = await service.embed(["b", "c", "a", "c"])

        assert embedding_backend.batches[-1] == ["c"]
        assert len(vectors) == 4
        assert vectors[1] == vectors[3]

    @pytest.mark.asyncio
    async def test_batches_never_exceed_one_hundred(self, embedding_backend):
        service = EmbeddingService(embedding_backend, batch_size=500)
        texts = [f"text {i}" for i in range(250)]

        vectors = await service.embed(texts)

        assert [len(batch) for batch in embedding_backend.batches] == [100, 100, 50]
        assert len(vectors) == 250

    @pytest.mark.asyncio
    async def test_cache_outage_degrades_to_backend(self, embedding_backend):
        broken = AsyncMock()
        broken.get.side_effect = ConnectionError("redis down")
        broken.set.side_effect = ConnectionError("redis down")
        broken.get_metrics = MagicMock(return_value={})
        service = EmbeddingService(embedding_backend, broken)

        vectors = await service.embed(["xylem", "phloem"])

        assert len(vectors) == 2
        assert embedding_backend.call_count == 1
        assert service.stats()["cache_errors"] == 4

    @pytest.mark.asyncio
    async def test_backend_failure_raises_embedding_error(self):
        service = EmbeddingService(CountingEmbeddingBackend(error=RuntimeError("quota exceeded")))

        with pytest.raises(EmbeddingError, match="quota exceeded"):
            await service.embed(["anything"])

    @pytest.mark.asyncio
    async def test_wrong_vector_count_raises(self):
        backend = AsyncMock()
        backend.embed.return_value = [[1.0]]
        service = EmbeddingService(backend)

        with pytest.raises(EmbeddingError):
            await service.embed(["one", "two"])

    @pytest.mark.asyncio
    async def test_cached_vectors_from_another_model_are_ignored(self, embedding_backend):
        cache = InMemoryEmbeddingCache()
        await cache.set(embedding_cache_key("leaf"), EmbeddingCacheEntry(embedding=[9.0], model="old"), 60)
        service = EmbeddingService(embedding_backend, cache, model="new")

        (vector,) = await service.embed(["leaf"])

        assert vector != [9.0]
        assert embedding_backend.call_count == 1

    @pytest.mark.asyncio
    async def test_chunk_and_embed(self, embedding_backend):
        service = EmbeddingService(embedding_backend)
        text = "Light reactions make ATP. " * 40

        embedded = await service.chunk_and_embed(
            text,
            ChunkContext(source_id="node", parent_topic="Photosynthesis"),
            ChunkingConfig(max_tokens=64, overlap=0),
        )

        assert len(embedded) > 1
        assert all(e.embedding for e in embedded)
        assert embedding_backend.batches[0][0].startswith("Topic: Photosynthesis")

    @pytest.mark.asyncio
    async def test_find_similar_ranks_by_cosine(self):
        backend = AsyncMock()
        backend.embed.return_value = [[1.0, 0.0]]
        service = EmbeddingService(backend, cache=None)

        matches = await service.find_similar("query", [[0.0, 1.0], [1.0, 0.1], [1.0, 0.0]], top_k=2)

        assert [m.index for m in matches] == [2, 1]
        assert matches[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_health_check_and_close(self, embedding_backend):
        service = EmbeddingService(embedding_backend)

        health = await service.health_check()
        await service.close()

        assert health == {"status": "healthy", "model": service.model, "dimensions": 4}
        assert embedding_backend.closed
        with pytest.raises(EmbeddingError):
            await service.embed(["after close"])

    @pytest.mark.asyncio
    async def test_unhealthy_backend(self):
        service = EmbeddingService(CountingEmbeddingBackend(error=RuntimeError("down")))

        health = await service.health_check()

        assert health["status"] == "unhealthy"


class TestVectorHelpers:
    def test_cosine_similarity_edge_cases(self):
        assert cosine_similarity([], [1.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)

    def test_pairwise_matrix_is_symmetric(self):
        sim = pairwise_cosine_matrix([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])

        assert sim[0][1] == pytest.approx(0.0)
        assert sim[0][2] == pytest.approx(sim[2][0])
        assert all(sim[i][i] == 1.0 for i in range(3))

    def test_cluster_by_threshold_joins_chains(self):
        sim = [
            [1.0, 0.9, 0.0, 0.0],
            [0.9, 1.0, 0.85, 0.0],
            [0.0, 0.85, 1.0, 0.0],
            [0.0, 0.0, 0.0, 1.0],
        ]

        assert cluster_by_threshold([10, 11, 12, 13], sim, 0.8) == [[10, 11, 12], [13]]
