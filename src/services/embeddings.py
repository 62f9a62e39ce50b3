"""Embedding service with a content-hash cache and chunk-aware helpers.

Design goals:
- Only texts missing from the cache are sent to the backend, in batches of at most 100
- A broken cache store never fails a request; it only costs recomputation
- A broken backend always fails the request; there are no placeholder vectors
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from hashlib import sha256
from typing import Any, Protocol

import logfire
import numpy as np
from openai import AsyncOpenAI

from core.exceptions import CacheError, EmbeddingError
from models.embeddings import (
    ChunkContext,
    ChunkingConfig,
    ContentChunk,
    EmbeddedChunk,
    EmbeddingCacheEntry,
    SimilarityMatch,
)
from services.chunking import TextChunker, build_embedding_text
from services.embedding_cache import EmbeddingCacheStore, InMemoryEmbeddingCache

Vector = list[float]

MAX_BATCH_SIZE = 100
DEFAULT_CACHE_TTL_SECONDS = 24 * 60 * 60


class EmbeddingBackend(Protocol):
    """Protocol for embedding backends."""

    async def embed(self, texts: list[str]) -> list[Vector]:
        """Embed a batch of texts into vector representations."""


@dataclass
class OpenAIEmbeddingBackend:
    """OpenAI embeddings over the async client."""

    model: str = "text-embedding-3-small"
    api_key: str | None = None
    _client: AsyncOpenAI | None = field(default=None, init=False, repr=False)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            # AsyncOpenAI falls back to OPENAI_API_KEY when api_key is None
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def embed(self, texts: list[str]) -> list[Vector]:  # pragma: no cover - network
        resp = await self._get_client().embeddings.create(model=self.model, input=texts)
        return [list(d.embedding) for d in sorted(resp.data, key=lambda d: d.index)]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


def embedding_cache_key(text: str) -> str:
    return f"embedding:{sha256(text.encode('utf-8')).hexdigest()}"


@dataclass
class EmbeddingService:
    """Embeds texts and chunks, reusing cached vectors where possible."""

    backend: EmbeddingBackend
    cache: EmbeddingCacheStore | None = field(default_factory=InMemoryEmbeddingCache)
    model: str = "text-embedding-3-small"
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    batch_size: int = MAX_BATCH_SIZE
    chunker: TextChunker = field(default_factory=TextChunker)
    _closed: bool = field(default=False, init=False, repr=False)
    _metrics: dict[str, int] = field(
        default_factory=lambda: {
            "backend_calls": 0,
            "texts_embedded": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "cache_errors": 0,
        },
        init=False,
        repr=False,
    )

    def __post_init__(self) -> None:
        self.batch_size = max(1, min(self.batch_size, MAX_BATCH_SIZE))

    async def embed(self, texts: Sequence[str]) -> list[Vector]:
        """Embed ``texts`` and return vectors in the same order.

        Raises:
            EmbeddingError: If the backend fails or the service is closed
        """
        if self._closed:
            raise EmbeddingError("service is closed")
        if not texts:
            return []

        vectors: list[Vector | None] = [None] * len(texts)
        # Identical texts in one request share a single backend slot
        pending: dict[str, list[int]] = {}
        for i, text in enumerate(texts):
            key = embedding_cache_key(text)
            if key in pending:
                pending[key].append(i)
                continue
            cached = await self._cache_get(key)
            if cached is not None:
                vectors[i] = cached.embedding
                self._metrics["cache_hits"] += 1
            else:
                pending[key] = [i]
                self._metrics["cache_misses"] += 1

        keys = list(pending)
        for offset in range(0, len(keys), self.batch_size):
            batch_keys = keys[offset : offset + self.batch_size]
            batch_texts = [texts[pending[k][0]] for k in batch_keys]
            computed = await self._call_backend(batch_texts)
            for key, vector in zip(batch_keys, computed, strict=True):
                for i in pending[key]:
                    vectors[i] = vector
                await self._cache_set(key, vector)

        return [v if v is not None else [] for v in vectors]

    async def embed_chunks(self, chunks: Sequence[ContentChunk]) -> list[EmbeddedChunk]:
        """Embed chunks using their hierarchy-prefixed text."""
        vectors = await self.embed([build_embedding_text(chunk) for chunk in chunks])
        return [
            EmbeddedChunk(chunk=chunk, embedding=vector)
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]

    async def chunk_and_embed(
        self,
        text: str,
        context: ChunkContext,
        config: ChunkingConfig | None = None,
    ) -> list[EmbeddedChunk]:
        chunks = self.chunker.chunk(text, context, config)
        logfire.debug("Chunked text for embedding", source_id=context.source_id, chunks=len(chunks))
        return await self.embed_chunks(chunks)

    async def find_similar(
        self, query: str, candidates: Sequence[Vector], top_k: int = 5, min_score: float = 0.0
    ) -> list[SimilarityMatch]:
        """Rank candidate vectors by cosine similarity to ``query``."""
        if not candidates or top_k <= 0:
            return []
        (query_vector,) = await self.embed([query])
        scores = cosine_similarities(query_vector, candidates)
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            SimilarityMatch(index=int(i), score=float(scores[i]))
            for i in order
            if scores[i] >= min_score
        ]

    async def _call_backend(self, batch: list[str]) -> list[Vector]:
        self._metrics["backend_calls"] += 1
        try:
            computed = await self.backend.embed(batch)
        except Exception as exc:
            logfire.error("Embedding backend failed", batch_size=len(batch), error=str(exc))
            raise EmbeddingError(str(exc), batch_size=len(batch)) from exc
        if len(computed) != len(batch):
            raise EmbeddingError(
                f"backend returned {len(computed)} vectors for {len(batch)} texts",
                batch_size=len(batch),
            )
        self._metrics["texts_embedded"] += len(batch)
        return [list(map(float, v)) for v in computed]

    async def _cache_get(self, key: str) -> EmbeddingCacheEntry | None:
        if self.cache is None:
            return None
        try:
            entry = await self.cache.get(key)
        except Exception as exc:
            self._record_cache_failure(CacheError("read", str(exc)))
            return None
        if entry is not None and entry.model != self.model:
            return None
        return entry

    async def _cache_set(self, key: str, vector: Vector) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(
                key, EmbeddingCacheEntry(embedding=vector, model=self.model), self.cache_ttl_seconds
            )
        except Exception as exc:
            self._record_cache_failure(CacheError("write", str(exc)))

    def _record_cache_failure(self, error: CacheError) -> None:
        self._metrics["cache_errors"] += 1
        logfire.warning(error.message, error_code=error.error_code, **error.details)

    async def clear_cache(self) -> int:
        if self.cache is None:
            return 0
        try:
            return await self.cache.clear()
        except Exception as exc:
            self._record_cache_failure(CacheError("clear", str(exc)))
            return 0

    def stats(self) -> dict[str, Any]:
        cache_metrics: dict[str, Any] = {}
        if self.cache is not None:
            try:
                cache_metrics = self.cache.get_metrics()
            except Exception as exc:
                self._record_cache_failure(CacheError("stats", str(exc)))
        return {
            "model": self.model,
            "batch_size": self.batch_size,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            **self._metrics,
            "cache": cache_metrics,
        }

    async def health_check(self) -> dict[str, Any]:
        """Embed a fixed string directly against the backend, bypassing the cache."""
        try:
            (vector,) = await self._call_backend(["health check"])
        except EmbeddingError as exc:
            return {"status": "unhealthy", "model": self.model, "error": exc.message}
        return {"status": "healthy", "model": self.model, "dimensions": len(vector)}

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self.backend, "aclose", None)
        if aclose is not None:
            await aclose()
        logfire.info("Embedding service closed", **self._metrics)


def cosine_similarity(u: Iterable[float], v: Iterable[float]) -> float:
    """Compute cosine similarity, returning 0.0 for empty or zero vectors."""
    a = np.asarray(list(u), dtype=float)
    b = np.asarray(list(v), dtype=float)
    if a.size == 0 or b.size == 0 or a.shape != b.shape:
        return 0.0
    na = np.linalg.norm(a)
    nb = np.linalg.norm(b)
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(a, b) / (na * nb))


def cosine_similarities(query: Vector, candidates: Sequence[Vector]) -> np.ndarray:
    """Cosine similarity of ``query`` against each candidate row."""
    matrix = np.asarray(candidates, dtype=float)
    q = np.asarray(query, dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)


def pairwise_cosine_matrix(vectors: Sequence[Vector]) -> list[list[float]]:
    """Return a symmetric cosine similarity matrix for vectors."""
    if not vectors:
        return []
    matrix = np.asarray(vectors, dtype=float)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    normalized = np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms != 0)
    sim = normalized @ normalized.T
    np.fill_diagonal(sim, 1.0)
    return sim.tolist()


def cluster_by_threshold(
    indices: list[int], sim: list[list[float]], threshold: float
) -> list[list[int]]:
    """Connectivity clustering: items joined by any chain of pairs with similarity >= threshold.

    Clusters come out in order of their lowest position, and members in discovery
    order, so the result depends only on the order of ``indices``.
    """
    n = len(indices)
    visited = [False] * n
    clusters: list[list[int]] = []

    for i in range(n):
        if visited[i]:
            continue
        stack = [i]
        visited[i] = True
        group = [indices[i]]
        while stack:
            k = stack.pop()
            for j in range(n):
                if not visited[j] and sim[k][j] >= threshold:
                    visited[j] = True
                    stack.append(j)
                    group.append(indices[j])
        clusters.append(group)

    return clusters


__all__ = [
    "EmbeddingBackend",
    "EmbeddingService",
    "MAX_BATCH_SIZE",
    "OpenAIEmbeddingBackend",
    "Vector",
    "cluster_by_threshold",
    "cosine_similarities",
    "cosine_similarity",
    "embedding_cache_key",
    "pairwise_cosine_matrix",
]
