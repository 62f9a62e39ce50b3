"""Backing stores for cached embeddings."""

from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import logfire
from pydantic import BaseModel, Field

from models.embeddings import EmbeddingCacheEntry


def _utc_now() -> datetime:
    return datetime.now(UTC)


class EmbeddingCacheStore(Protocol):
    """Key/value store for embeddings. Implementations may raise on outage."""

    async def get(self, key: str) -> EmbeddingCacheEntry | None: ...

    async def set(self, key: str, entry: EmbeddingCacheEntry, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def clear(self) -> int: ...

    def get_metrics(self) -> dict[str, Any]: ...


class CacheSlot(BaseModel):
    """Bookkeeping kept next to each cached embedding."""

    key: str
    created_at: datetime
    expires_at: datetime
    access_count: int = 0
    last_accessed: datetime
    size_bytes: int = Field(default=0, ge=0)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class InMemoryEmbeddingCache:
    """LRU embedding store with per-entry TTL and an entry/byte budget."""

    def __init__(
        self,
        max_entries: int = 10000,
        max_size_mb: float = 256.0,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """Initialize the store.

        Args:
            max_entries: Entries kept before least-recently-used eviction
            max_size_mb: Approximate memory budget for vectors
            clock: Source of "now", replaceable in tests
        """
        self.max_entries = max_entries
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self._clock = clock
        self._entries: OrderedDict[str, tuple[EmbeddingCacheEntry, CacheSlot]] = OrderedDict()
        self.total_size_bytes = 0
        self.metrics = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "expirations": 0,
            "total_requests": 0,
        }
        self.logger = logfire

    @staticmethod
    def _calculate_size(entry: EmbeddingCacheEntry) -> int:
        # float64 per component plus a rough allowance for the model name and timestamp
        return len(entry.embedding) * 8 + len(entry.model) + 64

    def _drop(self, key: str) -> None:
        _, slot = self._entries.pop(key)
        self.total_size_bytes -= slot.size_bytes

    def _enforce_limits(self) -> None:
        while self._entries and (
            len(self._entries) > self.max_entries or self.total_size_bytes > self.max_size_bytes
        ):
            key, (_, slot) = self._entries.popitem(last=False)
            self.total_size_bytes -= slot.size_bytes
            self.metrics["evictions"] += 1
            self.logger.debug("Evicted embedding cache entry", key=key)

    def cleanup_expired(self) -> int:
        """Remove expired entries and return how many were removed."""
        now = self._clock()
        expired = [key for key, (_, slot) in self._entries.items() if slot.is_expired(now)]
        for key in expired:
            self._drop(key)
        self.metrics["expirations"] += len(expired)
        return len(expired)

    async def get(self, key: str) -> EmbeddingCacheEntry | None:
        self.metrics["total_requests"] += 1
        found = self._entries.get(key)
        if found is None:
            self.metrics["misses"] += 1
            return None

        entry, slot = found
        now = self._clock()
        if slot.is_expired(now):
            # A concurrent writer may already have replaced the slot
            if self._entries.get(key) is found:
                self._drop(key)
            self.metrics["expirations"] += 1
            self.metrics["misses"] += 1
            return None

        slot.access_count += 1
        slot.last_accessed = now
        self._entries.move_to_end(key)
        self.metrics["hits"] += 1
        return entry

    async def set(self, key: str, entry: EmbeddingCacheEntry, ttl_seconds: int) -> None:
        if self.metrics["total_requests"] and self.metrics["total_requests"] % 100 == 0:
            self.cleanup_expired()

        now = self._clock()
        slot = CacheSlot(
            key=key,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            last_accessed=now,
            size_bytes=self._calculate_size(entry),
        )
        if key in self._entries:
            self._drop(key)
        self._entries[key] = (entry, slot)
        self.total_size_bytes += slot.size_bytes
        self._enforce_limits()

    async def delete(self, key: str) -> bool:
        if key not in self._entries:
            return False
        self._drop(key)
        return True

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        self.total_size_bytes = 0
        self.logger.info("Embedding cache cleared", entries=count)
        return count

    def get_metrics(self) -> dict[str, Any]:
        total = self.metrics["total_requests"]
        return {
            **self.metrics,
            "hit_rate": self.metrics["hits"] / max(total, 1),
            "num_entries": len(self._entries),
            "max_entries": self.max_entries,
            "current_size_mb": self.total_size_bytes / (1024 * 1024),
            "max_size_mb": self.max_size_bytes / (1024 * 1024),
        }

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["CacheSlot", "EmbeddingCacheStore", "InMemoryEmbeddingCache"]
