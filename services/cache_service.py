"""
In-memory TTL caches with LRU, LFU or FIFO eviction.

Single process only: every worker keeps its own caches.
"""

import hashlib
import json
import threading
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Optional
import structlog

from config import settings

logger = structlog.get_logger(__name__)

STRATEGIES = ("lru", "lfu", "fifo")


@dataclass
class CacheEntry:
    """Cached value with bookkeeping for expiry and eviction."""
    value: Any
    timestamp: float
    ttl: float
    access_count: int = 0
    last_accessed: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


class MemoryCache:
    """
    TTL cache with a size cap.

    Args:
        ttl: Default time to live in seconds (CACHE_TTL when omitted)
        max_size: Entries kept before evicting
        strategy: "lru", "lfu" or "fifo"
        clock: Time source in seconds, injectable for tests
    """

    def __init__(
        self,
        ttl: Optional[int] = None,
        max_size: int = 1000,
        strategy: str = "lru",
        clock: Callable[[], float] = time.time,
    ):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown cache strategy: {strategy}")
        self.ttl = ttl if ttl is not None else settings.cache_ttl
        self.max_size = max_size
        self.strategy = strategy
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store value. A new key at capacity evicts one entry first."""
        now = self._clock()
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self.cleanup()
                if len(self._entries) >= self.max_size:
                    self._evict()

            self._entries[key] = CacheEntry(
                value=value,
                timestamp=now,
                ttl=ttl if ttl is not None else self.ttl,
                last_accessed=now,
            )

    def get(self, key: str) -> Optional[Any]:
        """Return cached value, or None when missing or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(now):
                del self._entries[key]
                self._misses += 1
                return None

            entry.access_count += 1
            entry.last_accessed = now
            self._hits += 1
            return entry.value

    def has(self, key: str) -> bool:
        """Check presence without touching hit/miss counters."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries.keys())

    def cleanup(self) -> int:
        """Remove expired entries. Returns how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return cached value or compute, store and return it."""
        value = self.get(key)
        if value is not None:
            return value
        value = factory()
        self.set(key, value, ttl)
        return value

    def stats(self) -> dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._entries),
                "hit_rate": self._hits / total if total > 0 else 0,
                "evictions": self._evictions,
            }

    def _evict(self) -> None:
        if not self._entries:
            return

        if self.strategy == "lru":
            key = min(self._entries, key=lambda k: self._entries[k].last_accessed)
        elif self.strategy == "lfu":
            key = min(self._entries, key=lambda k: self._entries[k].access_count)
        else:
            key = min(self._entries, key=lambda k: self._entries[k].timestamp)

        del self._entries[key]
        self._evictions += 1
        logger.debug("cache_evicted", key=key, strategy=self.strategy)


def _digest(data: str) -> str:
    return hashlib.md5(data.encode("utf-8")).hexdigest()[:16]


class DataTypeCache(MemoryCache):
    """Type inference results keyed by a hash of the samples."""

    def __init__(self, **kwargs):
        super().__init__(ttl=1800, max_size=500, strategy="lru", **kwargs)

    def cache_inference_result(self, data: str, result: Any) -> None:
        self.set(f"inference:{_digest(data)}", result)

    def get_inference_result(self, data: str) -> Optional[Any]:
        return self.get(f"inference:{_digest(data)}")


class ValidationCache(MemoryCache):
    """Validation results keyed by data type and value."""

    def __init__(self, **kwargs):
        super().__init__(ttl=900, max_size=200, strategy="lfu", **kwargs)

    def cache_validation_result(self, schema: str, data: str, result: Any) -> None:
        self.set(f"validation:{schema}:{_digest(data)}", result)

    def get_validation_result(self, schema: str, data: str) -> Optional[Any]:
        return self.get(f"validation:{schema}:{_digest(data)}")


class APICache(MemoryCache):
    """External API responses keyed by endpoint and parameters."""

    def __init__(self, **kwargs):
        super().__init__(ttl=3600, max_size=100, strategy="lru", **kwargs)

    @staticmethod
    def _key(endpoint: str, params: Any) -> str:
        return f"api:{endpoint}:{json.dumps(params, sort_keys=True, default=str)}"

    def cache_api_response(self, endpoint: str, params: Any, response: Any) -> None:
        self.set(self._key(endpoint, params), response)

    def get_api_response(self, endpoint: str, params: Any) -> Optional[Any]:
        return self.get(self._key(endpoint, params))


class CacheManager:
    """Holds the process-wide caches."""

    CACHE_NAMES = ("data_type", "validation", "api", "general")

    def __init__(self):
        self.data_type = DataTypeCache()
        self.validation = ValidationCache()
        self.api = APICache()
        self.general = MemoryCache()

    def get_cache(self, name: str) -> MemoryCache:
        """Cache by name. Unknown names fall back to the general cache."""
        if name in self.CACHE_NAMES:
            return getattr(self, name)
        return self.general

    def get_all_stats(self) -> dict[str, dict]:
        return {name: getattr(self, name).stats() for name in self.CACHE_NAMES}

    def clear_all(self) -> None:
        for name in self.CACHE_NAMES:
            getattr(self, name).clear()
        logger.info("caches_cleared")


# Singleton instance
_cache_manager: Optional[CacheManager] = None


def get_cache_manager() -> CacheManager:
    """Get or create cache manager instance."""
    global _cache_manager
    if _cache_manager is None:
        _cache_manager = CacheManager()
    return _cache_manager


def cached(
    cache_name: str = "general",
    ttl: Optional[int] = None,
    key_func: Optional[Callable[..., str]] = None,
):
    """
    Memoize a function in one of the managed caches.

    Usage:
        @cached("api", ttl=600)
        def fetch(endpoint, params): ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            cache = get_cache_manager().get_cache(cache_name)
            if key_func is not None:
                key = key_func(*args, **kwargs)
            else:
                key = f"{func.__module__}.{func.__qualname__}:" + json.dumps(
                    [args, kwargs], sort_keys=True, default=str
                )
            return cache.get_or_set(key, lambda: func(*args, **kwargs), ttl)
        return wrapper
    return decorator
