"""
In-memory TTL cache.

Holds manifest resolution results keyed by the original stream URL.
Entries are checked for freshness on read; an expired entry is removed
the first time it is looked up.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300


@dataclass
class CacheEntry(Generic[T]):
    data: T
    cached_at: float


class Cache:
    """
    Key/value cache with a per-read time-to-live.

    The clock is injectable so expiry can be driven deterministically;
    it defaults to time.time.
    """

    def __init__(self, default_ttl: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self._default_ttl = default_ttl
        self._clock = clock
        self._cache: dict[str, CacheEntry[Any]] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str, ttl: Optional[int] = None) -> Optional[Any]:
        """Return the value for key if it is younger than ttl seconds, else None."""
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        max_age = self._default_ttl if ttl is None else ttl
        if self._clock() - entry.cached_at >= max_age:
            del self._cache[key]
            self._misses += 1
            return None

        self._hits += 1
        return entry.data

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = CacheEntry(data=value, cached_at=self._clock())

    def invalidate(self, key: str) -> bool:
        if key in self._cache:
            del self._cache[key]
            return True
        return False

    def invalidate_prefix(self, prefix: str) -> int:
        keys = [k for k in self._cache if k.startswith(prefix)]
        for key in keys:
            del self._cache[key]
        if keys:
            logger.debug("[RESOLVE] Invalidated %s cache entries with prefix %s", len(keys), prefix)
        return len(keys)

    def clear(self) -> int:
        count = len(self._cache)
        self._cache.clear()
        logger.info("[RESOLVE] Cleared %s cache entries", count)
        return count

    def stats(self) -> dict:
        total = self._hits + self._misses
        now = self._clock()
        return {
            "entry_count": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate_percent": round(self._hits / total * 100, 1) if total else 0,
            "ttl_seconds": self._default_ttl,
            "entries": [
                {"key": key, "age_seconds": round(now - entry.cached_at, 1)}
                for key, entry in self._cache.items()
            ],
        }


_cache: Optional[Cache] = None


def get_cache() -> Cache:
    """Get the process-wide resolution cache."""
    global _cache
    if _cache is None:
        _cache = Cache(default_ttl=get_settings().resolution_cache_ttl)
    return _cache


def set_cache(cache: Optional[Cache]) -> None:
    global _cache
    _cache = cache
