# cache.py - Per-entity cache manager
"""
Read-through / write-through memoisation keyed by object id.

Each data access layer owns one CacheManager. Reads go through
``with_option_caching``; writes go through ``with_updating_cache`` or
``with_cache_id_deletion`` so the cache never serves a value older than
the last write made by this process. Entries expire after a TTL.
"""
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from config import CACHE_TTL_SECONDS
from logging_system import get_logger, LogCategory

K = TypeVar("K")
V = TypeVar("V")

logger = logging.getLogger("maproulette.cache")

# Every CacheManager registers itself so the whole process cache can be reset
_registry: List["CacheManager"] = []


class CacheManager(Generic[K, V]):
    """In-memory cache of domain records keyed by id"""

    def __init__(self, name: str, ttl_seconds: int = CACHE_TTL_SECONDS):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._store: Dict[K, Tuple[V, float]] = {}
        _registry.append(self)

    @property
    def size(self) -> int:
        return len(self._store)

    def _expired(self, expires: float) -> bool:
        return self.ttl_seconds > 0 and time.monotonic() > expires

    def get(self, key: K) -> Optional[V]:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires = entry
        if self._expired(expires):
            self._store.pop(key, None)
            return None
        return value

    def add(self, key: K, value: V) -> V:
        self._store[key] = (value, time.monotonic() + self.ttl_seconds)
        return value

    def remove(self, key: K) -> None:
        if self._store.pop(key, None) is not None:
            logger.debug("%s cache: evicted %s", self.name, key)

    def clear(self) -> None:
        self._store.clear()

    def find(self, predicate: Callable[[V], bool]) -> Optional[V]:
        """First live cached value matching the predicate"""
        for key in list(self._store):
            value = self.get(key)
            if value is not None and predicate(value):
                return value
        return None

    async def with_option_caching(
        self, key: K, loader: Callable[[], Awaitable[Optional[V]]]
    ) -> Optional[V]:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        if value is not None:
            self.add(key, value)
        return value

    async def with_updating_cache(
        self,
        key: K,
        retriever: Callable[[K], Awaitable[Optional[V]]],
        updater: Callable[[V], Awaitable[Optional[V]]],
    ) -> Optional[V]:
        current = self.get(key)
        if current is None:
            current = await retriever(key)
        if current is None:
            return None
        updated = await updater(current)
        if updated is None:
            self.remove(key)
        else:
            self.add(key, updated)
        return updated

    async def with_cache_id_deletion(
        self, ids: Iterable[K], deleter: Callable[[], Awaitable[Any]]
    ) -> Any:
        result = await deleter()
        ids = list(ids)
        for key in ids:
            self.remove(key)
        get_logger().info(
            f"{self.name} cache: evicted {len(ids)} entries",
            category=LogCategory.CACHE,
            metadata={"cache": self.name, "ids": [str(i) for i in ids]},
        )
        return result


def reset_caches() -> None:
    """Clear every registered cache"""
    for manager in _registry:
        manager.clear()
