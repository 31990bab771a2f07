"""
VariableCache - TTL + LRU cache fronting variable reads.

The cache is the only structure shared by concurrent macro runs. Every
lookup and mutation on the locking path holds one asyncio.Lock so the
read / reload / evict sequence is atomic. get_unlocked() is the synchronous
variant for concurrency-unaware callers; it gives up that guarantee.

Key scheme:
    GLOBAL variable: VAR_GLOBAL_{name}
    LOCAL variable:  VAR_LOCAL_{name}_{macro_id}
"""

import asyncio
import inspect
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 500
SWEEP_THRESHOLD = 0.8

Loader = Callable[[], Union[Any, Awaitable[Any]]]


def _now_ms() -> float:
    return time.monotonic() * 1000


def global_key(name: str) -> str:
    """Cache key of a GLOBAL variable."""
    return f"VAR_GLOBAL_{name}"


def local_key(name: str, macro_id: int) -> str:
    """Cache key of a LOCAL variable owned by macro_id."""
    return f"VAR_LOCAL_{name}_{macro_id}"


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl_ms: float

    def is_fresh(self, now: float) -> bool:
        return (now - self.stored_at) < self.ttl_ms


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expired_sweeps: int = 0
    size: int = 0


class VariableCache:
    """
    Bounded cache with per-entry TTL and least-recently-used eviction.

    Usage:
        cache = VariableCache(capacity=500)
        value = await cache.get(global_key("counter"), 60_000, load_counter)
        await cache.invalidate_variable("counter", macro_id=None)
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Args:
            capacity: Maximum number of entries before LRU eviction
            clock: Millisecond clock, defaults to a monotonic clock
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._clock = clock or _now_ms
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get(self, key: str, ttl_ms: float, loader: Loader) -> Any:
        """
        Return the cached value for key, reloading it when stale.

        The loader may be a plain callable or return an awaitable. Its result
        is cached even when it is None, so repeated misses stay cheap.
        """
        async with self._lock:
            hit, value = self._lookup(key)
            if hit:
                return value
            value = loader()
            if inspect.isawaitable(value):
                value = await value
            self._store(key, value, ttl_ms)
            return value

    def get_unlocked(self, key: str, ttl_ms: float, loader: Callable[[], Any]) -> Any:
        """Synchronous get without the lock. Not safe under concurrent runs."""
        hit, value = self._lookup(key)
        if hit:
            return value
        value = loader()
        self._store(key, value, ttl_ms)
        return value

    async def invalidate(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def invalidate_variable(self, name: str, macro_id: Optional[int]) -> None:
        """
        Drop the cache entries for one variable name.

        Removes the GLOBAL entry for name and, when macro_id is given, the
        LOCAL entry owned by that macro. LOCAL entries of other macros are
        left alone.
        """
        async with self._lock:
            self._entries.pop(global_key(name), None)
            if macro_id is not None:
                self._entries.pop(local_key(name, macro_id), None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        self._stats.size = len(self._entries)
        return CacheStats(**vars(self._stats))

    def _lookup(self, key: str) -> tuple[bool, Any]:
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self._clock()):
            self._entries.move_to_end(key)
            self._stats.hits += 1
            return True, entry.value
        self._stats.misses += 1
        return False, None

    def _store(self, key: str, value: Any, ttl_ms: float) -> None:
        if len(self._entries) >= self._capacity * SWEEP_THRESHOLD:
            self._sweep_expired()
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl_ms=ttl_ms)
        self._entries.move_to_end(key)
        while len(self._entries) > self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("Evicted cache entry %s", evicted)

    def _sweep_expired(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if not e.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self._stats.expired_sweeps += 1
            logger.debug("Swept %d expired cache entries", len(expired))
