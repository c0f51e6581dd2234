"""TTL result cache for option lists, search pages and resolved hierarchies.

Shared across form sessions. An expired entry is removed when it is read
and reported as a miss; put() also sweeps expired entries once per TTL
period. The map is bounded: past max_entries the least recently used entry
is dropped. Errors are never cached: get_or_load only stores values
returned by a loader that did not raise.

All map mutations happen under one lock, so concurrent readers and
writers (threads or tasks) never see a torn structure.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, NamedTuple, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600.0
DEFAULT_MAX_ENTRIES = 2048

T = TypeVar("T")


class CacheKey(NamedTuple):
    """(operation, level, parent_code, query) — the full cache identity."""

    operation: str
    level: str = ""
    parent_code: str = ""
    query: str = ""


@dataclass
class _Entry:
    value: Any
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class ResultCache:
    """Thread/task-safe, size-bounded LRU/TTL map keyed by CacheKey."""

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()
        self._next_sweep = clock() + ttl_seconds
        self._lock = threading.Lock()
        self.stats = CacheStats()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def get(self, key: CacheKey) -> tuple[bool, Any]:
        """Return (hit, value). Expired entries are evicted and miss."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return False, None
            if entry.expires_at <= now:
                del self._entries[key]
                self.stats.evictions += 1
                self.stats.misses += 1
                logger.debug("Cache entry expired: %s", key)
                return False, None
            self._entries.move_to_end(key)
            self.stats.hits += 1
            return True, entry.value

    def put(self, key: CacheKey, value: Any) -> None:
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            self._entries[key] = _Entry(value=value, expires_at=now + self._ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self.stats.evictions += 1
                logger.debug("Cache full, evicted least recently used: %s", evicted)

    def _sweep(self, now: float) -> None:
        """Drop every expired entry. Caller holds the lock."""
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]
        self.stats.evictions += len(expired)
        self._next_sweep = now + self._ttl
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))

    def evict(self, key: CacheKey) -> bool:
        """Remove key. Returns True if an entry was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get_or_load(
        self, key: CacheKey, loader: Callable[[], Awaitable[T]],
    ) -> T:
        """Return the cached value for key, or await loader and cache it.

        If loader raises, nothing is stored and the exception propagates.
        """
        hit, value = self.get(key)
        if hit:
            return value
        logger.debug("Cache miss: %s", key)
        value = await loader()
        self.put(key, value)
        return value
