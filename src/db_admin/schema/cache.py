"""TTL cache for schema introspection results.

A ``SchemaCache`` instance is created once per process by the service
factory and passed to everything that introspects. Tests build isolated
instances with a controllable clock.

Reads and writes of the underlying dict are serialized by one lock. The
loader passed to ``get_or_load`` runs outside the lock, so concurrent
misses never wait on each other.

Usage:
    cache = SchemaCache(ttl=300)
    key = cache.generate_key("books", "schema")
    schema, cached = await cache.get_or_load(key, lambda: introspector.get_table_schema("books"))
"""

import hashlib
import json
import logging
import re
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0

_MISSING = object()


@dataclass
class CacheEntry:
    key: str
    value: Any
    stored_at: float


class SchemaCache:
    """In-memory TTL cache with pattern invalidation and hit/miss accounting.

    Args:
        ttl: Entry lifetime in seconds (default 5 minutes).
        clock: Monotonic time source; override in tests to advance time.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self.init()

    def init(self) -> None:
        """(Re)initialize storage and counters."""
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def generate_key(table: str, kind: str, params: dict[str, Any] | None = None) -> str:
        """Deterministic key for ``(kind, table, params)``.

        Params are serialized with sorted keys so logically identical
        requests share a slot regardless of argument order.

        Example:
            >>> SchemaCache.generate_key("books", "relationships", {"depth": 2}) == \\
            ...     SchemaCache.generate_key("books", "relationships", {"depth": 2})
            True
        """
        key = f"{kind}:{table}"
        if params:
            encoded = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
            key += ":" + hashlib.sha256(encoded.encode()).hexdigest()[:16]
        return key

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at > self.ttl

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` on a miss or expiry."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def _lookup(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                logger.debug("Schema cache miss: %s", key)
                return _MISSING
            if self._expired(entry, self._clock()):
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                logger.debug("Schema cache expired: %s", key)
                return _MISSING
            self._hits += 1
            logger.debug("Schema cache hit: %s", key)
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock())

    def has(self, key: str) -> bool:
        """True if ``key`` holds an unexpired value (does not count as a hit)."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._expired(entry, self._clock())

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        refresh: bool = False,
    ) -> tuple[Any, bool]:
        """Return ``(value, cached)``, calling ``loader`` on a miss.

        Args:
            key: Cache key from ``generate_key``.
            loader: Zero-argument coroutine function producing the value.
            refresh: Skip the lookup and reload unconditionally.
        """
        if not refresh:
            value = self._lookup(key)
            if value is not _MISSING:
                return value, True

        value = await loader()
        self.set(key, value)
        return value, False

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Drop every key matching the regex ``pattern``; return the count."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            doomed = [key for key in self._entries if regex.search(key)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d schema cache entries for %s", len(doomed), regex.pattern)
        return len(doomed)

    def invalidate_table(self, table: str) -> int:
        """Drop all entries for ``table`` plus table listings."""
        count = self.invalidate_pattern(rf"^[a-z_]+:{re.escape(table)}(:|$)")
        return count + self.invalidate_pattern(r"^tables:")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Evict expired entries; return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in expired:
                del self._entries[key]
            self._evictions += len(expired)
        return len(expired)

    @property
    def size(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "size": len(self._entries),
                "hit_rate": round(self._hits / total, 4) if total else 0.0,
                "ttl": self.ttl,
            }
