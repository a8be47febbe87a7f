# Cube Query MCP Server
# File: cache.py
# Version: v1

"""In-process TTL cache for the engine's cube catalog.

Only read-only listings go through here. ``selectCube`` is never cached: it
has a side effect on the engine (it switches the engine's active cube).
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    stores: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0


class CatalogCache:
    """TTL cache with oldest-first eviction once ``max_entries`` is exceeded.

    A TTL or size of 0 disables the cache; every lookup is then a miss.
    """

    def __init__(
        self,
        ttl_seconds: int = 60,
        max_entries: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = int(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0 and self.max_entries > 0

    def lookup(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        entry = self._entries.get(key) if self.enabled else None
        if entry is None:
            self._stats.misses += 1
            return None

        expires_at, value = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            self._stats.misses += 1
            self._stats.expirations += 1
            return None

        self._entries.move_to_end(key)
        self._stats.hits += 1
        return value

    def store(self, key: Hashable, value: Any) -> None:
        if not self.enabled:
            return

        self._entries[key] = (self._clock() + float(self.ttl_seconds), value)
        self._entries.move_to_end(key)
        self._stats.stores += 1

        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self._stats.evictions += 1

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or everything when ``key`` is None."""
        if key is None:
            dropped = len(self._entries)
            self._entries.clear()
        else:
            dropped = 1 if self._entries.pop(key, None) is not None else 0
        self._stats.invalidations += dropped

    def stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "ttl_seconds": self.ttl_seconds,
            "max_entries": self.max_entries,
            "size": len(self._entries),
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "stores": self._stats.stores,
            "evictions": self._stats.evictions,
            "expirations": self._stats.expirations,
            "invalidations": self._stats.invalidations,
        }
