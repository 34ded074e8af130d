"""TTL cache for fallback selections.

A cached selection is served again (stamped `fallback_cached`) for the same
language/difficulty bucket until it expires, which keeps fallback responses
stable while the backend is down. Entries are evicted least-recently-used
once `max_size` is reached.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .models import Challenge


@dataclass(slots=True)
class CacheEntry:
    challenge: Challenge
    expires_at: float


class FallbackCache:
    """Thread-safe LRU cache of `Challenge` objects with a fixed TTL."""

    def __init__(
        self,
        *,
        ttl: float = 600.0,
        max_size: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def key(language: str, difficulty: str) -> str:
        return f"{language}-{difficulty}"

    def get(self, key: str) -> Challenge | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= self._clock():
                if entry is not None:
                    del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.challenge

    def set(self, key: str, challenge: Challenge) -> None:
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1
            self._entries[key] = CacheEntry(challenge=challenge, expires_at=self._clock() + self.ttl)

    def clear(self) -> int:
        """Drop every entry; returns how many were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            return removed

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "maxSize": self.max_size,
                "ttlSeconds": self.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hitRate": round(self._hits / lookups, 4) if lookups else 0.0,
                "evictions": self._evictions,
                "keys": list(self._entries),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
