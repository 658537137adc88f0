"""In-process result cache with per-source TTL and a stale grace window.

Quick-commerce sources get a shorter TTL.
An entry past its TTL but within the grace window is still returned,
flagged stale; past the grace window it is dropped.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from pricehunt.config.settings import CacheConfig
from pricehunt.extraction.models import ExtractionCandidate


@dataclass
class _Entry:
    items: list[ExtractionCandidate]
    stored_at: float
    source_id: str


@dataclass
class CacheStats:
    total_entries: int
    hits: int
    misses: int


def cache_key(query: str, source_id: str, locale: str) -> str:
    return f"{query.lower().strip()}|{source_id}|{locale}"


class TTLResultCache:
    def __init__(
        self,
        config: CacheConfig | None = None,
        quick_commerce: Iterable[str] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or CacheConfig()
        self._quick_commerce = frozenset(quick_commerce)
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._last_sweep = clock()

    def ttl_for(self, source_id: str) -> float:
        if source_id in self._quick_commerce:
            return self._config.quick_commerce_ttl_s
        return self._config.ecommerce_ttl_s

    def get(
        self, query: str, source_id: str, locale: str
    ) -> tuple[list[ExtractionCandidate] | None, bool]:
        key = cache_key(query, source_id, locale)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None, False
            ttl = self.ttl_for(source_id)
            age = self._clock() - entry.stored_at
            if age <= ttl:
                self._hits += 1
                return list(entry.items), False
            if age <= ttl + self._config.stale_grace_s:
                self._hits += 1
                return list(entry.items), True
            del self._entries[key]
            self._misses += 1
            return None, False

    def set(
        self, query: str, source_id: str, locale: str, items: list[ExtractionCandidate]
    ) -> None:
        """Store ``items``; expired entries are swept at most once per cleanup interval."""
        now = self._clock()
        with self._lock:
            self._entries[cache_key(query, source_id, locale)] = _Entry(
                items=list(items), stored_at=now, source_id=source_id
            )
            if now - self._last_sweep >= self._config.cleanup_interval_s:
                self._sweep(now)

    def clear_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Drop every entry past its TTL and grace window. Returns the count removed."""
        with self._lock:
            return self._sweep(self._clock())

    def _sweep(self, now: float) -> int:
        self._last_sweep = now
        expired = [
            key
            for key, entry in self._entries.items()
            if now - entry.stored_at > self.ttl_for(entry.source_id) + self._config.stale_grace_s
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                total_entries=len(self._entries), hits=self._hits, misses=self._misses
            )
