"""Lock-guarded TTL cache for raw artifact bytes, injected into the context router."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from intentforge.constants import DEFAULT_CACHE_TTL_SECONDS
from intentforge.utils.concurrency import Clock, monotonic_clock


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    entries: int


@dataclass(frozen=True, slots=True)
class _Entry:
    value: bytes
    expires_at: float


class ArtifactCache:
    """Thread-safe TTL cache.

    ``set`` is idempotent: inserting a path that already holds a live entry keeps the
    first value, so concurrent misses on the same path converge on one cached copy.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._ttl_seconds = float(ttl_seconds)
        self._clock = clock if clock is not None else monotonic_clock
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._hits = 0
        self._misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get(self, key: str) -> bytes | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at > now:
                self._hits += 1
                return entry.value
            if entry is not None:
                del self._entries[key]
            self._misses += 1
            return None

    def set(self, key: str, value: bytes) -> bytes:
        """Insert ``value`` unless a live entry exists; return the cached value."""

        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at > now:
                return entry.value
            self._entries[key] = _Entry(value=value, expires_at=now + self._ttl_seconds)
            return value

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, entries=len(self._entries))


__all__ = ["ArtifactCache", "CacheStats"]
