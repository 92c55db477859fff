"""Advisory in-process TTL cache.

Readers must tolerate misses: entries expire by TTL and are pruned by a
background task. Expired entries stay readable through `get_stale` until
pruned, which lets providers fall back to the last known value.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    stored_at: float


class TimedCache(Generic[K, V]):
    """Dictionary with per-cache TTL and a monotonic clock."""

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[K, _Entry[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: K) -> V | None:
        """Get a value younger than the TTL."""
        entry = self._entries.get(key)
        if entry is None or self._clock() - entry.stored_at > self.ttl_seconds:
            return None
        return entry.value

    def lookup(self, key: K) -> tuple[bool, V | None]:
        """Return (hit, value) for a fresh entry, so a cached None counts as a hit."""
        entry = self._entries.get(key)
        if entry is None or self._clock() - entry.stored_at > self.ttl_seconds:
            return False, None
        return True, entry.value

    def get_stale(self, key: K) -> V | None:
        """Get a value regardless of age."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: K, value: V) -> None:
        self._entries[key] = _Entry(value=value, stored_at=self._clock())

    def prune(self, grace_seconds: float = 60.0) -> int:
        """Drop entries older than TTL + grace. Returns the number removed."""
        cutoff = self._clock() - (self.ttl_seconds + grace_seconds)
        expired = [k for k, e in self._entries.items() if e.stored_at < cutoff]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
