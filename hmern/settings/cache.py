"""
Time-bounded read cache owned by a SettingsService instance.

An entry is served only while ``clock() - inserted_at < ttl``. ``clear()``
is the only invalidation: writers drop everything rather than guess which
keys a change touched.

``clear()`` also bumps ``generation``. A reader that loaded its value before
a clear passes the generation it started under to ``put`` and the value is
discarded, so a load racing a write can never repopulate the cache with the
pre-write view.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


@dataclass
class CacheEntry:
    value: Any
    inserted_at: float


@dataclass
class TTLCache:
    ttl: float = 300.0
    clock: Callable[[], float] = time.monotonic
    generation: int = 0
    _entries: dict[str, CacheEntry] = field(default_factory=dict)

    def get(self, key: str) -> Any | None:
        """Return the cached value if still fresh, else None (stale entries are dropped)."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() - entry.inserted_at >= self.ttl:
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: str, value: Any, *, generation: int | None = None) -> bool:
        """Store ``value``. Returns False (and stores nothing) if ``generation`` is outdated."""
        if generation is not None and generation != self.generation:
            return False
        self._entries[key] = CacheEntry(value=value, inserted_at=self.clock())
        return True

    def clear(self) -> None:
        self._entries.clear()
        self.generation += 1

    def __len__(self) -> int:
        return len(self._entries)
