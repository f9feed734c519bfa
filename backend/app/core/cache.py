"""In-process TTL cache used for short-lived read-through lookups."""

from __future__ import annotations

import time
from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Small key/value store whose entries expire ``ttl_seconds`` after being set.

    Created once at startup and handed to request handlers through
    ``app.state``; nothing in the app reaches for a module-level instance.
    When ``max_entries`` is reached the oldest 10% of entries are evicted.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        # {key: (value, expiry_timestamp)}, insertion ordered
        self._entries: Dict[Hashable, Tuple[V, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expiry = entry
        if self._clock() >= expiry:
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: V) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            evict = max(1, int(self.max_entries * 0.1))
            for stale in list(self._entries.keys())[:evict]:
                del self._entries[stale]
        self._entries.pop(key, None)
        self._entries[key] = (value, self._clock() + self.ttl_seconds)

    def invalidate(self, key: Hashable | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get_or_load(
        self, key: Hashable, loader: Callable[[], Awaitable[Optional[V]]]
    ) -> Optional[V]:
        """Return the cached value or await ``loader`` and cache a non-None result."""

        cached = self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        if value is not None:
            self.set(key, value)
        return value
