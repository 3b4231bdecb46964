"""Short-lived in-memory cache for derived session identifiers."""

from __future__ import annotations

import logging
from typing import Any

from gymauth.models.session import CacheEntry
from gymauth.primitives.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class SessionCache:
    """TTL cache local to one session client.

    Entries older than the TTL are treated as absent and evicted on the
    next read; there is no background sweep.
    """

    def __init__(self, ttl: float = 30.0, clock: Clock | None = None):
        self.ttl = ttl
        self._clock = clock or SystemClock()
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock.time(), self.ttl):
            logger.debug(f"Cache entry '{key}' expired")
            del self._entries[key]
            return None

        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock.time())

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
