"""Injectable key/value cache with per-entry TTL.

:class:`SessionAgentProvider` keeps authenticated protocol clients here so
that discovery and key loading are not repeated for every request.  The
in-process implementation has no locking: two concurrent misses for the
same key may both build a value, and the last ``set`` wins.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol


class TTLCache(Protocol):
    """Cache interface used by the session layer."""

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` if absent or expired."""

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store *value* under *key* for *ttl_seconds*."""

    def evict(self, key: str) -> None:
        """Remove *key* if present.  Never raises for a missing key."""


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


class InMemoryTTLCache:
    """Process-local :class:`TTLCache` backed by a dict.

    Expiry is checked at read time; expired entries are dropped lazily.

    Args:
        clock: Monotonic time source in seconds.  Injected by tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, _CacheEntry] = {}
        self._clock = clock

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = _CacheEntry(
            value=value, expires_at=self._clock() + ttl_seconds
        )

    def evict(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


_client_cache: InMemoryTTLCache | None = None


def get_client_cache() -> InMemoryTTLCache:
    """Return the process-wide authenticated-client cache."""
    global _client_cache
    if _client_cache is None:
        _client_cache = InMemoryTTLCache()
    return _client_cache
