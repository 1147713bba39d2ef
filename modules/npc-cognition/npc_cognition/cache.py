"""In-process TTL cache used for memory point and query caching."""

import time
from typing import Any, Optional


class TTLCache:
    """Simple in-memory cache with TTL expiration.

    Purely an optimization: callers must behave the same on a miss.
    """

    def __init__(self, ttl_seconds: float = 3600):
        self._cache: dict[str, tuple[Any, float]] = {}
        self._ttl = ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """Get value if exists and not expired."""
        if key in self._cache:
            value, timestamp = self._cache[key]
            if time.monotonic() - timestamp < self._ttl:
                return value
            # Expired, remove it
            del self._cache[key]
        return None

    def set(self, key: str, value: Any) -> None:
        """Set value with current timestamp."""
        self._cache[key] = (value, time.monotonic())

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with prefix. Returns the number dropped."""
        stale = [key for key in self._cache if key.startswith(prefix)]
        for key in stale:
            del self._cache[key]
        return len(stale)

    def clear(self) -> None:
        """Clear all cached values."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
