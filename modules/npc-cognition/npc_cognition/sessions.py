"""Keyed state with explicit expiry.

Replaces ad hoc timer handles: entries carry their own deadline and are
removed by `sweep()`, which owners call on their own schedule.
"""

import time
from typing import Any, Callable


class ExpiringRegistry:
    """Map of key -> (value, deadline) with checkable expiry.

    Args:
        ttl_seconds: Lifetime of an entry after its last touch.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    def touch(self, key: str, value: Any = None) -> None:
        """Insert or refresh an entry, restarting its lifetime."""
        self._entries[key] = (value, self._clock() + self.ttl_seconds)

    def is_active(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry[1] > self._clock()

    def sweep(self) -> list[str]:
        """Remove expired entries and return their keys."""
        now = self._clock()
        expired = [key for key, (_, deadline) in self._entries.items() if deadline <= now]
        for key in expired:
            del self._entries[key]
        return expired

    def __len__(self) -> int:
        return len(self._entries)
