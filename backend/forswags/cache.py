# forswags/cache.py
from __future__ import annotations

import time
from typing import Any, Callable, Optional

DEFAULT_MAX_ENTRIES = 10_000


class TTLCache:
    """
    Small key -> (value, expiry) cache.

    One instance per app (held on app.state) and passed in explicitly, so tests
    and other instances never share entries. `clock` is injectable for tests.

    Bounded: once `max_entries` is reached, a new key first purges expired
    entries and then, if still full, evicts the entry closest to expiry.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        now = self._clock()
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self.purge_expired(now)
            if len(self._entries) >= self.max_entries:
                soonest = min(self._entries, key=lambda k: self._entries[k][1])
                del self._entries[soonest]
        self._entries[key] = (value, now + self.ttl_seconds)

    def purge_expired(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
