"""In-memory counter store.

Notes:
- Per-process only: running multiple workers gives every worker its own
  counters, so quotas are no longer shared. Use Redis for deployments.
- Thread-safe: uses a lock around shared state.
- Expired keys are purged lazily on access.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.store.base import AbstractCounterStore, StoreUnavailable


@dataclass
class _Entry:
    value: int
    expires_at: float | None = None


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store backed by a dictionary with expiry timestamps.

    Mirrors the Redis semantics the quota engine relies on: INCR creates a
    key without expiry, EXPIRE only applies to existing keys, and expired
    keys are invisible to every read.

    ``set_available(False)`` simulates an outage: every operation then
    returns ``StoreUnavailable`` exactly like the Redis adapter does.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}
        self._available = True

    def set_available(self, available: bool) -> None:
        self._available = available

    def _outage(self, operation: str) -> StoreUnavailable | None:
        if self._available:
            return None
        return StoreUnavailable(operation=operation, reason="offline")

    def _live_entry(self, key: str, now: float) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def _purge_expired(self, now: float) -> None:
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.expires_at is not None and entry.expires_at <= now
        ]
        for key in expired:
            del self._entries[key]

    async def increment(self, key: str) -> int | StoreUnavailable:
        outage = self._outage("increment")
        if outage is not None:
            return outage

        with self._lock:
            now = self._clock()
            entry = self._live_entry(key, now)
            if entry is None:
                entry = _Entry(value=0)
                self._entries[key] = entry
            entry.value += 1
            return entry.value

    async def set_expiry(self, key: str, ttl_seconds: int) -> bool | StoreUnavailable:
        outage = self._outage("set_expiry")
        if outage is not None:
            return outage
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")

        with self._lock:
            now = self._clock()
            entry = self._live_entry(key, now)
            if entry is None:
                return False
            entry.expires_at = now + ttl_seconds
            return True

    async def get(self, key: str) -> int | None | StoreUnavailable:
        outage = self._outage("get")
        if outage is not None:
            return outage

        with self._lock:
            entry = self._live_entry(key, self._clock())
            return entry.value if entry is not None else None

    async def delete(self, key: str) -> int | StoreUnavailable:
        outage = self._outage("delete")
        if outage is not None:
            return outage

        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is None:
                return 0
            del self._entries[key]
            return 1

    async def delete_by_prefix(self, prefix: str) -> int | StoreUnavailable:
        outage = self._outage("delete_by_prefix")
        if outage is not None:
            return outage

        with self._lock:
            self._purge_expired(self._clock())
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    async def keys_with_prefix(self, prefix: str) -> list[str] | StoreUnavailable:
        outage = self._outage("keys_with_prefix")
        if outage is not None:
            return outage

        with self._lock:
            self._purge_expired(self._clock())
            return sorted(key for key in self._entries if key.startswith(prefix))

    async def is_available(self) -> bool:
        return self._available

    def ttl(self, key: str) -> int | None:
        """Remaining TTL of ``key`` in whole seconds (None if absent or persistent)."""

        with self._lock:
            now = self._clock()
            entry = self._live_entry(key, now)
            if entry is None or entry.expires_at is None:
                return None
            return max(0, math.ceil(entry.expires_at - now))
