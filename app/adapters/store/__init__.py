"""Shared counter store adapters.

The quota engine depends on ``AbstractCounterStore`` only, so the backing
store can be Redis in production and a process-local dictionary in tests or
single-process development.
"""

from __future__ import annotations

from app.adapters.store.base import AbstractCounterStore, StoreUnavailable
from app.adapters.store.factory import create_counter_store
from app.adapters.store.in_memory import InMemoryCounterStore
from app.adapters.store.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "StoreUnavailable",
    "create_counter_store",
]
