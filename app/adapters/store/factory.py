"""Factory for the counter store selected by configuration."""

from __future__ import annotations

import logging

from app.adapters.store.base import AbstractCounterStore
from app.adapters.store.in_memory import InMemoryCounterStore
from app.adapters.store.redis_store import RedisCounterStore
from app.core.config import StoreSettings, settings
from app.core.errors import ValidationAppError

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("redis", "memory")


def create_counter_store(store_settings: StoreSettings | None = None) -> AbstractCounterStore:
    """Instantiate the counter store named by ``STORE_BACKEND``.

    Args:
        store_settings: Optional settings; defaults to the global settings.

    Returns:
        AbstractCounterStore: Configured store adapter.

    Raises:
        ValidationAppError: If the backend name is not supported.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "redis":
        return RedisCounterStore.from_url(
            cfg.redis_url,
            operation_timeout_seconds=cfg.operation_timeout_seconds,
            connect_timeout_seconds=cfg.connect_timeout_seconds,
            probe_interval_seconds=cfg.probe_interval_seconds,
            scan_batch_size=cfg.scan_batch_size,
        )

    if backend == "memory":
        logger.warning(
            "store.memory_backend",
            extra={"hint": "counters are per-process; do not run multiple workers"},
        )
        return InMemoryCounterStore()

    raise ValidationAppError(
        code="store_unknown_backend",
        message=(
            f"Unknown counter store backend: '{backend}'. "
            f"Supported backends: {', '.join(SUPPORTED_BACKENDS)}"
        ),
        details={"backend": backend},
    )
