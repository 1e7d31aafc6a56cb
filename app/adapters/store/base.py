"""Counter store interfaces.

The quota engine should depend on this abstraction (not the concrete
implementation) so the storage backend can be swapped without changing the
enforcement logic.

Failure contract:
    Adapters never raise for connectivity problems. Any operation that fails
    or exceeds its timeout returns a ``StoreUnavailable`` value describing the
    failure. Callers branch on it explicitly (``isinstance(result,
    StoreUnavailable)``) and decide how to degrade.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class StoreUnavailable:
    """Result variant returned when the store cannot serve an operation.

    Attributes:
        operation: Name of the adapter method that failed (e.g., "increment").
        reason: Short diagnostic (exception type or "timeout").
    """

    operation: str
    reason: str


class AbstractCounterStore(ABC):
    """Interface for a TTL-capable keyed counter store."""

    @abstractmethod
    async def increment(self, key: str) -> int | StoreUnavailable:
        """Atomically add one to ``key`` and return the new value.

        A missing key counts as zero, so the first increment returns 1.
        """
        raise NotImplementedError

    @abstractmethod
    async def set_expiry(self, key: str, ttl_seconds: int) -> bool | StoreUnavailable:
        """Set the time-to-live of ``key``.

        Idempotent: calling it again resets the TTL to ``ttl_seconds``.

        Returns:
            True if the key exists and the expiry was set.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> int | None | StoreUnavailable:
        """Read the counter stored at ``key`` (None when absent)."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> int | StoreUnavailable:
        """Delete ``key`` and return the number of keys removed (0 or 1)."""
        raise NotImplementedError

    @abstractmethod
    async def delete_by_prefix(self, prefix: str) -> int | StoreUnavailable:
        """Delete every key starting with ``prefix``; return how many were removed."""
        raise NotImplementedError

    @abstractmethod
    async def keys_with_prefix(self, prefix: str) -> list[str] | StoreUnavailable:
        """List every live key starting with ``prefix``.

        This is a full scan and is intended for administrative use only.
        """
        raise NotImplementedError

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap liveness probe."""
        raise NotImplementedError

    async def close(self) -> None:  # noqa: B027 - optional hook
        """Release connections held by the adapter."""
