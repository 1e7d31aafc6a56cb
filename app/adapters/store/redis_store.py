"""Redis-backed counter store.

Shares counters between every service instance pointing at the same Redis.
Atomicity comes from Redis itself (INCR is atomic), so no client-side
locking is needed.

Every command is bounded by ``operation_timeout_seconds``. Connection errors,
Redis errors and timeouts are converted into ``StoreUnavailable`` results and
logged; they are never raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.adapters.store.base import AbstractCounterStore, StoreUnavailable
from app.core.logging import redact_url

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")
_DELETE_CHUNK = 500


def _escape_glob(value: str) -> str:
    """Escape Redis MATCH glob metacharacters so a prefix matches literally."""

    return _GLOB_SPECIAL.sub(r"\\\1", value)


class RedisCounterStore(AbstractCounterStore):
    """Counter store on top of ``redis.asyncio``.

    Args:
        client: Async Redis client. Build one with ``from_url`` for production.
        operation_timeout_seconds: Upper bound for each Redis command.
        probe_interval_seconds: How long ``is_available`` reuses its last answer.
        scan_batch_size: COUNT hint for SCAN during prefix operations.
        monotonic: Time source for probe caching (injectable for tests).
    """

    def __init__(
        self,
        client: Redis,
        *,
        operation_timeout_seconds: float = 0.5,
        probe_interval_seconds: float = 2.0,
        scan_batch_size: int = 500,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if operation_timeout_seconds <= 0:
            raise ValueError("operation_timeout_seconds must be > 0")
        if scan_batch_size < 1:
            raise ValueError("scan_batch_size must be >= 1")

        self._client = client
        self._timeout = operation_timeout_seconds
        self._probe_interval = probe_interval_seconds
        self._scan_batch_size = scan_batch_size
        self._monotonic = monotonic
        self._available = True
        self._last_probe_at: float | None = None

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        operation_timeout_seconds: float = 0.5,
        connect_timeout_seconds: float = 1.0,
        probe_interval_seconds: float = 2.0,
        scan_batch_size: int = 500,
    ) -> "RedisCounterStore":
        """Create a store with its own connection pool.

        ``from_url`` is synchronous and does not connect; the first command
        (or availability probe) opens the connection.
        """

        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=connect_timeout_seconds,
            socket_timeout=operation_timeout_seconds,
            health_check_interval=30,
        )
        logger.info(
            "store.redis_configured",
            extra={
                "redis_url": redact_url(url),
                "timeout_s": operation_timeout_seconds,
            },
        )
        return cls(
            client,
            operation_timeout_seconds=operation_timeout_seconds,
            probe_interval_seconds=probe_interval_seconds,
            scan_batch_size=scan_batch_size,
        )

    async def _call(
        self, operation: str, command: Callable[[], Awaitable[Any]]
    ) -> Any | StoreUnavailable:
        """Run one Redis command under the operation timeout.

        Returns the command result, or ``StoreUnavailable`` on failure. Either
        outcome updates the cached availability.
        """

        try:
            result = await asyncio.wait_for(command(), timeout=self._timeout)
        except asyncio.TimeoutError:
            return self._unavailable(operation, "timeout")
        except (RedisError, OSError) as exc:
            return self._unavailable(operation, type(exc).__name__, error=str(exc))

        self._available = True
        self._last_probe_at = self._monotonic()
        return result

    def _unavailable(
        self, operation: str, reason: str, *, error: str | None = None
    ) -> StoreUnavailable:
        self._available = False
        self._last_probe_at = self._monotonic()
        logger.warning(
            "store.unavailable",
            extra={
                "operation": operation,
                "reason": reason,
                "error_msg": error,
                "timeout_s": self._timeout,
            },
        )
        return StoreUnavailable(operation=operation, reason=reason)

    async def increment(self, key: str) -> int | StoreUnavailable:
        result = await self._call("increment", lambda: self._client.incr(key))
        if isinstance(result, StoreUnavailable):
            return result
        return int(result)

    async def set_expiry(self, key: str, ttl_seconds: int) -> bool | StoreUnavailable:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")
        result = await self._call(
            "set_expiry", lambda: self._client.expire(key, ttl_seconds)
        )
        if isinstance(result, StoreUnavailable):
            return result
        return bool(result)

    async def get(self, key: str) -> int | None | StoreUnavailable:
        result = await self._call("get", lambda: self._client.get(key))
        if result is None or isinstance(result, StoreUnavailable):
            return result
        try:
            return int(result)
        except (TypeError, ValueError):
            logger.warning("store.non_integer_value", extra={"operation": "get"})
            return StoreUnavailable(operation="get", reason="non_integer_value")

    async def delete(self, key: str) -> int | StoreUnavailable:
        result = await self._call("delete", lambda: self._client.delete(key))
        if isinstance(result, StoreUnavailable):
            return result
        return int(result)

    async def _scan_prefix(self, operation: str, prefix: str) -> list[str] | StoreUnavailable:
        """Collect keys under ``prefix`` with SCAN, one bounded call per page."""

        match = f"{_escape_glob(prefix)}*"
        keys: list[str] = []
        cursor: int = 0
        while True:
            page = await self._call(
                operation,
                lambda c=cursor: self._client.scan(
                    cursor=c, match=match, count=self._scan_batch_size
                ),
            )
            if isinstance(page, StoreUnavailable):
                return page
            cursor, batch = page
            keys.extend(batch)
            if int(cursor) == 0:
                break
        # SCAN may return a key more than once
        return sorted(set(keys))

    async def delete_by_prefix(self, prefix: str) -> int | StoreUnavailable:
        keys = await self._scan_prefix("delete_by_prefix", prefix)
        if isinstance(keys, StoreUnavailable):
            return keys

        deleted = 0
        for start in range(0, len(keys), _DELETE_CHUNK):
            chunk = keys[start : start + _DELETE_CHUNK]
            result = await self._call(
                "delete_by_prefix", lambda chunk=chunk: self._client.delete(*chunk)
            )
            if isinstance(result, StoreUnavailable):
                return result
            deleted += int(result)
        return deleted

    async def keys_with_prefix(self, prefix: str) -> list[str] | StoreUnavailable:
        return await self._scan_prefix("keys_with_prefix", prefix)

    async def is_available(self) -> bool:
        now = self._monotonic()
        if (
            self._last_probe_at is not None
            and now - self._last_probe_at < self._probe_interval
        ):
            return self._available

        result = await self._call("ping", lambda: self._client.ping())
        return not isinstance(result, StoreUnavailable)

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as exc:
            logger.warning("store.close_failed", extra={"error_msg": str(exc)})
