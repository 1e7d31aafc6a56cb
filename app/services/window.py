"""Fixed-window bucketing for quota counters.

A window is identified by ``now_ms // window_ms``. The bucket index is part
of the store key, so counters of different windows never collide and old
windows disappear through the store's expiry instead of explicit deletes.

This is a fixed window, not a rolling one: ``max`` events just before a
boundary and another ``max`` just after it are both admitted, so up to
``2 * max`` events can pass in a short span around the boundary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

DEFAULT_KEY_PREFIX = "ratelimit"


@dataclass(frozen=True)
class WindowKey:
    """Store coordinates of the active bucket for one subject and category.

    Attributes:
        key: Store key of the counter.
        ttl_seconds: Expiry to apply after incrementing.
        bucket_index: ``now_ms // window_ms``.
        reset_time: Epoch milliseconds at which the next bucket starts.
    """

    key: str
    ttl_seconds: int
    bucket_index: int
    reset_time: int


def build_window(
    subject: str,
    category: str,
    *,
    window_ms: int,
    now_ms: int,
    prefix: str = DEFAULT_KEY_PREFIX,
) -> WindowKey:
    """Map (subject, category, now) to the key and expiry of its bucket.

    Examples:
        >>> build_window("5511999999999", "text", window_ms=60_000, now_ms=125_000)
        WindowKey(key='ratelimit:5511999999999:text:2', ttl_seconds=60, bucket_index=2, reset_time=180000)
    """

    if window_ms < 1:
        raise ValueError("window_ms must be >= 1")

    bucket_index = now_ms // window_ms
    return WindowKey(
        key=f"{prefix}:{subject}:{category}:{bucket_index}",
        ttl_seconds=math.ceil(window_ms / 1000),
        bucket_index=bucket_index,
        reset_time=(bucket_index + 1) * window_ms,
    )


def subject_prefix(subject: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Prefix shared by every bucket of ``subject`` (all categories and global)."""

    return f"{prefix}:{subject}:"


def subject_from_key(key: str, prefix: str = DEFAULT_KEY_PREFIX) -> str | None:
    """Extract the subject segment of a counter key, or None if it is not one."""

    head = f"{prefix}:"
    if not key.startswith(head):
        return None
    parts = key[len(head) :].split(":")
    # subject:category:bucket
    if len(parts) < 3 or not parts[0]:
        return None
    return parts[0]
