"""Process-local registry of subjects exempt from every quota.

The registry lives in memory: it is lost on restart and is not shared
between processes, even when they share one counter store.
"""

from __future__ import annotations

import threading
from typing import Iterable


class WhitelistRegistry:
    """Mutable set of whitelisted subjects with O(1) membership checks."""

    def __init__(self, initial: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._subjects: set[str] = set(initial)

    def is_whitelisted(self, subject: str) -> bool:
        return subject in self._subjects

    def add(self, subject: str) -> bool:
        """Add ``subject``; return False if it was already present."""

        with self._lock:
            if subject in self._subjects:
                return False
            self._subjects.add(subject)
            return True

    def remove(self, subject: str) -> bool:
        """Remove ``subject``; return False if it was not present."""

        with self._lock:
            if subject not in self._subjects:
                return False
            self._subjects.discard(subject)
            return True

    def list(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._subjects)

    def __contains__(self, subject: object) -> bool:
        return subject in self._subjects

    def __len__(self) -> int:
        return len(self._subjects)
