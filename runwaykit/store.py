"""
Rate-limit stores — where per-key counters live.

The store interface is small: ``get``, ``set``, ``delete``, ``keys`` and
``sweep``. The limiter owns the algorithm and the check-and-increment lock;
a store only has to make each individual call atomic.

Built-in stores:
  - InMemoryStore — a locked dict, for a single process and for tests

Roll your own (e.g. backed by a shared cache):
  class MyStore(RateLimitStore):
      def get(self, key): ...
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import RateLimitEntry

logger = logging.getLogger("runwaykit.store")


class RateLimitStore:
    """
    Abstract base for all stores.
    Subclass and implement every method.
    """

    def get(self, key: str) -> "RateLimitEntry | None":
        raise NotImplementedError

    def set(self, key: str, entry: "RateLimitEntry") -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> list[str]:
        raise NotImplementedError

    def sweep(self, now: float) -> int:
        """Delete entries whose window and block have elapsed. Returns count removed."""
        raise NotImplementedError

    def close(self) -> None:
        """Clean up resources."""
        pass


class InMemoryStore(RateLimitStore):
    """Process-local store. Every call holds the lock only for a dict operation."""

    def __init__(self):
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> "RateLimitEntry | None":
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: "RateLimitEntry") -> None:
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def sweep(self, now: float) -> int:
        removed = 0
        for key in self.keys():
            # Re-check under the lock: the entry may have been reset since.
            with self._lock:
                entry = self._entries.get(key)
                if entry is not None and entry.expired(now):
                    del self._entries[key]
                    removed += 1
        if removed:
            logger.debug(f"Swept {removed} expired rate-limit entries")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
