"""Small in-process TTL caches."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    Map with per-entry TTL checked on read and first-in eviction on overflow.

    Values pass through ``copier`` on both get and set so callers never hold
    the cached instance. A single lock guards the map.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 0,
        copier: Callable[[V], V] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._copier = copier or (lambda value: value)
        self._clock = clock
        self._entries: OrderedDict[K, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return self._copier(value)

    def set(self, key: K, value: V) -> None:
        stored = self._copier(value)
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif self._max_entries and len(self._entries) >= self._max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = (self._clock() + self._ttl, stored)

    def delete(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_where(self, predicate: Callable[[K], bool]) -> None:
        with self._lock:
            for key in [k for k in self._entries if predicate(k)]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
