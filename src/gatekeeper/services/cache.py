from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Callable, Generic, Optional, TypeVar

K = TypeVar("K")
V = TypeVar("V")

_MISSING = object()


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """In-memory TTL cache.

    ``None`` is a legitimate cached value (e.g. "no audit stream configured"),
    so lookups that need to tell a miss apart use ``lookup``.
    """

    def __init__(self, default_ttl_seconds: int = 120, *, clock: Callable[[], float] = time.time) -> None:
        self._default_ttl = max(1, int(default_ttl_seconds))
        self._clock = clock
        self._store: dict[K, _Entry[V]] = {}

    def lookup(self, key: K) -> object:
        entry = self._store.get(key)
        if entry is None:
            return _MISSING
        if entry.expires_at < self._clock():
            self._store.pop(key, None)
            return _MISSING
        return entry.value

    def get(self, key: K) -> Optional[V]:
        value = self.lookup(key)
        return None if value is _MISSING else value  # type: ignore[return-value]

    def __contains__(self, key: object) -> bool:
        return self.lookup(key) is not _MISSING  # type: ignore[arg-type]

    def set(self, key: K, value: V, ttl_seconds: Optional[int] = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else max(1, int(ttl_seconds))
        self._store[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: K) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def prune(self) -> int:
        now = self._clock()
        stale = [k for k, v in self._store.items() if v.expires_at < now]
        for k in stale:
            self._store.pop(k, None)
        return len(stale)


def is_missing(value: object) -> bool:
    return value is _MISSING
