from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Union, runtime_checkable

from ..models import Clock, now_ms
from .cooldown import READY, LimitKey, Ready
from .locks import KeyedLocks

log = logging.getLogger("gatekeeper.limits.rate_limit")


@dataclass(frozen=True)
class Limited:
    # Epoch milliseconds at which the oldest counted invocation leaves the window.
    reset_at: int


RateLimitResult = Union[Ready, Limited]


@runtime_checkable
class RateLimitStore(Protocol):
    """Ordered invocation timestamps keyed by (actor_id, command_name).

    ``expires_at`` is when the newest stamp leaves its window; ``prune``
    drops every key whose window has fully elapsed.
    """

    def get(self, key: LimitKey) -> list[int]:
        ...

    def set(self, key: LimitKey, timestamps: list[int], expires_at: int) -> None:
        ...

    def delete(self, key: LimitKey) -> None:
        ...

    def prune(self, now: int) -> int:
        ...


class InMemoryRateLimitStore:
    def __init__(self) -> None:
        self._windows: dict[LimitKey, tuple[list[int], int]] = {}

    def get(self, key: LimitKey) -> list[int]:
        entry = self._windows.get(key)
        return list(entry[0]) if entry else []

    def set(self, key: LimitKey, timestamps: list[int], expires_at: int) -> None:
        self._windows[key] = (list(timestamps), int(expires_at))

    def delete(self, key: LimitKey) -> None:
        self._windows.pop(key, None)

    def prune(self, now: int) -> int:
        stale = [k for k, (_, expires_at) in self._windows.items() if expires_at <= now]
        for k in stale:
            self._windows.pop(k, None)
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)


class RateLimiter:
    """Sliding-window invocation counter."""

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        *,
        clock: Optional[Clock] = None,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self.store: RateLimitStore = store if store is not None else InMemoryRateLimitStore()
        self.clock: Clock = clock or now_ms
        self.locks = locks or KeyedLocks()

    def _window(self, key: LimitKey, window_ms: int, now: int) -> list[int]:
        cutoff = now - int(window_ms)
        stamps = [t for t in self.store.get(key) if t > cutoff]
        if stamps:
            self.store.set(key, stamps, stamps[-1] + int(window_ms))
        else:
            self.store.delete(key)
        return stamps

    def peek(self, actor_id: str, command_name: str, limit: int, window_ms: int, now: int) -> RateLimitResult:
        stamps = self._window((str(actor_id), command_name), window_ms, now)
        if len(stamps) >= int(limit):
            return Limited(reset_at=stamps[0] + int(window_ms))
        return READY

    def commit(self, actor_id: str, command_name: str, window_ms: int, now: int) -> None:
        key = (str(actor_id), command_name)
        stamps = self._window(key, window_ms, now)
        stamps.append(now)
        self.store.set(key, stamps, now + int(window_ms))

    async def check(self, actor_id: str, command_name: str, limit: int, window_ms: int) -> RateLimitResult:
        async with self.locks.hold((str(actor_id), command_name)):
            now = self.clock()
            result = self.peek(actor_id, command_name, limit, window_ms, now)
            if isinstance(result, Ready):
                self.commit(actor_id, command_name, window_ms, now)
            else:
                log.debug("rate limit hit for %s/%s, resets at %d", actor_id, command_name, result.reset_at)
            return result

    def prune(self) -> int:
        removed = self.store.prune(self.clock())
        if removed:
            log.debug("rate limit: pruned %d idle windows", removed)
        return removed
