from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Protocol, Union, runtime_checkable

from ..models import Clock, now_ms
from .locks import KeyedLocks

log = logging.getLogger("gatekeeper.limits.cooldown")

LimitKey = tuple[str, str]


@dataclass(frozen=True)
class Ready:
    pass


@dataclass(frozen=True)
class Wait:
    seconds_remaining: int


READY = Ready()

CooldownResult = Union[Ready, Wait]


@runtime_checkable
class CooldownStore(Protocol):
    """Last-invocation timestamps keyed by (actor_id, command_name)."""

    def get(self, key: LimitKey) -> Optional[int]:
        ...

    def set(self, key: LimitKey, timestamp: int, expires_at: int) -> None:
        ...

    def delete(self, key: LimitKey) -> None:
        ...

    def prune(self, now: int) -> int:
        ...


class InMemoryCooldownStore:
    def __init__(self) -> None:
        self._entries: dict[LimitKey, tuple[int, int]] = {}

    def get(self, key: LimitKey) -> Optional[int]:
        entry = self._entries.get(key)
        return entry[0] if entry else None

    def set(self, key: LimitKey, timestamp: int, expires_at: int) -> None:
        self._entries[key] = (int(timestamp), int(expires_at))

    def delete(self, key: LimitKey) -> None:
        self._entries.pop(key, None)

    def prune(self, now: int) -> int:
        stale = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
        for k in stale:
            self._entries.pop(k, None)
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


class CooldownLimiter:
    """Minimum delay between repeated invocations of a command by one actor.

    ``peek`` and ``commit`` are synchronous so a caller holding the key lock
    can check and record without an await point in between.
    """

    def __init__(
        self,
        store: Optional[CooldownStore] = None,
        *,
        clock: Optional[Clock] = None,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self.store: CooldownStore = store if store is not None else InMemoryCooldownStore()
        self.clock: Clock = clock or now_ms
        self.locks = locks or KeyedLocks()

    def peek(self, actor_id: str, command_name: str, cooldown_seconds: int, now: int) -> CooldownResult:
        if cooldown_seconds <= 0:
            return READY
        key = (str(actor_id), command_name)
        last = self.store.get(key)
        if last is None:
            return READY
        expires_at = last + int(cooldown_seconds) * 1000
        if expires_at <= now:
            # Window fully elapsed; evict lazily.
            self.store.delete(key)
            return READY
        return Wait(seconds_remaining=math.ceil((expires_at - now) / 1000))

    def commit(self, actor_id: str, command_name: str, cooldown_seconds: int, now: int) -> None:
        if cooldown_seconds <= 0:
            return
        self.store.set((str(actor_id), command_name), now, now + int(cooldown_seconds) * 1000)

    async def check(self, actor_id: str, command_name: str, cooldown_seconds: int) -> CooldownResult:
        async with self.locks.hold((str(actor_id), command_name)):
            now = self.clock()
            result = self.peek(actor_id, command_name, cooldown_seconds, now)
            if isinstance(result, Ready):
                self.commit(actor_id, command_name, cooldown_seconds, now)
            return result

    def prune(self) -> int:
        removed = self.store.prune(self.clock())
        if removed:
            log.debug("cooldown: pruned %d expired entries", removed)
        return removed
