from __future__ import annotations

import asyncio

import pytest

from gatekeeper.limits import (
    CooldownLimiter,
    InMemoryCooldownStore,
    InMemoryRateLimitStore,
    KeyedLocks,
    Limited,
    RateLimiter,
    Ready,
    Wait,
)
from gatekeeper.testing.fakes import FakeClock


@pytest.mark.asyncio
async def test_ban_cooldown_scenario() -> None:
    clock = FakeClock(0)
    limiter = CooldownLimiter(clock=clock)

    assert isinstance(await limiter.check("A", "ban", 5), Ready)
    clock.set(3_000)
    result = await limiter.check("A", "ban", 5)
    assert result == Wait(seconds_remaining=2)
    clock.set(6_000)
    assert isinstance(await limiter.check("A", "ban", 5), Ready)


@pytest.mark.asyncio
async def test_cooldown_rounds_up_and_is_per_actor_and_command() -> None:
    clock = FakeClock(0)
    limiter = CooldownLimiter(clock=clock)
    await limiter.check("A", "ban", 3)

    clock.set(2_999)
    assert await limiter.check("A", "ban", 3) == Wait(seconds_remaining=1)
    assert isinstance(await limiter.check("B", "ban", 3), Ready)
    assert isinstance(await limiter.check("A", "kick", 3), Ready)
    clock.set(3_000)
    assert isinstance(await limiter.check("A", "ban", 3), Ready)


def test_zero_cooldown_never_waits() -> None:
    limiter = CooldownLimiter(clock=FakeClock(0))
    limiter.commit("A", "ping", 0, 0)
    assert isinstance(limiter.peek("A", "ping", 0, 0), Ready)


def test_elapsed_entries_are_evicted() -> None:
    store = InMemoryCooldownStore()
    clock = FakeClock(0)
    limiter = CooldownLimiter(store, clock=clock)
    limiter.commit("A", "ban", 5, 0)
    limiter.commit("B", "ban", 50, 0)
    assert len(store) == 2

    assert isinstance(limiter.peek("A", "ban", 5, 5_000), Ready)
    assert len(store) == 1

    clock.set(60_000)
    assert limiter.prune() == 1
    assert len(store) == 0


@pytest.mark.asyncio
async def test_rate_limit_boundary() -> None:
    clock = FakeClock(0)
    limiter = RateLimiter(clock=clock)

    for i in range(5):
        clock.set(i * 100)
        assert isinstance(await limiter.check("A", "clear", 5, 10_000), Ready), i

    clock.set(1_000)
    result = await limiter.check("A", "clear", 5, 10_000)
    assert result == Limited(reset_at=10_000)

    # The first stamp leaves the window at exactly t=10000.
    clock.set(10_000)
    assert isinstance(await limiter.check("A", "clear", 5, 10_000), Ready)


@pytest.mark.asyncio
async def test_limited_calls_are_not_counted() -> None:
    clock = FakeClock(0)
    limiter = RateLimiter(clock=clock)
    assert isinstance(await limiter.check("A", "x", 1, 1_000), Ready)
    for _ in range(3):
        assert isinstance(await limiter.check("A", "x", 1, 1_000), Limited)
    clock.set(1_000)
    assert isinstance(await limiter.check("A", "x", 1, 1_000), Ready)


@pytest.mark.asyncio
async def test_concurrent_checks_admit_exactly_one() -> None:
    limiter = CooldownLimiter(clock=FakeClock(0))
    results = await asyncio.gather(*(limiter.check("A", "ban", 5) for _ in range(20)))
    assert sum(isinstance(r, Ready) for r in results) == 1


@pytest.mark.asyncio
async def test_keyed_locks_are_dropped_when_idle() -> None:
    locks = KeyedLocks()
    async with locks.hold("k"):
        assert locks.locked("k")
        assert len(locks) == 1
    assert len(locks) == 0
    assert not locks.locked("k")


def test_rate_limit_windows_are_pruned_once_idle() -> None:
    store = InMemoryRateLimitStore()
    clock = FakeClock(0)
    limiter = RateLimiter(store, clock=clock)
    limiter.commit("A", "clear", 1_000, 0)
    limiter.commit("A", "clear", 1_000, 500)
    limiter.commit("B", "clear", 10_000, 0)

    clock.set(1_499)
    assert limiter.prune() == 0
    clock.set(1_500)
    assert limiter.prune() == 1
    assert store.get(("A", "clear")) == []
    assert store.get(("B", "clear")) == [0]
