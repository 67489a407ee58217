from __future__ import annotations

import asyncio

import pytest

from gatekeeper.config import Settings
from gatekeeper.gate import AuthorizationGate
from gatekeeper.models import CommandDescriptor, Denied, Proceed, RateLimitRule
from gatekeeper.policies import min_staff_tier
from gatekeeper.security.capabilities import Capabilities
from gatekeeper.security.roles import StaffTier
from gatekeeper.testing.fakes import OWNER_ID, make_ctx, make_member

BAN = CommandDescriptor(name="ban", required_capabilities=("ban_members",), requires_hierarchy=True, cooldown_seconds=5)


def _ctx(**kwargs):
    kwargs.setdefault("targets", [make_member("11", 1)])
    return make_ctx("ban", make_member("10", 10), **kwargs)


@pytest.mark.asyncio
async def test_proceeds_when_everything_passes(gate) -> None:
    assert isinstance(await gate.evaluate(_ctx(), BAN), Proceed)


@pytest.mark.asyncio
async def test_scope_is_checked_first(gate) -> None:
    ctx = _ctx(community=None, actor_caps=Capabilities())
    decision = await gate.evaluate(ctx, BAN)
    assert isinstance(decision, Denied)
    assert decision.reason == "community-only"


@pytest.mark.asyncio
async def test_owner_only_and_staff_only(gate) -> None:
    owner_cmd = CommandDescriptor(name="reload", owner_only=True, community_only=False)
    decision = await gate.evaluate(make_ctx("reload", make_member("10")), owner_cmd)
    assert isinstance(decision, Denied) and decision.reason == "owner-only"
    assert isinstance(await gate.evaluate(make_ctx("reload", make_member(OWNER_ID)), owner_cmd), Proceed)

    staff_cmd = CommandDescriptor(name="tickets", staff_only=True)
    decision = await gate.evaluate(make_ctx("tickets", make_member("10")), staff_cmd)
    assert isinstance(decision, Denied) and decision.reason == "staff-only"
    supporter = make_member("12", tier=StaffTier.SUPPORT)
    assert isinstance(await gate.evaluate(make_ctx("tickets", supporter), staff_cmd), Proceed)


@pytest.mark.asyncio
async def test_actor_capability_before_system_capability(gate) -> None:
    decision = await gate.evaluate(_ctx(actor_caps=Capabilities(), system_caps=Capabilities()), BAN)
    assert decision.reason == "missing-capability"
    assert "Ban Members" in decision.user_message

    decision = await gate.evaluate(_ctx(system_caps=Capabilities.of("kick_members")), BAN)
    assert decision.reason == "system-missing-capability"


@pytest.mark.asyncio
async def test_channel_capabilities(gate) -> None:
    clear = CommandDescriptor(name="clear", channel_capabilities=("manage_messages", "read_message_history"))
    ctx = make_ctx("clear", channel_caps=Capabilities.of("manage_messages"))
    decision = await gate.evaluate(ctx, clear)
    assert isinstance(decision, Denied)
    assert decision.reason == "channel-missing-capability"
    assert decision.violation.missing == "read_message_history"
    assert decision.user_message == "❌ I need the **Read Message History** permission in this channel!"
    assert "Manage Messages" not in decision.user_message


@pytest.mark.asyncio
async def test_descriptor_policies_run_after_hierarchy(gate) -> None:
    descriptor = CommandDescriptor(
        name="purge_all", requires_hierarchy=True, policies=(min_staff_tier(StaffTier.ADMIN),)
    )
    ctx = make_ctx("purge_all", make_member("10", 10), targets=[make_member("11", 20)])
    decision = await gate.evaluate(ctx, descriptor)
    assert decision.reason == "equal-or-higher-role"

    ctx = make_ctx("purge_all", make_member("10", 10), targets=[make_member("11", 1)])
    decision = await gate.evaluate(ctx, descriptor)
    assert decision.reason == "staff-tier"


@pytest.mark.asyncio
async def test_cooldown_scenario_through_gate(gate, clock) -> None:
    clock.set(0)
    assert isinstance(await gate.evaluate(_ctx(), BAN), Proceed)
    clock.set(3_000)
    decision = await gate.evaluate(_ctx(), BAN)
    assert isinstance(decision, Denied)
    assert decision.reason == "cooldown"
    assert decision.violation.seconds_remaining == 2
    clock.set(6_000)
    assert isinstance(await gate.evaluate(_ctx(), BAN), Proceed)


@pytest.mark.asyncio
async def test_denied_invocations_commit_nothing(gate) -> None:
    await gate.evaluate(_ctx(actor_caps=Capabilities()), BAN)
    assert gate.cooldowns.store.get(("10", "ban")) is None
    assert isinstance(await gate.evaluate(_ctx(), BAN), Proceed)


@pytest.mark.asyncio
async def test_rate_limit_is_opt_in(gate) -> None:
    plain = CommandDescriptor(name="info", cooldown_seconds=0)
    for _ in range(20):
        assert isinstance(await gate.evaluate(make_ctx("info"), plain), Proceed)

    limited = CommandDescriptor(name="report", cooldown_seconds=0, rate_limit=RateLimitRule(2, 60_000))
    results = [await gate.evaluate(make_ctx("report"), limited) for _ in range(3)]
    assert [isinstance(r, Proceed) for r in results] == [True, True, False]
    assert results[2].reason == "rate-limited"


@pytest.mark.asyncio
async def test_rate_limited_flag_uses_settings_default(clock) -> None:
    settings = Settings(rate_limit_default_limit=1, rate_limit_default_window_ms=1_000)
    gate = AuthorizationGate.from_settings(settings, clock=clock)
    descriptor = CommandDescriptor(name="clear", cooldown_seconds=0, rate_limited=True)
    assert isinstance(await gate.evaluate(make_ctx("clear"), descriptor), Proceed)
    assert isinstance(await gate.evaluate(make_ctx("clear"), descriptor), Denied)
    clock.advance(ms=1_000)
    assert isinstance(await gate.evaluate(make_ctx("clear"), descriptor), Proceed)


@pytest.mark.asyncio
async def test_cooldown_denial_does_not_consume_rate_budget(gate, clock) -> None:
    descriptor = CommandDescriptor(name="report", cooldown_seconds=1, rate_limit=RateLimitRule(2, 60_000))
    assert isinstance(await gate.evaluate(make_ctx("report"), descriptor), Proceed)
    assert (await gate.evaluate(make_ctx("report"), descriptor)).reason == "cooldown"
    clock.advance(seconds=1)
    assert isinstance(await gate.evaluate(make_ctx("report"), descriptor), Proceed)


@pytest.mark.asyncio
async def test_concurrent_evaluations_admit_one(gate) -> None:
    decisions = await asyncio.gather(*(gate.evaluate(_ctx(), BAN) for _ in range(10)))
    assert sum(isinstance(d, Proceed) for d in decisions) == 1


@pytest.mark.asyncio
async def test_cancelled_evaluation_commits_nothing(gate) -> None:
    async with gate.cooldowns.locks.hold(("10", "ban")):
        task = asyncio.create_task(gate.evaluate(_ctx(), BAN))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
    assert gate.cooldowns.store.get(("10", "ban")) is None
    assert len(gate.cooldowns.locks) == 0


@pytest.mark.asyncio
async def test_prune_forgets_idle_actors(gate, clock) -> None:
    clear = CommandDescriptor(name="clear", cooldown_seconds=5, rate_limit=RateLimitRule(3, 60_000))
    for i in range(1000):
        assert isinstance(await gate.evaluate(make_ctx("clear", make_member(f"u{i}")), clear), Proceed)
    assert len(gate.cooldowns.store) == 1000
    assert len(gate.rate_limiter.store) == 1000

    clock.advance(seconds=30)
    await gate.evaluate(make_ctx("clear", make_member("active")), clear)
    # Cooldowns have elapsed; rate windows still hold their stamps.
    assert gate.prune() == 1000
    assert len(gate.cooldowns.store) == 1
    assert len(gate.rate_limiter.store) == 1001

    clock.advance(seconds=3600)
    assert gate.prune() == 1002
    assert len(gate.cooldowns.store) == 0
    assert len(gate.rate_limiter.store) == 0
