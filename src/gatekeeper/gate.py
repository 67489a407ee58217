from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from .constants import DEFAULT_RATE_LIMIT, DEFAULT_RATE_WINDOW_MS
from .errors import CooldownActive, RateLimited
from .limits import CooldownLimiter, Limited, RateLimiter, Wait
from .models import (
    Clock,
    CommandDescriptor,
    Denied,
    GateDecision,
    InvocationContext,
    Proceed,
    RateLimitRule,
    effective_cooldown,
    now_ms,
)
from .policies import STANDARD_POLICIES, PolicyEnv
from .security.hierarchy import HierarchyValidator

if TYPE_CHECKING:
    from .config import Settings

log = logging.getLogger("gatekeeper.gate")

PROCEED = Proceed()


class AuthorizationGate:
    """Ordered, short-circuiting policy pipeline.

    Order: scope, owner-only, staff-only, capabilities, channel capabilities,
    hierarchy, descriptor policies, cooldown, rate limit. Nothing is committed
    unless the result is ``Proceed``.
    """

    def __init__(
        self,
        *,
        owner_ids: frozenset[str] = frozenset(),
        hierarchy: Optional[HierarchyValidator] = None,
        cooldowns: Optional[CooldownLimiter] = None,
        rate_limiter: Optional[RateLimiter] = None,
        default_rate_limit: Optional[RateLimitRule] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._clock: Clock = clock or now_ms
        self.env = PolicyEnv(owner_ids=frozenset(owner_ids), hierarchy=hierarchy or HierarchyValidator())
        self.cooldowns = cooldowns or CooldownLimiter(clock=self._clock)
        # Both limiters serialize on the same per-key locks.
        self.rate_limiter = rate_limiter or RateLimiter(clock=self._clock, locks=self.cooldowns.locks)
        self.default_rate_limit = default_rate_limit or RateLimitRule(DEFAULT_RATE_LIMIT, DEFAULT_RATE_WINDOW_MS)

    @classmethod
    def from_settings(cls, settings: "Settings", *, clock: Optional[Clock] = None) -> "AuthorizationGate":
        return cls(owner_ids=settings.owner_ids, default_rate_limit=settings.default_rate_limit, clock=clock)

    def _rate_rule(self, descriptor: CommandDescriptor) -> Optional[RateLimitRule]:
        if descriptor.rate_limit is not None:
            return descriptor.rate_limit
        if descriptor.rate_limited:
            return self.default_rate_limit
        return None

    async def evaluate(self, ctx: InvocationContext, descriptor: CommandDescriptor) -> GateDecision:
        for policy in (*STANDARD_POLICIES, *descriptor.policies):
            denied = policy(ctx, descriptor, self.env)
            if denied is not None:
                log.info(
                    "gate denied /%s for %s: %s (%s)",
                    descriptor.name, ctx.actor.user_id, denied.reason, getattr(policy, "__name__", "policy"),
                )
                return denied
        return await self._check_temporal(ctx, descriptor)

    async def _check_temporal(self, ctx: InvocationContext, descriptor: CommandDescriptor) -> GateDecision:
        actor_id = ctx.actor.user_id
        cooldown = effective_cooldown(descriptor)
        rule = self._rate_rule(descriptor)

        decision: GateDecision
        async with self.cooldowns.locks.hold((actor_id, descriptor.name)):
            now = self._clock()
            waiting = self.cooldowns.peek(actor_id, descriptor.name, cooldown, now)
            limited = (
                self.rate_limiter.peek(actor_id, descriptor.name, rule.limit, rule.window_ms, now)
                if rule is not None and not isinstance(waiting, Wait)
                else None
            )
            if isinstance(waiting, Wait):
                decision = Denied.from_violation(CooldownActive(waiting.seconds_remaining))
            elif isinstance(limited, Limited):
                decision = Denied.from_violation(RateLimited(limited.reset_at))
            else:
                # No await between commit and return: a cancelled caller
                # either commits everything or nothing.
                self.cooldowns.commit(actor_id, descriptor.name, cooldown, now)
                if rule is not None:
                    self.rate_limiter.commit(actor_id, descriptor.name, rule.window_ms, now)
                decision = PROCEED

        if isinstance(decision, Denied):
            log.info("gate denied /%s for %s: %s", descriptor.name, actor_id, decision.reason)
        return decision

    def prune(self) -> int:
        """Sweep elapsed cooldown entries and idle rate-limit windows."""
        return self.cooldowns.prune() + self.rate_limiter.prune()
