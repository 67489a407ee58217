"""Composable gate predicates.

Each policy is a plain function ``(ctx, descriptor, env) -> Denied | None``.
The gate runs ``STANDARD_POLICIES`` in order, then the descriptor's own
``policies``; the first ``Denied`` wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from .constants import ERROR_MESSAGES
from .errors import HierarchyViolation, PermissionDenied, ScopeViolation
from .models import CommandDescriptor, Denied, InvocationContext
from .security.hierarchy import HierarchyValidator
from .security.roles import StaffTier


@dataclass(frozen=True)
class PolicyEnv:
    owner_ids: frozenset[str] = frozenset()
    hierarchy: HierarchyValidator = field(default_factory=HierarchyValidator)


Policy = Callable[[InvocationContext, CommandDescriptor, PolicyEnv], Optional[Denied]]


def require_community(ctx: InvocationContext, descriptor: CommandDescriptor, env: PolicyEnv) -> Optional[Denied]:
    if descriptor.community_only and ctx.community is None:
        return Denied.from_violation(ScopeViolation())
    return None


def require_owner(ctx: InvocationContext, descriptor: CommandDescriptor, env: PolicyEnv) -> Optional[Denied]:
    if descriptor.owner_only and ctx.actor.user_id not in env.owner_ids:
        return Denied.from_violation(
            PermissionDenied("bot_owner", reason="owner-only", user_message=ERROR_MESSAGES["owner_only"])
        )
    return None


def require_staff(ctx: InvocationContext, descriptor: CommandDescriptor, env: PolicyEnv) -> Optional[Denied]:
    if descriptor.staff_only and ctx.actor.staff_tier == StaffTier.NONE:
        return Denied.from_violation(
            PermissionDenied("staff", reason="staff-only", user_message=ERROR_MESSAGES["staff_only"])
        )
    return None


def require_capabilities(ctx: InvocationContext, descriptor: CommandDescriptor, env: PolicyEnv) -> Optional[Denied]:
    # Actor first, then the bot itself, capability by capability.
    for cap in descriptor.required_capabilities:
        if not ctx.actor_capabilities.has(cap):
            return Denied.from_violation(PermissionDenied(cap))
        if not ctx.system_capabilities.has(cap):
            return Denied.from_violation(
                PermissionDenied(
                    cap,
                    reason="system-missing-capability",
                    user_message=ERROR_MESSAGES["system_missing_permissions"].format(perm=_pretty(cap)),
                )
            )
    return None


def require_channel_capabilities(
    ctx: InvocationContext, descriptor: CommandDescriptor, env: PolicyEnv
) -> Optional[Denied]:
    if not descriptor.channel_capabilities:
        return None
    missing = ctx.system_channel_capabilities.missing(descriptor.channel_capabilities)
    if missing is None:
        return None
    return Denied.from_violation(
        PermissionDenied(
            missing,
            reason="channel-missing-capability",
            user_message=ERROR_MESSAGES["channel_permissions"].format(perm=_pretty(missing)),
        )
    )


def check_hierarchy(ctx: InvocationContext, descriptor: CommandDescriptor, env: PolicyEnv) -> Optional[Denied]:
    if not descriptor.requires_hierarchy:
        return None
    for target in ctx.targets:
        result = env.hierarchy.validate(ctx.actor, target, ctx.community, ctx.system)
        if isinstance(result, HierarchyViolation):
            return Denied.from_violation(result)
    return None


def _pretty(permission: str) -> str:
    return permission.replace("_", " ").title()


STANDARD_POLICIES: tuple[Policy, ...] = (
    require_community,
    require_owner,
    require_staff,
    require_capabilities,
    require_channel_capabilities,
    check_hierarchy,
)


def min_staff_tier(tier: StaffTier) -> Policy:
    """Build a policy requiring at least ``tier`` (e.g. moderator-only commands)."""

    def _policy(ctx: InvocationContext, descriptor: CommandDescriptor, env: PolicyEnv) -> Optional[Denied]:
        if ctx.actor.staff_tier < tier:
            return Denied.from_violation(
                PermissionDenied(
                    f"staff:{tier.name.lower()}",
                    reason="staff-tier",
                    user_message=ERROR_MESSAGES["staff_only"],
                )
            )
        return None

    _policy.__name__ = f"min_staff_tier_{tier.name.lower()}"
    return _policy
