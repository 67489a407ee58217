from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from ..errors import HierarchyViolation
from ..models import Community, Member

log = logging.getLogger("gatekeeper.security.hierarchy")


@dataclass(frozen=True)
class Allowed:
    pass


ALLOWED = Allowed()

HierarchyResult = Union[Allowed, HierarchyViolation]


class HierarchyValidator:
    """Compares actor and target positions within one community.

    Checks run in a fixed order and the first violation wins: self-target,
    system-target, owner-target, then the two position comparisons.
    """

    def validate(
        self,
        actor: Member,
        target: Member,
        community: Optional[Community],
        system: Member,
    ) -> HierarchyResult:
        # Hierarchy cannot be evaluated against someone who is not a member.
        if not target.is_member:
            return ALLOWED

        if target.user_id == actor.user_id:
            return HierarchyViolation("self-target")

        if target.user_id == system.user_id:
            return HierarchyViolation("system-target")

        if community is not None and community.owner_id and target.user_id == community.owner_id:
            return HierarchyViolation("owner-target")

        if target.position >= actor.position:
            log.debug(
                "hierarchy: target %s (%d) >= actor %s (%d)",
                target.user_id, target.position, actor.user_id, actor.position,
            )
            return HierarchyViolation("equal-or-higher-role")

        if target.position >= system.position:
            return HierarchyViolation("system-equal-or-higher-role")

        return ALLOWED
