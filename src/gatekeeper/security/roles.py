from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Optional

from ..errors import ValidationError

log = logging.getLogger("gatekeeper.security.roles")


class StaffTier(IntEnum):
    """Global staff ranks, independent of any community's roles."""

    NONE = 0
    SUPPORT = 1
    MODERATOR = 2
    ADMIN = 3
    OWNER = 4

    @property
    def label(self) -> str:
        return "User" if self is StaffTier.NONE else self.name.title()


@dataclass(frozen=True)
class StaffDirectory:
    """Resolves a user id to its staff tier from the configured id sets.

    A user listed in several sets gets the highest tier.
    """

    owners: frozenset[str] = frozenset()
    admins: frozenset[str] = frozenset()
    moderators: frozenset[str] = frozenset()
    support: frozenset[str] = frozenset()
    support_can_manage_tickets: bool = False

    def tier_of(self, user_id: str) -> StaffTier:
        uid = str(user_id)
        if uid in self.owners:
            return StaffTier.OWNER
        if uid in self.admins:
            return StaffTier.ADMIN
        if uid in self.moderators:
            return StaffTier.MODERATOR
        if uid in self.support:
            return StaffTier.SUPPORT
        return StaffTier.NONE

    def is_staff(self, user_id: str) -> bool:
        return self.tier_of(user_id) >= StaffTier.SUPPORT

    def is_admin(self, user_id: str) -> bool:
        return self.tier_of(user_id) >= StaffTier.ADMIN

    def can_manage_tickets(self, tier: StaffTier) -> bool:
        if tier >= StaffTier.MODERATOR:
            return True
        return tier == StaffTier.SUPPORT and self.support_can_manage_tickets

    def all_staff_ids(self) -> list[str]:
        ordered: list[str] = []
        for group in (self.owners, self.admins, self.moderators, self.support):
            for uid in sorted(group):
                if uid not in ordered:
                    ordered.append(uid)
        return ordered

    def team_stats(self) -> dict[str, int]:
        return {
            "owners": len(self.owners),
            "admins": len(self.admins),
            "moderators": len(self.moderators),
            "support": len(self.support),
            "total": len(self.all_staff_ids()),
        }


@dataclass(frozen=True)
class RoleEntry:
    role_id: str
    position: int
    # Base "everyone" role and integration-managed roles never grant privilege.
    is_default: bool = False
    managed: bool = False


@dataclass(frozen=True)
class RoleModel:
    """Ordered roles of one community."""

    community_id: str
    roles: tuple[RoleEntry, ...] = ()
    _by_id: dict[str, RoleEntry] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        seen: dict[int, str] = {}
        index: dict[str, RoleEntry] = {}
        for entry in self.roles:
            if entry.position in seen:
                raise ValidationError(
                    "role position",
                    f"roles {seen[entry.position]} and {entry.role_id} share position {entry.position}",
                )
            seen[entry.position] = entry.role_id
            index[entry.role_id] = entry
        object.__setattr__(self, "_by_id", index)

    @classmethod
    def from_pairs(
        cls,
        community_id: str,
        pairs: Iterable[tuple[str, int]],
        *,
        default_role_id: Optional[str] = None,
        managed: Iterable[str] = (),
    ) -> "RoleModel":
        managed_ids = {str(m) for m in managed}
        entries = tuple(
            sorted(
                (
                    RoleEntry(
                        role_id=str(rid),
                        position=int(pos),
                        is_default=(default_role_id is not None and str(rid) == str(default_role_id)),
                        managed=str(rid) in managed_ids,
                    )
                    for rid, pos in pairs
                ),
                key=lambda e: e.position,
            )
        )
        return cls(community_id=str(community_id), roles=entries)

    def privileged(self) -> list[RoleEntry]:
        return [r for r in self.roles if not r.is_default and not r.managed]

    def highest_position(self, role_ids: Iterable[str]) -> int:
        """Highest privilege-bearing position among ``role_ids``; 0 when none."""
        best = 0
        for rid in role_ids:
            entry = self._by_id.get(str(rid))
            if entry is None:
                log.debug("role %s not part of community %s", rid, self.community_id)
                continue
            if entry.is_default or entry.managed:
                continue
            best = max(best, entry.position)
        return best
