from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Literal, Mapping, Optional, Union

from .constants import DEFAULT_COOLDOWN_SECONDS
from .errors import GatekeeperError
from .security.capabilities import Capabilities
from .security.roles import StaffTier

if TYPE_CHECKING:
    from .policies import Policy


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Member:
    """An actor or target as seen from one community."""

    user_id: str
    position: int = 0
    staff_tier: StaffTier = StaffTier.NONE
    # False when the identity is known but not currently in the community.
    is_member: bool = True
    display_name: str = ""

    @property
    def is_staff(self) -> bool:
        return self.staff_tier >= StaffTier.SUPPORT

    @property
    def label(self) -> str:
        return f"{self.display_name} ({self.user_id})" if self.display_name else self.user_id


@dataclass(frozen=True)
class Community:
    community_id: str
    owner_id: Optional[str] = None
    audit_stream_id: Optional[str] = None
    name: str = ""


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_ms: int


@dataclass(frozen=True)
class CommandDescriptor:
    name: str
    description: str = ""
    category: str = "Other"
    required_capabilities: tuple[str, ...] = ()
    channel_capabilities: tuple[str, ...] = ()
    # None means the configured default (3s unless overridden).
    cooldown_seconds: Optional[int] = None
    requires_hierarchy: bool = False
    community_only: bool = True
    owner_only: bool = False
    staff_only: bool = False
    # Opt-in. ``rate_limited`` alone uses the configured default rule.
    rate_limited: bool = False
    rate_limit: Optional[RateLimitRule] = None
    # Extra predicates, run after the standard hierarchy check.
    policies: tuple["Policy", ...] = ()


@dataclass(frozen=True)
class InvocationContext:
    command_name: str
    actor: Member
    system: Member
    community: Optional[Community] = None
    targets: tuple[Member, ...] = ()
    channel_id: Optional[str] = None
    options: Mapping[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)
    actor_capabilities: Capabilities = field(default_factory=Capabilities)
    system_capabilities: Capabilities = field(default_factory=Capabilities)
    system_channel_capabilities: Capabilities = field(default_factory=Capabilities)

    @property
    def community_id(self) -> Optional[str]:
        return self.community.community_id if self.community else None

    @property
    def target(self) -> Optional[Member]:
        return self.targets[0] if self.targets else None

    def option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)


@dataclass(frozen=True)
class Proceed:
    allowed: Literal[True] = True


@dataclass(frozen=True)
class Denied:
    reason: str
    user_message: str
    violation: Optional[GatekeeperError] = field(default=None, compare=False)
    allowed: Literal[False] = False

    @classmethod
    def from_violation(cls, violation: GatekeeperError) -> "Denied":
        return cls(reason=violation.reason, user_message=violation.user_message, violation=violation)


GateDecision = Union[Proceed, Denied]

OutcomeKind = Literal["denied", "success", "error"]


@dataclass(frozen=True)
class Outcome:
    outcome: OutcomeKind
    message: str
    case_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == "success"

    def as_dict(self) -> dict[str, Any]:
        return {"outcome": self.outcome, "message": self.message, "caseId": self.case_id}


Handler = Callable[[InvocationContext], Awaitable[Optional[str]]]

# Returns epoch milliseconds.
Clock = Callable[[], int]


def effective_cooldown(descriptor: CommandDescriptor) -> int:
    if descriptor.cooldown_seconds is None:
        return DEFAULT_COOLDOWN_SECONDS
    return int(descriptor.cooldown_seconds)
