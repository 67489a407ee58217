from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import replace
from typing import Any, Mapping, Optional, Sequence

import discord

from ..audit.stream import StreamStatus
from ..errors import PersistenceFailure
from ..models import Community, InvocationContext, Member
from ..security.capabilities import Capabilities
from ..security.roles import StaffTier
from ..services.audit_store import AuditRecord
from ..services.ticket_store import Ticket, TicketMessage


class FakeClock:
    """Manually advanced clock returning epoch milliseconds."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = int(start_ms)

    def __call__(self) -> int:
        return self.now

    def advance(self, *, ms: int = 0, seconds: float = 0) -> int:
        self.now += int(ms) + int(seconds * 1000)
        return self.now

    def set(self, ms: int) -> None:
        self.now = int(ms)


class InMemoryAuditRepository:
    """Audit repository backed by a list, for tests and dry runs."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []
        self._ids: set[str] = set()
        self.fail_writes = False

    async def add(self, record: AuditRecord) -> None:
        if self.fail_writes:
            raise PersistenceFailure("audit.add")
        if record.case_id in self._ids:
            # Same contract as the case_id primary key.
            raise PersistenceFailure("audit.add")
        self._ids.add(record.case_id)
        self.records.append(record)

    async def get(self, key: str) -> Optional[AuditRecord]:
        return next((r for r in self.records if r.case_id == key), None)

    async def recent(self, community_id: str, limit: int = 50) -> list[AuditRecord]:
        rows = [r for r in self.records if r.community_id == community_id]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)[:limit]

    async def for_target(self, community_id: str, target_id: str, limit: int = 10) -> list[AuditRecord]:
        rows = [r for r in self.records if r.community_id == community_id and r.target_id == target_id]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)[:limit]

    async def since(self, community_id: str, since_ms: int) -> list[AuditRecord]:
        return [r for r in self.records if r.community_id == community_id and r.created_at > since_ms]

    async def purge_community(self, community_id: str) -> int:
        before = len(self.records)
        self.records = [r for r in self.records if r.community_id != community_id]
        self._ids = {r.case_id for r in self.records}
        return before - len(self.records)

    def action_types(self) -> list[str]:
        return [r.action_type for r in self.records]

    def counts(self) -> Counter:
        return Counter(self.action_types())


class SlowAuditRepository(InMemoryAuditRepository):
    """Sleeps before each write; used to exercise timeouts and concurrency."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def add(self, record: AuditRecord) -> None:
        await asyncio.sleep(self.delay)
        await super().add(record)


class InMemoryTicketRepository:
    def __init__(self) -> None:
        self.tickets: dict[str, Ticket] = {}
        self.messages_by_ticket: dict[str, list[TicketMessage]] = {}
        self.fail_state_writes = False

    async def insert(self, ticket: Ticket, first_message: TicketMessage) -> None:
        self.tickets[ticket.ticket_id] = ticket
        self.messages_by_ticket[ticket.ticket_id] = [first_message]

    async def get(self, key: str) -> Optional[Ticket]:
        return self.tickets.get(key)

    async def messages(self, ticket_id: str) -> list[TicketMessage]:
        return list(self.messages_by_ticket.get(ticket_id, []))

    async def list_by_owner(self, owner_id: str) -> list[Ticket]:
        rows = [t for t in self.tickets.values() if t.owner_id == owner_id]
        return sorted(rows, key=lambda t: t.created_at, reverse=True)

    async def list_all(self, status: Optional[str] = None) -> list[Ticket]:
        rows = [t for t in self.tickets.values() if status is None or t.status == status]
        return sorted(rows, key=lambda t: t.created_at, reverse=True)

    async def append_message(self, message: TicketMessage) -> None:
        self.messages_by_ticket.setdefault(message.ticket_id, []).append(message)
        ticket = self.tickets.get(message.ticket_id)
        if ticket is not None and message.created_at > ticket.updated_at:
            self.tickets[ticket.ticket_id] = replace(ticket, updated_at=message.created_at)

    async def save_state(self, ticket: Ticket) -> None:
        if self.fail_state_writes:
            raise PersistenceFailure("tickets.save_state")
        self.tickets[ticket.ticket_id] = ticket

    async def mark_in_progress(self, ticket_id: str, updated_at: int) -> bool:
        if self.fail_state_writes:
            raise PersistenceFailure("tickets.mark_in_progress")
        ticket = self.tickets.get(ticket_id)
        if ticket is None or ticket.status != "open":
            return False
        self.tickets[ticket_id] = replace(
            ticket, status="in_progress", updated_at=max(ticket.updated_at, updated_at)
        )
        return True

    async def stats(self) -> dict[str, int]:
        counts = Counter(t.status for t in self.tickets.values())
        return {
            "total": len(self.tickets),
            "open": counts.get("open", 0),
            "in_progress": counts.get("in_progress", 0),
            "closed": counts.get("closed", 0),
        }


class FakeAuditStream:
    """Collects mirrored embeds; optionally raises to simulate a broken channel."""

    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.sent: list[tuple[str, str, discord.Embed]] = []
        self.error = error

    async def send(self, community_id: str, destination_id: str, embed: discord.Embed) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((community_id, destination_id, embed))

    async def status(self, community_id: str, destination_id: Optional[str]) -> StreamStatus:
        return StreamStatus(
            destination_id=destination_id,
            has_destination=bool(destination_id),
            channel_exists=bool(destination_id),
            can_post=bool(destination_id) and self.error is None,
        )


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def notify(self, user_id: str, message: str) -> None:
        self.sent.append((user_id, message))


class FakeModerationActions:
    def __init__(self, purge_result: int = 0, error: Optional[BaseException] = None) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.purge_result = purge_result
        self.error = error

    async def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self.error is not None:
            raise self.error

    async def ban(self, community_id: str, user_id: str, reason: str, delete_message_days: int) -> None:
        await self._call("ban", community_id, user_id, reason, delete_message_days)

    async def kick(self, community_id: str, user_id: str, reason: str) -> None:
        await self._call("kick", community_id, user_id, reason)

    async def timeout(self, community_id: str, user_id: str, duration_ms: int, reason: str) -> None:
        await self._call("timeout", community_id, user_id, duration_ms, reason)

    async def purge(self, community_id: str, channel_id: str, count: int, author_id: Optional[str] = None) -> int:
        await self._call("purge", community_id, channel_id, count, author_id)
        return min(count, self.purge_result)


SYSTEM_ID = "900"
OWNER_ID = "1"
COMMUNITY = Community(community_id="100", owner_id=OWNER_ID, audit_stream_id="555", name="Test Server")


def make_member(
    user_id: str,
    position: int = 0,
    *,
    tier: StaffTier = StaffTier.NONE,
    is_member: bool = True,
    name: str = "",
) -> Member:
    return Member(user_id=user_id, position=position, staff_tier=tier, is_member=is_member, display_name=name)


def make_ctx(
    command_name: str,
    actor: Optional[Member] = None,
    *,
    targets: Sequence[Member] = (),
    community: Optional[Community] = COMMUNITY,
    options: Optional[Mapping[str, Any]] = None,
    actor_caps: Optional[Capabilities] = None,
    system_caps: Optional[Capabilities] = None,
    channel_caps: Optional[Capabilities] = None,
    system_position: int = 50,
    channel_id: Optional[str] = "200",
    timestamp: int = 0,
) -> InvocationContext:
    """Build a context where everyone holds every capability unless told otherwise."""
    system_caps = system_caps if system_caps is not None else Capabilities.all()
    return InvocationContext(
        command_name=command_name,
        actor=actor or make_member("10", 10),
        system=make_member(SYSTEM_ID, system_position),
        community=community,
        targets=tuple(targets),
        channel_id=channel_id,
        options=dict(options or {}),
        timestamp=timestamp,
        actor_capabilities=actor_caps if actor_caps is not None else Capabilities.all(),
        system_capabilities=system_caps,
        system_channel_capabilities=channel_caps if channel_caps is not None else system_caps,
    )
