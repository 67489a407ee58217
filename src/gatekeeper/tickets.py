from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING, Optional

from .constants import ERROR_MESSAGES, TICKET_ID_PREFIX, TICKET_PRIORITIES, TICKET_STATUSES
from .errors import NotFound, PermissionDenied, ValidationError
from .ids import CaseIdGenerator
from .limits.locks import KeyedLocks
from .models import Clock, now_ms
from .security.roles import StaffDirectory, StaffTier
from .services.ticket_store import Ticket, TicketMessage, TicketRepository

if TYPE_CHECKING:
    from .audit.logger import AuditLogger

log = logging.getLogger("gatekeeper.tickets")

MAX_SUBJECT_LENGTH = 100
MAX_BODY_LENGTH = 4000


def _require_text(field: str, value: Optional[str], max_length: int) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(field, "must not be empty")
    if len(text) > max_length:
        raise ValidationError(field, f"must be at most {max_length} characters")
    return text


class TicketLifecycle:
    """Support tickets: ``open -> in_progress -> closed``.

    The owner may always read and reply to their own ticket. Any staff tier
    may read, reply, assign and set priority. Status changes need
    MODERATOR or above, or SUPPORT when ``support_can_manage_tickets`` is on.

    Mutations of one ticket run one at a time.
    """

    def __init__(
        self,
        store: TicketRepository,
        staff: StaffDirectory,
        audit: Optional["AuditLogger"] = None,
        clock: Optional[Clock] = None,
        ids: Optional[CaseIdGenerator] = None,
    ) -> None:
        self.store = store
        self.staff = staff
        self.audit = audit
        self._clock: Clock = clock or now_ms
        self._ids = ids or CaseIdGenerator(TICKET_ID_PREFIX, clock=self._clock)
        self._locks = KeyedLocks()

    # -- helpers ----------------------------------------------------------

    async def _load(self, ticket_id: str) -> Ticket:
        ticket = await self.store.get(ticket_id)
        if ticket is None:
            raise NotFound("Ticket", ticket_id)
        return ticket

    def _require_staff(self, user_id: str) -> StaffTier:
        tier = self.staff.tier_of(user_id)
        if tier < StaffTier.SUPPORT:
            raise PermissionDenied("staff", reason="staff-only", user_message=ERROR_MESSAGES["staff_only"])
        return tier

    def _require_access(self, ticket: Ticket, user_id: str) -> None:
        if ticket.owner_id != str(user_id) and not self.staff.is_staff(user_id):
            raise PermissionDenied(
                "ticket_access", reason="not-ticket-owner", user_message=ERROR_MESSAGES["ticket_access"]
            )

    async def _audit(self, action_type: str, actor_id: str, ticket: Ticket, extra: dict) -> None:
        if self.audit is None:
            return
        await self.audit.record(
            action_type,
            actor_id,
            ticket.owner_id,
            None,
            {"ticket_id": ticket.ticket_id, **extra},
        )

    # -- creation and reads -----------------------------------------------

    async def create_ticket(
        self,
        owner_id: str,
        category: str,
        subject: str,
        first_message: str,
        owner_name: str = "",
    ) -> Ticket:
        category = _require_text("category", category, 50)
        subject = _require_text("subject", subject, MAX_SUBJECT_LENGTH)
        body = _require_text("message", first_message, MAX_BODY_LENGTH)

        now = self._clock()
        ticket = Ticket(
            ticket_id=self._ids.next(),
            owner_id=str(owner_id),
            owner_name=owner_name,
            category=category,
            subject=subject,
            status="open",
            priority="normal",
            assigned_to=None,
            created_at=now,
            updated_at=now,
        )
        message = TicketMessage(
            ticket_id=ticket.ticket_id,
            author_id=ticket.owner_id,
            author_name=owner_name,
            body=body,
            is_staff=False,
            created_at=now,
        )
        await self.store.insert(ticket, message)
        log.info("ticket %s opened by %s (%s)", ticket.ticket_id, ticket.owner_id, category)
        return ticket

    async def get_ticket(self, ticket_id: str, viewer_id: str) -> tuple[Ticket, list[TicketMessage]]:
        ticket = await self._load(ticket_id)
        self._require_access(ticket, viewer_id)
        return ticket, await self.store.messages(ticket_id)

    async def list_tickets_by_user(self, user_id: str) -> list[Ticket]:
        return await self.store.list_by_owner(str(user_id))

    async def list_all_tickets(self, viewer_id: str, status: Optional[str] = None) -> list[Ticket]:
        self._require_staff(viewer_id)
        if status is not None and status not in TICKET_STATUSES:
            raise ValidationError("status", f"must be one of {', '.join(TICKET_STATUSES)}")
        return await self.store.list_all(status)

    async def get_statistics(self, viewer_id: str) -> dict[str, int]:
        self._require_staff(viewer_id)
        return await self.store.stats()

    # -- mutations --------------------------------------------------------

    async def add_message(self, ticket_id: str, author_id: str, body: str, author_name: str = "") -> Ticket:
        text = _require_text("message", body, MAX_BODY_LENGTH)
        async with self._locks.hold(ticket_id):
            ticket = await self._load(ticket_id)
            self._require_access(ticket, author_id)
            is_staff = self.staff.is_staff(author_id)

            message = TicketMessage(
                ticket_id=ticket.ticket_id,
                author_id=str(author_id),
                author_name=author_name,
                body=text,
                is_staff=is_staff,
                created_at=self._clock(),
            )
            await self.store.append_message(message)
            ticket = dataclasses.replace(ticket, updated_at=max(ticket.updated_at, message.created_at))

            if is_staff and ticket.status == "open":
                # Separate write; the message above stays even if this one fails.
                if await self.store.mark_in_progress(ticket.ticket_id, message.created_at):
                    ticket = dataclasses.replace(ticket, status="in_progress")
                    log.info("ticket %s moved to in_progress by staff reply from %s", ticket.ticket_id, author_id)
                else:
                    ticket = await self._load(ticket_id)
            return ticket

    async def set_status(self, ticket_id: str, status: str, actor_id: str) -> Ticket:
        if status not in TICKET_STATUSES:
            raise ValidationError("status", f"must be one of {', '.join(TICKET_STATUSES)}")
        tier = self._require_staff(actor_id)
        if not self.staff.can_manage_tickets(tier):
            raise PermissionDenied(
                "manage_tickets", reason="staff-tier", user_message=ERROR_MESSAGES["manage_tickets"]
            )

        async with self._locks.hold(ticket_id):
            ticket = await self._load(ticket_id)
            now = self._clock()
            if status == "closed":
                updated = dataclasses.replace(
                    ticket,
                    status=status,
                    updated_at=max(ticket.updated_at, now),
                    closed_at=now,
                    closed_by=str(actor_id),
                )
            else:
                updated = dataclasses.replace(
                    ticket, status=status, updated_at=max(ticket.updated_at, now), closed_at=None, closed_by=None
                )
            await self.store.save_state(updated)
        log.info("ticket %s: %s -> %s by %s", ticket_id, ticket.status, status, actor_id)
        await self._audit("TICKET_STATUS", actor_id, updated, {"from": ticket.status, "to": status})
        return updated

    async def assign(self, ticket_id: str, staff_id: str, actor_id: str) -> Ticket:
        self._require_staff(actor_id)
        if not self.staff.is_staff(staff_id):
            raise ValidationError("assignee", "must be a staff member")
        async with self._locks.hold(ticket_id):
            ticket = await self._load(ticket_id)
            updated = dataclasses.replace(
                ticket, assigned_to=str(staff_id), updated_at=max(ticket.updated_at, self._clock())
            )
            await self.store.save_state(updated)
        await self._audit("TICKET_ASSIGN", actor_id, updated, {"assigned_to": str(staff_id)})
        return updated

    async def set_priority(self, ticket_id: str, priority: str, actor_id: str) -> Ticket:
        if priority not in TICKET_PRIORITIES:
            raise ValidationError("priority", f"must be one of {', '.join(TICKET_PRIORITIES)}")
        self._require_staff(actor_id)
        async with self._locks.hold(ticket_id):
            ticket = await self._load(ticket_id)
            updated = dataclasses.replace(
                ticket, priority=priority, updated_at=max(ticket.updated_at, self._clock())
            )
            await self.store.save_state(updated)
        await self._audit("TICKET_PRIORITY", actor_id, updated, {"from": ticket.priority, "to": priority})
        return updated
