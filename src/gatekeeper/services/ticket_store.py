from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

import aiosqlite

from .base import BaseService


@dataclass(frozen=True)
class Ticket:
    ticket_id: str
    owner_id: str
    owner_name: str
    category: str
    subject: str
    status: str
    priority: str
    assigned_to: Optional[str]
    created_at: int
    updated_at: int
    closed_at: Optional[int] = None
    closed_by: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "ticketId": self.ticket_id,
            "ownerId": self.owner_id,
            "ownerName": self.owner_name,
            "category": self.category,
            "subject": self.subject,
            "status": self.status,
            "priority": self.priority,
            "assignedTo": self.assigned_to,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "closedAt": self.closed_at,
            "closedBy": self.closed_by,
        }


@dataclass(frozen=True)
class TicketMessage:
    ticket_id: str
    author_id: str
    author_name: str
    body: str
    is_staff: bool
    created_at: int


@runtime_checkable
class TicketRepository(Protocol):
    async def insert(self, ticket: Ticket, first_message: TicketMessage) -> None:
        ...

    async def get(self, key: str) -> Optional[Ticket]:
        ...

    async def messages(self, ticket_id: str) -> list[TicketMessage]:
        ...

    async def list_by_owner(self, owner_id: str) -> list[Ticket]:
        ...

    async def list_all(self, status: Optional[str] = None) -> list[Ticket]:
        ...

    async def append_message(self, message: TicketMessage) -> None:
        ...

    async def save_state(self, ticket: Ticket) -> None:
        ...

    async def mark_in_progress(self, ticket_id: str, updated_at: int) -> bool:
        ...

    async def stats(self) -> dict[str, int]:
        ...


_TICKET_COLUMNS = (
    "ticket_id, owner_id, owner_name, category, subject, status, priority, "
    "assigned_to, created_at, updated_at, closed_at, closed_by"
)
_MESSAGE_COLUMNS = "ticket_id, author_id, author_name, body, is_staff, created_at"


class TicketStore(BaseService[Ticket]):
    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS tickets (
              ticket_id TEXT PRIMARY KEY,
              owner_id TEXT NOT NULL,
              owner_name TEXT NOT NULL DEFAULT '',
              category TEXT NOT NULL,
              subject TEXT NOT NULL,
              status TEXT NOT NULL DEFAULT 'open',
              priority TEXT NOT NULL DEFAULT 'normal',
              assigned_to TEXT NULL,
              created_at INTEGER NOT NULL,
              updated_at INTEGER NOT NULL,
              closed_at INTEGER NULL,
              closed_by TEXT NULL
            )
            """
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS ticket_messages (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ticket_id TEXT NOT NULL REFERENCES tickets(ticket_id),
              author_id TEXT NOT NULL,
              author_name TEXT NOT NULL DEFAULT '',
              body TEXT NOT NULL,
              is_staff INTEGER NOT NULL DEFAULT 0,
              created_at INTEGER NOT NULL
            )
            """
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_tickets_owner ON tickets(owner_id, created_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_tickets_status ON tickets(status, created_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_ticket_messages ON ticket_messages(ticket_id, id)")

    def _from_row(self, row: aiosqlite.Row) -> Ticket:
        return Ticket(
            ticket_id=str(row["ticket_id"]),
            owner_id=str(row["owner_id"]),
            owner_name=str(row["owner_name"]),
            category=str(row["category"]),
            subject=str(row["subject"]),
            status=str(row["status"]),
            priority=str(row["priority"]),
            assigned_to=(str(row["assigned_to"]) if row["assigned_to"] is not None else None),
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
            closed_at=(int(row["closed_at"]) if row["closed_at"] is not None else None),
            closed_by=(str(row["closed_by"]) if row["closed_by"] is not None else None),
        )

    @staticmethod
    def _message_from_row(row: aiosqlite.Row) -> TicketMessage:
        return TicketMessage(
            ticket_id=str(row["ticket_id"]),
            author_id=str(row["author_id"]),
            author_name=str(row["author_name"]),
            body=str(row["body"]),
            is_staff=bool(row["is_staff"]),
            created_at=int(row["created_at"]),
        )

    @property
    def _get_query(self) -> str:
        return f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE ticket_id = ?"

    async def get(self, key: str) -> Optional[Ticket]:
        # Tickets change state; always read through.
        self._cache.delete(key)
        return await super().get(key)

    async def insert(self, ticket: Ticket, first_message: TicketMessage) -> None:
        async def _insert() -> None:
            async with aiosqlite.connect(self._path) as db:
                await db.execute(
                    f"INSERT INTO tickets ({_TICKET_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        ticket.ticket_id,
                        ticket.owner_id,
                        ticket.owner_name,
                        ticket.category,
                        ticket.subject,
                        ticket.status,
                        ticket.priority,
                        ticket.assigned_to,
                        ticket.created_at,
                        ticket.updated_at,
                        ticket.closed_at,
                        ticket.closed_by,
                    ),
                )
                await self._insert_message(db, first_message)
                await db.commit()

        await self._write("tickets.insert", _insert)

    @staticmethod
    async def _insert_message(db: aiosqlite.Connection, message: TicketMessage) -> None:
        await db.execute(
            f"INSERT INTO ticket_messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            (
                message.ticket_id,
                message.author_id,
                message.author_name,
                message.body,
                int(message.is_staff),
                message.created_at,
            ),
        )

    async def append_message(self, message: TicketMessage) -> None:
        """Append a message and advance ``updated_at`` in one transaction."""

        async def _append() -> None:
            async with aiosqlite.connect(self._path) as db:
                await self._insert_message(db, message)
                await db.execute(
                    "UPDATE tickets SET updated_at = MAX(updated_at, ?) WHERE ticket_id = ?",
                    (message.created_at, message.ticket_id),
                )
                await db.commit()

        await self._write("tickets.append_message", _append)

    async def save_state(self, ticket: Ticket) -> None:
        async def _update() -> None:
            async with aiosqlite.connect(self._path) as db:
                await db.execute(
                    """
                    UPDATE tickets
                    SET status = ?, priority = ?, assigned_to = ?, updated_at = ?, closed_at = ?, closed_by = ?
                    WHERE ticket_id = ?
                    """,
                    (
                        ticket.status,
                        ticket.priority,
                        ticket.assigned_to,
                        ticket.updated_at,
                        ticket.closed_at,
                        ticket.closed_by,
                        ticket.ticket_id,
                    ),
                )
                await db.commit()

        await self._write("tickets.save_state", _update)
        self._cache.delete(ticket.ticket_id)

    async def mark_in_progress(self, ticket_id: str, updated_at: int) -> bool:
        """Move an ``open`` ticket to ``in_progress``; False if it was not open."""

        async def _update() -> bool:
            async with aiosqlite.connect(self._path) as db:
                cur = await db.execute(
                    """
                    UPDATE tickets
                    SET status = 'in_progress', updated_at = MAX(updated_at, ?)
                    WHERE ticket_id = ? AND status = 'open'
                    """,
                    (updated_at, ticket_id),
                )
                await db.commit()
                return cur.rowcount > 0

        changed = await self._write("tickets.mark_in_progress", _update)
        self._cache.delete(ticket_id)
        return changed

    async def _select(self, sql: str, params: tuple[Any, ...]) -> list[Ticket]:
        async with aiosqlite.connect(self._path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(sql, params) as cur:
                rows = await cur.fetchall()
        return [self._from_row(r) for r in rows]

    async def messages(self, ticket_id: str) -> list[TicketMessage]:
        async def _fetch() -> list[TicketMessage]:
            async with aiosqlite.connect(self._path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM ticket_messages WHERE ticket_id = ? ORDER BY id ASC",
                    (ticket_id,),
                ) as cur:
                    rows = await cur.fetchall()
            return [self._message_from_row(r) for r in rows]

        return await self._guarded("tickets.messages", _fetch)

    async def list_by_owner(self, owner_id: str) -> list[Ticket]:
        return await self._read_degraded(
            "tickets.list_by_owner",
            lambda: self._select(
                f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            ),
            [],
        )

    async def list_all(self, status: Optional[str] = None) -> list[Ticket]:
        if status is None:
            sql, params = f"SELECT {_TICKET_COLUMNS} FROM tickets ORDER BY created_at DESC", ()
        else:
            sql = f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE status = ? ORDER BY created_at DESC"
            params = (status,)
        return await self._read_degraded("tickets.list_all", lambda: self._select(sql, params), [])

    async def stats(self) -> dict[str, int]:
        async def _count() -> dict[str, int]:
            async with aiosqlite.connect(self._path) as db:
                async with db.execute("SELECT status, COUNT(*) FROM tickets GROUP BY status") as cur:
                    rows = await cur.fetchall()
            counts = {str(r[0]): int(r[1]) for r in rows}
            return {
                "total": sum(counts.values()),
                "open": counts.get("open", 0),
                "in_progress": counts.get("in_progress", 0),
                "closed": counts.get("closed", 0),
            }

        return await self._read_degraded(
            "tickets.stats", _count, {"total": 0, "open": 0, "in_progress": 0, "closed": 0}
        )
