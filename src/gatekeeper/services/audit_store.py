from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

import aiosqlite

from .base import BaseService


@dataclass(frozen=True)
class AuditRecord:
    case_id: str
    community_id: Optional[str]
    actor_id: str
    target_id: Optional[str]
    action_type: str
    reason: Optional[str]
    created_at: int
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def as_dict(self) -> dict[str, Any]:
        return {
            "caseId": self.case_id,
            "communityId": self.community_id,
            "actorId": self.actor_id,
            "targetId": self.target_id,
            "actionType": self.action_type,
            "reason": self.reason,
            "extra": dict(self.extra),
            "createdAt": self.created_at,
        }


@runtime_checkable
class AuditRepository(Protocol):
    """Append-only audit persistence. There is deliberately no update method."""

    async def add(self, record: AuditRecord) -> None:
        ...

    async def get(self, key: str) -> Optional[AuditRecord]:
        ...

    async def recent(self, community_id: str, limit: int = 50) -> list[AuditRecord]:
        ...

    async def for_target(self, community_id: str, target_id: str, limit: int = 10) -> list[AuditRecord]:
        ...

    async def since(self, community_id: str, since_ms: int) -> list[AuditRecord]:
        ...

    async def purge_community(self, community_id: str) -> int:
        ...


_COLUMNS = "case_id, community_id, actor_id, target_id, action_type, reason, extra_json, created_at"


class AuditStore(BaseService[AuditRecord]):
    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_records (
              case_id TEXT PRIMARY KEY,
              community_id TEXT NULL,
              actor_id TEXT NOT NULL,
              target_id TEXT NULL,
              action_type TEXT NOT NULL,
              reason TEXT NULL,
              extra_json TEXT NOT NULL,
              created_at INTEGER NOT NULL
            )
            """
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_audit_community ON audit_records(community_id, created_at)")
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_target ON audit_records(community_id, target_id, created_at)"
        )

    def _from_row(self, row: aiosqlite.Row) -> AuditRecord:
        return AuditRecord(
            case_id=str(row["case_id"]),
            community_id=(str(row["community_id"]) if row["community_id"] is not None else None),
            actor_id=str(row["actor_id"]),
            target_id=(str(row["target_id"]) if row["target_id"] is not None else None),
            action_type=str(row["action_type"]),
            reason=row["reason"],
            extra=json.loads(row["extra_json"] or "{}"),
            created_at=int(row["created_at"]),
        )

    @property
    def _get_query(self) -> str:
        return f"SELECT {_COLUMNS} FROM audit_records WHERE case_id = ?"

    async def add(self, record: AuditRecord) -> None:
        extra_json = json.dumps(dict(record.extra), separators=(",", ":"), ensure_ascii=False, default=str)

        async def _insert() -> None:
            async with aiosqlite.connect(self._path) as db:
                await db.execute(
                    f"INSERT INTO audit_records ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.case_id,
                        record.community_id,
                        record.actor_id,
                        record.target_id,
                        record.action_type,
                        record.reason,
                        extra_json,
                        int(record.created_at),
                    ),
                )
                await db.commit()

        await self._write("audit.add", _insert)

    async def _select(self, sql: str, params: tuple[Any, ...]) -> list[AuditRecord]:
        async with aiosqlite.connect(self._path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(sql, params) as cur:
                rows = await cur.fetchall()
        return [self._from_row(r) for r in rows]

    async def recent(self, community_id: str, limit: int = 50) -> list[AuditRecord]:
        limit = max(1, min(500, int(limit)))
        return await self._read_degraded(
            "audit.recent",
            lambda: self._select(
                f"SELECT {_COLUMNS} FROM audit_records WHERE community_id = ? "
                "ORDER BY created_at DESC, case_id DESC LIMIT ?",
                (community_id, limit),
            ),
            [],
        )

    async def for_target(self, community_id: str, target_id: str, limit: int = 10) -> list[AuditRecord]:
        limit = max(1, min(100, int(limit)))
        return await self._read_degraded(
            "audit.for_target",
            lambda: self._select(
                f"SELECT {_COLUMNS} FROM audit_records WHERE community_id = ? AND target_id = ? "
                "ORDER BY created_at DESC, case_id DESC LIMIT ?",
                (community_id, target_id, limit),
            ),
            [],
        )

    async def since(self, community_id: str, since_ms: int) -> list[AuditRecord]:
        return await self._read_degraded(
            "audit.since",
            lambda: self._select(
                f"SELECT {_COLUMNS} FROM audit_records WHERE community_id = ? AND created_at > ? "
                "ORDER BY created_at ASC",
                (community_id, int(since_ms)),
            ),
            [],
        )

    async def purge_community(self, community_id: str) -> int:
        """Retention cleanup: drop every record of one community."""

        async def _delete() -> int:
            async with aiosqlite.connect(self._path) as db:
                cur = await db.execute("DELETE FROM audit_records WHERE community_id = ?", (community_id,))
                await db.commit()
                return int(cur.rowcount)

        removed = await self._write("audit.purge_community", _delete)
        self._cache.clear()
        return removed
