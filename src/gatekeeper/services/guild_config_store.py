from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

import aiosqlite

from .base import BaseService
from .cache import is_missing


@dataclass(frozen=True)
class GuildConfig:
    community_id: str
    audit_stream_id: Optional[str]


class GuildConfigStore(BaseService[GuildConfig]):
    """Per-community settings; currently the audit stream destination.

    Values stored here win over the static ``audit_streams`` defaults.
    """

    def __init__(
        self,
        sqlite_path: str,
        cache_ttl_seconds: int = 300,
        timeout_seconds: float = 5.0,
        *,
        defaults: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(sqlite_path, cache_ttl_seconds, timeout_seconds)
        self._defaults = dict(defaults or {})

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS guild_config (
                community_id TEXT PRIMARY KEY,
                audit_stream_id TEXT NULL
            )
            """
        )

    def _from_row(self, row: aiosqlite.Row) -> GuildConfig:
        return GuildConfig(
            community_id=str(row["community_id"]),
            audit_stream_id=(str(row["audit_stream_id"]) if row["audit_stream_id"] is not None else None),
        )

    @property
    def _get_query(self) -> str:
        return "SELECT community_id, audit_stream_id FROM guild_config WHERE community_id = ?"

    async def get_audit_stream(self, community_id: str) -> Optional[str]:
        cached = self._cache.lookup(community_id)
        if not is_missing(cached):
            cfg = cached
        else:
            cfg = await self._read_degraded("guild_config.get", lambda: super(GuildConfigStore, self).get(community_id), None)
        if isinstance(cfg, GuildConfig) and cfg.audit_stream_id:
            return cfg.audit_stream_id
        return self._defaults.get(community_id)

    async def set_audit_stream(self, community_id: str, channel_id: Optional[str]) -> None:
        async def _upsert() -> None:
            async with aiosqlite.connect(self._path) as db:
                await db.execute(
                    """
                    INSERT INTO guild_config (community_id, audit_stream_id)
                    VALUES (?, ?)
                    ON CONFLICT(community_id) DO UPDATE SET audit_stream_id=excluded.audit_stream_id
                    """,
                    (community_id, channel_id),
                )
                await db.commit()

        await self._write("guild_config.set_audit_stream", _upsert)
        self._cache.set(community_id, GuildConfig(community_id, channel_id))

    async def delete(self, community_id: str) -> None:
        async def _delete() -> None:
            async with aiosqlite.connect(self._path) as db:
                await db.execute("DELETE FROM guild_config WHERE community_id = ?", (community_id,))
                await db.commit()

        await self._write("guild_config.delete", _delete)
        self._cache.delete(community_id)
