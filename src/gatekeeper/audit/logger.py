from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Iterable, Iterator, Mapping, Optional, Union

import discord

from ..constants import DENIED_PREFIX, FAILED_PREFIX
from ..ids import CaseIdGenerator
from ..models import Clock, Community, Denied, InvocationContext, Member, now_ms
from ..services.audit_store import AuditRecord, AuditRepository
from .render import render_record
from .stream import AuditStream, StreamStatus

log = logging.getLogger("gatekeeper.audit")

Principal = Union[Member, str]
CommunityRef = Union[Community, str, None]
DestinationResolver = Callable[[str], Awaitable[Optional[str]]]

# Case ids recorded during the current dispatch, see AuditLogger.track().
_tracked: ContextVar[Optional[list[str]]] = ContextVar("gatekeeper_audit_tracked", default=None)


def _id_of(principal: Optional[Principal]) -> Optional[str]:
    if principal is None:
        return None
    if isinstance(principal, Member):
        return principal.user_id
    return str(principal)


class AuditLogger:
    """Append-only record of authorization outcomes and privileged actions.

    Each ``record*`` call awaits the durable write, then mirrors a rendering
    to the community's audit stream in a background task. Mirroring is best
    effort: failures are logged here and never reach the caller.
    """

    def __init__(
        self,
        repository: AuditRepository,
        *,
        stream: Optional[AuditStream] = None,
        destinations: Optional[DestinationResolver] = None,
        clock: Optional[Clock] = None,
        ids: Optional[CaseIdGenerator] = None,
        system_id: Optional[str] = None,
    ) -> None:
        self.repository = repository
        self.stream = stream
        self._destinations = destinations
        self._clock: Clock = clock or now_ms
        self._ids = ids or CaseIdGenerator(clock=self._clock)
        self.system_id = system_id
        self._pending: set[asyncio.Task[None]] = set()

    # -- write side -------------------------------------------------------

    async def record(
        self,
        action_type: str,
        actor: Principal,
        target: Optional[Principal] = None,
        reason: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
        *,
        community: CommunityRef = None,
        automatic: bool = False,
    ) -> str:
        record = AuditRecord(
            case_id=self._ids.next(),
            community_id=self._community_id(community),
            actor_id=_id_of(actor) or "",
            target_id=_id_of(target),
            action_type=action_type,
            reason=reason,
            extra=dict(extra or {}),
            created_at=self._clock(),
        )
        await self.repository.add(record)

        bucket = _tracked.get()
        if bucket is not None:
            bucket.append(record.case_id)

        log.info(
            "audit %s: %s by %s on %s in %s",
            record.case_id, record.action_type, record.actor_id, record.target_id or "-", record.community_id or "DM",
        )
        self._mirror(record, community, automatic=automatic)
        return record.case_id

    async def record_bulk(
        self,
        action_type: str,
        actor: Principal,
        targets: Iterable[Principal],
        reason: Optional[str] = None,
        *,
        community: CommunityRef = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> str:
        target_ids = [tid for tid in (_id_of(t) for t in targets) if tid]
        payload = dict(extra or {})
        payload.update({"targets": target_ids, "count": len(target_ids)})
        return await self.record(action_type, actor, None, reason, payload, community=community)

    async def record_denial(self, ctx: InvocationContext, decision: Denied) -> str:
        extra: dict[str, Any] = {"channel": ctx.channel_id, "message": decision.user_message}
        if len(ctx.targets) > 1:
            extra["targets"] = [t.user_id for t in ctx.targets]
        return await self.record(
            f"{DENIED_PREFIX}{ctx.command_name}",
            ctx.actor,
            ctx.target,
            decision.reason,
            extra,
            community=ctx.community,
        )

    async def record_failure(self, ctx: InvocationContext, error: BaseException, classification: str) -> str:
        return await self.record(
            f"{FAILED_PREFIX}{ctx.command_name}",
            ctx.actor,
            ctx.target,
            classification,
            {
                "channel": ctx.channel_id,
                "error_type": type(error).__name__,
                "detail": str(error)[:500],
            },
            community=ctx.community,
        )

    async def record_automatic(
        self,
        action_type: str,
        target: Principal,
        trigger: str,
        *,
        community: CommunityRef,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Actions taken by the system itself (automod), attributed to the system identity."""
        return await self.record(
            action_type,
            self.system_id or "system",
            target,
            f"Auto: {trigger}",
            extra,
            community=community,
            automatic=True,
        )

    @contextmanager
    def track(self) -> Iterator[list[str]]:
        """Collect case ids recorded inside the block (including from subtasks)."""
        bucket: list[str] = []
        token = _tracked.set(bucket)
        try:
            yield bucket
        finally:
            _tracked.reset(token)

    # -- mirroring --------------------------------------------------------

    @staticmethod
    def _community_id(community: CommunityRef) -> Optional[str]:
        if community is None:
            return None
        if isinstance(community, Community):
            return community.community_id
        return str(community)

    def _mirror(self, record: AuditRecord, community: CommunityRef, *, automatic: bool) -> None:
        if self.stream is None or record.community_id is None:
            return
        preset = community.audit_stream_id if isinstance(community, Community) else None
        task = asyncio.create_task(self._send(record, preset, automatic))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _destination(self, community_id: str, preset: Optional[str]) -> Optional[str]:
        if preset:
            return preset
        if self._destinations is None:
            return None
        return await self._destinations(community_id)

    async def _send(self, record: AuditRecord, preset: Optional[str], automatic: bool) -> None:
        assert self.stream is not None and record.community_id is not None
        try:
            destination = await self._destination(record.community_id, preset)
            if not destination:
                return
            await self.stream.send(record.community_id, destination, render_record(record, automatic=automatic))
        except asyncio.CancelledError:
            raise
        except discord.HTTPException as e:
            log.warning("audit stream rejected record %s: %s", record.case_id, e)
        except Exception:
            log.exception("failed to mirror audit record %s to audit stream", record.case_id)

    async def drain(self) -> None:
        """Wait for every pending mirror task."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def check_configuration(self, community_id: str) -> StreamStatus:
        destination = await self._destination(community_id, None)
        if self.stream is None:
            return StreamStatus(destination_id=destination, has_destination=bool(destination))
        return await self.stream.status(community_id, destination)

    # -- read side --------------------------------------------------------

    async def get(self, case_id: str) -> Optional[AuditRecord]:
        return await self.repository.get(case_id)

    async def recent(self, community_id: str, limit: int = 50) -> list[AuditRecord]:
        return await self.repository.recent(community_id, limit)

    async def history_for_target(self, community_id: str, target_id: str, limit: int = 10) -> list[AuditRecord]:
        return await self.repository.for_target(community_id, target_id, limit)

    async def statistics(self, community_id: str, days: int = 30) -> dict[str, Any]:
        days = max(1, int(days))
        since = self._clock() - days * 24 * 60 * 60 * 1000
        records = await self.repository.since(community_id, since)
        by_type = Counter(r.action_type for r in records)
        by_actor = Counter(r.actor_id for r in records)
        return {
            "total": len(records),
            "by_type": dict(by_type),
            "by_actor": dict(by_actor),
            "daily_average": round(len(records) / days),
        }

    async def purge_community(self, community_id: str) -> int:
        removed = await self.repository.purge_community(community_id)
        log.info("purged %d audit records for community %s", removed, community_id)
        return removed
