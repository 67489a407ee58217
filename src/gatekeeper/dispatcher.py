from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import TYPE_CHECKING, Optional

import discord

from .audit.logger import AuditLogger
from .constants import ERROR_MESSAGES, SUCCESS_MESSAGES
from .errors import NotFound, PermissionDenied, PersistenceFailure, ValidationError, classify
from .gate import AuthorizationGate
from .models import CommandDescriptor, Denied, Handler, InvocationContext, Outcome
from .observability import ObservabilityManager

if TYPE_CHECKING:
    from .config import Settings

log = logging.getLogger("gatekeeper.dispatcher")


class CommandRegistry:
    """Explicit name -> (descriptor, handler) table."""

    def __init__(self, settings: Optional["Settings"] = None) -> None:
        self._settings = settings
        self._entries: dict[str, tuple[CommandDescriptor, Handler]] = {}

    def register(self, descriptor: CommandDescriptor, handler: Handler) -> CommandDescriptor:
        if not descriptor.name:
            raise ValidationError("name", "must not be empty")
        if descriptor.name in self._entries:
            raise ValidationError("name", f"command '{descriptor.name}' is already registered")
        if self._settings is not None:
            cooldown = self._settings.cooldown_for(descriptor.name, descriptor.cooldown_seconds)
            descriptor = dataclasses.replace(descriptor, cooldown_seconds=cooldown)
        self._entries[descriptor.name] = (descriptor, handler)
        log.debug("registered /%s (cooldown=%s)", descriptor.name, descriptor.cooldown_seconds)
        return descriptor

    def get(self, name: str) -> Optional[tuple[CommandDescriptor, Handler]]:
        return self._entries.get(name)

    def list(self) -> list[CommandDescriptor]:
        return [self._entries[name][0] for name in sorted(self._entries)]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def user_message_for(error: BaseException) -> str:
    """Map an exception to something safe to show the invoking member."""
    if isinstance(error, (ValidationError, NotFound, PermissionDenied)):
        return error.user_message
    if isinstance(error, discord.Forbidden):
        return ERROR_MESSAGES["discord_forbidden"]
    if isinstance(error, discord.NotFound):
        return ERROR_MESSAGES["discord_not_found"]
    if isinstance(error, discord.HTTPException):
        return ERROR_MESSAGES["discord_http"]
    if isinstance(error, PersistenceFailure):
        return ERROR_MESSAGES["database_error"]
    return ERROR_MESSAGES["generic"]


class CommandDispatcher:
    """Runs one invocation through the gate, the handler and the audit trail.

    Every call produces exactly one outcome and, unless the audit write
    itself fails, exactly one audit record for it: ``DENIED:<cmd>``,
    ``FAILED:<cmd>``, or the success record (the command name, or whatever
    the handler recorded itself).
    A ``PermissionDenied`` raised by the handler is a denial, not a failure.
    """

    def __init__(
        self,
        gate: AuthorizationGate,
        audit: AuditLogger,
        registry: Optional[CommandRegistry] = None,
        observability: Optional[ObservabilityManager] = None,
    ) -> None:
        self.gate = gate
        self.audit = audit
        self.registry = registry or CommandRegistry()
        self.observability = observability or ObservabilityManager()

    async def invoke(self, ctx: InvocationContext) -> Outcome:
        entry = self.registry.get(ctx.command_name)
        if entry is None:
            log.warning("unknown command /%s from %s", ctx.command_name, ctx.actor.user_id)
            return Outcome("error", ERROR_MESSAGES["unknown_command"])
        descriptor, handler = entry
        return await self.dispatch(ctx, descriptor, handler)

    async def dispatch(self, ctx: InvocationContext, descriptor: CommandDescriptor, handler: Handler) -> Outcome:
        decision = await self.gate.evaluate(ctx, descriptor)
        if isinstance(decision, Denied):
            return await self._denied(ctx, decision)

        start = time.perf_counter()
        try:
            with self.audit.track() as recorded:
                message = await handler(ctx)
        except asyncio.CancelledError:
            raise
        except PermissionDenied as e:
            # Resource-level checks inside the handler (ticket access, tier).
            return await self._denied(ctx, Denied.from_violation(e))
        except Exception as e:
            return await self._failed(ctx, e, (time.perf_counter() - start) * 1000)

        duration_ms = (time.perf_counter() - start) * 1000
        if recorded:
            case_id = recorded[-1]
        else:
            try:
                case_id = await self.audit.record(
                    descriptor.name,
                    ctx.actor,
                    ctx.target,
                    ctx.option("reason"),
                    {"channel": ctx.channel_id},
                    community=ctx.community,
                )
            except PersistenceFailure as e:
                # The action ran but left no trace; report it as a failure.
                self.observability.log_error(descriptor.name, ctx.actor.user_id, e, classify(e), ctx.community_id)
                return Outcome("error", ERROR_MESSAGES["unrecorded"])

        self.observability.log_command(
            descriptor.name, ctx.actor.user_id, ctx.community_id, duration_ms=duration_ms, case_id=case_id
        )
        return Outcome("success", message or SUCCESS_MESSAGES["operation_completed"], case_id)

    async def _denied(self, ctx: InvocationContext, decision: Denied) -> Outcome:
        self.observability.log_denial(ctx.command_name, ctx.actor.user_id, decision.reason, ctx.community_id)
        case_id: Optional[str] = None
        try:
            case_id = await self.audit.record_denial(ctx, decision)
        except PersistenceFailure:
            log.exception("could not record denial of /%s for %s", ctx.command_name, ctx.actor.user_id)
        return Outcome("denied", decision.user_message, case_id)

    async def _failed(self, ctx: InvocationContext, error: Exception, duration_ms: float) -> Outcome:
        classification = classify(error)
        self.observability.log_error(
            ctx.command_name, ctx.actor.user_id, error, classification, ctx.community_id, duration_ms=duration_ms
        )
        case_id: Optional[str] = None
        try:
            case_id = await self.audit.record_failure(ctx, error, classification)
        except PersistenceFailure:
            log.exception("could not record failure of /%s for %s", ctx.command_name, ctx.actor.user_id)
        return Outcome("error", user_message_for(error), case_id)
