from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Optional, Protocol

import discord
from discord import app_commands
from discord.ext import commands

from ..audit.logger import AuditLogger
from ..audit.render import format_duration, render_summary
from ..errors import NotFound, ValidationError
from ..models import CommandDescriptor, Denied, Handler, InvocationContext
from ..notifier import Notifier, NullNotifier
from ..policies import PolicyEnv

if TYPE_CHECKING:
    from ..bot import GatekeeperBot

log = logging.getLogger("gatekeeper.cogs.moderation")

MAX_TIMEOUT_MINUTES = 40320  # 28 days, the platform maximum
MAX_CLEAR = 100


class ModerationActions(Protocol):
    """Platform side effects. Implementations raise discord exceptions on failure."""

    async def ban(self, community_id: str, user_id: str, reason: str, delete_message_days: int) -> None:
        ...

    async def kick(self, community_id: str, user_id: str, reason: str) -> None:
        ...

    async def timeout(self, community_id: str, user_id: str, duration_ms: int, reason: str) -> None:
        ...

    async def purge(self, community_id: str, channel_id: str, count: int, author_id: Optional[str] = None) -> int:
        ...


class DiscordModerationActions:
    def __init__(self, bot: discord.Client) -> None:
        self.bot = bot

    def _guild(self, community_id: str) -> discord.Guild:
        guild = self.bot.get_guild(int(community_id))
        if guild is None:
            raise NotFound("Server", community_id)
        return guild

    async def _member(self, guild: discord.Guild, user_id: str) -> discord.Member:
        member = guild.get_member(int(user_id))
        if member is None:
            member = await guild.fetch_member(int(user_id))
        return member

    async def ban(self, community_id: str, user_id: str, reason: str, delete_message_days: int) -> None:
        guild = self._guild(community_id)
        await guild.ban(
            discord.Object(id=int(user_id)),
            reason=reason,
            delete_message_seconds=delete_message_days * 86400,
        )

    async def kick(self, community_id: str, user_id: str, reason: str) -> None:
        guild = self._guild(community_id)
        member = await self._member(guild, user_id)
        await member.kick(reason=reason)

    async def timeout(self, community_id: str, user_id: str, duration_ms: int, reason: str) -> None:
        guild = self._guild(community_id)
        member = await self._member(guild, user_id)
        await member.timeout(timedelta(milliseconds=duration_ms), reason=reason)

    async def purge(self, community_id: str, channel_id: str, count: int, author_id: Optional[str] = None) -> int:
        guild = self._guild(community_id)
        channel = guild.get_channel(int(channel_id))
        if not isinstance(channel, discord.TextChannel):
            raise ValidationError("channel", "must be a text channel")
        matched = 0

        def check(message: discord.Message) -> bool:
            nonlocal matched
            if author_id is not None and str(message.author.id) != author_id:
                return False
            if matched >= count:
                return False
            matched += 1
            return True

        # Messages older than 14 days cannot be bulk deleted and are skipped.
        deleted = await channel.purge(limit=count if author_id is None else MAX_CLEAR, check=check, bulk=True)
        return len(deleted)


def target_in_community(ctx: InvocationContext, descriptor: CommandDescriptor, env: PolicyEnv) -> Optional[Denied]:
    target = ctx.target
    if target is None:
        return Denied.from_violation(ValidationError("user", "a target user is required"))
    if not target.is_member:
        return Denied.from_violation(NotFound("Member", target.user_id))
    return None


def _reason(ctx: InvocationContext) -> str:
    return (ctx.option("reason") or "").strip() or "No reason provided"


def _require_target(ctx: InvocationContext):
    if ctx.target is None:
        raise ValidationError("user", "a target user is required")
    return ctx.target


class ModerationHandlers:
    """Handlers for the moderation commands; each records its own action type."""

    def __init__(self, actions: ModerationActions, audit: AuditLogger, notifier: Optional[Notifier] = None) -> None:
        self.actions = actions
        self.audit = audit
        self.notifier: Notifier = notifier or NullNotifier()

    def commands(self) -> list[tuple[CommandDescriptor, Handler]]:
        return [
            (
                CommandDescriptor(
                    name="ban",
                    description="Ban a user from the server.",
                    category="Moderation",
                    required_capabilities=("ban_members",),
                    requires_hierarchy=True,
                    cooldown_seconds=3,
                ),
                self.ban,
            ),
            (
                CommandDescriptor(
                    name="kick",
                    description="Kick a member from the server.",
                    category="Moderation",
                    required_capabilities=("kick_members",),
                    requires_hierarchy=True,
                    cooldown_seconds=3,
                    policies=(target_in_community,),
                ),
                self.kick,
            ),
            (
                CommandDescriptor(
                    name="warn",
                    description="Warn a member.",
                    category="Moderation",
                    required_capabilities=("moderate_members",),
                    requires_hierarchy=True,
                    cooldown_seconds=3,
                    policies=(target_in_community,),
                ),
                self.warn,
            ),
            (
                CommandDescriptor(
                    name="timeout",
                    description="Timeout a member.",
                    category="Moderation",
                    required_capabilities=("moderate_members",),
                    requires_hierarchy=True,
                    cooldown_seconds=3,
                    policies=(target_in_community,),
                ),
                self.timeout,
            ),
            (
                CommandDescriptor(
                    name="clear",
                    description="Bulk delete recent messages in this channel.",
                    category="Moderation",
                    required_capabilities=("manage_messages",),
                    channel_capabilities=("manage_messages", "read_message_history"),
                    cooldown_seconds=5,
                    rate_limited=True,
                ),
                self.clear,
            ),
            (
                CommandDescriptor(
                    name="cases",
                    description="Show recent moderation cases for a user.",
                    category="Moderation",
                    required_capabilities=("moderate_members",),
                ),
                self.cases,
            ),
        ]

    async def ban(self, ctx: InvocationContext) -> str:
        target = _require_target(ctx)
        reason = _reason(ctx)
        days = int(ctx.option("delete_days", 0) or 0)
        if not 0 <= days <= 7:
            raise ValidationError("delete_days", "must be between 0 and 7")

        if target.is_member:
            self.notifier.notify(target.user_id, f"You have been banned from **{ctx.community.name}**. Reason: {reason}")
        await self.actions.ban(ctx.community_id, target.user_id, reason, days)
        case_id = await self.audit.record(
            "BAN", ctx.actor, target, reason, {"deleted_message_days": days}, community=ctx.community
        )
        return f"✅ Banned {target.label}. Case `{case_id}`."

    async def kick(self, ctx: InvocationContext) -> str:
        target = _require_target(ctx)
        reason = _reason(ctx)
        self.notifier.notify(target.user_id, f"You have been kicked from **{ctx.community.name}**. Reason: {reason}")
        await self.actions.kick(ctx.community_id, target.user_id, reason)
        case_id = await self.audit.record("KICK", ctx.actor, target, reason, community=ctx.community)
        return f"✅ Kicked {target.label}. Case `{case_id}`."

    async def warn(self, ctx: InvocationContext) -> str:
        target = _require_target(ctx)
        reason = (ctx.option("reason") or "").strip()
        if not reason:
            raise ValidationError("reason", "a reason is required for warnings")
        history = await self.audit.history_for_target(ctx.community_id, target.user_id, limit=100)
        previous = sum(1 for r in history if r.action_type == "WARN")
        case_id = await self.audit.record(
            "WARN", ctx.actor, target, reason, {"previous_warnings": previous}, community=ctx.community
        )
        self.notifier.notify(
            target.user_id,
            f"⚠️ You have received a warning in **{ctx.community.name}**. Reason: {reason} "
            f"(total warnings: {previous + 1})",
        )
        return f"✅ Warned {target.label} ({previous + 1} total). Case `{case_id}`."

    async def timeout(self, ctx: InvocationContext) -> str:
        target = _require_target(ctx)
        reason = _reason(ctx)
        minutes = int(ctx.option("minutes", 0) or 0)
        if not 1 <= minutes <= MAX_TIMEOUT_MINUTES:
            raise ValidationError("minutes", f"must be between 1 and {MAX_TIMEOUT_MINUTES}")
        duration_ms = minutes * 60_000
        await self.actions.timeout(ctx.community_id, target.user_id, duration_ms, reason)
        case_id = await self.audit.record(
            "TIMEOUT", ctx.actor, target, reason, {"duration": duration_ms}, community=ctx.community
        )
        self.notifier.notify(
            target.user_id,
            f"You have been timed out in **{ctx.community.name}** for {format_duration(duration_ms)}. Reason: {reason}",
        )
        return f"✅ Timed out {target.label} for {format_duration(duration_ms)}. Case `{case_id}`."

    async def clear(self, ctx: InvocationContext) -> str:
        count = int(ctx.option("amount", 0) or 0)
        if not 1 <= count <= MAX_CLEAR:
            raise ValidationError("amount", f"must be between 1 and {MAX_CLEAR}")
        if ctx.channel_id is None:
            raise ValidationError("channel", "must be run in a text channel")
        author_id = ctx.target.user_id if ctx.target else None
        deleted = await self.actions.purge(ctx.community_id, ctx.channel_id, count, author_id)
        if deleted == 0:
            raise NotFound("Deletable messages")
        reason = f"Deleted {deleted} messages"
        case_id = await self.audit.record(
            "CLEAR",
            ctx.actor,
            ctx.target,
            reason,
            {"message_count": deleted, "channel": ctx.channel_id},
            community=ctx.community,
        )
        log.info("cleared %d messages in %s (case %s)", deleted, ctx.channel_id, case_id)
        return f"✅ Deleted {deleted} messages."

    async def cases(self, ctx: InvocationContext) -> str:
        target = _require_target(ctx)
        records = await self.audit.history_for_target(ctx.community_id, target.user_id, limit=10)
        if not records:
            return f"No cases for {target.label}."
        lines = [f"**Cases for {target.label}**"]
        for r in records:
            lines.append(render_summary(r))
        return "\n".join(lines)


class ModerationCommands(commands.Cog):
    """Slash command surface; all authorization goes through the dispatcher."""

    def __init__(self, bot: "GatekeeperBot", actions: Optional[ModerationActions] = None) -> None:
        self.bot = bot
        self.handlers = ModerationHandlers(actions or DiscordModerationActions(bot), bot.audit, bot.notifier)
        for descriptor, handler in self.handlers.commands():
            bot.registry.register(descriptor, handler)

    @app_commands.command(name="ban", description="Ban a user from the server.")
    @app_commands.describe(delete_days="Days of messages to delete (0-7)")
    async def ban(
        self,
        interaction: discord.Interaction,
        user: discord.User,
        reason: Optional[str] = None,
        delete_days: app_commands.Range[int, 0, 7] = 0,
    ) -> None:
        await self.bot.run_command(
            interaction, "ban", targets=[user], options={"reason": reason, "delete_days": delete_days}
        )

    @app_commands.command(name="kick", description="Kick a member from the server.")
    async def kick(self, interaction: discord.Interaction, user: discord.User, reason: Optional[str] = None) -> None:
        await self.bot.run_command(interaction, "kick", targets=[user], options={"reason": reason})

    @app_commands.command(name="warn", description="Warn a member.")
    async def warn(self, interaction: discord.Interaction, user: discord.User, reason: str) -> None:
        await self.bot.run_command(interaction, "warn", targets=[user], options={"reason": reason})

    @app_commands.command(name="timeout", description="Timeout a member.")
    async def timeout(
        self,
        interaction: discord.Interaction,
        user: discord.User,
        minutes: app_commands.Range[int, 1, MAX_TIMEOUT_MINUTES],
        reason: Optional[str] = None,
    ) -> None:
        await self.bot.run_command(
            interaction, "timeout", targets=[user], options={"reason": reason, "minutes": minutes}
        )

    @app_commands.command(name="clear", description="Bulk delete recent messages in this channel.")
    async def clear(
        self,
        interaction: discord.Interaction,
        amount: app_commands.Range[int, 1, MAX_CLEAR],
        user: Optional[discord.User] = None,
    ) -> None:
        await self.bot.run_command(
            interaction, "clear", targets=[user] if user else [], options={"amount": amount}
        )

    @app_commands.command(name="cases", description="Show recent moderation cases for a user.")
    async def cases(self, interaction: discord.Interaction, user: discord.User) -> None:
        await self.bot.run_command(interaction, "cases", targets=[user])
