from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping, Optional

import discord
from discord import app_commands
from discord.ext import commands

from .audit.logger import AuditLogger
from .audit.stream import DiscordAuditStream
from .config import Settings
from .constants import COLORS, ERROR_MESSAGES, LIMIT_PRUNE_INTERVAL_SECONDS
from .dispatcher import CommandDispatcher, CommandRegistry
from .gate import AuthorizationGate
from .models import Outcome
from .notifier import DirectMessageNotifier
from .observability import EventKind, LogLevel, ObservabilityManager
from .platform import DiscordPrincipal, build_context
from .services.audit_store import AuditStore
from .services.guild_config_store import GuildConfigStore
from .services.ticket_store import TicketStore
from .tickets import TicketLifecycle

log = logging.getLogger("gatekeeper.bot")


class _CommandSyncManager:
    def __init__(self, bot: "GatekeeperBot") -> None:
        self.bot = bot
        self._lock = asyncio.Lock()

    async def sync_startup(self) -> None:
        if self.bot.settings.sync_guild_id:
            await self.sync_guild(self.bot.settings.sync_guild_id)
        else:
            await self.sync_global()

    async def sync_global(self) -> None:
        async with self._lock:
            await self.bot.tree.sync()
            log.info("Commands synced globally (%d)", len(self.bot.tree.get_commands()))

    async def sync_guild(self, guild_id: int) -> None:
        async with self._lock:
            guild = discord.Object(id=guild_id)
            self.bot.tree.copy_global_to(guild=guild)
            await self.bot.tree.sync(guild=guild)
            log.info("Commands synced to guild %d", guild_id)


class GatekeeperBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.members = True
        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=False, users=True),
            help_command=None,
        )

        self.settings = settings
        timeout = settings.persistence_timeout_seconds

        self.audit_store = AuditStore(settings.sqlite_path, timeout_seconds=timeout)
        self.ticket_store = TicketStore(settings.sqlite_path, timeout_seconds=timeout)
        self.guild_config_store = GuildConfigStore(
            settings.sqlite_path, timeout_seconds=timeout, defaults=settings.audit_streams
        )

        self.observability = ObservabilityManager()
        self.notifier = DirectMessageNotifier(self)
        self.audit = AuditLogger(
            self.audit_store,
            stream=DiscordAuditStream(self),
            destinations=self.guild_config_store.get_audit_stream,
        )
        self.gate = AuthorizationGate.from_settings(settings)
        self.registry = CommandRegistry(settings)
        self.dispatcher = CommandDispatcher(self.gate, self.audit, self.registry, self.observability)
        self.tickets = TicketLifecycle(self.ticket_store, settings.staff, audit=self.audit)

        self._prune_task: Optional[asyncio.Task] = None
        self._sync_mgr = _CommandSyncManager(self)
        self.tree.on_error = self._on_tree_error

    async def setup_hook(self) -> None:
        for store in (self.audit_store, self.ticket_store, self.guild_config_store):
            await store.init()

        from .cogs.help import HelpCommands
        from .cogs.moderation import ModerationCommands
        from .cogs.tickets import TicketCommands

        await self.add_cog(ModerationCommands(self))
        await self.add_cog(TicketCommands(self))
        await self.add_cog(HelpCommands(self))
        log.info("Registered commands: %s", ", ".join(d.name for d in self.registry.list()))

        if self._prune_task is None:
            self._prune_task = asyncio.create_task(self._prune_loop(), name="gatekeeper-limit-prune")

        await self._sync_mgr.sync_startup()
        self.observability.log_structured(LogLevel.INFO, EventKind.STARTUP, "setup complete")

    async def _prune_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(LIMIT_PRUNE_INTERVAL_SECONDS)
                removed = self.gate.prune()
                if removed:
                    log.debug("Pruned %d idle limiter entries", removed)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Limiter prune iteration failed")

    async def on_ready(self) -> None:
        if self.user is not None:
            self.audit.system_id = str(self.user.id)
        log.info("Logged in as %s in %d guilds", self.user, len(self.guilds))

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        # Retention cleanup: the only path that deletes audit records.
        removed = await self.audit.purge_community(str(guild.id))
        await self.guild_config_store.delete(str(guild.id))
        log.info("Left guild %s; removed %d audit records", guild.id, removed)

    async def close(self) -> None:
        try:
            if self._prune_task is not None:
                self._prune_task.cancel()
            await self.audit.drain()
            await self.notifier.drain()
        finally:
            await super().close()

    async def run_command(
        self,
        interaction: discord.Interaction,
        command_name: str,
        *,
        targets: Iterable[DiscordPrincipal] = (),
        options: Optional[Mapping[str, Any]] = None,
    ) -> Outcome:
        await interaction.response.defer(ephemeral=True, thinking=True)
        ctx = build_context(interaction, self.settings, command_name, targets=targets, options=options)
        outcome = await self.dispatcher.invoke(ctx)
        await self._respond(interaction, outcome)
        return outcome

    async def _respond(self, interaction: discord.Interaction, outcome: Outcome) -> None:
        color = COLORS["success"] if outcome.ok else COLORS["warning" if outcome.outcome == "denied" else "error"]
        embed = discord.Embed(description=outcome.message, color=color)
        if outcome.case_id and not outcome.ok:
            embed.set_footer(text=f"Reference: {outcome.case_id}")
        try:
            await interaction.followup.send(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            log.warning("could not deliver outcome for /%s: %s", interaction.command.name if interaction.command else "?", e)

    async def _on_tree_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        # Only argument conversion and discord.py internals end up here; the
        # dispatcher handles everything raised by command handlers.
        log.exception("Unexpected error in app command %s", interaction.command, exc_info=error)
        message = ERROR_MESSAGES["generic"]
        try:
            if interaction.response.is_done():
                await interaction.followup.send(message, ephemeral=True)
            else:
                await interaction.response.send_message(message, ephemeral=True)
        except discord.HTTPException:
            log.debug("could not report app command error to user")
