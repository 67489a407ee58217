from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import discord
from discord import app_commands
from discord.ext import commands

from ..audit.logger import AuditLogger
from ..models import CommandDescriptor, Handler, InvocationContext
from ..tickets import TicketLifecycle

if TYPE_CHECKING:
    from ..bot import GatekeeperBot

log = logging.getLogger("gatekeeper.cogs.tickets")

TICKET_CATEGORIES = ("general", "billing", "technical", "report", "other")


class TicketHandlers:
    def __init__(self, lifecycle: TicketLifecycle, audit: Optional[AuditLogger] = None) -> None:
        self.lifecycle = lifecycle
        self.audit = audit

    def commands(self) -> list[tuple[CommandDescriptor, Handler]]:
        return [
            (
                CommandDescriptor(
                    name="ticket_create",
                    description="Open a support ticket.",
                    category="Tickets",
                    community_only=False,
                    cooldown_seconds=30,
                    rate_limited=True,
                ),
                self.create,
            ),
            (
                CommandDescriptor(
                    name="ticket_reply",
                    description="Reply to a support ticket.",
                    category="Tickets",
                    community_only=False,
                ),
                self.reply,
            ),
            (
                CommandDescriptor(
                    name="ticket_close",
                    description="Close a support ticket.",
                    category="Tickets",
                    community_only=False,
                    staff_only=True,
                ),
                self.close,
            ),
        ]

    async def create(self, ctx: InvocationContext) -> str:
        ticket = await self.lifecycle.create_ticket(
            ctx.actor.user_id,
            ctx.option("category", ""),
            ctx.option("subject", ""),
            ctx.option("message", ""),
            owner_name=ctx.actor.display_name,
        )
        if self.audit is not None:
            await self.audit.record(
                "TICKET_CREATE",
                ctx.actor,
                None,
                ticket.subject,
                {"ticket_id": ticket.ticket_id, "category": ticket.category},
                community=ctx.community,
            )
        return f"🎫 Ticket `{ticket.ticket_id}` created. Staff will reply here soon."

    async def reply(self, ctx: InvocationContext) -> str:
        ticket = await self.lifecycle.add_message(
            ctx.option("ticket_id", ""),
            ctx.actor.user_id,
            ctx.option("message", ""),
            author_name=ctx.actor.display_name,
        )
        return f"✅ Reply added to `{ticket.ticket_id}` (status: {ticket.status})."

    async def close(self, ctx: InvocationContext) -> str:
        ticket = await self.lifecycle.set_status(ctx.option("ticket_id", ""), "closed", ctx.actor.user_id)
        return f"🔒 Ticket `{ticket.ticket_id}` closed."


class TicketCommands(commands.Cog):
    def __init__(self, bot: "GatekeeperBot") -> None:
        self.bot = bot
        self.handlers = TicketHandlers(bot.tickets, bot.audit)
        for descriptor, handler in self.handlers.commands():
            bot.registry.register(descriptor, handler)

    @app_commands.command(name="ticket_create", description="Open a support ticket.")
    @app_commands.choices(category=[app_commands.Choice(name=c.title(), value=c) for c in TICKET_CATEGORIES])
    async def ticket_create(
        self,
        interaction: discord.Interaction,
        category: app_commands.Choice[str],
        subject: app_commands.Range[str, 1, 100],
        message: app_commands.Range[str, 1, 2000],
    ) -> None:
        await self.bot.run_command(
            interaction,
            "ticket_create",
            options={"category": category.value, "subject": subject, "message": message},
        )

    @app_commands.command(name="ticket_reply", description="Reply to a support ticket.")
    async def ticket_reply(
        self,
        interaction: discord.Interaction,
        ticket_id: str,
        message: app_commands.Range[str, 1, 2000],
    ) -> None:
        await self.bot.run_command(
            interaction, "ticket_reply", options={"ticket_id": ticket_id.strip().upper(), "message": message}
        )

    @app_commands.command(name="ticket_close", description="Close a support ticket.")
    async def ticket_close(self, interaction: discord.Interaction, ticket_id: str) -> None:
        await self.bot.run_command(interaction, "ticket_close", options={"ticket_id": ticket_id.strip().upper()})
