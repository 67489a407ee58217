from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import discord
from discord import app_commands
from discord.ext import commands

from ..constants import MAX_EMBED_DESCRIPTION
from ..dispatcher import CommandRegistry
from ..errors import NotFound
from ..models import CommandDescriptor, Handler, InvocationContext, effective_cooldown

if TYPE_CHECKING:
    from ..bot import GatekeeperBot

CATEGORY_ICONS = {
    "moderation": "🛡️",
    "tickets": "🎫",
    "utility": "🔧",
}


def _icon(category: str) -> str:
    return CATEGORY_ICONS.get(category.lower(), "📁")


def _line(descriptor: CommandDescriptor) -> str:
    text = f"`/{descriptor.name}`"
    if descriptor.description:
        text += f": {descriptor.description}"
    cooldown = effective_cooldown(descriptor)
    if cooldown:
        text += f" ({cooldown}s cooldown)"
    return text


class HelpHandlers:
    """Command discovery over the registry; reads it on every call."""

    def __init__(self, registry: CommandRegistry) -> None:
        self.registry = registry

    def commands(self) -> list[tuple[CommandDescriptor, Handler]]:
        return [
            (
                CommandDescriptor(
                    name="help",
                    description="List available commands.",
                    category="Utility",
                    community_only=False,
                ),
                self.help,
            ),
        ]

    async def help(self, ctx: InvocationContext) -> str:
        name = (ctx.option("command") or "").strip().lstrip("/").lower()
        if name:
            return self._details(name)

        grouped: dict[str, list[CommandDescriptor]] = {}
        for descriptor in self.registry.list():
            grouped.setdefault(descriptor.category or "Other", []).append(descriptor)

        lines = ["📚 **Available commands**", "Use `/help <command>` for details on one command."]
        for category in sorted(grouped):
            lines.append("")
            lines.append(f"{_icon(category)} **{category}**")
            lines.extend(_line(d) for d in grouped[category])
        return "\n".join(lines)[:MAX_EMBED_DESCRIPTION]

    def _details(self, name: str) -> str:
        entry = self.registry.get(name)
        if entry is None:
            raise NotFound("Command", name)
        descriptor = entry[0]
        lines = [
            f"📋 **/{descriptor.name}**",
            descriptor.description or "No description.",
            f"Category: {descriptor.category}",
            f"Cooldown: {effective_cooldown(descriptor)} seconds",
        ]
        if descriptor.required_capabilities:
            perms = ", ".join(c.replace("_", " ").title() for c in descriptor.required_capabilities)
            lines.append(f"Requires: {perms}")
        if descriptor.community_only:
            lines.append("Server only.")
        return "\n".join(lines)


class HelpCommands(commands.Cog):
    def __init__(self, bot: "GatekeeperBot") -> None:
        self.bot = bot
        self.handlers = HelpHandlers(bot.registry)
        for descriptor, handler in self.handlers.commands():
            bot.registry.register(descriptor, handler)

    @app_commands.command(name="help", description="List available commands.")
    @app_commands.describe(command="Show details for one command")
    async def help_command(self, interaction: discord.Interaction, command: Optional[str] = None) -> None:
        await self.bot.run_command(interaction, "help", options={"command": command})
