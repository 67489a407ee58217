from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

import discord

log = logging.getLogger("gatekeeper.audit.stream")


@dataclass(frozen=True)
class StreamStatus:
    destination_id: Optional[str]
    has_destination: bool
    channel_exists: bool = False
    can_post: bool = False


@runtime_checkable
class AuditStream(Protocol):
    """Where human-readable audit renderings are mirrored to."""

    async def send(self, community_id: str, destination_id: str, embed: discord.Embed) -> None:
        ...

    async def status(self, community_id: str, destination_id: Optional[str]) -> StreamStatus:
        ...


class DiscordAuditStream:
    """Posts audit embeds to a text channel of the community.

    Missing channels and missing permissions are logged and skipped.
    """

    def __init__(self, bot: discord.Client) -> None:
        self._bot = bot

    def _channel(self, community_id: str, destination_id: str) -> tuple[Optional[discord.Guild], Optional[discord.TextChannel]]:
        guild = self._bot.get_guild(int(community_id))
        if guild is None:
            return None, None
        channel = guild.get_channel(int(destination_id))
        if not isinstance(channel, discord.TextChannel):
            return guild, None
        return guild, channel

    async def send(self, community_id: str, destination_id: str, embed: discord.Embed) -> None:
        guild, channel = self._channel(community_id, destination_id)
        if channel is None or guild is None:
            log.warning("audit stream %s not found in guild %s", destination_id, community_id)
            return
        perms = channel.permissions_for(guild.me)
        if not (perms.send_messages and perms.embed_links):
            log.warning("bot lacks permissions to post in audit stream %s of guild %s", destination_id, community_id)
            return
        await channel.send(embed=embed)

    async def status(self, community_id: str, destination_id: Optional[str]) -> StreamStatus:
        if not destination_id:
            return StreamStatus(destination_id=None, has_destination=False)
        guild, channel = self._channel(community_id, destination_id)
        if channel is None or guild is None:
            return StreamStatus(destination_id=destination_id, has_destination=True)
        perms = channel.permissions_for(guild.me)
        return StreamStatus(
            destination_id=destination_id,
            has_destination=True,
            channel_exists=True,
            can_post=bool(perms.send_messages and perms.embed_links),
        )
