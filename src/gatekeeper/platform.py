"""discord.py adapter: turns interactions into invocation contexts.

Snowflakes become strings here and nowhere else. Role positions are the
index in ``guild.roles`` (discord.py keeps it sorted bottom to top), which
gives a strict order even when raw positions tie.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Union

import discord

from .config import Settings
from .models import Community, InvocationContext, Member, now_ms
from .security.capabilities import Capabilities
from .security.roles import RoleModel, StaffDirectory, StaffTier

DiscordPrincipal = Union[discord.Member, discord.User]


def capabilities_from_permissions(permissions: Optional[discord.Permissions]) -> Capabilities:
    if permissions is None:
        return Capabilities()
    if permissions.administrator:
        return Capabilities.all()
    return Capabilities.of([name for name, value in permissions if value])


def role_model_from_guild(guild: discord.Guild) -> RoleModel:
    return RoleModel.from_pairs(
        str(guild.id),
        ((str(role.id), index) for index, role in enumerate(guild.roles)),
        default_role_id=str(guild.default_role.id),
        managed=(str(role.id) for role in guild.roles if role.managed),
    )


def member_from_discord(
    principal: DiscordPrincipal,
    role_model: Optional[RoleModel],
    staff: StaffDirectory,
) -> Member:
    uid = str(principal.id)
    is_member = isinstance(principal, discord.Member)
    position = 0
    if is_member and role_model is not None:
        position = role_model.highest_position(str(r.id) for r in principal.roles)
    return Member(
        user_id=uid,
        position=position,
        staff_tier=staff.tier_of(uid),
        is_member=is_member,
        display_name=getattr(principal, "display_name", "") or "",
    )


def system_member(guild: Optional[discord.Guild], client_user: Optional[discord.ClientUser]) -> Member:
    """The bot's own identity.

    The bot's top role is usually integration-managed, so its position is
    read straight from ``guild.roles`` instead of the role model.
    """
    if guild is None or guild.me is None:
        uid = str(client_user.id) if client_user else "0"
        return Member(user_id=uid, is_member=False, staff_tier=StaffTier.NONE)
    me = guild.me
    position = 0
    for index, role in enumerate(guild.roles):
        if role.id == me.top_role.id:
            position = index
            break
    return Member(user_id=str(me.id), position=position, is_member=True, display_name=me.display_name)


def community_from_guild(guild: Optional[discord.Guild]) -> Optional[Community]:
    if guild is None:
        return None
    return Community(
        community_id=str(guild.id),
        owner_id=(str(guild.owner_id) if guild.owner_id else None),
        name=guild.name,
    )


def build_context(
    interaction: discord.Interaction,
    settings: Settings,
    command_name: str,
    *,
    targets: Iterable[DiscordPrincipal] = (),
    options: Optional[Mapping[str, Any]] = None,
) -> InvocationContext:
    guild = interaction.guild
    staff = settings.staff
    role_model = role_model_from_guild(guild) if guild is not None else None

    if guild is not None:
        system_caps = capabilities_from_permissions(interaction.app_permissions)
    else:
        system_caps = Capabilities()

    return InvocationContext(
        command_name=command_name,
        actor=member_from_discord(interaction.user, role_model, staff),
        system=system_member(guild, interaction.client.user),
        community=community_from_guild(guild),
        targets=tuple(member_from_discord(t, role_model, staff) for t in targets),
        channel_id=(str(interaction.channel_id) if interaction.channel_id else None),
        options=dict(options or {}),
        timestamp=now_ms(),
        actor_capabilities=capabilities_from_permissions(interaction.permissions) if guild else Capabilities(),
        # Interactions only carry channel-resolved bot permissions.
        system_capabilities=system_caps,
        system_channel_capabilities=system_caps,
    )
