from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import discord

from ..constants import ACTION_COLORS, ACTION_ICONS, COLORS, DENIED_PREFIX, FAILED_PREFIX, MAX_FIELD_VALUE
from ..services.audit_store import AuditRecord


def format_duration(milliseconds: int) -> str:
    seconds = int(milliseconds) // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h {minutes % 60}m"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def _clip(value: str, limit: int = MAX_FIELD_VALUE) -> str:
    return value if len(value) <= limit else value[: limit - 1] + "…"


def _title(action_type: str) -> tuple[str, int]:
    if action_type.startswith(DENIED_PREFIX):
        return f"🚫 Denied: /{action_type[len(DENIED_PREFIX):]}", COLORS["warning"]
    if action_type.startswith(FAILED_PREFIX):
        return f"💥 Failed: /{action_type[len(FAILED_PREFIX):]}", COLORS["error"]
    key = action_type.upper()
    icon = ACTION_ICONS.get(key, "📋")
    return f"{icon} {action_type.capitalize()}", ACTION_COLORS.get(key, COLORS["default"])


def _add_extra_fields(embed: discord.Embed, extra: Mapping[str, Any]) -> None:
    if extra.get("duration"):
        embed.add_field(name="⏰ Duration", value=format_duration(int(extra["duration"])), inline=True)
    if extra.get("message_count"):
        embed.add_field(name="🗑️ Messages Deleted", value=str(extra["message_count"]), inline=True)
    if extra.get("deleted_message_days"):
        embed.add_field(name="📅 Message History Deleted", value=f"{extra['deleted_message_days']} day(s)", inline=True)
    if extra.get("previous_warnings"):
        embed.add_field(name="⚠️ Previous Warnings", value=str(extra["previous_warnings"]), inline=True)
    if extra.get("channel"):
        embed.add_field(name="📺 Channel", value=f"<#{extra['channel']}>", inline=True)


def render_record(record: AuditRecord, *, automatic: bool = False) -> discord.Embed:
    """Human-readable rendering of one audit record for the community's audit stream."""
    title, color = _title(record.action_type)
    if automatic:
        title, color = f"🤖 Auto-{record.action_type.capitalize()}", ACTION_COLORS.get(
            record.action_type.upper(), COLORS["automatic"]
        )

    embed = discord.Embed(
        title=title,
        color=color,
        timestamp=datetime.fromtimestamp(record.created_at / 1000, tz=timezone.utc),
    )
    if record.target_id:
        embed.add_field(name="👤 Target User", value=f"<@{record.target_id}>\n`{record.target_id}`", inline=True)
    embed.add_field(
        name="🤖 System" if automatic else "👮 Moderator",
        value="Automatic Moderation" if automatic else f"<@{record.actor_id}>\n`{record.actor_id}`",
        inline=True,
    )
    embed.add_field(
        name="🚨 Trigger" if automatic else "📝 Reason",
        value=_clip(record.reason or "No reason provided"),
        inline=False,
    )

    _add_extra_fields(embed, record.extra)

    if automatic and record.extra.get("content"):
        embed.add_field(name="💬 Content", value=f"```{str(record.extra['content'])[:500]}```", inline=False)

    targets = record.extra.get("targets")
    if isinstance(targets, list):
        embed.title = f"{title.split(' ', 1)[0]} Bulk {record.action_type.capitalize()}"
        embed.add_field(name="👥 Users Affected", value=str(len(targets)), inline=True)
        # Keep the list readable; large batches only show the count.
        if len(targets) <= 10:
            embed.add_field(
                name="👤 Affected Users",
                value=_clip("\n".join(f"• <@{t}> `({t})`" for t in targets)),
                inline=False,
            )

    embed.set_footer(text=f"{'Auto-' if automatic else ''}Case ID: {record.case_id}")
    return embed


def render_summary(record: AuditRecord, label: Optional[str] = None) -> str:
    """One-line plain text form used for history listings."""
    when = datetime.fromtimestamp(record.created_at / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
    who = label or f"<@{record.actor_id}>"
    return f"`{record.case_id}` {record.action_type} by {who} at {when} UTC: {record.reason or '—'}"
