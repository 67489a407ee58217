from __future__ import annotations

from typing import Final

# Discord limits
MAX_EMBED_DESCRIPTION: Final[int] = 4096
MAX_EMBED_TITLE: Final[int] = 256
MAX_FIELD_VALUE: Final[int] = 1024

# Gate defaults
DEFAULT_COOLDOWN_SECONDS: Final[int] = 3
DEFAULT_RATE_LIMIT: Final[int] = 5
DEFAULT_RATE_WINDOW_MS: Final[int] = 60_000
PERSISTENCE_TIMEOUT_SECONDS: Final[float] = 5.0
CACHE_TTL_SECONDS: Final[int] = 120
LIMIT_PRUNE_INTERVAL_SECONDS: Final[int] = 300

# Audit action prefixes
DENIED_PREFIX: Final[str] = "DENIED:"
FAILED_PREFIX: Final[str] = "FAILED:"

# Colors (hex values)
COLORS = {
    "default": 0x0099FF,
    "success": 0x57F287,
    "warning": 0xF1C40F,
    "error": 0xED4245,
    "automatic": 0xFF6B6B,
}

ACTION_COLORS = {
    "BAN": 0xDC3545,
    "UNBAN": 0x28A745,
    "KICK": 0xFD7E14,
    "WARN": 0xFFC107,
    "MUTE": 0x6C757D,
    "UNMUTE": 0x17A2B8,
    "TIMEOUT": 0x6F42C1,
    "CLEAR": 0x20C997,
}

ACTION_ICONS = {
    "BAN": "🔨",
    "UNBAN": "🔓",
    "KICK": "👢",
    "WARN": "⚠️",
    "MUTE": "🔇",
    "UNMUTE": "🔊",
    "TIMEOUT": "⏰",
    "CLEAR": "🧹",
}

# Ticket vocabulary
TICKET_STATUSES: Final[tuple[str, ...]] = ("open", "in_progress", "closed")
TICKET_PRIORITIES: Final[tuple[str, ...]] = ("low", "normal", "high", "urgent")
TICKET_ID_PREFIX: Final[str] = "TKT"

# User-facing messages. Never include raw exception text here.
ERROR_MESSAGES = {
    "generic": "❌ An unexpected error occurred while executing this command!",
    "community_only": "❌ This command can only be used in a server!",
    "owner_only": "❌ This command is restricted to bot owners only!",
    "staff_only": "❌ This command is restricted to staff members only!",
    "missing_permissions": "❌ You need the **{perm}** permission to use this command!",
    "system_missing_permissions": "❌ I need the **{perm}** permission to execute this command!",
    "channel_permissions": "❌ I need the **{perm}** permission in this channel!",
    "hierarchy:self-target": "❌ You cannot target yourself with this command!",
    "hierarchy:system-target": "❌ You cannot target me with this command!",
    "hierarchy:owner-target": "❌ Cannot target the server owner!",
    "hierarchy:equal-or-higher-role": "❌ You cannot target this user! They have a higher or equal role.",
    "hierarchy:system-equal-or-higher-role": "❌ I cannot target this user! They have a higher or equal role than me.",
    "cooldown": "⏰ Please wait {seconds} more seconds before using this command again.",
    "rate_limited": "⏰ You are using this command too often. Try again <t:{reset}:R>.",
    "validation": "❌ Invalid {field}: {rule}.",
    "not_found": "❌ {entity} not found!",
    "ticket_access": "❌ You can only view and reply to your own tickets!",
    "manage_tickets": "❌ Your staff role cannot change ticket status!",
    "unknown_command": "❌ Unknown command!",
    "database_error": "❌ A database error occurred. Please try again later.",
    "discord_forbidden": "❌ Missing permissions to perform this action!",
    "discord_not_found": "❌ User not found!",
    "discord_http": "❌ Discord rejected this action. Please try again later.",
    "unrecorded": "❌ The action ran but could not be recorded. Please contact an administrator.",
}

SUCCESS_MESSAGES = {
    "operation_completed": "✅ Operation completed successfully.",
}
