from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .constants import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_RATE_LIMIT,
    DEFAULT_RATE_WINDOW_MS,
    PERSISTENCE_TIMEOUT_SECONDS,
)
from .errors import ValidationError
from .models import RateLimitRule
from .security.roles import StaffDirectory


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in _TRUTHY


def _get_str(name: str, default: str) -> str:
    return os.getenv(name, default).strip() or default


def _parse_id_set(raw: Any) -> frozenset[str]:
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        return frozenset(p.strip() for p in raw.split(",") if p.strip())
    return frozenset(str(p).strip() for p in raw if str(p).strip())


def _parse_mapping(raw: Any, field_name: str) -> dict[str, str]:
    """Parse ``"a:1,b:2"`` or a mapping into a ``str -> str`` dict."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return {str(k): str(v) for k, v in raw.items()}
    out: dict[str, str] = {}
    for part in str(raw).split(","):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition(":")
        if not sep or not key.strip() or not value.strip():
            raise ValidationError(field_name, f"expected key:value pairs, got {part!r}")
        out[key.strip()] = value.strip()
    return out


def _parse_cooldowns(raw: Any) -> dict[str, int]:
    out: dict[str, int] = {}
    for name, value in _parse_mapping(raw, "command_cooldowns").items():
        try:
            seconds = int(value)
        except ValueError:
            raise ValidationError("command_cooldowns", f"{name} cooldown must be an integer") from None
        if seconds < 0:
            raise ValidationError("command_cooldowns", f"{name} cooldown must not be negative")
        out[name] = seconds
    return out


_TRUTHY = {"1", "true", "yes", "y", "on"}
_FALSY = {"0", "false", "no", "n", "off"}

_INT_OPTIONS = ("sync_guild_id", "default_cooldown_seconds", "rate_limit_default_limit", "rate_limit_default_window_ms")
_FLOAT_OPTIONS = ("persistence_timeout_seconds",)
_BOOL_OPTIONS = ("support_can_manage_tickets",)
_STR_OPTIONS = ("token", "sqlite_path", "log_level")


def _coerce_int(field_name: str, raw: Any) -> int:
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError(field_name, "must be an integer")
    try:
        return int(raw.strip() if isinstance(raw, str) else raw)
    except (TypeError, ValueError):
        raise ValidationError(field_name, "must be an integer") from None


def _coerce_float(field_name: str, raw: Any) -> float:
    if isinstance(raw, bool):
        raise ValidationError(field_name, "must be a number")
    try:
        return float(raw.strip() if isinstance(raw, str) else raw)
    except (TypeError, ValueError):
        raise ValidationError(field_name, "must be a number") from None


def _coerce_bool(field_name: str, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise ValidationError(field_name, "must be true or false")


@dataclass(frozen=True)
class Settings:
    """Every recognized option, with its default.

    ``from_mapping`` refuses keys that are not listed here.
    """

    token: str = ""
    sqlite_path: str = "gatekeeper.sqlite3"
    log_level: str = "INFO"
    sync_guild_id: int = 0

    # Staff tiers (global, cross-community)
    owner_ids: frozenset[str] = frozenset()
    admin_ids: frozenset[str] = frozenset()
    moderator_ids: frozenset[str] = frozenset()
    support_ids: frozenset[str] = frozenset()
    # Support staff may change ticket status only when this is on.
    support_can_manage_tickets: bool = False

    # Gate defaults
    default_cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS
    command_cooldowns: Mapping[str, int] = field(default_factory=dict)
    rate_limit_default_limit: int = DEFAULT_RATE_LIMIT
    rate_limit_default_window_ms: int = DEFAULT_RATE_WINDOW_MS

    # community_id -> channel_id; runtime values in GuildConfigStore win.
    audit_streams: Mapping[str, str] = field(default_factory=dict)

    persistence_timeout_seconds: float = PERSISTENCE_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.default_cooldown_seconds < 0:
            raise ValidationError("default_cooldown_seconds", "must not be negative")
        if self.rate_limit_default_limit < 1:
            raise ValidationError("rate_limit_default_limit", "must be at least 1")
        if self.rate_limit_default_window_ms < 1:
            raise ValidationError("rate_limit_default_window_ms", "must be positive")
        if self.persistence_timeout_seconds <= 0:
            raise ValidationError("persistence_timeout_seconds", "must be positive")

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "Settings":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValidationError("settings", f"unknown option(s): {', '.join(unknown)}")

        values = dict(options)
        for key in _INT_OPTIONS:
            if key in values:
                values[key] = _coerce_int(key, values[key])
        for key in _FLOAT_OPTIONS:
            if key in values:
                values[key] = _coerce_float(key, values[key])
        for key in _BOOL_OPTIONS:
            if key in values:
                values[key] = _coerce_bool(key, values[key])
        for key in _STR_OPTIONS:
            if key in values:
                values[key] = str(values[key]).strip()
        for key in ("owner_ids", "admin_ids", "moderator_ids", "support_ids"):
            if key in values:
                values[key] = _parse_id_set(values[key])
        if "command_cooldowns" in values:
            values["command_cooldowns"] = _parse_cooldowns(values["command_cooldowns"])
        if "audit_streams" in values:
            values["audit_streams"] = _parse_mapping(values["audit_streams"], "audit_streams")
        return cls(**values)

    @property
    def staff(self) -> StaffDirectory:
        return StaffDirectory(
            owners=self.owner_ids,
            admins=self.admin_ids,
            moderators=self.moderator_ids,
            support=self.support_ids,
            support_can_manage_tickets=self.support_can_manage_tickets,
        )

    @property
    def default_rate_limit(self) -> RateLimitRule:
        return RateLimitRule(limit=self.rate_limit_default_limit, window_ms=self.rate_limit_default_window_ms)

    def cooldown_for(self, command_name: str, declared: Optional[int] = None) -> int:
        """Configured override, else the declared value, else the default."""
        if command_name in self.command_cooldowns:
            return int(self.command_cooldowns[command_name])
        if declared is None:
            return self.default_cooldown_seconds
        return int(declared)


def load_settings() -> Settings:
    token = os.getenv("DISCORD_TOKEN", "").strip()
    if not token:
        raise RuntimeError("DISCORD_TOKEN is required")
    return Settings(
        token=token,
        sqlite_path=_get_str("SQLITE_PATH", "gatekeeper.sqlite3"),
        log_level=_get_str("LOG_LEVEL", "INFO"),
        sync_guild_id=_get_int("SYNC_GUILD_ID", 0),
        # Default to nobody to avoid accidentally granting owner powers.
        owner_ids=_parse_id_set(os.getenv("OWNER_IDS", "")),
        admin_ids=_parse_id_set(os.getenv("ADMIN_IDS", "")),
        moderator_ids=_parse_id_set(os.getenv("MODERATOR_IDS", "")),
        support_ids=_parse_id_set(os.getenv("SUPPORT_IDS", "")),
        support_can_manage_tickets=_get_bool("SUPPORT_CAN_MANAGE_TICKETS", False),
        default_cooldown_seconds=_get_int("DEFAULT_COOLDOWN_SECONDS", DEFAULT_COOLDOWN_SECONDS),
        command_cooldowns=_parse_cooldowns(os.getenv("COMMAND_COOLDOWNS", "")),
        rate_limit_default_limit=_get_int("RATE_LIMIT_DEFAULT_LIMIT", DEFAULT_RATE_LIMIT),
        rate_limit_default_window_ms=_get_int("RATE_LIMIT_DEFAULT_WINDOW_MS", DEFAULT_RATE_WINDOW_MS),
        audit_streams=_parse_mapping(os.getenv("AUDIT_STREAMS", ""), "audit_streams"),
        persistence_timeout_seconds=_get_float("PERSISTENCE_TIMEOUT_SECONDS", PERSISTENCE_TIMEOUT_SECONDS),
    )
