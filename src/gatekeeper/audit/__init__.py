"""Audit trail: durable records plus best-effort mirroring to a community stream."""

from .logger import AuditLogger
from .render import format_duration, render_record
from .stream import AuditStream, DiscordAuditStream, StreamStatus

__all__ = [
    "AuditLogger",
    "AuditStream",
    "DiscordAuditStream",
    "StreamStatus",
    "format_duration",
    "render_record",
]
