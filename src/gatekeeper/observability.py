from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

log = logging.getLogger("gatekeeper.observability")


class LogLevel(Enum):
    """Structured log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EventKind(Enum):
    """Event kinds for structured logging."""
    COMMAND = "command"
    DENIAL = "denial"
    ERROR = "error"
    STARTUP = "startup"


@dataclass
class StructuredLogEntry:
    """Structured log entry with context."""
    timestamp: datetime
    level: LogLevel
    kind: EventKind
    community_id: Optional[str]
    user_id: Optional[str]
    message: str
    details: dict[str, Any]
    duration_ms: Optional[float] = None
    success: Optional[bool] = None
    error_type: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["level"] = self.level.value
        data["kind"] = self.kind.value
        return data


class ObservabilityManager:
    """Operator-facing structured logging plus in-process counters."""

    def __init__(self) -> None:
        self._startup_time = datetime.now(timezone.utc)
        self._command_counts: dict[str, int] = {}
        self._denial_counts: dict[str, int] = {}
        self._error_counts: dict[str, int] = {}

    def log_structured(
        self,
        level: LogLevel,
        kind: EventKind,
        message: str,
        community_id: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        success: Optional[bool] = None,
        error_type: Optional[str] = None,
        exc_info: Optional[BaseException] = None,
    ) -> None:
        """Log a structured event."""
        details = details or {}
        entry = StructuredLogEntry(
            timestamp=datetime.now(timezone.utc),
            level=level,
            kind=kind,
            community_id=community_id,
            user_id=user_id,
            message=message,
            details=details,
            duration_ms=duration_ms,
            success=success,
            error_type=error_type,
        )

        log_method = {
            LogLevel.DEBUG: log.debug,
            LogLevel.INFO: log.info,
            LogLevel.WARNING: log.warning,
            LogLevel.ERROR: log.error,
            LogLevel.CRITICAL: log.critical,
        }.get(level, log.info)

        payload = json.dumps(entry.to_dict(), separators=(",", ":"), default=str)
        log_method(f"[{kind.value}] {message} | {payload}", exc_info=exc_info)

        if kind == EventKind.COMMAND:
            command_name = details.get("command", "unknown")
            self._command_counts[command_name] = self._command_counts.get(command_name, 0) + 1
        elif kind == EventKind.DENIAL:
            reason = details.get("reason", "unknown")
            self._denial_counts[reason] = self._denial_counts.get(reason, 0) + 1
        elif kind == EventKind.ERROR:
            error_key = f"{error_type or 'unknown'}:{details.get('command', 'unknown')}"
            self._error_counts[error_key] = self._error_counts.get(error_key, 0) + 1

    def log_command(
        self,
        command_name: str,
        user_id: str,
        community_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
        case_id: Optional[str] = None,
    ) -> None:
        self.log_structured(
            level=LogLevel.INFO,
            kind=EventKind.COMMAND,
            message=f"Command {command_name} executed",
            community_id=community_id,
            user_id=user_id,
            details={"command": command_name, "case_id": case_id},
            duration_ms=duration_ms,
            success=True,
        )

    def log_denial(self, command_name: str, user_id: str, reason: str, community_id: Optional[str] = None) -> None:
        self.log_structured(
            level=LogLevel.INFO,
            kind=EventKind.DENIAL,
            message=f"Command {command_name} denied",
            community_id=community_id,
            user_id=user_id,
            details={"command": command_name, "reason": reason},
            success=False,
        )

    def log_error(
        self,
        command_name: str,
        user_id: str,
        error: BaseException,
        classification: str,
        community_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
    ) -> None:
        self.log_structured(
            level=LogLevel.ERROR,
            kind=EventKind.ERROR,
            message=f"Command {command_name} failed",
            community_id=community_id,
            user_id=user_id,
            details={"command": command_name, "classification": classification},
            duration_ms=duration_ms,
            success=False,
            error_type=type(error).__name__,
            exc_info=error,
        )

    def get_metrics(self) -> dict[str, Any]:
        uptime = datetime.now(timezone.utc) - self._startup_time
        return {
            "uptime_seconds": int(uptime.total_seconds()),
            "command_counts": dict(self._command_counts),
            "denial_counts": dict(self._denial_counts),
            "error_counts": dict(self._error_counts),
        }
