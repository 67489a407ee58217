from __future__ import annotations

from typing import Any, Optional

from .constants import ERROR_MESSAGES


class GatekeeperError(Exception):
    """Base class for every error the gatekeeper core knows how to classify.

    ``reason`` is a short machine-readable code that ends up in audit records.
    ``user_message`` is safe to show to the invoking member.
    """

    reason: str = "error"

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message or ERROR_MESSAGES["generic"]


class ScopeViolation(GatekeeperError):
    reason = "community-only"

    def __init__(self) -> None:
        super().__init__(
            "command requires a community",
            user_message=ERROR_MESSAGES["community_only"],
        )


class PermissionDenied(GatekeeperError):
    reason = "missing-capability"

    def __init__(self, missing: str, *, reason: Optional[str] = None, user_message: Optional[str] = None) -> None:
        self.missing = missing
        if reason:
            self.reason = reason
        super().__init__(
            f"permission denied: {missing}",
            user_message=user_message or ERROR_MESSAGES["missing_permissions"].format(perm=_pretty(missing)),
        )


class HierarchyViolation(GatekeeperError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(
            f"hierarchy violation: {reason}",
            user_message=ERROR_MESSAGES.get(f"hierarchy:{reason}", ERROR_MESSAGES["hierarchy:equal-or-higher-role"]),
        )


class CooldownActive(GatekeeperError):
    reason = "cooldown"

    def __init__(self, seconds_remaining: int) -> None:
        self.seconds_remaining = int(seconds_remaining)
        super().__init__(
            f"cooldown active for {self.seconds_remaining}s",
            user_message=ERROR_MESSAGES["cooldown"].format(seconds=self.seconds_remaining),
        )


class RateLimited(GatekeeperError):
    reason = "rate-limited"

    def __init__(self, reset_at: int) -> None:
        # Epoch milliseconds.
        self.reset_at = int(reset_at)
        super().__init__(
            f"rate limited until {self.reset_at}",
            user_message=ERROR_MESSAGES["rate_limited"].format(reset=self.reset_at // 1000),
        )


class ValidationError(GatekeeperError):
    reason = "validation"

    def __init__(self, field: str, rule: str) -> None:
        self.field = field
        self.rule = rule
        super().__init__(
            f"invalid {field}: {rule}",
            user_message=ERROR_MESSAGES["validation"].format(field=field, rule=rule),
        )


class NotFound(GatekeeperError):
    reason = "not-found"

    def __init__(self, entity: str, key: Any = None) -> None:
        self.entity = entity
        self.key = key
        super().__init__(
            f"{entity} not found" + (f": {key}" if key is not None else ""),
            user_message=ERROR_MESSAGES["not_found"].format(entity=entity),
        )


class PersistenceFailure(GatekeeperError):
    reason = "persistence"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(
            f"persistence failure during {operation}",
            user_message=ERROR_MESSAGES["database_error"],
        )


class UnclassifiedException(GatekeeperError):
    reason = "unclassified"

    def __init__(self, original: BaseException) -> None:
        self.original = original
        super().__init__(f"{type(original).__name__}: {original}")


def _pretty(permission: str) -> str:
    return permission.replace("_", " ").title()


def classify(exc: BaseException) -> str:
    """Return the taxonomy name for an exception raised past the gate."""
    if isinstance(exc, GatekeeperError):
        return type(exc).__name__
    return UnclassifiedException.__name__
