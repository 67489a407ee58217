"""Per-actor, per-command temporal guards owned by the authorization gate."""

from .cooldown import READY, CooldownLimiter, CooldownStore, InMemoryCooldownStore, Ready, Wait
from .locks import KeyedLocks
from .rate_limit import InMemoryRateLimitStore, Limited, RateLimiter, RateLimitStore

__all__ = [
    "READY",
    "CooldownLimiter",
    "CooldownStore",
    "InMemoryCooldownStore",
    "InMemoryRateLimitStore",
    "KeyedLocks",
    "Limited",
    "RateLimiter",
    "RateLimitStore",
    "Ready",
    "Wait",
]
