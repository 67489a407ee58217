from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional


def _normalize_caps(items: Any) -> list[str]:
    if items is None:
        return []
    if isinstance(items, str):
        return [items] if items else []
    if isinstance(items, (list, tuple, set, frozenset)):
        return [x for x in items if isinstance(x, str) and x]
    return []


def _match_any(patterns: frozenset[str], cap: str) -> bool:
    # Exact match is fast path.
    if cap in patterns:
        return True
    # Support wildcard patterns like "manage_*" or "*".
    for p in patterns:
        if "*" in p or "?" in p or "[" in p:
            if fnmatch.fnmatchcase(cap, p):
                return True
    return False


@dataclass(frozen=True)
class Capabilities:
    """Immutable set of capability names held by one principal.

    Computed once per invocation by the platform adapter and handed to the
    gate, so no check re-derives permissions from platform objects.
    """

    names: frozenset[str] = frozenset()

    @classmethod
    def of(cls, *items: Any) -> "Capabilities":
        caps: set[str] = set()
        for item in items:
            caps.update(_normalize_caps(item))
        return cls(frozenset(caps))

    @classmethod
    def all(cls) -> "Capabilities":
        return cls(frozenset({"*"}))

    def has(self, cap: str) -> bool:
        return _match_any(self.names, cap)

    def missing(self, required: Iterable[str]) -> Optional[str]:
        """First capability from ``required`` not held, in declaration order."""
        for cap in required:
            if not self.has(cap):
                return cap
        return None

    def __contains__(self, cap: object) -> bool:
        return isinstance(cap, str) and self.has(cap)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.names))

    def __len__(self) -> int:
        return len(self.names)
