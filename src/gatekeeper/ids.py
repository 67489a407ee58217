from __future__ import annotations

import secrets
import threading
import time
from typing import Callable, Optional

_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 only encodes non-negative integers")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


class CaseIdGenerator:
    """Generates ``<BASE36 ms>-<sequence><random>`` identifiers.

    The timestamp never goes backwards and the sequence is bumped for every id
    issued within the same millisecond, so ids from one process are unique
    without consulting storage. The random tail keeps separate processes apart.
    """

    def __init__(
        self,
        prefix: Optional[str] = None,
        *,
        clock: Optional[Callable[[], int]] = None,
        random_length: int = 5,
    ) -> None:
        self._prefix = prefix
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._random_length = random_length
        self._lock = threading.Lock()
        self._last_ms = 0
        self._seq = 0

    def next(self) -> str:
        with self._lock:
            now = int(self._clock())
            if now > self._last_ms:
                self._last_ms = now
                self._seq = 0
            else:
                self._seq += 1
            stamp, seq = self._last_ms, self._seq
        body = f"{base36(stamp)}-{base36(seq).rjust(2, '0')}{_random_suffix(self._random_length)}"
        return f"{self._prefix}-{body}" if self._prefix else body
