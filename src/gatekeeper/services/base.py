from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import aiosqlite

from ..constants import CACHE_TTL_SECONDS, PERSISTENCE_TIMEOUT_SECONDS
from ..errors import PersistenceFailure
from .cache import TTLCache

T = TypeVar("T")
R = TypeVar("R")


class BaseService(ABC, Generic[T]):
    """Base class for all SQLite-backed services with caching.

    Every statement runs under a bounded timeout. ``_write`` fails closed with
    ``PersistenceFailure``; ``_read_degraded`` fails open with a fallback value.
    """

    def __init__(
        self,
        sqlite_path: str,
        cache_ttl_seconds: int = CACHE_TTL_SECONDS,
        timeout_seconds: float = PERSISTENCE_TIMEOUT_SECONDS,
    ) -> None:
        self._path = sqlite_path
        self._timeout = float(timeout_seconds)
        self._cache: TTLCache[str, T] = TTLCache(default_ttl_seconds=cache_ttl_seconds)
        self._logger = logging.getLogger(f"gatekeeper.{self.__class__.__name__.lower()}")

    async def init(self) -> None:
        """Initialize the database schema."""
        async with aiosqlite.connect(self._path) as db:
            await self._create_tables(db)
            await db.commit()

    @abstractmethod
    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        """Create the necessary database tables."""

    @abstractmethod
    def _from_row(self, row: aiosqlite.Row) -> T:
        """Convert a database row to the service's data type."""

    @property
    @abstractmethod
    def _get_query(self) -> str:
        """SQL query for getting data by key."""

    async def _guarded(self, operation: str, work: Callable[[], Awaitable[R]]) -> R:
        try:
            return await asyncio.wait_for(work(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            self._logger.error("%s timed out after %.1fs", operation, self._timeout)
            raise PersistenceFailure(operation) from e
        except aiosqlite.Error as e:
            self._logger.error("%s failed: %s", operation, e)
            raise PersistenceFailure(operation) from e

    async def _write(self, operation: str, work: Callable[[], Awaitable[R]]) -> R:
        return await self._guarded(operation, work)

    async def _read_degraded(self, operation: str, work: Callable[[], Awaitable[R]], fallback: R) -> R:
        try:
            return await self._guarded(operation, work)
        except PersistenceFailure:
            self._logger.warning("%s degraded: returning fallback result", operation)
            return fallback

    async def get(self, key: str) -> Optional[T]:
        """Get cached data or fetch from database."""
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        async def _fetch() -> Optional[T]:
            async with aiosqlite.connect(self._path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(self._get_query, (key,)) as cur:
                    row = await cur.fetchone()
            return self._from_row(row) if row is not None else None

        data = await self._guarded(f"{self.__class__.__name__}.get", _fetch)
        if data is not None:
            self._cache.set(key, data)
        return data
