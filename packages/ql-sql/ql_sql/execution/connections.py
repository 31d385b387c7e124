"""Borrowing connections to target databases.

The engine never opens or closes target connections itself: every metadata
query batch and every plan probe borrows one connection from a provider and
hands it back when done.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Dict, Optional, Protocol

import asyncpg

from ..schemas import DatabaseTarget

logger = logging.getLogger(__name__)


class ConnectionProvider(Protocol):
    """Lends asyncpg-compatible connections for a resolved target."""

    def acquire(self, target: DatabaseTarget) -> AsyncContextManager[Any]:
        """Async context manager yielding a connection, returned on exit."""
        ...


def normalize_dsn(dsn: str) -> str:
    """Strip SQLAlchemy driver suffixes so asyncpg accepts the DSN."""
    for prefix in ("postgresql+asyncpg://", "postgres+asyncpg://"):
        if dsn.startswith(prefix):
            return "postgresql://" + dsn[len(prefix):]
    return dsn


class PoolConnectionProvider:
    """One asyncpg pool per target DSN, created lazily.

    Usage:
        provider = PoolConnectionProvider(max_size=5)
        async with provider.acquire(target) as conn:
            rows = await conn.fetch("SELECT 1")
        await provider.close()
    """

    def __init__(
        self,
        min_size: int = 1,
        max_size: int = 5,
        command_timeout: Optional[float] = 90.0,
    ):
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self._pools: Dict[str, asyncpg.Pool] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "PoolConnectionProvider":
        return cls(
            min_size=settings.target_pool_min_size,
            max_size=settings.target_pool_max_size,
            command_timeout=settings.db_command_timeout_seconds,
        )

    async def _get_pool(self, dsn: str) -> asyncpg.Pool:
        async with self._lock:
            pool = self._pools.get(dsn)
            if pool is None:
                logger.info("Creating connection pool for target database (max_size=%d)", self.max_size)
                pool = await asyncpg.create_pool(
                    normalize_dsn(dsn),
                    min_size=self.min_size,
                    max_size=self.max_size,
                    command_timeout=self.command_timeout,
                )
                self._pools[dsn] = pool
            return pool

    @asynccontextmanager
    async def acquire(self, target: DatabaseTarget) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool(target.dsn)
        async with pool.acquire() as conn:
            yield conn

    async def close(self) -> None:
        """Close every pool (application shutdown)."""
        async with self._lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            await pool.close()
