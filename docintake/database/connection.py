from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg_pool import AsyncConnectionPool

from docintake.config.settings import Settings


def build_conninfo(settings: Settings) -> str:
    return (
        f"host={settings.db_host} "
        f"port={settings.db_port} "
        f"dbname={settings.db_database} "
        f"user={settings.db_username} "
        f"password={settings.db_password}"
    )


class Database:
    """Owns the async connection pool; one instance per process, injected."""

    def __init__(self, settings: Settings) -> None:
        self._conninfo = build_conninfo(settings)
        self._min_size = settings.db_pool_min_size
        self._max_size = settings.db_pool_max_size
        self._open_timeout = settings.db_pool_open_timeout_seconds
        self._pool: AsyncConnectionPool | None = None

    async def open(self) -> None:
        """Create the pool and wait for its first connections. Calling twice is a no-op.

        Raises psycopg_pool.PoolTimeout if the database is unreachable.
        """
        if self._pool is not None:
            return
        pool = AsyncConnectionPool(
            self._conninfo,
            min_size=self._min_size,
            max_size=self._max_size,
            open=False,
        )
        try:
            await pool.open(wait=True, timeout=self._open_timeout)
        except Exception:
            await pool.close()
            raise
        self._pool = pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection[Any]]:
        """Yield a pooled connection. Caller manages commit; errors roll back."""
        if self._pool is None:
            raise RuntimeError("Database pool not opened. Call Database.open() first.")
        async with self._pool.connection() as conn:
            yield conn
