"""Database façade - lifecycle + query access over an asyncpg pool."""

import logging
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any, AsyncIterator, Optional, Self

import asyncpg

from pg_access.config import PostgresConfig
from pg_access.core.health import Health

logger = logging.getLogger(__name__)


class Database:
    """Thin façade over an asyncpg pool.

    Engine components receive an instance explicitly; nothing here is global.
    The query methods mirror the asyncpg ``Pool`` API so a pool (or a test
    double with the same four coroutines) can be used interchangeably.
    """

    def __init__(self, config: PostgresConfig) -> None:
        self._config = config
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def config(self) -> PostgresConfig:
        return self._config

    @property
    def schema(self) -> str:
        """Postgres schema (namespace) the engine operates on."""
        return self._config.schema

    @property
    def pool(self) -> asyncpg.Pool:
        """Native asyncpg pool."""
        if self._pool is None:
            raise RuntimeError("Database not started. Call start() first.")
        return self._pool

    async def _connect(self) -> None:
        cfg = self._config
        self._pool = await asyncpg.create_pool(
            host=cfg.host,
            port=cfg.port,
            database=cfg.database,
            user=cfg.user,
            password=cfg.password,
            min_size=cfg.min_connections,
            max_size=cfg.max_connections,
            command_timeout=cfg.command_timeout,
        )
        logger.info("Connected to postgres %s:%s/%s", cfg.host, cfg.port, cfg.database)

    async def _disconnect(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None

    async def start(self) -> None:
        """Open the connection pool."""
        await self._connect()

    async def stop(self) -> None:
        """Graceful shutdown."""
        await self._disconnect()

    async def fetch(self, query: str, *args: Any, timeout: Optional[float] = None) -> list:
        return await self.pool.fetch(query, *args, timeout=timeout)

    async def fetchrow(self, query: str, *args: Any, timeout: Optional[float] = None):
        return await self.pool.fetchrow(query, *args, timeout=timeout)

    async def fetchval(self, query: str, *args: Any, timeout: Optional[float] = None) -> Any:
        return await self.pool.fetchval(query, *args, timeout=timeout)

    async def execute(self, query: str, *args: Any, timeout: Optional[float] = None) -> str:
        return await self.pool.execute(query, *args, timeout=timeout)

    @asynccontextmanager
    async def consistent_read(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield a connection inside a read-only repeatable-read transaction.

        Every query issued on it sees the same catalog state. Nested
        ``conn.transaction()`` blocks become savepoints.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                yield conn

    async def health(self) -> Health:
        """Check that the pool can reach the server."""
        if self._pool is None:
            return Health(ok=False, details={"postgres": "not connected"})
        try:
            version = await self._pool.fetchval("SHOW server_version")
        except Exception as e:
            return Health(ok=False, details={"postgres": f"error: {e}"})
        return Health(ok=True, details={"postgres": "ok"}, server_version=version)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.stop()
