"""
PostgreSQL connection pool manager using psycopg_pool.

The pool is constructed by the composition root and handed to every
repository/service that needs it; nothing reaches for a module-level pool.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from fortune.db.helpers import DatabaseError
from fortune.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabasePoolManager:
    """
    Async connection pool with lifecycle management, health reporting and
    small query helpers returning dict rows.
    """

    def __init__(self, conninfo: str, pool_config: dict[str, Any], *, app_name: str = "fortune"):
        self.conninfo = conninfo
        self.pool_config = pool_config
        self.app_name = app_name
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized and not self._closed

    async def initialize(self) -> None:
        """Open the pool and verify a round trip. Raises RuntimeError on failure."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return

        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        try:
            logger.info("Initializing database connection pool")

            self.pool = AsyncConnectionPool(
                conninfo=self.conninfo,
                open=False,
                check=AsyncConnectionPool.check_connection,
                configure=self._configure_connection,
                **self.pool_config,
            )
            await self.pool.open()
            await self.pool.wait()

            # Mark as initialized before testing so connection() is usable
            self._initialized = True
            await self._test_pool_connections()

            logger.info(
                "Database pool initialized successfully",
                min_size=self.pool_config.get("min_size"),
                max_size=self.pool_config.get("max_size"),
            )

        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._initialized = False
            if self.pool:
                try:
                    await self.pool.close()
                except Exception as close_error:
                    logger.debug("Ignoring pool close error", error=str(close_error))
                self.pool = None
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        """Configure each new connection from the pool."""
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(self.app_name)))
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute("SET statement_timeout = '60s'")

    async def _test_pool_connections(self) -> None:
        value = await self.fetch_val("SELECT 1")
        if value != 1:
            raise RuntimeError("Database connection test failed - got unexpected result")
        logger.debug("Database pool connection test passed")

    async def close(self) -> None:
        """Close the connection pool gracefully."""
        if not self._initialized or self._closed:
            return

        try:
            logger.info("Closing database connection pool")
            if self.pool:
                await asyncio.wait_for(self.pool.close(), timeout=30.0)
            self._initialized = False
            self._closed = True
            logger.info("Database pool closed successfully")

        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Get a connection from the pool.

        Usage:
            async with db.connection() as conn:
                await conn.execute("SELECT 1")
        """
        if not self._initialized:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        if self._closed:
            raise RuntimeError("Database pool is closed")

        async with self.pool.connection() as conn:
            yield conn

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    async def fetch_one(self, query: str, params: tuple = ()) -> dict[str, Any] | None:
        try:
            async with self.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchone()
        except psycopg.Error as e:
            logger.error("Database fetch_one error", query=query[:100], error=str(e))
            raise DatabaseError(
                f"Query failed: {e}",
                operation="fetch_one",
                recoverable=isinstance(e, psycopg.OperationalError),
            ) from e

    async def fetch_all(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        try:
            async with self.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()
        except psycopg.Error as e:
            logger.error("Database fetch_all error", query=query[:100], error=str(e))
            raise DatabaseError(
                f"Query failed: {e}",
                operation="fetch_all",
                recoverable=isinstance(e, psycopg.OperationalError),
            ) from e

    async def fetch_val(self, query: str, params: tuple = ()) -> Any:
        row = await self.fetch_one(query, params)
        return list(row.values())[0] if row else None

    async def execute(self, query: str, params: tuple = ()) -> int:
        """Execute a statement and return the number of affected rows."""
        try:
            async with self.connection() as conn:
                cursor = await conn.execute(query, params)
                return cursor.rowcount
        except psycopg.Error as e:
            logger.error("Database execute error", query=query[:100], error=str(e))
            raise DatabaseError(
                f"Query failed: {e}",
                operation="execute",
                recoverable=isinstance(e, psycopg.OperationalError),
            ) from e

    async def health_check(self) -> dict[str, Any]:
        """Pool health with stats and a timed round trip."""
        if not self.initialized:
            return {"healthy": False, "error": "Pool not initialized", "service": "database_pool"}

        start_time = time.time()
        try:
            value = await self.fetch_val("SELECT 1")
            if value != 1:
                raise RuntimeError(f"Database test failed - got {value} instead of 1")
        except Exception as e:
            return {
                "healthy": False,
                "service": "database_pool",
                "error": f"Connection test failed: {e}",
                "error_type": type(e).__name__,
            }

        connection_time_ms = (time.time() - start_time) * 1000
        stats = self.pool.get_stats()
        pool_size = stats.get("pool_size", 0)
        pool_available = stats.get("pool_available", 0)
        utilization = (pool_size - pool_available) / pool_size * 100 if pool_size > 0 else 0

        health = {
            "healthy": utilization < 90,
            "service": "database_pool",
            "connection_time_ms": round(connection_time_ms, 2),
            "pool_stats": {
                "pool_size": pool_size,
                "pool_available": pool_available,
                "pool_utilization_percent": round(utilization, 2),
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }

        warnings = []
        if utilization > 80:
            warnings.append(f"High pool utilization: {utilization:.1f}%")
        if stats.get("requests_waiting", 0) > 0:
            warnings.append(f"Requests waiting for connections: {stats['requests_waiting']}")
        if warnings:
            health["warnings"] = warnings

        return health
