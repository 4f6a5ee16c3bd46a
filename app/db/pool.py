# app/db/pool.py
"""
PostgreSQL connection pool for the booking and reminder repositories.
Opened by the FastAPI lifespan or the worker, closed on shutdown.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SESSION_SETTINGS = (
    "SET timezone = 'UTC'",
    "SET statement_timeout = '60s'",
)


class DatabasePoolManager:
    """Owns the process-wide AsyncConnectionPool."""

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized and not self._closed

    async def initialize(self) -> None:
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        config = settings.get_db_pool_config()
        logger.info(
            "Opening database pool",
            min_size=config["min_size"],
            max_size=config["max_size"],
            environment=settings.environment,
        )
        # open=False: opening in the constructor is deprecated for the async pool
        self.pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **config,
        )

        try:
            await self.pool.open()
            await self.pool.wait()
            self._initialized = True
            await self._ping()
        except Exception as e:
            logger.error("Failed to open database pool", error=str(e))
            self._initialized = False
            await self._discard_pool()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info("Database pool ready")

    async def _discard_pool(self) -> None:
        if self.pool is None:
            return
        try:
            await self.pool.close()
        except Exception as e:
            logger.warning("Error closing half-open pool", error=str(e))
        self.pool = None

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        """Dict rows, autocommit and UTC sessions on every pooled connection."""
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        # SET does not accept bind parameters
        await conn.execute(
            sql.SQL("SET application_name = {}").format(
                sql.Literal(f"booking-reminders-{settings.environment}")
            )
        )
        for statement in SESSION_SETTINGS:
            await conn.execute(statement)

    async def _ping(self) -> None:
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1 AS ok")
                row = await cur.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Unexpected result from SELECT 1")

    async def close(self) -> None:
        if not self._initialized or self._closed:
            return

        logger.info("Closing database pool")
        try:
            await asyncio.wait_for(self.pool.close(), timeout=30.0)
        except TimeoutError:
            logger.warning("Database pool close timed out")
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow a connection; raises RuntimeError when the pool is not open."""
        if not self.initialized:
            raise RuntimeError("Database pool is not open")

        async with self.pool.connection() as conn:
            yield conn

    async def health_check(self) -> dict[str, Any]:
        """
        Pool status for /readyz.

        Returns ``healthy`` plus either ``error`` or ``pool_stats``
        (and ``warnings`` when callers are queued for a connection).
        """
        if not self.initialized:
            return {"healthy": False, "error": "Pool not open"}

        try:
            await self._ping()
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {"healthy": False, "error": f"{type(e).__name__}: {e}"}

        stats = self.pool.get_stats()
        waiting = stats.get("requests_waiting", 0)
        result: dict[str, Any] = {
            "healthy": True,
            "pool_stats": {
                "pool_size": stats.get("pool_size", 0),
                "pool_available": stats.get("pool_available", 0),
                "requests_waiting": waiting,
            },
        }
        if waiting:
            result["warnings"] = [f"{waiting} requests waiting for a connection"]
        return result


db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
