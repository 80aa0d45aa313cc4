"""
Process setup for applications embedding the outreach library.

`configure()` applies the logging settings and should run once at import time
of the host application; `lifespan()` opens the document store pool and the
local fallback client for the lifetime of the process.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from outreach.config import settings
from outreach.db.pool import DatabasePoolManager, db_pool
from outreach.infrastructure.observability.logging import get_logger, setup_logging
from outreach.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)


def configure() -> None:
    """Configure structlog from LOG_LEVEL and LOG_JSON."""
    setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.LOG_JSON)


@asynccontextmanager
async def lifespan(
    pool: DatabasePoolManager | None = None,
    redis_client: FastRedisClient | None = None,
) -> AsyncIterator[list[str]]:
    """
    Initialize shared resources and close them on exit.

    The database pool is only opened when a DSN is configured. Resources that
    came up before a startup failure are closed again, in reverse order.

    Yields:
        list[str]: Names of the services that were started
    """
    pool = pool or db_pool
    redis_client = redis_client or fast_redis

    logger.info("Outreach runtime starting", environment=settings.environment, debug=settings.debug)
    started: list[str] = []

    try:
        if pool.conninfo or settings.DOCUMENT_STORE_DB_URL:
            logger.info("Initializing database pool")
            await pool.initialize()
            started.append("database_pool")

        logger.info("Initializing Redis connection")
        await redis_client.initialize()
        started.append("redis")

        logger.info("All services initialized successfully", services=started)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=started)
        await _shutdown(started, pool, redis_client)
        raise

    try:
        yield started
    finally:
        logger.info("Outreach runtime shutting down")
        await _shutdown(started, pool, redis_client)


async def _shutdown(
    started: list[str], pool: DatabasePoolManager, redis_client: FastRedisClient
) -> None:
    if "redis" in started:
        try:
            await redis_client.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))

    if "database_pool" in started:
        try:
            await pool.close()
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))


async def health(pool: DatabasePoolManager | None = None) -> dict[str, Any]:
    """Document store health; healthy when no pool is configured at all."""
    pool = pool or db_pool
    if not pool.initialized and not (pool.conninfo or settings.DOCUMENT_STORE_DB_URL):
        return {"healthy": True, "service": "database_pool", "configured": False}
    return await pool.health_check()
