"""Database utilities for the telemetry/persistence sink.

Provides:
- Connection pool factory
- Retry decorator for transient database failures
- Health check and shutdown helpers
"""

from __future__ import annotations

import asyncio
import functools
import json
import random

from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

import asyncpg

from utils.json_utils import json_compact
from utils.logger import logger

P = ParamSpec("P")
T = TypeVar("T")

#: asyncpg errors that indicate a connection problem rather than a bad query
TRANSIENT_DB_ERRORS: tuple[type[Exception], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionError,
    asyncio.TimeoutError,
)


class PoolUnavailable(Exception):
    """Raised when the connection pool cannot be created."""


async def create_database_pool(
    dsn: str,
    *,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    connection_timeout: float = 10.0,
) -> asyncpg.Pool:
    """Create the asyncpg pool used by the persistence services.

    JSONB columns are exchanged as Python objects through a codec registered
    on every connection.

    Raises:
        PoolUnavailable: If initial connections cannot be established
    """

    async def init_connection(conn: asyncpg.Connection) -> None:
        await conn.execute(f"SET statement_timeout = '{int(command_timeout * 1000)}'")
        await conn.set_type_codec(
            "jsonb",
            encoder=_encode_jsonb,
            decoder=_decode_jsonb,
            schema="pg_catalog",
        )

    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=command_timeout,
                init=init_connection,
            ),
            timeout=connection_timeout,
        )
    except asyncio.TimeoutError as e:
        raise PoolUnavailable(f"Connection pool creation timed out after {connection_timeout}s") from e
    except (OSError, asyncpg.PostgresError) as e:
        raise PoolUnavailable(f"Failed to create connection pool: {e}") from e

    if pool is None:
        raise PoolUnavailable("Failed to create connection pool")
    return pool


def _encode_jsonb(value: Any) -> str:
    return json_compact(value)


def _decode_jsonb(value: str) -> Any:
    return json.loads(value)


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_DB_ERRORS,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry a database coroutine on transient failures.

    Uses exponential backoff with jitter.

    Example:
        @with_retry(max_attempts=3)
        async def finalize(pool, execution_id):
            async with pool.acquire() as conn:
                await conn.execute("UPDATE agent_executions ...", execution_id)
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:  # noqa: PERF203
                    if attempt + 1 >= max_attempts:
                        logger.error(
                            f"Database operation {func.__name__} failed after {max_attempts} attempts: {e}",
                            exc_info=True,
                        )
                        raise
                    delay = min(base_delay * (2**attempt) + random.uniform(0, 0.5), max_delay)
                    logger.warning(
                        f"Database operation {func.__name__} failed (attempt {attempt + 1}/{max_attempts}), "
                        f"retrying in {delay:.2f}s: {e}"
                    )
                    await asyncio.sleep(delay)
            raise RuntimeError("Retry loop exited unexpectedly")

        return wrapper

    return decorator


async def check_pool_health(pool: asyncpg.Pool) -> dict[str, Any]:
    """Check database pool health and return statistics."""
    try:
        async with pool.acquire(timeout=5.0) as conn:
            is_healthy = await conn.fetchval("SELECT 1") == 1
    except (*TRANSIENT_DB_ERRORS, asyncpg.PostgresError) as e:
        logger.warning(f"Database health check failed: {e}")
        is_healthy = False

    return {
        "healthy": is_healthy,
        "pool_size": pool.get_size(),
        "pool_max_size": pool.get_max_size(),
        "free_connections": pool.get_idle_size(),
    }


async def graceful_pool_close(pool: asyncpg.Pool, timeout: float = 10.0) -> None:
    """Close the pool, waiting up to timeout for in-flight writes to finish."""
    try:
        await asyncio.wait_for(pool.close(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Timeout waiting for database connections to drain, terminating pool")
        pool.terminate()
