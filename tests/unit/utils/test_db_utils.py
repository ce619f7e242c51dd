"""Tests for database helpers."""

from __future__ import annotations

import asyncio

from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from utils.db_utils import check_pool_health, graceful_pool_close, with_retry


class TestWithRetry:
    """Tests for the retry decorator."""

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self) -> None:
        calls = 0

        @with_retry(max_attempts=3, base_delay=0, max_delay=0)
        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise ConnectionResetError("reset")
            return "ok"

        assert await flaky() == "ok"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        inner = AsyncMock(side_effect=asyncio.TimeoutError())
        wrapped = with_retry(max_attempts=2, base_delay=0, max_delay=0)(inner)

        with pytest.raises(asyncio.TimeoutError):
            await wrapped()
        assert inner.await_count == 2

    @pytest.mark.asyncio
    async def test_non_transient_errors_not_retried(self) -> None:
        inner = AsyncMock(side_effect=ValueError("bad query"))
        wrapped = with_retry(max_attempts=3, base_delay=0, max_delay=0)(inner)

        with pytest.raises(ValueError):
            await wrapped()
        assert inner.await_count == 1


def configure_sizes(pool: MagicMock) -> None:
    pool.get_size.return_value = 4
    pool.get_max_size.return_value = 10
    pool.get_idle_size.return_value = 3


@pytest.mark.asyncio
async def test_pool_health(mock_pool: MagicMock) -> None:
    configure_sizes(mock_pool)

    health = await check_pool_health(mock_pool)

    assert health == {"healthy": True, "pool_size": 4, "pool_max_size": 10, "free_connections": 3}
    mock_pool.conn.fetchval.assert_awaited_once_with("SELECT 1")


@pytest.mark.asyncio
async def test_pool_health_failure(mock_pool: MagicMock) -> None:
    configure_sizes(mock_pool)
    mock_pool.conn.fetchval.side_effect = asyncpg.InterfaceError("connection closed")

    assert (await check_pool_health(mock_pool))["healthy"] is False


@pytest.mark.asyncio
async def test_graceful_close() -> None:
    pool = MagicMock()
    pool.close = AsyncMock()

    await graceful_pool_close(pool)

    pool.close.assert_awaited_once()
    pool.terminate.assert_not_called()


@pytest.mark.asyncio
async def test_graceful_close_terminates_on_timeout() -> None:
    async def hang() -> None:
        await asyncio.sleep(5)

    pool = MagicMock()
    pool.close = hang

    await graceful_pool_close(pool, timeout=0.01)

    pool.terminate.assert_called_once()
