"""Tests for database utilities."""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agent_engine.utils.db_utils import (
    ConnectionPoolExhausted,
    acquire_connection,
    check_pool_health,
    create_database_pool,
    graceful_pool_close,
)


@pytest.fixture
def exhausted_pool() -> MagicMock:
    @asynccontextmanager
    async def acquire(*args: Any, **kwargs: Any) -> AsyncIterator[None]:
        raise asyncio.TimeoutError()
        yield

    pool = MagicMock()
    pool.acquire.side_effect = acquire
    pool.get_size.return_value = 10
    pool.get_max_size.return_value = 10
    pool.get_idle_size.return_value = 0
    return pool


class TestAcquireConnection:
    @pytest.mark.asyncio
    async def test_yields_connection(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        async with acquire_connection(mock_pool, timeout=1.0) as conn:
            assert conn is mock_conn

    @pytest.mark.asyncio
    async def test_timeout_is_pool_exhausted(self, exhausted_pool: MagicMock) -> None:
        with pytest.raises(ConnectionPoolExhausted, match="within 2.0s"):
            async with acquire_connection(exhausted_pool, timeout=2.0):
                pass


class TestCreateDatabasePool:
    @pytest.mark.asyncio
    async def test_passes_pool_sizes(self) -> None:
        pool = MagicMock()
        with patch("asyncpg.create_pool", new=AsyncMock(return_value=pool)) as create_pool:
            result = await create_database_pool("postgresql://x", min_size=1, max_size=3)

        assert result is pool
        kwargs = create_pool.await_args.kwargs
        assert (kwargs["min_size"], kwargs["max_size"]) == (1, 3)
        assert callable(kwargs["init"])

    @pytest.mark.asyncio
    async def test_connect_failure(self) -> None:
        with (
            patch("asyncpg.create_pool", new=AsyncMock(side_effect=OSError("refused"))),
            pytest.raises(ConnectionPoolExhausted, match="Failed to create connection pool: refused"),
        ):
            await create_database_pool("postgresql://x")

    @pytest.mark.asyncio
    async def test_init_registers_json_codecs(self) -> None:
        with patch("asyncpg.create_pool", new=AsyncMock(return_value=MagicMock())) as create_pool:
            await create_database_pool("postgresql://x", command_timeout=5.0)

        conn = AsyncMock()
        await create_pool.await_args.kwargs["init"](conn)
        assert [c.args[0] for c in conn.set_type_codec.await_args_list] == ["json", "jsonb"]
        conn.execute.assert_awaited_once_with("SET statement_timeout = '5000'")


class TestPoolHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, mock_pool: MagicMock, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval.return_value = 1
        mock_pool.get_size.return_value = 2
        mock_pool.get_max_size.return_value = 10
        mock_pool.get_idle_size.return_value = 2

        health = await check_pool_health(mock_pool)

        assert health == {"healthy": True, "pool_size": 2, "pool_max_size": 10, "free_connections": 2}

    @pytest.mark.asyncio
    async def test_exhausted_pool_is_unhealthy(self, exhausted_pool: MagicMock) -> None:
        health = await check_pool_health(exhausted_pool)
        assert health["healthy"] is False
        assert health["free_connections"] == 0


class TestGracefulClose:
    @pytest.mark.asyncio
    async def test_closes_idle_pool(self) -> None:
        pool = MagicMock()
        pool.get_size.return_value = 2
        pool.get_idle_size.return_value = 2
        pool.close = AsyncMock()

        await graceful_pool_close(pool, timeout=0.5)

        pool.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_forces_close_after_timeout(self) -> None:
        pool = MagicMock()
        pool.get_size.return_value = 3
        pool.get_idle_size.return_value = 1
        pool.close = AsyncMock()

        await graceful_pool_close(pool, timeout=0.15)

        pool.close.assert_awaited_once()
