from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest

from fakes import FakeToolConnection, make_agent

from agent_engine.api.services.tool_broker import ToolAccessBroker
from agent_engine.integrations.tool_client import ToolServerError
from agent_engine.integrations.tool_pool import ToolConnectionPool, ToolLease


@pytest.fixture
def connection() -> FakeToolConnection:
    return FakeToolConnection(["search"])


@pytest.fixture
def lease(connection: FakeToolConnection) -> Mock:
    lease = Mock(spec=ToolLease)
    lease.connection = connection
    lease.dispose = AsyncMock()
    return lease


@pytest.fixture
def pool(lease: Mock) -> Mock:
    pool = Mock(spec=ToolConnectionPool)
    pool.get_client = AsyncMock(return_value=lease)
    return pool


class TestToolAccessBroker:
    @pytest.mark.asyncio
    async def test_leases_enabled_tools(self, pool: Mock, lease: Mock, connection: FakeToolConnection) -> None:
        agent = make_agent(tools=[{"name": "search"}, {"name": "delete", "is_enabled": False}])
        async with ToolAccessBroker(pool).acquire(agent, "ws-1", "chat") as tools:
            assert tools is connection
            lease.dispose.assert_not_awaited()
        pool.get_client.assert_awaited_once_with("ws-1", ["search"], "chat")
        lease.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lease_released_on_error(self, pool: Mock, lease: Mock) -> None:
        agent = make_agent(tools=[{"name": "search"}])
        with pytest.raises(RuntimeError):
            async with ToolAccessBroker(pool).acquire(agent, "ws-1"):
                raise RuntimeError("model failed")
        lease.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_tools_no_lease(self, pool: Mock) -> None:
        async with ToolAccessBroker(pool).acquire(make_agent(), "ws-1") as tools:
            assert tools is None
        pool.get_client.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_workspace_no_lease(self, pool: Mock) -> None:
        agent = make_agent(tools=[{"name": "search"}])
        async with ToolAccessBroker(pool).acquire(agent, None) as tools:
            assert tools is None
        pool.get_client.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreachable_tool_server_degrades(self, pool: Mock) -> None:
        pool.get_client.side_effect = ToolServerError("connection refused")
        agent = make_agent(tools=[{"name": "search"}])
        async with ToolAccessBroker(pool).acquire(agent, "ws-1") as tools:
            assert tools is None
