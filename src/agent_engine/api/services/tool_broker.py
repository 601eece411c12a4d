"""
Tool access broker - leases pooled tool connections for an agent run.

Tools are optional for every run: an agent without enabled tools, a run
without a workspace, or an unreachable tool server all yield ``None`` and the
run continues tool-less.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from agent_engine.api.middleware.exception_handlers import ToolConnectionError
from agent_engine.integrations.engine_types import ToolConnection
from agent_engine.integrations.tool_pool import ToolConnectionPool, ToolLease
from agent_engine.models.agent_models import Agent
from agent_engine.utils.logger import logger


class ToolAccessBroker:
    def __init__(self, pool: ToolConnectionPool):
        self.pool = pool

    async def _lease(self, workspace_id: str, tool_names: list[str], caller_tag: str) -> ToolLease | None:
        try:
            return await self.pool.get_client(workspace_id, tool_names, caller_tag)
        except Exception as e:
            error = ToolConnectionError(f"Tool connection unavailable: {e}", cause=e)
            logger.warning(
                f"{error.message}; continuing without tools",
                workspace_id=workspace_id,
                tools=tool_names,
                caller=caller_tag,
                error_code=error.code.value,
            )
            return None

    @asynccontextmanager
    async def acquire(
        self,
        agent: Agent,
        workspace_id: str | None,
        caller_tag: str = "agent-engine",
    ) -> AsyncGenerator[ToolConnection | None, None]:
        """Yield a tool connection for the agent's enabled tools, or None.

        Example:
            async with broker.acquire(agent, workspace_id, "chat") as tools:
                call = ModelCall(..., tools=tools)
        """
        tool_names = agent.enabled_tool_names()
        if not tool_names or not workspace_id:
            yield None
            return

        lease = await self._lease(workspace_id, tool_names, caller_tag)
        if lease is None:
            yield None
            return

        try:
            yield lease.connection
        finally:
            await lease.dispose()
