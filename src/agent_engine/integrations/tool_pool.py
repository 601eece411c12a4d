"""
Tool connection pool - shared tool-server connections keyed by workspace and tool set.

Connections are expensive (WebSocket handshake plus tool listing), so they are
pooled per ``(workspace_id, sorted tool names)`` and handed out as leases.
Concurrent requests for the same key coalesce onto one in-flight connection
attempt. Idle connections are swept after ``idle_timeout`` seconds and
everything is closed on shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import time

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agent_engine.integrations.engine_types import ToolConnection
from agent_engine.integrations.tool_client import ToolServerClient, ToolServerError
from agent_engine.utils.logger import logger

if TYPE_CHECKING:
    from agent_engine.core.constants import Settings
    from agent_engine.models.tool_models import ToolDefinition

PoolKey = tuple[str, tuple[str, ...]]
Connector = Callable[[str, list[str], str], Awaitable[ToolConnection]]


def make_pool_key(workspace_id: str, tool_names: list[str]) -> PoolKey:
    return workspace_id, tuple(sorted(set(tool_names)))


def _key_label(key: PoolKey) -> str:
    workspace_id, tool_names = key
    return f"{workspace_id}:{','.join(tool_names)}"


async def _close_connection(entry: PooledConnection) -> None:
    """Close one pooled connection, logging instead of raising."""
    try:
        await entry.connection.close()
    except Exception as e:
        logger.warning(f"Error closing tool connection {_key_label(entry.key)}: {e}")


def create_tool_server_connector(settings: Settings) -> Connector:
    """Connector that opens a ToolServerClient against the configured tool server."""

    async def connect(workspace_id: str, tool_names: list[str], caller_tag: str) -> ToolConnection:
        client = ToolServerClient(
            settings.tool_server_url,
            workspace_id,
            tool_names,
            caller_tag=caller_tag,
            connect_timeout=settings.tool_connect_timeout,
            request_timeout=settings.tool_request_timeout,
        )
        return await client.connect()

    return connect


@dataclass
class PooledConnection:
    key: PoolKey
    connection: ToolConnection
    ref_count: int = 0
    last_used: float = field(default_factory=time.monotonic)


class ToolLease:
    """A borrowed pooled connection. ``dispose()`` returns it; calling it twice is a no-op."""

    def __init__(self, pool: ToolConnectionPool, entry: PooledConnection):
        self._pool = pool
        self._entry = entry
        self._disposed = False

    @property
    def connection(self) -> ToolConnection:
        return self._entry.connection

    @property
    def tools(self) -> dict[str, ToolDefinition]:
        return self._entry.connection.tools

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        await self._pool._release(self._entry)


class ToolConnectionPool:
    """Owns every live tool connection in the process.

    Holds at most one connection per key. Entries track how many leases are
    outstanding and when they were last returned; only unleased entries are
    evicted.
    """

    def __init__(
        self,
        connector: Connector,
        *,
        idle_timeout: float = 300.0,
        sweep_interval: float = 60.0,
    ) -> None:
        self._connector = connector
        self.idle_timeout = idle_timeout
        self.sweep_interval = sweep_interval

        self._entries: dict[PoolKey, PooledConnection] = {}
        self._pending: dict[PoolKey, asyncio.Task[PooledConnection]] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None
        self._closed = False
        self._created = 0

    @classmethod
    def from_settings(cls, settings: Settings, connector: Connector | None = None) -> ToolConnectionPool:
        return cls(
            connector or create_tool_server_connector(settings),
            idle_timeout=settings.tool_pool_idle_timeout,
            sweep_interval=settings.tool_pool_sweep_interval,
        )

    async def get_client(
        self,
        workspace_id: str,
        tool_names: list[str],
        caller_tag: str = "agent-engine",
    ) -> ToolLease:
        """Lease the connection for ``(workspace_id, tool_names)``, creating it at most once.

        Raises whatever the connector raised when the connection attempt fails;
        every caller waiting on that attempt sees the same error.
        """
        key = make_pool_key(workspace_id, tool_names)

        async with self._lock:
            if self._closed:
                raise ToolServerError("Tool connection pool is shut down")

            entry = self._entries.get(key)
            if entry is not None and entry.connection.is_closed:
                logger.info(f"Replacing closed tool connection {_key_label(key)}")
                del self._entries[key]
                entry = None

            if entry is not None:
                entry.ref_count += 1
                entry.last_used = time.monotonic()
                return ToolLease(self, entry)

            task = self._pending.get(key)
            if task is None:
                task = asyncio.create_task(self._create(key, caller_tag))
                self._pending[key] = task
            else:
                logger.debug(f"Awaiting in-flight tool connection {_key_label(key)}", caller=caller_tag)

        # Shielded so one cancelled waiter doesn't abort creation for the others
        entry = await asyncio.shield(task)

        async with self._lock:
            entry.ref_count += 1
            entry.last_used = time.monotonic()
        return ToolLease(self, entry)

    async def _create(self, key: PoolKey, caller_tag: str) -> PooledConnection:
        workspace_id, tool_names = key
        started = time.monotonic()
        try:
            connection = await self._connector(workspace_id, list(tool_names), caller_tag)
        finally:
            self._pending.pop(key, None)

        entry = PooledConnection(key=key, connection=connection)
        if self._closed:
            await _close_connection(entry)
            raise ToolServerError("Tool connection pool is shut down")

        self._entries[key] = entry
        self._created += 1
        logger.info(
            f"Tool connection ready for {_key_label(key)}",
            tools=len(connection.tools),
            connect_ms=int((time.monotonic() - started) * 1000),
            caller=caller_tag,
        )
        return entry

    async def _release(self, entry: PooledConnection) -> None:
        async with self._lock:
            entry.ref_count = max(0, entry.ref_count - 1)
            entry.last_used = time.monotonic()

    async def evict_idle(self, now: float | None = None) -> int:
        """Close unleased connections idle past ``idle_timeout`` (or already closed).

        Returns the number of connections evicted.
        """
        now = time.monotonic() if now is None else now
        async with self._lock:
            expired = [
                entry
                for entry in self._entries.values()
                if entry.ref_count == 0 and (entry.connection.is_closed or now - entry.last_used >= self.idle_timeout)
            ]
            for entry in expired:
                del self._entries[entry.key]

        if expired:
            await asyncio.gather(*(_close_connection(entry) for entry in expired))
            logger.info(f"Evicted {len(expired)} idle tool connection(s)")
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.evict_idle()
            except Exception as e:
                logger.warning(f"Tool pool sweep failed: {e}")

    def start(self) -> None:
        """Start the background idle sweeper."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())
            logger.info(
                "Tool connection pool started",
                idle_timeout=self.idle_timeout,
                sweep_interval=self.sweep_interval,
            )

    async def shutdown(self) -> None:
        """Stop the sweeper, abandon pending attempts and close every connection."""
        async with self._lock:
            logger.info("Shutting down tool connection pool")
            self._closed = True
            entries = list(self._entries.values())
            self._entries.clear()
            pending = list(self._pending.values())
            self._pending.clear()

        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if entries:
            await asyncio.gather(*(_close_connection(entry) for entry in entries))

        logger.info(f"Tool connection pool shutdown complete ({len(entries)} closed)")

    def get_pool_stats(self) -> dict[str, Any]:
        """Current pool statistics."""
        now = time.monotonic()
        return {
            "connections": len(self._entries),
            "in_use": sum(1 for entry in self._entries.values() if entry.ref_count > 0),
            "pending": len(self._pending),
            "created_total": self._created,
            "entries": {
                _key_label(key): {
                    "ref_count": entry.ref_count,
                    "idle_seconds": round(now - entry.last_used, 1),
                }
                for key, entry in self._entries.items()
            },
        }
