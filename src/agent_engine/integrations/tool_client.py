"""WebSocket JSON-RPC client for the workspace tool server.

One client holds one WebSocket scoped to a workspace and a set of tool
names. Requests are multiplexed over the socket by a background listener
that resolves pending futures by JSON-RPC id.
"""

from __future__ import annotations

import asyncio
import contextlib
import json

from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets

from websockets.asyncio.client import ClientConnection

from agent_engine.core.constants import TOOL_CLIENT_NAME, TOOL_PROTOCOL_VERSION
from agent_engine.models.tool_models import ToolCallResult, ToolDefinition
from agent_engine.utils.logger import logger


class ToolServerError(RuntimeError):
    """The tool server returned a JSON-RPC error or the connection dropped."""


def build_tool_server_url(base_url: str, workspace_id: str, tool_names: list[str]) -> str:
    """Scope the connection URL to a workspace and tool set via query parameters."""
    parts = urlsplit(base_url)
    query = urlencode({"workspace_id": workspace_id, "tools": ",".join(tool_names)})
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


class ToolServerClient:
    """Tool connection for one ``(workspace, tool set)`` pair.

    ``tools`` holds the requested tools the server actually advertises, keyed by name.
    """

    def __init__(
        self,
        base_url: str,
        workspace_id: str,
        tool_names: list[str],
        *,
        caller_tag: str = "agent-engine",
        connect_timeout: float = 10.0,
        request_timeout: float = 60.0,
    ):
        self.workspace_id = workspace_id
        self.tool_names = list(tool_names)
        self.caller_tag = caller_tag
        self.ws_url = build_tool_server_url(base_url, workspace_id, self.tool_names)
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self.tools: dict[str, ToolDefinition] = {}

        self._ws: ClientConnection | None = None
        self._msg_id = 0
        self._initialized = False
        self._pending_requests: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._listen_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()

    @property
    def label(self) -> str:
        return f"tools[{self.workspace_id}:{len(self.tool_names)}]"

    @property
    def is_closed(self) -> bool:
        if not self._initialized or self._ws is None:
            return True
        return self._listen_task is None or self._listen_task.done()

    async def connect(self) -> ToolServerClient:
        """Open the socket, run the handshake and load the tool list."""
        try:
            self._ws = await websockets.connect(self.ws_url, open_timeout=self.connect_timeout)
            self._listen_task = asyncio.create_task(self._listen_loop())

            await self._send_request(
                "initialize",
                {
                    "protocolVersion": TOOL_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {"name": TOOL_CLIENT_NAME, "version": "1.0.0", "caller": self.caller_tag},
                },
                timeout=self.connect_timeout,
            )
            await self._ws.send(json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}))
            self._initialized = True

            advertised = await self.list_tools()
            wanted = set(self.tool_names)
            self.tools = {tool.name: tool for tool in advertised if tool.name in wanted}
            missing = wanted - set(self.tools)
            if missing:
                logger.warning(f"{self.label}: server does not provide {sorted(missing)}")
            logger.info(f"{self.label}: connected with {len(self.tools)} tools", caller=self.caller_tag)
            return self

        except Exception as e:
            logger.warning(f"{self.label}: connection failed: {e}")
            await self.close()
            raise

    async def __aenter__(self) -> ToolServerClient:
        return await self.connect()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel the listener, fail pending requests and close the socket."""
        self._initialized = False

        if self._listen_task:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None

        for future in self._pending_requests.values():
            if not future.done():
                future.cancel()
        self._pending_requests.clear()

        if self._ws:
            ws, self._ws = self._ws, None
            await ws.close()
            logger.debug(f"{self.label}: WebSocket closed")

    async def _listen_loop(self) -> None:
        if not self._ws:
            return

        try:
            async for message in self._ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"{self.label}: received invalid JSON")
                    continue

                msg_id = data.get("id")
                if msg_id is None:
                    logger.debug(f"{self.label}: notification {data.get('method')}")
                    continue

                future = self._pending_requests.pop(msg_id, None)
                if future is None or future.done():
                    logger.debug(f"{self.label}: response for unknown id {msg_id}")
                elif "error" in data:
                    future.set_exception(ToolServerError(f"Tool server error: {data['error']}"))
                else:
                    future.set_result(data)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"{self.label}: listen loop ended: {e}")
            self._fail_pending(ToolServerError(f"Connection lost: {e}"))
        else:
            logger.info(f"{self.label}: server closed the connection")
            self._fail_pending(ToolServerError("Connection closed"))

    def _fail_pending(self, error: ToolServerError) -> None:
        for future in self._pending_requests.values():
            if not future.done():
                future.set_exception(error)
        self._pending_requests.clear()

    def _next_id(self) -> int:
        self._msg_id += 1
        return self._msg_id

    async def _send_request(self, method: str, params: dict[str, Any], timeout: float) -> dict[str, Any]:
        """Send a JSON-RPC request and wait for the matching response."""
        if not self._ws:
            raise ToolServerError("WebSocket not connected")

        async with self._write_lock:
            msg_id = self._next_id()
            future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
            self._pending_requests[msg_id] = future
            await self._ws.send(json.dumps({"jsonrpc": "2.0", "id": msg_id, "method": method, "params": params}))

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise ToolServerError(f"Request {method} timed out after {timeout}s") from None
        finally:
            self._pending_requests.pop(msg_id, None)

    async def list_tools(self) -> list[ToolDefinition]:
        if not self._initialized:
            raise ToolServerError("Client not initialized")
        response = await self._send_request("tools/list", {}, timeout=self.request_timeout)
        return [ToolDefinition.model_validate(t) for t in response.get("result", {}).get("tools", [])]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResult:
        """Call one of this connection's tools."""
        if not self._initialized:
            raise ToolServerError("Client not initialized")
        if name not in self.tools:
            return ToolCallResult(content=[{"type": "text", "text": f"Tool '{name}' is not available"}], is_error=True)

        response = await self._send_request(
            "tools/call", {"name": name, "arguments": arguments}, timeout=self.request_timeout
        )
        return ToolCallResult.model_validate(response.get("result", {}))
