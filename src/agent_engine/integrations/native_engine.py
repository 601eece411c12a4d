"""
Native execution engine built on the openai-agents SDK.

Serves the one native provider. The SDK's Runner owns the multi-turn tool
loop; pooled workspace tools are bridged in as FunctionTools. Conversation
continuity comes from replaying the stored history as run input.
"""

from __future__ import annotations

import inspect
import json

from collections.abc import AsyncIterator
from typing import Any

from agents import Agent as SDKAgent, FunctionTool, RunConfig, Runner
from agents.models.openai_provider import OpenAIProvider
from openai import AsyncOpenAI

from agent_engine.integrations.engine_types import (
    CompletionResult,
    EngineEvent,
    EngineKind,
    ModelCall,
    StepCallback,
    StepResult,
    StreamCompleted,
    TextDelta,
    ToolCallFinished,
    ToolCallStarted,
    ToolConnection,
)
from agent_engine.models.execution_models import ToolCallRecord, UsageStats
from agent_engine.utils.client_factory import create_http_client, create_openai_client
from agent_engine.utils.logger import logger

RAW_RESPONSE_EVENT = "raw_response_event"
RUN_ITEM_STREAM_EVENT = "run_item_stream_event"
TEXT_DELTA_TYPE = "response.output_text.delta"


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw or "{}")
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _call_id(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("call_id") or raw.get("id") or "")
    return str(getattr(raw, "call_id", None) or getattr(raw, "id", None) or "")


def bridge_tools(connection: ToolConnection | None) -> list[FunctionTool]:
    """Expose the connection's tools to the SDK as FunctionTools."""
    if connection is None:
        return []

    def make_tool(name: str, description: str, schema: dict[str, Any]) -> FunctionTool:
        async def invoke(_ctx: Any, raw_args: str) -> str:
            try:
                result = await connection.call_tool(name, _parse_arguments(raw_args))
            except Exception as e:
                logger.warning(f"Tool {name} failed: {e}")
                return f"Tool error: {e}"
            return result.text

        return FunctionTool(
            name=name,
            description=description,
            params_json_schema=schema,
            on_invoke_tool=invoke,
            strict_json_schema=False,
        )

    return [
        make_tool(tool.name, tool.description or "", tool.parameters_schema()) for tool in connection.tools.values()
    ]


class NativeEngine:
    """openai-agents Runner engine with a per-request OpenAI client."""

    kind = EngineKind.NATIVE

    def __init__(self, *, read_timeout: float = 600.0):
        self.read_timeout = read_timeout

    def _prepare(self, call: ModelCall, api_key: str) -> tuple[SDKAgent[Any], RunConfig, AsyncOpenAI]:
        # A dedicated client per request keeps concurrent streams isolated
        client = create_openai_client(api_key=api_key, http_client=create_http_client(self.read_timeout))
        agent: SDKAgent[Any] = SDKAgent(
            name="workspace-agent",
            instructions=call.system_prompt,
            model=call.model,
            tools=list(bridge_tools(call.tools)),
        )
        run_config = RunConfig(model_provider=OpenAIProvider(openai_client=client), tracing_disabled=True)
        return agent, run_config, client

    @staticmethod
    def _input(call: ModelCall) -> list[Any]:
        return [{"role": m["role"], "content": m["content"]} for m in call.messages]

    async def stream(self, call: ModelCall, api_key: str) -> AsyncIterator[EngineEvent]:
        agent, run_config, client = self._prepare(call, api_key)
        result = Runner.run_streamed(agent, input=self._input(call), run_config=run_config, max_turns=call.max_steps)
        tool_names: dict[str, str] = {}
        text_parts: list[str] = []

        try:
            async for event in result.stream_events():
                if event.type == RAW_RESPONSE_EVENT:
                    data = event.data
                    if getattr(data, "type", None) == TEXT_DELTA_TYPE:
                        delta = getattr(data, "delta", "")
                        if delta:
                            text_parts.append(delta)
                            yield TextDelta(delta)

                elif event.type == RUN_ITEM_STREAM_EVENT:
                    item = event.item
                    if item.type == "tool_call_item":
                        raw = item.raw_item
                        call_id = _call_id(raw)
                        name = getattr(raw, "name", None) or "unknown"
                        tool_names[call_id] = name
                        yield ToolCallStarted(
                            call_id=call_id,
                            name=name,
                            arguments=_parse_arguments(getattr(raw, "arguments", "{}")),
                        )
                    elif item.type == "tool_call_output_item":
                        call_id = _call_id(item.raw_item)
                        output = item.output
                        yield ToolCallFinished(
                            call_id=call_id,
                            name=tool_names.get(call_id, "unknown"),
                            output=json.dumps(output) if isinstance(output, dict) else str(output),
                        )
        finally:
            if not result.is_complete:
                result.cancel()
            await client.close()

        final_output = result.final_output
        yield StreamCompleted(
            text=final_output if isinstance(final_output, str) and final_output else "".join(text_parts),
            usage=UsageStats.from_provider(getattr(result.context_wrapper, "usage", None)),
            steps=result.current_turn or 1,
        )

    async def generate(
        self,
        call: ModelCall,
        api_key: str,
        on_step_finish: StepCallback | None = None,
    ) -> CompletionResult:
        agent, run_config, client = self._prepare(call, api_key)
        try:
            result = await Runner.run(agent, input=self._input(call), run_config=run_config, max_turns=call.max_steps)
        finally:
            await client.close()

        tool_calls = [
            ToolCallRecord(
                name=getattr(item.raw_item, "name", None) or "unknown",
                input=_parse_arguments(getattr(item.raw_item, "arguments", "{}")),
            )
            for item in result.new_items
            if item.type == "tool_call_item"
        ]
        usage = UsageStats.from_provider(getattr(result.context_wrapper, "usage", None))
        text = result.final_output if isinstance(result.final_output, str) else str(result.final_output or "")

        if on_step_finish is not None:
            outcome = on_step_finish(StepResult(step=1, text=text, tool_calls=tool_calls, usage=usage))
            if inspect.isawaitable(outcome):
                await outcome

        return CompletionResult(text=text, usage=usage, tool_calls=tool_calls, steps=len(result.raw_responses) or 1)
