"""
Generic execution engine built on litellm.

Serves every provider except the native one through litellm's unified
chat-completions call shape. Each step is a single model call; when the
model asks for tools, the engine runs them against the leased tool
connection, reports the step, and calls the model again until it stops
calling tools or ``max_steps`` is reached.
"""

from __future__ import annotations

import inspect
import json

from collections.abc import AsyncIterator
from typing import Any

import litellm

from agent_engine.core.constants import LITELLM_PROVIDER_PREFIXES
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
from agent_engine.utils.logger import logger


def litellm_model_name(provider: str, model: str) -> str:
    """``<prefix>/<model>`` as litellm expects, e.g. ``xai/grok-3`` or ``gemini/gemini-2.0-flash``."""
    prefix = LITELLM_PROVIDER_PREFIXES.get(provider, provider)
    if model.startswith(f"{prefix}/"):
        return model
    return f"{prefix}/{model}"


def tool_specs(connection: ToolConnection | None) -> list[dict[str, Any]] | None:
    """OpenAI-style function specs for the connection's tools."""
    if connection is None or not connection.tools:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description or "",
                "parameters": tool.parameters_schema(),
            },
        }
        for tool in connection.tools.values()
    ]


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _first_choice(response: Any) -> Any:
    choices = _field(response, "choices")
    return choices[0] if choices else None


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Discarding unparseable tool arguments: {str(raw)[:80]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _message_tool_calls(message: Any) -> list[tuple[str, str, str]]:
    """``(call_id, name, raw_arguments)`` for each tool call on an assistant message."""
    calls = []
    for index, tool_call in enumerate(_field(message, "tool_calls") or []):
        function = _field(tool_call, "function")
        name = _field(function, "name")
        if not name:
            continue
        call_id = _field(tool_call, "id") or f"call_{index}"
        arguments = _field(function, "arguments") or "{}"
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        calls.append((call_id, name, arguments))
    return calls


def _assistant_tool_message(text: str, calls: list[tuple[str, str, str]]) -> dict[str, Any]:
    return {
        "role": "assistant",
        "content": text or None,
        "tool_calls": [
            {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}
            for call_id, name, arguments in calls
        ],
    }


class GenericEngine:
    """Multi-provider engine; one ``litellm.acompletion`` per step."""

    kind = EngineKind.GENERIC

    def __init__(self, *, request_timeout: float = 600.0):
        self.request_timeout = request_timeout

    def _initial_messages(self, call: ModelCall) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": call.system_prompt}]
        messages.extend({"role": m["role"], "content": m["content"]} for m in call.messages)
        return messages

    def _completion_kwargs(self, call: ModelCall, api_key: str, messages: list[dict[str, Any]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": litellm_model_name(call.provider, call.model),
            "messages": messages,
            "api_key": api_key,
            "timeout": self.request_timeout,
        }
        tools = tool_specs(call.tools)
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return kwargs

    async def _run_tool(self, connection: ToolConnection, name: str, arguments: dict[str, Any]) -> tuple[str, bool]:
        try:
            result = await connection.call_tool(name, arguments)
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}")
            return f"Tool error: {e}", True
        return result.text, result.is_error

    async def stream(self, call: ModelCall, api_key: str) -> AsyncIterator[EngineEvent]:
        """Stream text deltas and tool events, ending with StreamCompleted."""
        messages = self._initial_messages(call)
        usage = UsageStats()
        text_parts: list[str] = []
        steps = 0

        for steps in range(1, call.max_steps + 1):
            response = await litellm.acompletion(
                **self._completion_kwargs(call, api_key, messages),
                stream=True,
                stream_options={"include_usage": True},
            )

            chunks = []
            step_text: list[str] = []
            async for chunk in response:
                chunks.append(chunk)
                delta = _field(_first_choice(chunk), "delta")
                content = _field(delta, "content")
                if content:
                    step_text.append(content)
                    yield TextDelta(content)

            built = litellm.stream_chunk_builder(chunks, messages=messages) if chunks else None
            usage = usage + UsageStats.from_provider(_field(built, "usage"))
            text = "".join(step_text)
            text_parts.append(text)

            calls = _message_tool_calls(_field(_first_choice(built), "message"))
            if not calls or call.tools is None:
                break

            messages.append(_assistant_tool_message(text, calls))
            for call_id, name, raw_arguments in calls:
                arguments = _parse_arguments(raw_arguments)
                yield ToolCallStarted(call_id=call_id, name=name, arguments=arguments)
                output, is_error = await self._run_tool(call.tools, name, arguments)
                yield ToolCallFinished(call_id=call_id, name=name, output=output, is_error=is_error)
                messages.append({"role": "tool", "tool_call_id": call_id, "content": output})

        yield StreamCompleted(text="".join(text_parts), usage=usage, steps=steps)

    async def generate(
        self,
        call: ModelCall,
        api_key: str,
        on_step_finish: StepCallback | None = None,
    ) -> CompletionResult:
        """Run to completion without streaming; ``on_step_finish`` sees every step."""
        messages = self._initial_messages(call)
        usage = UsageStats()
        all_tool_calls: list[ToolCallRecord] = []
        final_text = ""
        steps = 0

        for steps in range(1, call.max_steps + 1):
            response = await litellm.acompletion(**self._completion_kwargs(call, api_key, messages))
            step_usage = UsageStats.from_provider(_field(response, "usage"))
            usage = usage + step_usage

            message = _field(_first_choice(response), "message")
            text = _field(message, "content") or ""
            if text:
                final_text = text
            calls = _message_tool_calls(message) if call.tools is not None else []
            records = [ToolCallRecord(name=name, input=_parse_arguments(raw)) for _, name, raw in calls]
            all_tool_calls.extend(records)

            if on_step_finish is not None:
                outcome = on_step_finish(StepResult(step=steps, text=text, tool_calls=records, usage=step_usage))
                if inspect.isawaitable(outcome):
                    await outcome

            if not calls or call.tools is None:
                break

            messages.append(_assistant_tool_message(text, calls))
            for (call_id, name, _), record in zip(calls, records, strict=True):
                output, _is_error = await self._run_tool(call.tools, name, record.input)
                messages.append({"role": "tool", "tool_call_id": call_id, "content": output})

        return CompletionResult(text=final_text, usage=usage, tool_calls=all_tool_calls, steps=steps)
