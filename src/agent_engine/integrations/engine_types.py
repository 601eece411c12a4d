"""
Shared call contract for the two execution engines.

Both engines take a ModelCall and either stream EngineEvents or return a
CompletionResult. Tool calls go through a ToolConnection when one was leased.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Protocol, TypedDict

from agent_engine.models.execution_models import ToolCallRecord, UsageStats
from agent_engine.models.tool_models import ToolCallResult, ToolDefinition


class EngineKind(str, Enum):
    NATIVE = "native"
    GENERIC = "generic"


class ChatMessage(TypedDict):
    role: Literal["user", "assistant"]
    content: str


class ToolConnection(Protocol):
    """A live, callable set of tools for one workspace."""

    tools: dict[str, ToolDefinition]

    @property
    def is_closed(self) -> bool: ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResult: ...

    async def close(self) -> None: ...


@dataclass
class ModelCall:
    """One model invocation: resolved provider/model, prompt, history and optional tools."""

    provider: str
    model: str
    system_prompt: str
    messages: list[ChatMessage]
    tools: ToolConnection | None = None
    max_steps: int = 5


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallStarted:
    call_id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class ToolCallFinished:
    call_id: str
    name: str
    output: str
    is_error: bool = False


@dataclass
class StreamCompleted:
    """Last event of an engine stream."""

    text: str
    usage: UsageStats
    steps: int


EngineEvent = TextDelta | ToolCallStarted | ToolCallFinished | StreamCompleted


@dataclass
class StepResult:
    """What one model step did, passed to on_step_finish callbacks."""

    step: int
    text: str
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    usage: UsageStats = field(default_factory=UsageStats)


StepCallback = Callable[[StepResult], Awaitable[None] | None]


@dataclass
class CompletionResult:
    text: str
    usage: UsageStats
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    steps: int = 1


class ExecutionEngine(Protocol):
    kind: EngineKind

    def stream(self, call: ModelCall, api_key: str) -> AsyncIterator[EngineEvent]: ...

    async def generate(
        self, call: ModelCall, api_key: str, on_step_finish: StepCallback | None = None
    ) -> CompletionResult: ...
