"""
Stream event models for interactive chat turns.

Each event serializes to one server-sent-event frame:

    event: <name>
    data: <json>

Payload keys are camelCase on the wire.
"""

from __future__ import annotations

import json

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def format_sse(event: str, data: dict[str, Any]) -> str:
    """Frame one server-sent event."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


class StreamEvent(BaseModel):
    """Base class for events written to the chat stream."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event: ClassVar[str]

    def payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_sse(self) -> str:
        return format_sse(self.event, self.payload())


class SessionEvent(StreamEvent):
    """First event of every stream."""

    event: ClassVar[str] = "session"

    session_id: str
    conversation_id: str
    is_resumed: bool = False


class TextEvent(StreamEvent):
    event: ClassVar[str] = "text"

    content: str
    is_complete: bool = False


class ToolStartEvent(StreamEvent):
    event: ClassVar[str] = "tool_start"

    tool_name: str
    tool_call_id: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultEvent(StreamEvent):
    event: ClassVar[str] = "tool_result"

    tool_call_id: str
    output: str
    is_error: bool = False


class DoneEvent(StreamEvent):
    event: ClassVar[str] = "done"

    usage: dict[str, int]
    cost_usd: float = 0.0
    turn_count: int = 1


class ErrorEvent(StreamEvent):
    """Terminal error; carries the exception message only."""

    event: ClassVar[str] = "error"

    message: str
    recoverable: bool = False
