"""
Pydantic models for the tool server's JSON-RPC protocol.

- ToolDefinition: a tool advertised by ``tools/list``
- ToolCallResult: the result of ``tools/call``
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ToolDefinition(BaseModel):
    """A tool available on the tool server for a workspace."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    def parameters_schema(self) -> dict[str, Any]:
        """JSON schema for the tool's arguments; an empty object schema when none was advertised."""
        if self.input_schema:
            return self.input_schema
        return {"type": "object", "properties": {}}


class ToolCallResult(BaseModel):
    """Output of one tool call.

    ``content`` is the protocol's list of content items (``{"type": "text", "text": ...}``).
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    content: list[dict[str, Any]] | str | Any = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @property
    def text(self) -> str:
        """Flatten text content items into one string for the model."""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            parts = []
            for item in self.content:
                if isinstance(item, dict) and item.get("type") == "text":
                    parts.append(str(item.get("text", "")))
                else:
                    parts.append(str(item))
            return "\n".join(parts)
        return str(self.content)
