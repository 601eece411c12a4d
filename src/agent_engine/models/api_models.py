"""
Request and response bodies for the chat and scheduled execution endpoints.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from agent_engine.models.agent_models import OutputConfig


class APIModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserInfo(BaseModel):
    """Resolved caller identity."""

    id: str
    email: str | None = None
    name: str | None = None


class ChatRequest(APIModel):
    """Request body for one interactive chat turn."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "message": "What's on my calendar today?",
                "workspaceId": "ws-1",
                "conversationId": None,
                "agentId": None,
            }
        },
    )

    message: str = Field(min_length=1, description="User message for this turn")
    workspace_id: str = Field(min_length=1, description="Workspace the turn runs in")
    conversation_id: str | None = Field(default=None, description="Existing conversation to continue")
    agent_id: str | None = Field(default=None, description="Agent to address instead of the team head")

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v

    @field_validator("conversation_id", "agent_id", mode="before")
    @classmethod
    def blank_is_absent(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class ScheduledExecutionRequest(APIModel):
    """Request body sent by the scheduler for one execution."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "executionId": "6f1c2f1e-8a56-4f7c-9d0e-0a1b2c3d4e5f",
                "agentId": "0d5e3c1b-2a4f-4e6d-8c7b-9a8b7c6d5e4f",
                "taskPrompt": "Summarize yesterday's open invoices",
                "workspaceId": "7a6b5c4d-3e2f-4a1b-9c8d-7e6f5a4b3c2d",
                "outputConfig": {"tone": "friendly", "format": "bullet_points"},
            }
        },
    )

    execution_id: UUID
    agent_id: UUID
    task_prompt: str = Field(min_length=1)
    workspace_id: UUID | None = None
    output_config: OutputConfig | None = None


class UsageResponse(APIModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ScheduledExecutionResponse(APIModel):
    success: bool = True
    execution_id: str
    duration: int = Field(description="Execution wall time in milliseconds")
    usage: UsageResponse


class HealthResponse(BaseModel):
    """Service health with database and tool pool statistics."""

    status: str
    version: str
    database: dict[str, Any]
    tool_pool: dict[str, Any]
