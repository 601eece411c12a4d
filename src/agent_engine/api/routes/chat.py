"""
Interactive chat endpoint.

Authentication and body validation run before anything else; agent
resolution and conversation setup still fail as plain JSON errors. Once the
stream opens, every outcome is reported as an event.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from agent_engine.api.dependencies import Chat
from agent_engine.api.middleware.auth import CurrentUser
from agent_engine.api.middleware.exception_handlers import ValidationException
from agent_engine.api.middleware.request_context import update_request_context
from agent_engine.core.constants import SSE_HEADERS
from agent_engine.models.api_models import ChatRequest

router = APIRouter()


async def read_json_body(request: Request) -> Any:
    """Parse the request body, reporting malformed JSON as a 400."""
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationException("Invalid request: body must be valid JSON") from e


@router.post(
    "/agent-chat",
    summary="Stream one chat turn",
    description="Runs one chat turn against the workspace's team or agent and streams server-sent events.",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"text/event-stream": {}}, "description": "session, text, tool_*, done or error events"},
        400: {"description": "Invalid request or no agent configured"},
        401: {"description": "Unauthorized"},
        404: {"description": "Agent or conversation not found"},
    },
    tags=["Chat"],
)
async def agent_chat(request: Request, user: CurrentUser, chat: Chat) -> StreamingResponse:
    body = await read_json_body(request)
    try:
        payload = ChatRequest.model_validate(body)
    except ValidationError as e:
        raise ValidationException.from_pydantic(e) from e

    update_request_context(workspace_id=payload.workspace_id)
    turn = await chat.prepare(user, payload)

    return StreamingResponse(chat.stream(turn), media_type="text/event-stream", headers=SSE_HEADERS)
