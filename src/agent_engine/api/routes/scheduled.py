from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import ValidationError

from agent_engine.api.dependencies import Executions
from agent_engine.api.middleware.auth import CronAuthorized
from agent_engine.api.middleware.exception_handlers import ValidationException
from agent_engine.api.routes.chat import read_json_body
from agent_engine.models.api_models import ScheduledExecutionRequest, ScheduledExecutionResponse

router = APIRouter()


@router.post(
    "/scheduled-execution",
    response_model=ScheduledExecutionResponse,
    summary="Run a scheduled execution",
    description="Runs one agent task to completion and records its status. Called by the scheduler.",
    dependencies=[CronAuthorized],
    responses={
        400: {"description": "Invalid request"},
        401: {"description": "Cron secret missing or wrong"},
        404: {"description": "Agent not found"},
        409: {"description": "Execution already finished"},
        500: {"description": "Execution failed"},
    },
    tags=["Scheduled"],
)
async def scheduled_execution(request: Request, executions: Executions) -> ScheduledExecutionResponse:
    body = await read_json_body(request)
    try:
        payload = ScheduledExecutionRequest.model_validate(body)
    except ValidationError as e:
        raise ValidationException.from_pydantic(e) from e

    return await executions.execute(payload)
