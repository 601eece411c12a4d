"""
Scheduled (batch) execution of a single agent.

Status moves strictly ``created -> running -> completed | failed``. The
``running`` write is the first durable side effect; nothing is written
before it, and once it exists every failure ends in ``failed``.
"""

from __future__ import annotations

from agent_engine.api.middleware.exception_handlers import (
    AppException,
    ExecutionConflictError,
    ExecutionFailedError,
    NotFoundError,
)
from agent_engine.api.middleware.request_context import update_request_context
from agent_engine.api.services.agent_repository import AgentRepository
from agent_engine.api.services.execution_repository import ExecutionRepository
from agent_engine.api.services.tool_broker import ToolAccessBroker
from agent_engine.core.constants import Settings
from agent_engine.core.prompts import build_system_prompt, build_task_message
from agent_engine.integrations.engine_types import CompletionResult, ModelCall, StepResult
from agent_engine.integrations.providers import ProviderRouter, normalize_provider, resolve_model
from agent_engine.models.agent_models import Agent, ResolvedAgent
from agent_engine.models.api_models import ScheduledExecutionRequest, ScheduledExecutionResponse, UsageResponse
from agent_engine.models.execution_models import ExecutionRecord, ToolCallRecord
from agent_engine.utils.logger import logger

UNKNOWN_FAILURE_MESSAGE = "Unknown error occurred"


def failure_message(exc: BaseException) -> str:
    if isinstance(exc, AppException):
        return exc.message
    return str(exc).strip() or UNKNOWN_FAILURE_MESSAGE


class ExecutionService:
    def __init__(
        self,
        agents: AgentRepository,
        executions: ExecutionRepository,
        broker: ToolAccessBroker,
        router: ProviderRouter,
        settings: Settings,
    ):
        self.agents = agents
        self.executions = executions
        self.broker = broker
        self.router = router
        self.settings = settings

    async def execute(self, request: ScheduledExecutionRequest) -> ScheduledExecutionResponse:
        """Run one scheduled execution to a terminal status.

        Raises:
            NotFoundError: Agent missing or disabled; no record is written
            ExecutionConflictError: The execution id already finished
            ExecutionFailedError: Anything failed after the record was written
        """
        execution_id = str(request.execution_id)
        agent_id = str(request.agent_id)
        workspace_id = str(request.workspace_id) if request.workspace_id else None
        update_request_context(execution_id=execution_id, workspace_id=workspace_id)

        agent = await self.agents.load_agent(agent_id, enabled_only=True)
        if agent is None:
            raise NotFoundError(details={"agent_id": agent_id})

        record = ExecutionRecord(execution_id=execution_id, agent_id=agent_id, workspace_id=workspace_id)
        record.mark_running()
        if not await self.executions.mark_running(record):
            raise ExecutionConflictError(execution_id)
        logger.log_execution_event("execution_started", f"Execution started for agent {agent.name}", agent_id=agent_id)

        try:
            result, tool_calls = await self._run(agent, workspace_id, request)
            completed = record.model_copy(deep=True)
            completed.mark_completed(usage=result.usage, result_text=result.text, tool_calls=tool_calls)
            await self.executions.save_completed(completed)
        except Exception as e:
            message = failure_message(e)
            record.mark_failed(message)
            await self.executions.save_failed(record)
            logger.error(
                f"Execution {execution_id} failed: {message}",
                exc_info=True,
                agent_id=agent_id,
                duration_ms=record.duration_ms,
            )
            raise ExecutionFailedError(message, cause=e) from e

        logger.log_execution_event(
            "execution_completed",
            agent_id=agent_id,
            duration_ms=completed.duration_ms,
            input_tokens=completed.tokens_input,
            output_tokens=completed.tokens_output,
            tool_calls=len(completed.tool_calls),
            content=completed.result_text if self.settings.enable_content_logging else None,
        )
        return ScheduledExecutionResponse(
            execution_id=execution_id,
            duration=completed.duration_ms or 0,
            usage=UsageResponse(input_tokens=completed.tokens_input, output_tokens=completed.tokens_output),
        )

    async def _run(
        self,
        agent: Agent,
        workspace_id: str | None,
        request: ScheduledExecutionRequest,
    ) -> tuple[CompletionResult, list[ToolCallRecord]]:
        provider = normalize_provider(agent.provider, self.settings.default_provider)
        model = resolve_model(agent.model, self.settings.default_model)
        api_key = self.router.check_credential(provider)
        system_prompt = build_system_prompt(ResolvedAgent(agent=agent))
        tool_calls: list[ToolCallRecord] = []

        def on_step_finish(step: StepResult) -> None:
            tool_calls.extend(step.tool_calls)

        async with self.broker.acquire(agent, workspace_id, caller_tag="scheduled") as tools:
            task_message = build_task_message(
                request.task_prompt,
                workspace_id=workspace_id,
                tool_names=sorted(tools.tools) if tools else [],
                output_config=request.output_config,
            )
            call = ModelCall(
                provider=provider,
                model=model,
                system_prompt=system_prompt,
                messages=[{"role": "user", "content": task_message}],
                tools=tools,
                max_steps=self.settings.batch_max_steps,
            )
            result = await self.router.generate(call, on_step_finish, api_key=api_key)

        return result, tool_calls
