from __future__ import annotations

import asyncio
import contextlib
import secrets

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field

from agent_engine.api.middleware.exception_handlers import AppException, ProviderError
from agent_engine.api.middleware.request_context import update_request_context
from agent_engine.api.services.config_resolver import ConfigurationResolver
from agent_engine.api.services.conversation_service import ConversationService
from agent_engine.api.services.tool_broker import ToolAccessBroker
from agent_engine.core.constants import SESSION_ID_LENGTH, Settings
from agent_engine.core.prompts import build_system_prompt
from agent_engine.integrations.engine_types import (
    ChatMessage,
    ModelCall,
    StreamCompleted,
    TextDelta,
    ToolCallFinished,
    ToolCallStarted,
)
from agent_engine.integrations.providers import ProviderRouter, normalize_provider, resolve_model
from agent_engine.models.agent_models import ResolvedAgent
from agent_engine.models.api_models import ChatRequest, UserInfo
from agent_engine.models.event_models import (
    DoneEvent,
    ErrorEvent,
    SessionEvent,
    StreamEvent,
    TextEvent,
    ToolResultEvent,
    ToolStartEvent,
)
from agent_engine.utils.logger import logger

Send = Callable[[StreamEvent], Awaitable[None]]


def generate_session_id() -> str:
    return f"chat_{secrets.token_hex(SESSION_ID_LENGTH // 2)}"


def error_message(exc: BaseException) -> str:
    """Client-facing message for a failed turn: the exception text, never a traceback."""
    if isinstance(exc, AppException):
        return exc.message
    return str(exc).strip() or "An error occurred"


@dataclass
class ChatTurn:
    """Everything a streamed turn needs, prepared before the stream opens."""

    user: UserInfo
    workspace_id: str
    message: str
    resolved: ResolvedAgent
    conversation_id: str
    is_resumed: bool = False
    history: list[ChatMessage] = field(default_factory=list)
    session_id: str = field(default_factory=generate_session_id)


class ChatService:
    """Interactive chat turns streamed as server-sent events.

    ``prepare`` does everything that can still fail with a plain HTTP error
    (agent resolution, conversation lookup). ``stream`` then runs the turn in
    a producer task that pushes frames onto a bounded queue; the response
    body drains the queue. Closing the body cancels the producer.
    """

    def __init__(
        self,
        resolver: ConfigurationResolver,
        conversations: ConversationService,
        broker: ToolAccessBroker,
        router: ProviderRouter,
        settings: Settings,
    ):
        self.resolver = resolver
        self.conversations = conversations
        self.broker = broker
        self.router = router
        self.settings = settings

    async def prepare(self, user: UserInfo, request: ChatRequest) -> ChatTurn:
        """Resolve the agent, open or reload the conversation and save the user message."""
        resolved = await self.resolver.resolve(request.workspace_id, request.agent_id)

        history: list[ChatMessage] = []
        if request.conversation_id:
            await self.conversations.get_conversation(request.conversation_id, request.workspace_id)
            conversation_id = request.conversation_id
            history = await self.conversations.load_history(conversation_id, self.settings.chat_history_limit)
        else:
            conversation_id = await self.conversations.create_conversation(
                request.workspace_id,
                user.id,
                request.message,
                agent_id=resolved.agent.id if resolved.team is None else None,
            )

        await self.conversations.append_message(conversation_id, "user", request.message)
        update_request_context(conversation_id=conversation_id)

        turn = ChatTurn(
            user=user,
            workspace_id=request.workspace_id,
            message=request.message,
            resolved=resolved,
            conversation_id=conversation_id,
            is_resumed=bool(request.conversation_id),
            history=history,
        )
        logger.info(
            f"Chat turn prepared for agent {resolved.agent.name}",
            session_id=turn.session_id,
            conversation_id=conversation_id,
            history_messages=len(history),
        )
        return turn

    async def stream(self, turn: ChatTurn) -> AsyncIterator[str]:
        """Yield SSE frames for the turn until the producer signals the end."""
        queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=self.settings.stream_channel_size)
        producer = asyncio.create_task(self._produce(turn, queue))
        try:
            while True:
                frame = await queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            if not producer.done():
                producer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await producer

    async def _produce(self, turn: ChatTurn, queue: asyncio.Queue[str | None]) -> None:
        async def send(event: StreamEvent) -> None:
            await queue.put(event.to_sse())

        try:
            await send(
                SessionEvent(
                    session_id=turn.session_id,
                    conversation_id=turn.conversation_id,
                    is_resumed=turn.is_resumed,
                )
            )
            await self._run_turn(turn, send)
        except asyncio.CancelledError:
            logger.info("Chat stream cancelled by client", session_id=turn.session_id)
            raise
        except Exception as e:
            logger.error(
                f"Chat turn failed: {e}",
                exc_info=True,
                session_id=turn.session_id,
                conversation_id=turn.conversation_id,
            )
            await send(ErrorEvent(message=error_message(e)))

        await queue.put(None)

    async def _run_turn(self, turn: ChatTurn, send: Send) -> None:
        agent = turn.resolved.agent
        provider = normalize_provider(agent.provider, self.settings.default_provider)
        model = resolve_model(agent.model, self.settings.default_model)
        api_key = self.router.check_credential(provider)
        system_prompt = build_system_prompt(turn.resolved, workspace_id=turn.workspace_id, user=turn.user)
        messages: list[ChatMessage] = [*turn.history, {"role": "user", "content": turn.message}]

        completed: StreamCompleted | None = None
        async with self.broker.acquire(agent, turn.workspace_id, caller_tag="chat") as tools:
            call = ModelCall(
                provider=provider,
                model=model,
                system_prompt=system_prompt,
                messages=messages,
                tools=tools,
                max_steps=self.settings.chat_max_steps,
            )
            async for event in self.router.stream(call, api_key=api_key):
                if isinstance(event, TextDelta):
                    await send(TextEvent(content=event.text))
                elif isinstance(event, ToolCallStarted):
                    await send(ToolStartEvent(tool_name=event.name, tool_call_id=event.call_id, input=event.arguments))
                elif isinstance(event, ToolCallFinished):
                    await send(
                        ToolResultEvent(tool_call_id=event.call_id, output=event.output, is_error=event.is_error)
                    )
                elif isinstance(event, StreamCompleted):
                    completed = event

        if completed is None:
            raise ProviderError(provider, f"{provider} stream ended without a result")

        await send(TextEvent(content="", is_complete=True))
        if completed.text:
            await self.conversations.append_message(turn.conversation_id, "assistant", completed.text)
        await self.conversations.record_usage(turn.conversation_id, completed.usage)

        logger.log_execution_event(
            "chat_completed",
            session_id=turn.session_id,
            conversation_id=turn.conversation_id,
            provider=provider,
            model=model,
            steps=completed.steps,
            input_tokens=completed.usage.input_tokens,
            output_tokens=completed.usage.output_tokens,
            content=completed.text if self.settings.enable_content_logging else None,
        )
        await send(
            DoneEvent(
                usage=completed.usage.to_response(),
                cost_usd=round(completed.usage.cost_estimate, 6),
                turn_count=completed.steps,
            )
        )
