from __future__ import annotations

from typing import Annotated

import asyncpg

from fastapi import Depends, Request

from agent_engine.api.services.agent_repository import AgentRepository
from agent_engine.api.services.auth_service import AuthService
from agent_engine.api.services.chat_service import ChatService
from agent_engine.api.services.config_resolver import ConfigurationResolver
from agent_engine.api.services.conversation_service import ConversationService
from agent_engine.api.services.execution_repository import ExecutionRepository
from agent_engine.api.services.execution_service import ExecutionService
from agent_engine.api.services.tool_broker import ToolAccessBroker
from agent_engine.core.constants import Settings, get_settings
from agent_engine.integrations.providers import ProviderRouter
from agent_engine.integrations.tool_pool import ToolConnectionPool


def get_app_settings() -> Settings:
    """Provide application settings via dependency injection.

    Tests override this dependency to run against explicit settings.

    Usage in routes:
        @router.get("/example")
        async def example(settings: AppSettings):
            return {"debug": settings.debug}
    """
    return get_settings()


async def get_db(request: Request) -> asyncpg.Pool:
    """Get database connection pool from application state."""
    return request.app.state.db_pool


def get_tool_pool(request: Request) -> ToolConnectionPool:
    """Get the shared tool connection pool from application state."""
    return request.app.state.tool_pool


def get_provider_router(request: Request) -> ProviderRouter:
    return request.app.state.provider_router


def get_auth_service(
    db: Annotated[asyncpg.Pool, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> AuthService:
    return AuthService(db, settings)


def get_tool_broker(pool: Annotated[ToolConnectionPool, Depends(get_tool_pool)]) -> ToolAccessBroker:
    return ToolAccessBroker(pool)


def get_agent_repository(db: Annotated[asyncpg.Pool, Depends(get_db)]) -> AgentRepository:
    return AgentRepository(db)


def get_config_resolver(
    agents: Annotated[AgentRepository, Depends(get_agent_repository)],
) -> ConfigurationResolver:
    return ConfigurationResolver(agents)


def get_conversation_service(db: Annotated[asyncpg.Pool, Depends(get_db)]) -> ConversationService:
    return ConversationService(db)


def get_chat_service(
    resolver: Annotated[ConfigurationResolver, Depends(get_config_resolver)],
    conversations: Annotated[ConversationService, Depends(get_conversation_service)],
    broker: Annotated[ToolAccessBroker, Depends(get_tool_broker)],
    router: Annotated[ProviderRouter, Depends(get_provider_router)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> ChatService:
    """Provide the chat service for one request."""
    return ChatService(resolver, conversations, broker, router, settings)


def get_execution_service(
    agents: Annotated[AgentRepository, Depends(get_agent_repository)],
    db: Annotated[asyncpg.Pool, Depends(get_db)],
    broker: Annotated[ToolAccessBroker, Depends(get_tool_broker)],
    router: Annotated[ProviderRouter, Depends(get_provider_router)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> ExecutionService:
    """Provide the scheduled execution service for one request."""
    return ExecutionService(agents, ExecutionRepository(db), broker, router, settings)


# Type aliases for cleaner route signatures
DB = Annotated[asyncpg.Pool, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
ToolPool = Annotated[ToolConnectionPool, Depends(get_tool_pool)]
Auth = Annotated[AuthService, Depends(get_auth_service)]
Chat = Annotated[ChatService, Depends(get_chat_service)]
Executions = Annotated[ExecutionService, Depends(get_execution_service)]
