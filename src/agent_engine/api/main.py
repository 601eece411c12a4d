from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agent_engine.api.middleware.exception_handlers import register_exception_handlers
from agent_engine.api.middleware.request_context import RequestContextMiddleware
from agent_engine.api.routes import chat, health, scheduled
from agent_engine.core.constants import get_settings
from agent_engine.integrations.generic_engine import GenericEngine
from agent_engine.integrations.native_engine import NativeEngine
from agent_engine.integrations.providers import ProviderRouter
from agent_engine.integrations.tool_pool import ToolConnectionPool
from agent_engine.utils.db_utils import check_pool_health, create_database_pool, graceful_pool_close
from agent_engine.utils.logger import configure_uvicorn_logging, logger

# Settings come from the environment and the .env, .env.{APP_ENV}, .env.local chain
settings = get_settings()

if settings.debug:
    from agent_engine.core.constants import _get_env_files

    logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
    logger.info(
        f"Settings: app_env={settings.app_env}, "
        f"db_pool=[{settings.db_pool_min_size},{settings.db_pool_max_size}], "
        f"default={settings.default_provider}/{settings.default_model}"
    )

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: database pool, tool pool and provider router."""
    app.state.db_pool = await create_database_pool(
        dsn=settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
    )

    health = await check_pool_health(app.state.db_pool)
    if not health["healthy"]:
        logger.error("Database health check failed during startup")
        raise RuntimeError("Database connection failed")
    logger.info(f"Database pool healthy: {health}")

    app.state.tool_pool = ToolConnectionPool.from_settings(settings)
    app.state.tool_pool.start()

    app.state.provider_router = ProviderRouter(
        native=NativeEngine(read_timeout=settings.http_timeout),
        generic=GenericEngine(request_timeout=settings.http_timeout),
    )
    logger.info(f"Agent engine ready (default provider: {settings.default_provider})")

    try:
        yield
    finally:
        logger.info("Initiating graceful shutdown sequence")

        # Phase 1: Close tool connections
        await app.state.tool_pool.shutdown()

        # Phase 2: Gracefully close database pool
        await graceful_pool_close(app.state.db_pool, timeout=settings.shutdown_timeout)
        logger.info("Shutdown complete")


app = FastAPI(
    title="Agent Engine API",
    description="""
## Agent Engine API

Runs workspace agents and deployed agent teams against multiple model providers.

### Endpoints
- **Agent chat**: one chat turn streamed as server-sent events
- **Scheduled execution**: one agent task run to completion for the scheduler
- **Health**: database and tool pool status

### Authentication
Chat requires a JWT bearer token or session cookie. Scheduled executions
require `Authorization: Bearer <CRON_SECRET>` when a cron secret is configured.
""",
    version=settings.app_version,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoint for monitoring"},
        {"name": "Chat", "description": "Interactive streaming chat"},
        {"name": "Scheduled", "description": "Scheduler-driven agent executions"},
    ],
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Note: Middleware is executed in reverse order of registration
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(health.router, tags=["Health"])
app.include_router(chat.router, prefix="/api", tags=["Chat"])
app.include_router(scheduled.router, prefix="/api", tags=["Scheduled"])


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "agent_engine.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.app_env == "development",
        reload_dirs=["src"],
        log_config=None,
    )


if __name__ == "__main__":
    run()
