"""
Health check endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter

from agent_engine.api.dependencies import DB, AppSettings, ToolPool
from agent_engine.models.api_models import HealthResponse
from agent_engine.utils.db_utils import check_pool_health

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Service status with database reachability and tool pool statistics.",
    responses={
        200: {
            "description": "System health status",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "0.3.0",
                        "database": {"healthy": True, "pool_size": 4, "pool_max_size": 10, "free_connections": 3},
                        "tool_pool": {"connections": 1, "in_use": 0, "pending": 0, "created_total": 3, "entries": {}},
                    }
                }
            },
        }
    },
    tags=["Health"],
)
async def health_check(db: DB, tool_pool: ToolPool, settings: AppSettings) -> HealthResponse:
    database = await check_pool_health(db)
    return HealthResponse(
        status="healthy" if database["healthy"] else "degraded",
        version=settings.app_version,
        database=database,
        tool_pool=tool_pool.get_pool_stats(),
    )
