from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from agent_engine.api.dependencies import get_app_settings, get_db, get_tool_pool
from agent_engine.api.routes.health import router
from agent_engine.core.constants import Settings

POOL_STATS = {"connections": 1, "in_use": 0, "pending": 0, "created_total": 2, "entries": {}}


@pytest.fixture
def tool_pool() -> MagicMock:
    pool = MagicMock()
    pool.get_pool_stats.return_value = POOL_STATS
    return pool


def _client(db_pool: MagicMock, tool_pool: MagicMock, settings: Settings) -> TestClient:
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_db] = lambda: db_pool
    app.dependency_overrides[get_tool_pool] = lambda: tool_pool
    app.dependency_overrides[get_app_settings] = lambda: settings
    return TestClient(app)


class TestHealth:
    def test_healthy(self, mock_pool: MagicMock, mock_conn: AsyncMock, tool_pool: MagicMock, settings: Settings) -> None:
        mock_conn.fetchval.return_value = 1
        mock_pool.get_size.return_value = 4
        mock_pool.get_max_size.return_value = 10
        mock_pool.get_idle_size.return_value = 3

        response = _client(mock_pool, tool_pool, settings).get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == settings.app_version
        assert data["database"]["healthy"] is True
        assert data["tool_pool"] == POOL_STATS

    def test_degraded_when_database_down(
        self, mock_pool: MagicMock, mock_conn: AsyncMock, tool_pool: MagicMock, settings: Settings
    ) -> None:
        mock_conn.fetchval.side_effect = OSError("connection refused")
        mock_pool.get_size.return_value = 0
        mock_pool.get_max_size.return_value = 10
        mock_pool.get_idle_size.return_value = 0

        response = _client(mock_pool, tool_pool, settings).get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
