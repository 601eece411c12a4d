from __future__ import annotations

import asyncpg

from agent_engine.api.middleware.exception_handlers import PersistenceError
from agent_engine.models.execution_models import ExecutionRecord, ExecutionStatus
from agent_engine.utils.db_utils import acquire_connection
from agent_engine.utils.logger import logger

TERMINAL_STATUSES = [s.value for s in ExecutionStatus if s.is_terminal]


def _rows_affected(status: str) -> int:
    """Row count from an asyncpg command tag such as ``UPDATE 1``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class ExecutionRepository:
    """Durable status writes for scheduled executions.

    Every write is guarded so a row never leaves a terminal status.
    """

    def __init__(self, pool: asyncpg.Pool, acquire_timeout: float | None = 10.0):
        self.pool = pool
        self.acquire_timeout = acquire_timeout

    async def mark_running(self, record: ExecutionRecord) -> bool:
        """Upsert the row as ``running``.

        Returns False without touching the row when it already reached a
        terminal status (a retry of a finished execution).
        """
        async with acquire_connection(self.pool, timeout=self.acquire_timeout) as conn:
            row_id = await conn.fetchval(
                """
                INSERT INTO agent_schedule_executions (id, agent_id, workspace_id, status, started_at)
                VALUES ($1::uuid, $2::uuid, $3::uuid, 'running', $4)
                ON CONFLICT (id) DO UPDATE
                SET status = 'running',
                    agent_id = EXCLUDED.agent_id,
                    workspace_id = EXCLUDED.workspace_id,
                    started_at = EXCLUDED.started_at,
                    completed_at = NULL,
                    error_message = NULL
                WHERE agent_schedule_executions.status <> ALL($5::text[])
                RETURNING id
                """,
                record.execution_id,
                record.agent_id,
                record.workspace_id,
                record.started_at,
                TERMINAL_STATUSES,
            )
        return row_id is not None

    async def save_completed(self, record: ExecutionRecord) -> None:
        """Persist a completed record. Raises PersistenceError if the row was not updated."""
        try:
            async with acquire_connection(self.pool, timeout=self.acquire_timeout) as conn:
                status = await conn.execute(
                    """
                    UPDATE agent_schedule_executions
                    SET status = 'completed',
                        completed_at = $2,
                        duration_ms = $3,
                        tokens_input = $4,
                        tokens_output = $5,
                        tool_calls = $6::jsonb,
                        result_text = $7
                    WHERE id = $1::uuid AND status = 'running'
                    """,
                    record.execution_id,
                    record.completed_at,
                    record.duration_ms,
                    record.tokens_input,
                    record.tokens_output,
                    [call.model_dump(mode="json") for call in record.tool_calls],
                    record.result_text,
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Failed to save completed execution: {e}", cause=e) from e

        if _rows_affected(status) != 1:
            raise PersistenceError(f"Execution {record.execution_id} is no longer running")

    async def save_failed(self, record: ExecutionRecord) -> None:
        """Persist a failed record. Errors here are logged, not raised."""
        try:
            async with acquire_connection(self.pool, timeout=self.acquire_timeout) as conn:
                await conn.execute(
                    """
                    UPDATE agent_schedule_executions
                    SET status = 'failed',
                        completed_at = $2,
                        duration_ms = $3,
                        error_message = $4
                    WHERE id = $1::uuid AND status <> ALL($5::text[])
                    """,
                    record.execution_id,
                    record.completed_at,
                    record.duration_ms,
                    record.error_message,
                    TERMINAL_STATUSES,
                )
        except Exception as e:
            logger.error(
                f"Failed to mark execution {record.execution_id} as failed: {e}",
                exc_info=True,
                execution_id=record.execution_id,
            )
