from __future__ import annotations

from typing import Any

import asyncpg

from agent_engine.api.middleware.exception_handlers import NotFoundError, PersistenceError
from agent_engine.core.constants import CONVERSATION_TITLE_LENGTH
from agent_engine.integrations.engine_types import ChatMessage
from agent_engine.models.error_models import ErrorCode
from agent_engine.models.execution_models import UsageStats
from agent_engine.utils.logger import logger

CHAT_ROLES = ("user", "assistant")


def make_title(message: str, length: int = CONVERSATION_TITLE_LENGTH) -> str:
    """Conversation title from the first message: truncated with an ellipsis."""
    text = message.strip()
    if len(text) <= length:
        return text
    return text[:length] + "..."


class ConversationService:
    """Conversation and message lifecycle backed by PostgreSQL.

    Conversations are created once and only grow by appended messages and
    accumulated usage.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create_conversation(
        self,
        workspace_id: str,
        user_id: str,
        first_message: str,
        agent_id: str | None = None,
    ) -> str:
        """Create a conversation titled from its first message and return its id."""
        try:
            async with self.pool.acquire() as conn:
                conversation_id = await conn.fetchval(
                    """
                    INSERT INTO conversations (workspace_id, user_id, agent_id, title)
                    VALUES ($1, $2, $3, $4)
                    RETURNING id
                    """,
                    workspace_id,
                    user_id,
                    agent_id,
                    make_title(first_message),
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError("Failed to create conversation", cause=e) from e
        return str(conversation_id)

    async def get_conversation(self, conversation_id: str, workspace_id: str) -> dict[str, Any]:
        """Conversation row, which must belong to ``workspace_id``."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, workspace_id, user_id, title, created_at
                FROM conversations
                WHERE id::text = $1 AND workspace_id::text = $2
                """,
                conversation_id,
                workspace_id,
            )
        if not row:
            raise NotFoundError(
                message="Conversation not found",
                code=ErrorCode.CONVERSATION_NOT_FOUND,
                details={"conversation_id": conversation_id},
            )
        return {
            "id": str(row["id"]),
            "workspace_id": str(row["workspace_id"]),
            "user_id": str(row["user_id"]) if row["user_id"] else None,
            "title": row["title"],
            "created_at": row["created_at"],
        }

    async def load_history(self, conversation_id: str, limit: int = 5) -> list[ChatMessage]:
        """Last ``limit`` user/assistant messages, oldest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT role, content FROM messages
                WHERE conversation_id::text = $1 AND role = ANY($2::text[])
                ORDER BY created_at DESC
                LIMIT $3
                """,
                conversation_id,
                list(CHAT_ROLES),
                limit,
            )
        return [{"role": r["role"], "content": r["content"]} for r in reversed(rows)]

    async def append_message(self, conversation_id: str, role: str, content: str) -> None:
        if role not in CHAT_ROLES:
            raise ValueError(f"Unsupported message role: {role}")
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO messages (conversation_id, role, content)
                    VALUES ($1, $2, $3)
                    """,
                    conversation_id,
                    role,
                    content,
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Failed to save {role} message", cause=e) from e

    async def record_usage(self, conversation_id: str, usage: UsageStats) -> None:
        """Accumulate token counts and estimated cost on the conversation."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE conversations
                    SET input_tokens = COALESCE(input_tokens, 0) + $2,
                        output_tokens = COALESCE(output_tokens, 0) + $3,
                        cost_usd = COALESCE(cost_usd, 0) + $4
                    WHERE id::text = $1
                    """,
                    conversation_id,
                    usage.input_tokens,
                    usage.output_tokens,
                    usage.cost_estimate,
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError("Failed to record conversation usage", cause=e) from e

        logger.debug(
            f"Recorded usage on conversation {conversation_id}",
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
