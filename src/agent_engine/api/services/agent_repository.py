from __future__ import annotations

import json

from typing import Any

import asyncpg

from agent_engine.api.middleware.exception_handlers import NotFoundError
from agent_engine.models.agent_models import Agent, TeamConfiguration
from agent_engine.utils.logger import logger


def _decode_json(value: Any) -> Any:
    """jsonb arrives decoded when the pool codec is registered, as text otherwise."""
    if isinstance(value, str | bytes):
        return json.loads(value)
    return value


class AgentRepository:
    """Read-only access to stored agent and team configuration."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def load_deployed_team(self, workspace_id: str) -> TeamConfiguration | None:
        """Latest active team deployment for the workspace, validated."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT config FROM deployed_teams
                WHERE workspace_id::text = $1 AND status = 'active'
                ORDER BY deployed_at DESC
                LIMIT 1
                """,
                workspace_id,
            )
        if not row or row["config"] is None:
            return None
        return TeamConfiguration.model_validate(_decode_json(row["config"]))

    async def resolve_workspace_agent_link(self, agent_id: str) -> str | None:
        """AI agent id behind a workspace-level agent id, if it is one."""
        async with self.pool.acquire() as conn:
            value = await conn.fetchval(
                "SELECT ai_agent_id FROM workspace_agents WHERE id::text = $1",
                agent_id,
            )
        return str(value) if value else None

    async def load_agent(self, agent_id: str, enabled_only: bool = True) -> Agent | None:
        """Load one agent with its rules, knowledge, skills and tools.

        With ``enabled_only`` a disabled agent is treated as missing and its
        relations are filtered to enabled entries. A storage error that carries
        a message is surfaced as a NotFoundError with that message.
        """
        try:
            return await self._load_agent(agent_id, enabled_only)
        except asyncpg.PostgresError as e:
            message = str(e).strip()
            if not message:
                raise
            logger.warning(f"Agent lookup failed for {agent_id}: {message}")
            raise NotFoundError(message=message, cause=e) from e

    async def _load_agent(self, agent_id: str, enabled_only: bool) -> Agent | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, slug, name, description, is_enabled, system_prompt, model, provider
                FROM ai_agents
                WHERE id::text = $1 AND ($2::boolean = false OR is_enabled)
                """,
                agent_id,
                enabled_only,
            )
            if not row:
                return None

            rules = await conn.fetch(
                """
                SELECT id, rule_type, content, priority, condition, is_enabled
                FROM ai_agent_rules
                WHERE agent_id::text = $1 AND ($2::boolean = false OR is_enabled)
                ORDER BY created_at
                """,
                agent_id,
                enabled_only,
            )
            knowledge = await conn.fetch(
                """
                SELECT category, name, content, is_enabled
                FROM ai_agent_knowledge
                WHERE agent_id::text = $1 AND ($2::boolean = false OR is_enabled)
                ORDER BY category, created_at
                """,
                agent_id,
                enabled_only,
            )
            skills = await conn.fetch(
                """
                SELECT s.name, s.description, s.skill_content, s.is_enabled
                FROM ai_agent_skills a
                JOIN agent_skills s ON s.id = a.skill_id
                WHERE a.agent_id::text = $1 AND ($2::boolean = false OR s.is_enabled)
                """,
                agent_id,
                enabled_only,
            )
            tools = await conn.fetch(
                """
                SELECT t.name, t.description, t.is_enabled
                FROM ai_agent_tools a
                JOIN agent_tools t ON t.id = a.tool_id
                WHERE a.agent_id::text = $1 AND ($2::boolean = false OR t.is_enabled)
                """,
                agent_id,
                enabled_only,
            )

        return self._row_to_agent(row, rules, knowledge, skills, tools)

    def _row_to_agent(
        self,
        row: asyncpg.Record,
        rules: list[asyncpg.Record],
        knowledge: list[asyncpg.Record],
        skills: list[asyncpg.Record],
        tools: list[asyncpg.Record],
    ) -> Agent:
        return Agent.model_validate(
            {
                "id": str(row["id"]),
                "slug": row["slug"] or "",
                "name": row["name"],
                "description": row["description"],
                "is_enabled": row["is_enabled"],
                "system_prompt": row["system_prompt"],
                "model": row["model"],
                "provider": row["provider"],
                "rules": [
                    {
                        "id": str(r["id"]),
                        "type": r["rule_type"],
                        "content": r["content"],
                        "priority": r["priority"] or 0,
                        "condition": r["condition"],
                        "is_enabled": r["is_enabled"],
                    }
                    for r in rules
                ],
                "knowledge": [
                    {
                        "category": k["category"] or "General",
                        "name": k["name"],
                        "content": k["content"],
                        "is_enabled": k["is_enabled"],
                    }
                    for k in knowledge
                ],
                "skills": [
                    {
                        "name": s["name"],
                        "description": s["description"],
                        "content": s["skill_content"] or "",
                        "is_enabled": s["is_enabled"],
                    }
                    for s in skills
                ],
                "tools": [
                    {"name": t["name"], "description": t["description"], "is_enabled": t["is_enabled"]} for t in tools
                ],
            }
        )
