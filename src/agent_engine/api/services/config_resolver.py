"""
Configuration resolution - picks the acting agent for a request.

A deployed team always wins over a bare agent lookup: when the workspace has
an active team, the agent is taken from the team (explicitly by id, or the
head agent by default). Only workspaces without a team fall back to loading a
single agent by id.
"""

from __future__ import annotations

from agent_engine.api.middleware.exception_handlers import ConfigurationError, NotFoundError
from agent_engine.api.services.agent_repository import AgentRepository
from agent_engine.models.agent_models import Agent, ResolvedAgent, TeamConfiguration
from agent_engine.utils.logger import logger


class ConfigurationResolver:
    """Resolves ``(workspace_id, agent_id?)`` to a ResolvedAgent. Holds no state."""

    def __init__(self, repository: AgentRepository):
        self.repository = repository

    async def resolve(self, workspace_id: str, agent_id: str | None = None) -> ResolvedAgent:
        """Resolve the acting agent.

        Raises:
            ConfigurationError: No team and no agent id, or the team has no usable head agent
            NotFoundError: The requested agent is missing or disabled
        """
        team = await self.repository.load_deployed_team(workspace_id)
        if team is not None:
            resolved = await self._resolve_in_team(team, agent_id)
            if resolved is not None:
                self._log(resolved, workspace_id, source="team")
                return resolved

        if not agent_id:
            raise ConfigurationError.no_agent_configured(workspace_id)

        agent = await self.repository.load_agent(agent_id, enabled_only=True)
        if agent is None:
            raise NotFoundError()

        resolved = ResolvedAgent(agent=agent)
        self._log(resolved, workspace_id, source="agent")
        return resolved

    async def _resolve_in_team(self, team: TeamConfiguration, agent_id: str | None) -> ResolvedAgent | None:
        """Acting agent from the team, or None to fall through to a single-agent lookup."""
        if not agent_id:
            head = team.head_agent()
            if head is None:
                raise ConfigurationError.no_head_agent(team.team.id)
            return ResolvedAgent(agent=head, team=team)

        member = team.find_agent(agent_id)
        if member is None:
            linked_id = await self.repository.resolve_workspace_agent_link(agent_id)
            if linked_id:
                member = team.find_agent(linked_id)

        if member is None:
            logger.debug(f"Agent {agent_id} is not a member of team {team.team.id}")
            return None
        return ResolvedAgent(agent=self._require_enabled(member), team=team)

    @staticmethod
    def _require_enabled(agent: Agent) -> Agent:
        if not agent.is_enabled:
            raise NotFoundError(details={"agent_id": agent.id, "reason": "disabled"})
        return agent

    @staticmethod
    def _log(resolved: ResolvedAgent, workspace_id: str, source: str) -> None:
        logger.log_execution_event(
            "agent_resolved",
            f"Resolved agent {resolved.agent.name} from {source}",
            workspace_id=workspace_id,
            agent_id=resolved.agent.id,
            team_id=resolved.team_id,
            source=source,
        )
