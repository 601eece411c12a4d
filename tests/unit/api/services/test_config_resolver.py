from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest

from fakes import make_agent, make_team

from agent_engine.api.middleware.exception_handlers import ConfigurationError, NotFoundError
from agent_engine.api.services.agent_repository import AgentRepository
from agent_engine.api.services.config_resolver import ConfigurationResolver
from agent_engine.models.agent_models import TeamConfiguration
from agent_engine.models.error_models import ErrorCode


@pytest.fixture
def repository() -> Mock:
    repo = Mock(spec=AgentRepository)
    repo.load_deployed_team = AsyncMock(return_value=None)
    repo.resolve_workspace_agent_link = AsyncMock(return_value=None)
    repo.load_agent = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def resolver(repository: Mock) -> ConfigurationResolver:
    return ConfigurationResolver(repository)


@pytest.fixture
def team() -> TeamConfiguration:
    return make_team(
        [make_agent("lead"), make_agent("books"), make_agent("retired", is_enabled=False)],
        head_agent_id="lead",
    )


class TestTeamResolution:
    @pytest.mark.asyncio
    async def test_head_agent_by_default(
        self, resolver: ConfigurationResolver, repository: Mock, team: TeamConfiguration
    ) -> None:
        repository.load_deployed_team.return_value = team
        resolved = await resolver.resolve("ws-1")
        assert resolved.agent.id == "lead"
        assert resolved.team_id == "team-1"
        repository.load_agent.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_member(
        self, resolver: ConfigurationResolver, repository: Mock, team: TeamConfiguration
    ) -> None:
        repository.load_deployed_team.return_value = team
        resolved = await resolver.resolve("ws-1", "books")
        assert resolved.agent.id == "books"
        assert resolved.team is team

    @pytest.mark.asyncio
    async def test_disabled_member_not_found(
        self, resolver: ConfigurationResolver, repository: Mock, team: TeamConfiguration
    ) -> None:
        repository.load_deployed_team.return_value = team
        with pytest.raises(NotFoundError) as exc_info:
            await resolver.resolve("ws-1", "retired")
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Agent not found"

    @pytest.mark.asyncio
    async def test_workspace_agent_link(
        self, resolver: ConfigurationResolver, repository: Mock, team: TeamConfiguration
    ) -> None:
        repository.load_deployed_team.return_value = team
        repository.resolve_workspace_agent_link.return_value = "books"
        resolved = await resolver.resolve("ws-1", "workspace-agent-9")
        assert resolved.agent.id == "books"
        repository.resolve_workspace_agent_link.assert_awaited_once_with("workspace-agent-9")

    @pytest.mark.asyncio
    async def test_non_member_falls_back_to_single_agent(
        self, resolver: ConfigurationResolver, repository: Mock, team: TeamConfiguration
    ) -> None:
        repository.load_deployed_team.return_value = team
        repository.load_agent.return_value = make_agent("outsider")
        resolved = await resolver.resolve("ws-1", "outsider")
        assert resolved.agent.id == "outsider"
        assert resolved.team is None

    @pytest.mark.asyncio
    async def test_non_member_and_unknown_agent(
        self, resolver: ConfigurationResolver, repository: Mock, team: TeamConfiguration
    ) -> None:
        repository.load_deployed_team.return_value = team
        with pytest.raises(NotFoundError):
            await resolver.resolve("ws-1", "ghost")

    @pytest.mark.asyncio
    async def test_no_head_agent(self, resolver: ConfigurationResolver, repository: Mock) -> None:
        repository.load_deployed_team.return_value = make_team([make_agent("a")])
        with pytest.raises(ConfigurationError) as exc_info:
            await resolver.resolve("ws-1")
        assert exc_info.value.code is ErrorCode.NO_HEAD_AGENT
        assert exc_info.value.message == "No head agent configured for team"

    @pytest.mark.asyncio
    async def test_disabled_head_agent(self, resolver: ConfigurationResolver, repository: Mock) -> None:
        repository.load_deployed_team.return_value = make_team(
            [make_agent("lead", is_enabled=False)], head_agent_id="lead"
        )
        with pytest.raises(ConfigurationError):
            await resolver.resolve("ws-1")


class TestSingleAgentResolution:
    @pytest.mark.asyncio
    async def test_no_team_no_agent(self, resolver: ConfigurationResolver) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            await resolver.resolve("ws-1")
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "No agent or team configured for this workspace"

    @pytest.mark.asyncio
    async def test_loads_enabled_agent(self, resolver: ConfigurationResolver, repository: Mock) -> None:
        repository.load_agent.return_value = make_agent("solo")
        resolved = await resolver.resolve("ws-1", "solo")
        assert resolved.agent.id == "solo"
        assert resolved.team_id is None
        repository.load_agent.assert_awaited_once_with("solo", enabled_only=True)

    @pytest.mark.asyncio
    async def test_missing_or_disabled_agent(self, resolver: ConfigurationResolver) -> None:
        with pytest.raises(NotFoundError):
            await resolver.resolve("ws-1", "solo")
