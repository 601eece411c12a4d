"""
Agent and team configuration models.

Stored configuration (team JSON documents and agent rows) is validated into
these closed, typed models at the storage boundary; the prompt assembler and
resolver only ever see validated instances. Fields accept both snake_case
(storage) and camelCase (API) names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

RuleType = Literal["always", "never", "when", "respond_with"]
Tone = Literal["friendly", "professional", "concise"]
OutputFormat = Literal["conversational", "bullet_points", "structured"]


class ConfigModel(BaseModel):
    """Base for configuration models: camelCase aliases, snake_case accepted, unknown keys ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Rule(ConfigModel):
    """A behavioral rule; higher priority sorts first within its type."""

    id: str | None = None
    type: RuleType = Field(validation_alias=AliasChoices("type", "ruleType", "rule_type"))
    content: str
    priority: int = 0
    condition: str | None = None
    is_enabled: bool = True


class KnowledgeEntry(ConfigModel):
    category: str = "General"
    name: str
    content: str
    is_enabled: bool = True


class Skill(ConfigModel):
    name: str
    content: str
    description: str | None = None
    is_enabled: bool = True


class ToolRef(ConfigModel):
    name: str
    description: str | None = None
    is_enabled: bool = True


class Delegation(ConfigModel):
    """Hand-off from one team agent to another, gated by a natural-language condition."""

    from_agent_slug: str
    to_agent_slug: str
    condition: str | None = None
    is_enabled: bool = True


class Agent(ConfigModel):
    id: str
    slug: str = ""
    name: str
    description: str | None = None
    is_enabled: bool = True
    system_prompt: str | None = None
    model: str | None = None
    provider: str | None = None
    rules: list[Rule] = Field(default_factory=list)
    knowledge: list[KnowledgeEntry] = Field(
        default_factory=list, validation_alias=AliasChoices("knowledge", "mind")
    )
    skills: list[Skill] = Field(default_factory=list)
    tools: list[ToolRef] = Field(default_factory=list)

    def enabled_tool_names(self) -> list[str]:
        """Names of tools eligible for binding, deduplicated in declaration order."""
        return list(dict.fromkeys(t.name for t in self.tools if t.is_enabled))

    def enabled_skills(self) -> list[Skill]:
        return [s for s in self.skills if s.is_enabled]

    def enabled_rules(self) -> list[Rule]:
        return [r for r in self.rules if r.is_enabled]

    def enabled_knowledge(self) -> list[KnowledgeEntry]:
        return [k for k in self.knowledge if k.is_enabled]


class TeamInfo(ConfigModel):
    id: str
    name: str
    head_agent_id: str | None = None
    description: str | None = None


class TeamConfiguration(ConfigModel):
    """A deployed multi-agent team: its agents, delegations and team-level knowledge."""

    team: TeamInfo
    agents: list[Agent] = Field(default_factory=list)
    delegations: list[Delegation] = Field(default_factory=list)
    knowledge: list[KnowledgeEntry] = Field(
        default_factory=list,
        validation_alias=AliasChoices("knowledge", "teamKnowledge", "team_knowledge", "teamMind", "team_mind"),
    )

    @model_validator(mode="after")
    def check_agent_identity(self) -> TeamConfiguration:
        """Agent ids and slugs are unique within a team."""
        ids = [a.id for a in self.agents]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Team {self.team.id} has duplicate agent ids")
        slugs = [a.slug for a in self.agents if a.slug]
        if len(slugs) != len(set(slugs)):
            raise ValueError(f"Team {self.team.id} has duplicate agent slugs")
        return self

    def find_agent(self, agent_id: str) -> Agent | None:
        return next((a for a in self.agents if a.id == agent_id), None)

    def head_agent(self) -> Agent | None:
        """The enabled agent named by ``head_agent_id``, if any."""
        if not self.team.head_agent_id:
            return None
        agent = self.find_agent(self.team.head_agent_id)
        return agent if agent is not None and agent.is_enabled else None

    def delegations_from(self, slug: str) -> list[Delegation]:
        """Enabled delegations whose source is the agent with ``slug``."""
        if not slug:
            return []
        return [d for d in self.delegations if d.is_enabled and d.from_agent_slug == slug]

    def agent_by_slug(self, slug: str) -> Agent | None:
        return next((a for a in self.agents if a.slug == slug), None)


class OutputConfig(ConfigModel):
    """Output formatting directives for scheduled executions."""

    tone: Tone | None = None
    format: OutputFormat | None = None
    custom_instructions: str | None = Field(
        default=None, validation_alias=AliasChoices("custom_instructions", "customInstructions")
    )


@dataclass(frozen=True)
class ResolvedAgent:
    """The acting agent for a request and the team it was resolved from, if any."""

    agent: Agent
    team: TeamConfiguration | None = None

    @property
    def team_id(self) -> str | None:
        return self.team.team.id if self.team else None
