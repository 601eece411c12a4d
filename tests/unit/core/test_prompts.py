from __future__ import annotations

from fakes import make_agent, make_team

from agent_engine.core.prompts import (
    DEFAULT_PERSONA,
    DEFAULT_RESPONSE_STYLE,
    ERROR_HANDLING_SECTION,
    NO_WORKSPACE_CONTEXT_SECTION,
    build_delegation_section,
    build_knowledge_section,
    build_output_instructions,
    build_rules_section,
    build_system_prompt,
    build_task_message,
    order_rules,
)
from agent_engine.models.agent_models import KnowledgeEntry, OutputConfig, ResolvedAgent, Rule, Skill
from agent_engine.models.api_models import UserInfo


def _team_with_delegations(delegations: list[dict[str, object]]) -> ResolvedAgent:
    head = make_agent("lead", slug="lead")
    specialist = make_agent("books", slug="books", description="Handles bookkeeping")
    team = make_team([head, specialist], head_agent_id="lead", delegations=delegations)
    return ResolvedAgent(agent=team.agents[0], team=team)


class TestSystemPrompt:
    """Section order and omission of empty sections."""

    def test_persona_only_for_bare_agent(self) -> None:
        """An agent with no extras yields just its persona."""
        prompt = build_system_prompt(ResolvedAgent(agent=make_agent(system_prompt="You are Ada.")))
        assert prompt == "You are Ada."

    def test_default_persona_when_missing(self) -> None:
        prompt = build_system_prompt(ResolvedAgent(agent=make_agent(system_prompt="   ")))
        assert prompt.startswith(DEFAULT_PERSONA)

    def test_sections_in_fixed_order(self) -> None:
        """Persona, delegation, knowledge, skills, rules, context, error handling."""
        resolved = _team_with_delegations([{"from_agent_slug": "lead", "to_agent_slug": "books"}])
        agent = resolved.agent.model_copy(
            update={
                "knowledge": [KnowledgeEntry(name="Pricing", content="Plans start at $10")],
                "skills": [Skill(name="Invoicing", content="Create invoices carefully")],
                "rules": [Rule(type="always", content="Cite sources")],
            }
        )
        resolved = ResolvedAgent(agent=agent, team=resolved.team)
        prompt = build_system_prompt(resolved, workspace_id="ws-1", user=UserInfo(id="u-1"))

        positions = [
            prompt.index("You are lead."),
            prompt.index("# Team Delegation"),
            prompt.index("# Knowledge Base"),
            prompt.index("# Available Skills"),
            prompt.index("# Rules"),
            prompt.index("## Current Context"),
            prompt.index("## Error Handling"),
        ]
        assert positions == sorted(positions)

    def test_chat_context_lists_user(self) -> None:
        user = UserInfo(id="u-1", name="Grace", email="grace@example.com")
        prompt = build_system_prompt(ResolvedAgent(agent=make_agent()), workspace_id="ws-9", user=user)
        assert "- Workspace ID: ws-9" in prompt
        assert "- User ID: u-1" in prompt
        assert "- User Name: Grace" in prompt
        assert "- User Email: grace@example.com" in prompt
        assert prompt.endswith(ERROR_HANDLING_SECTION)

    def test_no_context_without_user(self) -> None:
        prompt = build_system_prompt(ResolvedAgent(agent=make_agent()), workspace_id="ws-9")
        assert "## Current Context" not in prompt
        assert "## Error Handling" not in prompt


class TestSkills:
    """Only enabled skills reach the prompt."""

    def test_enabled_skill_included_disabled_excluded(self) -> None:
        agent = make_agent(
            skills=[
                {"name": "A", "content": "Skill A body", "is_enabled": True},
                {"name": "B", "content": "Skill B body", "is_enabled": False},
            ]
        )
        prompt = build_system_prompt(ResolvedAgent(agent=agent))
        assert "## Skill: A" in prompt
        assert "Skill A body" in prompt
        assert "## Skill: B" not in prompt
        assert "Skill B body" not in prompt

    def test_all_disabled_omits_section(self) -> None:
        agent = make_agent(skills=[{"name": "B", "content": "x", "is_enabled": False}])
        assert "# Available Skills" not in build_system_prompt(ResolvedAgent(agent=agent))


class TestDelegation:
    """Delegation section appears iff an enabled delegation starts at the acting agent."""

    def test_present_for_matching_enabled_delegation(self) -> None:
        resolved = _team_with_delegations(
            [{"from_agent_slug": "lead", "to_agent_slug": "books", "condition": "money questions"}]
        )
        section = build_delegation_section(resolved)
        assert section is not None
        assert "- **books**: money questions" in section

    def test_falls_back_to_target_description(self) -> None:
        resolved = _team_with_delegations([{"from_agent_slug": "lead", "to_agent_slug": "books"}])
        section = build_delegation_section(resolved)
        assert section is not None
        assert "- **books**: Handles bookkeeping" in section

    def test_absent_when_disabled(self) -> None:
        resolved = _team_with_delegations(
            [{"from_agent_slug": "lead", "to_agent_slug": "books", "is_enabled": False}]
        )
        assert build_delegation_section(resolved) is None
        assert "# Team Delegation" not in build_system_prompt(resolved)

    def test_absent_when_from_other_agent(self) -> None:
        resolved = _team_with_delegations([{"from_agent_slug": "books", "to_agent_slug": "lead"}])
        assert build_delegation_section(resolved) is None

    def test_absent_without_team(self) -> None:
        assert build_delegation_section(ResolvedAgent(agent=make_agent())) is None


class TestKnowledge:
    def test_team_entries_before_agent_entries_grouped_by_category(self) -> None:
        team = [KnowledgeEntry(category="Policies", name="Refunds", content="30 days")]
        agent = [
            KnowledgeEntry(category="Products", name="Widget", content="Blue"),
            KnowledgeEntry(category="Policies", name="Shipping", content="Free over $50"),
        ]
        section = build_knowledge_section(team, agent)
        assert section is not None
        assert section.index("## Policies") < section.index("## Products")
        assert section.index("### Refunds") < section.index("### Shipping") < section.index("### Widget")

    def test_disabled_entries_skipped(self) -> None:
        entries = [KnowledgeEntry(name="Hidden", content="x", is_enabled=False)]
        assert build_knowledge_section([], entries) is None


class TestRules:
    def test_priority_order_is_stable(self) -> None:
        rules = [
            Rule(id="a", type="always", content="first low", priority=1),
            Rule(id="b", type="always", content="high", priority=5),
            Rule(id="c", type="always", content="second low", priority=1),
        ]
        assert [r.id for r in order_rules(rules)] == ["b", "a", "c"]

    def test_grouped_by_type_with_conditions(self) -> None:
        agent = make_agent(
            rules=[
                {"type": "never", "content": "Share passwords"},
                {"type": "when", "content": "Escalate", "condition": "the user is angry"},
                {"type": "always", "content": "Be polite"},
                {"type": "always", "content": "Disabled rule", "is_enabled": False},
            ]
        )
        section = build_rules_section(agent)
        assert section is not None
        assert section.index("## Always") < section.index("## Never") < section.index("## Conditional Behaviors")
        assert "- When the user is angry: Escalate" in section
        assert "Disabled rule" not in section
        assert "## Standard Responses" not in section


class TestOutputInstructions:
    """Batch output formatting directives."""

    def test_default_when_absent(self) -> None:
        assert build_output_instructions(None) == DEFAULT_RESPONSE_STYLE
        assert build_output_instructions(OutputConfig()) == DEFAULT_RESPONSE_STYLE
        assert "Write naturally" in DEFAULT_RESPONSE_STYLE

    def test_friendly_tone(self) -> None:
        assert "warm, friendly" in build_output_instructions(OutputConfig(tone="friendly"))

    def test_concise_tone(self) -> None:
        assert "extremely concise" in build_output_instructions(OutputConfig(tone="concise"))

    def test_formats(self) -> None:
        assert "Use bullet points" in build_output_instructions(OutputConfig(format="bullet_points"))
        assert "sections with headers" in build_output_instructions(OutputConfig(format="structured"))

    def test_custom_instructions_verbatim(self) -> None:
        config = OutputConfig.model_validate({"customInstructions": "Sign off as Ops Bot."})
        assert build_output_instructions(config).endswith("Sign off as Ops Bot.")


class TestTaskMessage:
    def test_no_workspace_notice(self) -> None:
        message = build_task_message("Summarize", workspace_id=None, tool_names=[], output_config=None)
        assert message.startswith(NO_WORKSPACE_CONTEXT_SECTION)
        assert "Summarize" in message

    def test_execution_context_lists_tools(self) -> None:
        message = build_task_message(
            "Summarize invoices",
            workspace_id="ws-1",
            tool_names=["list_invoices", "search_contacts"],
            output_config=OutputConfig(tone="friendly"),
        )
        assert "- Workspace ID: ws-1" in message
        assert "- Available Tools: list_invoices, search_contacts" in message
        assert message.index("## Execution Context") < message.index("Summarize invoices")
        assert message.index("Summarize invoices") < message.index("warm, friendly")
