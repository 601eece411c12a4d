"""
Prompt assembly for agent turns.

Builds the system prompt from the acting agent's persona, team delegations,
knowledge, skills and rules, plus the per-request context blocks. Sections
with nothing to contribute are left out entirely.

Section order:
1. Persona
2. Team Delegation
3. Knowledge Base (team entries, then agent entries, grouped by category)
4. Available Skills
5. Rules (grouped by type, highest priority first)
6. Current Context (chat) / Execution Context (scheduled)
7. Response Style (scheduled only)
"""

from __future__ import annotations

from collections.abc import Iterable

from agent_engine.models.agent_models import (
    Agent,
    KnowledgeEntry,
    OutputConfig,
    ResolvedAgent,
    Rule,
    RuleType,
)
from agent_engine.models.api_models import UserInfo

SECTION_SEPARATOR = "\n\n---\n\n"

DEFAULT_PERSONA = """You are a helpful AI assistant working inside a business workspace.
Answer clearly, use the tools you have been given to look up real data, and never invent facts."""

TEAM_DELEGATION_TEMPLATE = """# Team Delegation

You are the head agent of a team. When a user's request is better handled by a specialist, you can delegate to them.

## Available Specialists:
{specialists}

## How to Delegate:
When you want to delegate a task, output a delegation block in this EXACT format:

```delegation
AGENT: <agent_slug>
TASK: <what you need them to do>
CONTEXT: <relevant context from the conversation>
```

After outputting a delegation block, WAIT for the specialist's response before continuing. The specialist's response will be provided to you, and you should incorporate it into your response to the user."""

SKILLS_PREAMBLE = "The following skills provide detailed guidance for specific tasks. Use them when appropriate."

#: Rule groups in prompt order with their headings.
RULE_SECTIONS: tuple[tuple[RuleType, str], ...] = (
    ("always", "## Always"),
    ("never", "## Never"),
    ("when", "## Conditional Behaviors"),
    ("respond_with", "## Standard Responses"),
)

ERROR_HANDLING_SECTION = """## Error Handling

When a tool call fails, DO NOT immediately give up. Instead:

1. **Analyze the error**: Understand what went wrong (permission denied, invalid input, resource not found, etc.)

2. **Try alternatives**: If one approach fails, consider:
   - Using different parameters
   - Trying a related tool that might work
   - Gathering more information first

3. **Provide partial results**: If some operations succeeded and others failed, share what worked and explain what didn't.

4. **Be transparent**: Tell the user what failed and why, but focus on what you CAN do to help.

5. **Only fail completely** if the core user request absolutely cannot be fulfilled.

Remember: A tool error is information, not a stop sign."""

NO_WORKSPACE_CONTEXT_SECTION = """## IMPORTANT: No Workspace Context

This scheduled execution has no workspace context, which means NO data tools are available.
You CANNOT query real workspace data (tasks, projects, team members, etc.).

If this task requires data about the workspace, you MUST clearly state:
"I cannot complete this task because I don't have access to workspace data tools. Please ensure the schedule is linked to a workspace."

Do NOT fabricate, make up, or hallucinate any data."""

TOOLS_REQUIRED_NOTICE = (
    "IMPORTANT: You MUST use the tools listed above to query real data from the workspace. "
    "Do NOT fabricate, make up, or hallucinate any information. "
    "If a tool returns no data, report that clearly rather than inventing examples."
)

NO_TOOLS_NOTICE = (
    "WARNING: No data tools are available for this execution. You cannot query real workspace data. "
    "If this task requires data, clearly state that you cannot complete it without tool access."
)

DEFAULT_RESPONSE_STYLE = """## Response Style
- Write naturally, as if messaging a colleague
- Don't start by restating the task you were asked to do
- Be conversational, not robotic or templated
- Focus on what matters most, then details if needed
- Skip unnecessary preamble like "Here is the report" or "I have completed the task\""""

TONE_DIRECTIVES: dict[str, tuple[str, ...]] = {
    "friendly": (
        "- Use a warm, friendly tone - like messaging a colleague",
        "- It's okay to be casual and personable",
    ),
    "professional": (
        "- Use a professional, polished tone",
        "- Keep language clear and business-appropriate",
    ),
    "concise": (
        "- Be extremely concise - get to the point immediately",
        "- Minimize extra words and explanations",
    ),
}

FORMAT_DIRECTIVES: dict[str, tuple[str, ...]] = {
    "conversational": (
        "- Write in natural paragraphs, like a message",
        "- Avoid rigid structure or templates",
    ),
    "bullet_points": (
        "- Use bullet points for easy scanning",
        "- Keep each point brief",
    ),
    "structured": (
        "- Use clear sections with headers",
        "- Organize information logically",
    ),
}


def _join_sections(sections: Iterable[str | None]) -> str:
    return SECTION_SEPARATOR.join(s for s in sections if s)


def build_delegation_section(resolved: ResolvedAgent) -> str | None:
    """Delegation instructions for the acting agent, or None when no enabled delegation starts from it."""
    if resolved.team is None:
        return None
    delegations = resolved.team.delegations_from(resolved.agent.slug)
    if not delegations:
        return None

    lines = []
    for delegation in delegations:
        target = resolved.team.agent_by_slug(delegation.to_agent_slug)
        description = delegation.condition or (target.description if target else None) or "handles general tasks"
        lines.append(f"- **{delegation.to_agent_slug}**: {description}")
    return TEAM_DELEGATION_TEMPLATE.format(specialists="\n".join(lines))


def build_knowledge_section(team_entries: list[KnowledgeEntry], agent_entries: list[KnowledgeEntry]) -> str | None:
    """Team knowledge followed by agent knowledge, grouped by category in first-seen order."""
    entries = [e for e in team_entries if e.is_enabled] + [e for e in agent_entries if e.is_enabled]
    if not entries:
        return None

    by_category: dict[str, list[KnowledgeEntry]] = {}
    for entry in entries:
        by_category.setdefault(entry.category, []).append(entry)

    blocks = []
    for category, items in by_category.items():
        rendered = "\n\n".join(f"### {item.name}\n\n{item.content}" for item in items)
        blocks.append(f"## {category}\n\n{rendered}")
    return "# Knowledge Base\n\n" + SECTION_SEPARATOR.join(blocks)


def build_skills_section(agent: Agent) -> str | None:
    skills = agent.enabled_skills()
    if not skills:
        return None
    rendered = SECTION_SEPARATOR.join(f"## Skill: {skill.name}\n\n{skill.content}" for skill in skills)
    return f"# Available Skills\n\n{SKILLS_PREAMBLE}\n\n{rendered}"


def _render_rule(rule: Rule) -> str:
    if rule.condition and rule.type in ("when", "respond_with"):
        return f"- When {rule.condition}: {rule.content}"
    return f"- {rule.content}"


def order_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Highest priority first; equal priorities keep their input order."""
    return sorted(rules, key=lambda r: -r.priority)


def build_rules_section(agent: Agent) -> str | None:
    rules = order_rules(agent.enabled_rules())
    if not rules:
        return None

    blocks = []
    for rule_type, heading in RULE_SECTIONS:
        group = [r for r in rules if r.type == rule_type]
        if group:
            blocks.append(heading + "\n" + "\n".join(_render_rule(r) for r in group))
    return "# Rules\n\n" + "\n\n".join(blocks)


def build_chat_context_section(workspace_id: str, user: UserInfo) -> str:
    lines = [
        "## Current Context",
        f"- Workspace ID: {workspace_id}",
        f"- User ID: {user.id}",
    ]
    if user.name:
        lines.append(f"- User Name: {user.name}")
    if user.email:
        lines.append(f"- User Email: {user.email}")
    lines.append("")
    lines.append("You have access to this user's data within this workspace.")
    lines.append("")
    lines.append(
        f'**IMPORTANT: When calling ANY tool, ALWAYS include `workspace_id: "{workspace_id}"` in the tool input.** '
        "This is required for proper data access. Do NOT ask the user for their workspace ID or user ID - "
        "use the values provided above."
    )
    return "\n".join(lines)


def build_system_prompt(
    resolved: ResolvedAgent,
    *,
    workspace_id: str | None = None,
    user: UserInfo | None = None,
) -> str:
    """Assemble the system prompt for the acting agent.

    With ``user`` (chat mode) the prompt also carries the Current Context and
    Error Handling sections. Scheduled executions pass no user and put their
    context into the task message instead (see build_task_message).
    """
    agent = resolved.agent
    team_knowledge = resolved.team.knowledge if resolved.team else []

    sections = [
        agent.system_prompt.strip() if agent.system_prompt and agent.system_prompt.strip() else DEFAULT_PERSONA,
        build_delegation_section(resolved),
        build_knowledge_section(team_knowledge, agent.knowledge),
        build_skills_section(agent),
        build_rules_section(agent),
    ]
    if user is not None and workspace_id:
        sections.append(build_chat_context_section(workspace_id, user))
        sections.append(ERROR_HANDLING_SECTION)
    return _join_sections(sections)


def build_execution_context_section(workspace_id: str | None, tool_names: list[str]) -> str:
    """Workspace block for scheduled runs, or the explicit no-workspace notice."""
    if not workspace_id:
        return NO_WORKSPACE_CONTEXT_SECTION
    tool_list = ", ".join(tool_names) if tool_names else "None available"
    notice = TOOLS_REQUIRED_NOTICE if tool_names else NO_TOOLS_NOTICE
    return (
        "## Execution Context\n"
        f"- Workspace ID: {workspace_id}\n"
        "- Execution Type: Scheduled Task\n"
        f"- Available Tools: {tool_list}\n\n"
        f"{notice}"
    )


def build_output_instructions(output_config: OutputConfig | None) -> str:
    """Translate an output configuration into literal response-style directives."""
    if output_config is None or not (output_config.tone or output_config.format or output_config.custom_instructions):
        return DEFAULT_RESPONSE_STYLE

    parts = ["## Response Style"]
    if output_config.tone:
        parts.extend(TONE_DIRECTIVES[output_config.tone])
    if output_config.format:
        parts.extend(FORMAT_DIRECTIVES[output_config.format])
    parts.append("- Don't start by restating the task you were asked to do")
    parts.append('- Skip unnecessary preamble like "Here is the report"')

    if output_config.custom_instructions:
        parts.append("")
        parts.append("Additional instructions:")
        parts.append(output_config.custom_instructions)
    return "\n".join(parts)


def build_task_message(
    task_prompt: str,
    *,
    workspace_id: str | None,
    tool_names: list[str],
    output_config: OutputConfig | None,
) -> str:
    """The user message for a scheduled execution: context, task, then response style."""
    return _join_sections(
        [
            build_execution_context_section(workspace_id, tool_names),
            task_prompt,
            build_output_instructions(output_config),
        ]
    )
