"""
Execution bookkeeping models: usage statistics, tool-call records and the
scheduled execution record with its status state machine.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from agent_engine.core.constants import COST_PER_1K_INPUT_TOKENS, COST_PER_1K_OUTPUT_TOKENS


def _read(source: Any, *names: str) -> Any:
    """First non-None attribute or mapping key among ``names``."""
    for name in names:
        value = source.get(name) if isinstance(source, dict) else getattr(source, name, None)
        if value is not None:
            return value
    return None


class UsageStats(BaseModel):
    """Token usage for one model invocation or one accumulated turn."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def cost_estimate(self) -> float:
        """Estimated cost in USD."""
        return (self.input_tokens * COST_PER_1K_INPUT_TOKENS + self.output_tokens * COST_PER_1K_OUTPUT_TOKENS) / 1000

    @classmethod
    def from_provider(cls, usage: Any) -> UsageStats:
        """Build usage from any provider shape; missing data counts as zero tokens.

        Understands litellm/OpenAI chat usage (``prompt_tokens``/``completion_tokens``),
        responses and agents usage (``input_tokens``/``output_tokens``) and the
        camelCase variants, as objects or dicts.
        """
        if usage is None:
            return cls()
        input_tokens = _read(usage, "input_tokens", "prompt_tokens", "inputTokens", "promptTokens")
        output_tokens = _read(usage, "output_tokens", "completion_tokens", "outputTokens", "completionTokens")
        try:
            return cls(input_tokens=int(input_tokens or 0), output_tokens=int(output_tokens or 0))
        except (TypeError, ValueError):
            return cls()

    def __add__(self, other: UsageStats) -> UsageStats:
        return UsageStats(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_response(self) -> dict[str, int]:
        return {"inputTokens": self.input_tokens, "outputTokens": self.output_tokens}


class ToolCallRecord(BaseModel):
    """One tool invocation captured from a model step."""

    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ExecutionStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


#: Allowed status transitions; terminal states have none.
EXECUTION_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.CREATED: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.FAILED}),
    ExecutionStatus.RUNNING: frozenset({ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when an execution record would leave a terminal state or move backwards."""


class ExecutionRecord(BaseModel):
    """In-memory mirror of one scheduled execution row."""

    execution_id: str
    agent_id: str
    workspace_id: str | None = None
    status: ExecutionStatus = ExecutionStatus.CREATED
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    tokens_input: int = 0
    tokens_output: int = 0
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    result_text: str | None = None
    error_message: str | None = None

    def _transition(self, target: ExecutionStatus) -> None:
        if target not in EXECUTION_TRANSITIONS[self.status]:
            raise InvalidTransitionError(f"Execution {self.execution_id}: {self.status.value} -> {target.value}")
        self.status = target

    def _finish_time(self, now: datetime | None) -> datetime:
        finished = now or datetime.now(UTC)
        if self.started_at is not None and finished < self.started_at:
            finished = self.started_at
        return finished

    def mark_running(self, now: datetime | None = None) -> None:
        self._transition(ExecutionStatus.RUNNING)
        self.started_at = now or datetime.now(UTC)

    def mark_completed(
        self,
        *,
        usage: UsageStats,
        result_text: str,
        tool_calls: list[ToolCallRecord],
        now: datetime | None = None,
    ) -> None:
        self._transition(ExecutionStatus.COMPLETED)
        self.completed_at = self._finish_time(now)
        if self.started_at is not None:
            self.duration_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)
        self.tokens_input = usage.input_tokens
        self.tokens_output = usage.output_tokens
        self.tool_calls = list(tool_calls)
        self.result_text = result_text

    def mark_failed(self, error_message: str, now: datetime | None = None) -> None:
        self._transition(ExecutionStatus.FAILED)
        self.completed_at = self._finish_time(now)
        if self.started_at is not None:
            self.duration_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)
        self.error_message = error_message
