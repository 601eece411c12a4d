from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from agent_engine.models.execution_models import (
    ExecutionRecord,
    ExecutionStatus,
    InvalidTransitionError,
    ToolCallRecord,
    UsageStats,
)

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


class TestUsageStats:
    def test_none_is_zero(self) -> None:
        usage = UsageStats.from_provider(None)
        assert usage.input_tokens == 0
        assert usage.output_tokens == 0

    def test_chat_completion_shape(self) -> None:
        usage = UsageStats.from_provider(SimpleNamespace(prompt_tokens=12, completion_tokens=7))
        assert (usage.input_tokens, usage.output_tokens) == (12, 7)

    def test_camel_case_dict(self) -> None:
        usage = UsageStats.from_provider({"promptTokens": 30, "completionTokens": 4})
        assert (usage.input_tokens, usage.output_tokens) == (30, 4)

    def test_partial_usage(self) -> None:
        usage = UsageStats.from_provider({"input_tokens": 9})
        assert (usage.input_tokens, usage.output_tokens) == (9, 0)

    def test_garbage_values_count_as_zero(self) -> None:
        usage = UsageStats.from_provider({"input_tokens": "many", "output_tokens": 3})
        assert (usage.input_tokens, usage.output_tokens) == (0, 0)

    def test_addition_accumulates(self) -> None:
        total = UsageStats(input_tokens=10, output_tokens=5) + UsageStats(input_tokens=1, output_tokens=2)
        assert total.to_response() == {"inputTokens": 11, "outputTokens": 7}

    def test_cost_estimate_positive(self) -> None:
        assert UsageStats(input_tokens=1000, output_tokens=1000).cost_estimate > 0
        assert UsageStats().cost_estimate == 0


class TestExecutionRecord:
    """Status state machine for scheduled executions."""

    def _record(self) -> ExecutionRecord:
        return ExecutionRecord(execution_id="exec-1", agent_id="agent-1")

    def test_created_to_running_to_completed(self) -> None:
        record = self._record()
        record.mark_running(now=T0)
        calls = [ToolCallRecord(name="list_invoices", input={"limit": 5})]
        record.mark_completed(
            usage=UsageStats(input_tokens=100, output_tokens=50),
            result_text="All done",
            tool_calls=calls,
            now=T0 + timedelta(seconds=2),
        )
        assert record.status is ExecutionStatus.COMPLETED
        assert record.duration_ms == 2000
        assert (record.tokens_input, record.tokens_output) == (100, 50)
        assert record.tool_calls[0].name == "list_invoices"
        assert record.result_text == "All done"

    def test_failed_from_running(self) -> None:
        record = self._record()
        record.mark_running(now=T0)
        record.mark_failed("boom", now=T0 + timedelta(milliseconds=250))
        assert record.status is ExecutionStatus.FAILED
        assert record.error_message == "boom"
        assert record.duration_ms == 250

    def test_completed_never_before_started(self) -> None:
        record = self._record()
        record.mark_running(now=T0)
        record.mark_failed("clock skew", now=T0 - timedelta(seconds=5))
        assert record.completed_at == record.started_at
        assert record.duration_ms == 0

    @pytest.mark.parametrize("status", [ExecutionStatus.COMPLETED, ExecutionStatus.FAILED])
    def test_terminal_states_reject_transitions(self, status: ExecutionStatus) -> None:
        record = self._record()
        record.status = status
        assert status.is_terminal
        with pytest.raises(InvalidTransitionError):
            record.mark_running()
        with pytest.raises(InvalidTransitionError):
            record.mark_failed("again")

    def test_cannot_complete_without_running(self) -> None:
        with pytest.raises(InvalidTransitionError):
            self._record().mark_completed(usage=UsageStats(), result_text="", tool_calls=[])

    def test_deep_copy_leaves_original_running(self) -> None:
        record = self._record()
        record.mark_running(now=T0)
        completed = record.model_copy(deep=True)
        completed.mark_completed(usage=UsageStats(), result_text="ok", tool_calls=[], now=T0)
        assert record.status is ExecutionStatus.RUNNING
        record.mark_failed("persist failed", now=T0)
        assert record.status is ExecutionStatus.FAILED
