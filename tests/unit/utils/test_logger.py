"""Tests for logger module.

Tests redaction, previews, handler setup and structured execution events.
"""

from __future__ import annotations

import logging

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from agent_engine.api.middleware.request_context import (
    RequestContext,
    clear_request_context,
    set_request_context,
)
from agent_engine.utils.logger import EngineLogger, ErrorFilter, logger, preview, redact, setup_logging


@pytest.fixture
def inner_logger() -> Iterator[Mock]:
    with patch.object(logger, "logger") as mock_logger:
        yield mock_logger


class TestRedaction:
    def test_email(self) -> None:
        assert redact("mail grace@example.com now") == "mail [EMAIL] now"

    def test_api_key(self) -> None:
        assert "[API_KEY]" in redact("key is sk-abcdefghijklmnopqrstuvwxyz123")

    def test_password_assignment(self) -> None:
        assert redact("password=hunter2 ok") == "[REDACTED] ok"

    def test_empty(self) -> None:
        assert redact("") == ""


class TestPreview:
    def test_short_text_unchanged(self) -> None:
        assert preview("hello\nworld") == "hello world"

    def test_truncates(self) -> None:
        result = preview("x" * 200, length=10)
        assert result == "x" * 10 + "..."

    def test_redacts(self) -> None:
        assert preview("contact grace@example.com") == "contact [EMAIL]"


class TestSetupLogging:
    def test_handlers(self, tmp_path: Path) -> None:
        with patch("agent_engine.utils.logger.LOG_DIR", tmp_path):
            configured = setup_logging("agent-engine-test", debug=True)

        assert configured.propagate is False
        console = configured.handlers[0]
        assert console.level == logging.DEBUG
        assert len(configured.handlers) == 3
        assert any(isinstance(f, ErrorFilter) for f in configured.handlers[2].filters)
        for handler in configured.handlers:
            handler.close()

    def test_error_filter(self) -> None:
        error_filter = ErrorFilter()
        warning = logging.LogRecord("x", logging.WARNING, __file__, 1, "w", None, None)
        error = logging.LogRecord("x", logging.ERROR, __file__, 1, "e", None, None)
        assert error_filter.filter(warning) is False
        assert error_filter.filter(error) is True


class TestEngineLogger:
    def test_is_engine_logger(self) -> None:
        assert isinstance(logger, EngineLogger)

    def test_request_context_enrichment(self, inner_logger: Mock) -> None:
        set_request_context(RequestContext(request_id="req_abc", execution_id="exec-1"))
        try:
            logger.info("Turn started", agent_id="agent-1")
        finally:
            clear_request_context()

        extra = inner_logger.info.call_args.kwargs["extra"]
        assert extra["agent_id"] == "agent-1"
        assert extra["request_id"] == "req_abc"
        assert extra["execution_id"] == "exec-1"

    def test_explicit_fields_win_over_context(self, inner_logger: Mock) -> None:
        set_request_context(RequestContext(request_id="req_abc", workspace_id="ws-ctx"))
        try:
            logger.warning("Workspace switch", workspace_id="ws-explicit")
        finally:
            clear_request_context()

        assert inner_logger.warning.call_args.kwargs["extra"]["workspace_id"] == "ws-explicit"

    def test_execution_event_replaces_content(self, inner_logger: Mock) -> None:
        logger.log_execution_event(
            "turn_completed",
            "Chat turn completed",
            content="Reach me at grace@example.com",
            duration_ms=1234.4,
            input_tokens=100,
            output_tokens=50,
        )

        message = inner_logger.info.call_args.args[0]
        extra = inner_logger.info.call_args.kwargs["extra"]
        assert message == "Chat turn completed [1234ms] [100+50 tokens]"
        assert extra["event"] == "turn_completed"
        assert "content" not in extra
        assert extra["content_preview"] == "Reach me at [EMAIL]"
        assert extra["content_chars"] == len("Reach me at grace@example.com")

    def test_execution_event_without_content(self, inner_logger: Mock) -> None:
        logger.log_execution_event("engine_selected", engine="generic", content=None)

        assert inner_logger.info.call_args.args[0] == "engine_selected"
        extra = inner_logger.info.call_args.kwargs["extra"]
        assert "content_preview" not in extra
        assert extra["engine"] == "generic"
