"""Tests for constants module.

Tests settings loading, validation and provider tables.
"""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import patch

import pytest

from pydantic import ValidationError

from agent_engine.core.constants import (
    NATIVE_ENGINE_PROVIDER,
    PROVIDER_API_KEY_ENV_VARS,
    Settings,
    clear_settings_cache,
    get_settings,
)


@pytest.fixture
def no_dotenv() -> Iterator[None]:
    with (
        patch("agent_engine.core.constants._get_env_files", return_value=[]),
        patch("agent_engine.core.constants._reload_dotenv_into_environ"),
    ):
        clear_settings_cache()
        yield
        clear_settings_cache()


class TestProviderTables:
    def test_native_provider_has_credential(self) -> None:
        assert NATIVE_ENGINE_PROVIDER in PROVIDER_API_KEY_ENV_VARS

    def test_google_uses_generative_ai_variable(self) -> None:
        assert PROVIDER_API_KEY_ENV_VARS["google"] == "GOOGLE_GENERATIVE_AI_API_KEY"


class TestSettings:
    def test_defaults(self, no_dotenv: None, monkeypatch: pytest.MonkeyPatch) -> None:
        for var in ("CHAT_MAX_STEPS", "BATCH_MAX_STEPS", "CHAT_HISTORY_LIMIT", "CRON_SECRET", "JWT_ALGORITHM"):
            monkeypatch.delenv(var, raising=False)
        settings = Settings()
        assert settings.chat_max_steps == 5
        assert settings.batch_max_steps == 10
        assert settings.chat_history_limit == 5
        assert settings.jwt_algorithm == "HS256"
        assert settings.cron_secret is None

    def test_environment_overrides(self, no_dotenv: None, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CHAT_MAX_STEPS", "7")
        monkeypatch.setenv("CRON_SECRET", "nightly")
        settings = Settings()
        assert settings.chat_max_steps == 7
        assert settings.cron_secret == "nightly"

    def test_blank_cron_secret_is_unset(self) -> None:
        assert Settings(cron_secret="  ").cron_secret is None

    def test_cors_origins_from_string(self) -> None:
        assert Settings(cors_origins="https://a.example, https://b.example").cors_origins == [
            "https://a.example",
            "https://b.example",
        ]

    def test_app_env_normalized(self) -> None:
        settings = Settings(app_env="PRODUCTION")
        assert settings.app_env == "production"
        assert settings.is_production

    def test_invalid_app_env(self) -> None:
        with pytest.raises(ValidationError, match="app_env"):
            Settings(app_env="staging")

    def test_short_jwt_secret_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 8 characters"):
            Settings(jwt_secret="short")


class TestGetSettings:
    def test_cached(self, no_dotenv: None) -> None:
        assert get_settings() is get_settings()

    def test_cache_cleared(self, no_dotenv: None) -> None:
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
