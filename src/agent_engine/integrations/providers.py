"""
Provider routing: credential lookup, model aliases and engine selection.

The router checks the provider's API key before anything touches the
network, then hands the call to exactly one engine: the native engine for
its single provider, the generic engine for everything else.
"""

from __future__ import annotations

import os

from collections.abc import AsyncIterator

from agent_engine.api.middleware.exception_handlers import (
    AppException,
    CredentialMissingError,
    ProviderError,
)
from agent_engine.core.constants import MODEL_ALIASES, NATIVE_ENGINE_PROVIDER, PROVIDER_API_KEY_ENV_VARS
from agent_engine.integrations.engine_types import (
    CompletionResult,
    EngineEvent,
    ExecutionEngine,
    ModelCall,
    StepCallback,
)
from agent_engine.utils.logger import logger


def normalize_provider(provider: str | None, default: str) -> str:
    return (provider or default).strip().lower()


def resolve_model(model: str | None, default: str) -> str:
    """Expand short aliases (``sonnet``, ``opus``, ``haiku``) to full model ids."""
    name = (model or default).strip()
    return MODEL_ALIASES.get(name, name)


def api_key_env_var(provider: str) -> str:
    """Name of the environment variable holding ``provider``'s API key."""
    return PROVIDER_API_KEY_ENV_VARS.get(provider, f"{provider.upper()}_API_KEY")


def require_credential(provider: str) -> str:
    """Return the provider's API key or raise CredentialMissingError naming the variable."""
    var_name = api_key_env_var(provider)
    value = os.environ.get(var_name, "").strip()
    if not value:
        raise CredentialMissingError(provider, var_name)
    return value


def uses_generic_engine(provider: str) -> bool:
    return provider != NATIVE_ENGINE_PROVIDER


def _provider_error(provider: str, exc: Exception) -> ProviderError:
    message = str(exc).strip() or f"{type(exc).__name__} from {provider}"
    return ProviderError(provider, message, cause=exc)


class ProviderRouter:
    """Selects and invokes an execution engine for a ModelCall."""

    def __init__(self, native: ExecutionEngine, generic: ExecutionEngine):
        self.native = native
        self.generic = generic

    def select(self, provider: str) -> ExecutionEngine:
        return self.generic if uses_generic_engine(provider) else self.native

    def check_credential(self, provider: str) -> str:
        """Resolve the API key up front so callers can fail before opening tool connections."""
        return require_credential(provider)

    async def stream(self, call: ModelCall, api_key: str | None = None) -> AsyncIterator[EngineEvent]:
        """Interactive path: stream events from the selected engine."""
        api_key = api_key or require_credential(call.provider)
        engine = self.select(call.provider)
        logger.log_execution_event(
            "engine_selected",
            f"Streaming {call.provider}/{call.model} via {engine.kind.value} engine",
            provider=call.provider,
            model=call.model,
            engine=engine.kind.value,
            tools=len(call.tools.tools) if call.tools else 0,
        )
        try:
            async for event in engine.stream(call, api_key):
                yield event
        except AppException:
            raise
        except Exception as e:
            raise _provider_error(call.provider, e) from e

    async def generate(
        self,
        call: ModelCall,
        on_step_finish: StepCallback | None = None,
        api_key: str | None = None,
    ) -> CompletionResult:
        """Batch path: always the generic engine's non-streaming call."""
        api_key = api_key or require_credential(call.provider)
        logger.log_execution_event(
            "engine_selected",
            f"Generating {call.provider}/{call.model} via {self.generic.kind.value} engine",
            provider=call.provider,
            model=call.model,
            engine=self.generic.kind.value,
            tools=len(call.tools.tools) if call.tools else 0,
        )
        try:
            return await self.generic.generate(call, api_key, on_step_finish)
        except AppException:
            raise
        except Exception as e:
            raise _provider_error(call.provider, e) from e
