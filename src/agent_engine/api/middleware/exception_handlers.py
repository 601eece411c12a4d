"""
Exception types and global exception handlers for the agent engine API.

Every handled error is logged with its error code and returned as
``{"error": "<message>"}`` with the status mapped from the code.
"""

from __future__ import annotations

from typing import Any

import asyncpg

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from agent_engine.api.middleware.request_context import get_request_context, get_request_id
from agent_engine.models.error_models import ErrorCode, ErrorResponse, get_status_code
from agent_engine.utils.logger import logger


class AppException(Exception):
    """Base application exception with error code support.

    Example:
        raise AppException(
            code=ErrorCode.AGENT_NOT_FOUND,
            message="Agent not found",
            details={"agent_id": agent_id},
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return get_status_code(self.code)


class AuthenticationError(AppException):
    """Missing or invalid caller credential or cron secret."""

    def __init__(
        self,
        message: str = "Unauthorized",
        code: ErrorCode = ErrorCode.AUTH_REQUIRED,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, details=details)


class ValidationException(AppException):
    """Malformed or missing request fields. Always raised before any side effect."""

    def __init__(self, message: str = "Invalid request", details: dict[str, Any] | None = None):
        super().__init__(code=ErrorCode.VALIDATION_ERROR, message=message, details=details)

    @classmethod
    def from_pydantic(cls, exc: ValidationError | RequestValidationError) -> ValidationException:
        """Name the first violation: ``Invalid request: workspaceId: Field required``."""
        errors = exc.errors()
        if not errors:
            return cls("Invalid request")
        first = errors[0]
        field_path = ".".join(str(loc) for loc in first.get("loc", ()) if loc != "body")
        violation = f"{field_path}: {first['msg']}" if field_path else str(first["msg"])
        return cls(f"Invalid request: {violation}", details={"errors": len(errors)})


class NotFoundError(AppException):
    """Agent, team member or conversation lookup miss."""

    def __init__(
        self,
        message: str = "Agent not found",
        code: ErrorCode = ErrorCode.AGENT_NOT_FOUND,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(code=code, message=message, details=details, cause=cause)


class ConfigurationError(AppException):
    """No agent or team resolvable for the workspace, or the team has no usable head agent."""

    NO_AGENT_CONFIGURED = "No agent or team configured for this workspace"
    NO_HEAD_AGENT = "No head agent configured for team"

    @classmethod
    def no_agent_configured(cls, workspace_id: str) -> ConfigurationError:
        return cls(
            code=ErrorCode.NO_AGENT_CONFIGURED,
            message=cls.NO_AGENT_CONFIGURED,
            details={"workspace_id": workspace_id},
        )

    @classmethod
    def no_head_agent(cls, team_id: str) -> ConfigurationError:
        return cls(code=ErrorCode.NO_HEAD_AGENT, message=cls.NO_HEAD_AGENT, details={"team_id": team_id})


class CredentialMissingError(AppException):
    """The provider's API key environment variable is unset."""

    def __init__(self, provider: str, var_name: str):
        self.provider = provider
        self.var_name = var_name
        super().__init__(
            code=ErrorCode.CREDENTIAL_MISSING,
            message=f"API key not configured: {var_name}",
            details={"provider": provider, "env_var": var_name},
        )


class ProviderError(AppException):
    """A model provider call failed; the provider's message is surfaced as-is."""

    def __init__(self, provider: str, message: str, cause: BaseException | None = None):
        self.provider = provider
        super().__init__(
            code=ErrorCode.PROVIDER_ERROR,
            message=message,
            details={"provider": provider},
            cause=cause,
        )


class ToolConnectionError(AppException):
    """The tool server could not be reached. Logged by the broker, never returned to callers."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(code=ErrorCode.TOOL_CONNECTION_FAILED, message=message, cause=cause)


class PersistenceError(AppException):
    """A required write (conversation, message, execution status) failed."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(code=ErrorCode.PERSISTENCE_FAILED, message=message, cause=cause)


class ExecutionConflictError(AppException):
    """A scheduled execution id that already reached a terminal state was re-submitted."""

    def __init__(self, execution_id: str):
        super().__init__(
            code=ErrorCode.RESOURCE_CONFLICT,
            message="Execution already finished",
            details={"execution_id": execution_id},
        )


class ExecutionFailedError(AppException):
    """A scheduled execution failed after its record was written."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(code=ErrorCode.EXECUTION_FAILED, message=message, cause=cause)


def _create_error_response(code: ErrorCode, message: str, request: Request | None = None) -> ErrorResponse:
    return ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path if request else None,
    )


def _log_error(error: BaseException, response: ErrorResponse, status_code: int) -> None:
    """Log error with appropriate level and context."""
    ctx = get_request_context()
    log_context = ctx.to_log_context() if ctx else {}
    log_context.update(response.to_log_context())
    log_context["error_code"] = response.code.value
    log_context["status_code"] = status_code

    if status_code >= 500:
        logger.error(f"Server error: {response.code.value} - {error}", exc_info=True, **log_context)
    elif status_code >= 400:
        logger.warning(f"Client error: {response.code.value} - {error}", **log_context)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application-specific exceptions."""
    status_code = exc.status_code
    error_response = _create_error_response(exc.code, exc.message, request)
    _log_error(exc, error_response, status_code)
    return JSONResponse(status_code=status_code, content=error_response.to_dict())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException with the same body shape."""
    status_to_code = {
        400: ErrorCode.VALIDATION_ERROR,
        401: ErrorCode.AUTH_REQUIRED,
        404: ErrorCode.RESOURCE_NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        500: ErrorCode.INTERNAL_ERROR,
    }
    code = status_to_code.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    error_response = _create_error_response(code, message, request)
    _log_error(exc, error_response, exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=error_response.to_dict(), headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request parsing failures are 400s naming the first violation."""
    return await app_exception_handler(request, ValidationException.from_pydantic(exc))


async def pydantic_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """A model failed validation after the request was accepted (e.g. a stored team config)."""
    error_response = _create_error_response(ErrorCode.INTERNAL_ERROR, "Stored configuration is invalid", request)
    _log_error(exc, error_response, 500)
    return JSONResponse(status_code=500, content=error_response.to_dict())


async def asyncpg_exception_handler(request: Request, exc: asyncpg.PostgresError) -> JSONResponse:
    """Handle PostgreSQL database errors."""
    error_response = _create_error_response(ErrorCode.DATABASE_ERROR, "Database operation failed", request)
    _log_error(exc, error_response, 500)
    return JSONResponse(status_code=500, content=error_response.to_dict())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without leaking internals."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
        request_id=get_request_id(),
        path=request.url.path,
    )
    error_response = _create_error_response(ErrorCode.INTERNAL_UNEXPECTED, "An unexpected error occurred", request)
    return JSONResponse(status_code=500, content=error_response.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValidationError, pydantic_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(asyncpg.PostgresError, asyncpg_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "AppException",
    "AuthenticationError",
    "ConfigurationError",
    "CredentialMissingError",
    "ExecutionConflictError",
    "ExecutionFailedError",
    "NotFoundError",
    "PersistenceError",
    "ProviderError",
    "ToolConnectionError",
    "ValidationException",
    "app_exception_handler",
    "asyncpg_exception_handler",
    "generic_exception_handler",
    "http_exception_handler",
    "pydantic_exception_handler",
    "register_exception_handlers",
    "validation_exception_handler",
]
