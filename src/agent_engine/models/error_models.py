"""
Error codes and response bodies for the agent engine API.

Every HTTP error leaves the service as ``{"error": "<message>"}``. The error
code stays server-side for logging and status mapping; the request id travels
in the ``X-Request-ID`` header.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Application-specific error codes for categorization."""

    # Authentication errors (1xxx)
    AUTH_REQUIRED = "AUTH_1001"
    AUTH_INVALID_TOKEN = "AUTH_1002"
    AUTH_INVALID_CRON_SECRET = "AUTH_1003"

    # Validation errors (2xxx)
    VALIDATION_ERROR = "VAL_2001"
    VALIDATION_MISSING_FIELD = "VAL_2002"
    VALIDATION_INVALID_FORMAT = "VAL_2003"

    # Resource errors (3xxx)
    RESOURCE_NOT_FOUND = "RES_3001"
    AGENT_NOT_FOUND = "RES_3002"
    CONVERSATION_NOT_FOUND = "RES_3003"
    RESOURCE_CONFLICT = "RES_3004"

    # Configuration errors (4xxx)
    NO_AGENT_CONFIGURED = "CFG_4001"
    NO_HEAD_AGENT = "CFG_4002"

    # Credential errors (5xxx)
    CREDENTIAL_MISSING = "CRED_5001"

    # Provider errors (6xxx)
    PROVIDER_ERROR = "PRV_6001"
    PROVIDER_RATE_LIMITED = "PRV_6002"

    # Tool server errors (7xxx), logged only
    TOOL_CONNECTION_FAILED = "TOOL_7001"
    TOOL_CALL_FAILED = "TOOL_7002"

    # Database errors (8xxx)
    DATABASE_ERROR = "DB_8001"
    PERSISTENCE_FAILED = "DB_8002"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "INT_9001"
    EXECUTION_FAILED = "INT_9002"
    INTERNAL_UNEXPECTED = "INT_9999"


class ErrorResponse(BaseModel):
    """Error body sent to clients.

    Example response:
    {
        "error": "Agent not found"
    }
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the client-facing JSON body."""
        return {"error": self.message}

    def to_log_context(self) -> dict[str, Any]:
        """Fields attached to the log record for this error."""
        return self.model_dump(mode="json", exclude_none=True, exclude={"message"})


# HTTP status code mappings for error codes
ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    # 400 Bad Request
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.VALIDATION_MISSING_FIELD: 400,
    ErrorCode.VALIDATION_INVALID_FORMAT: 400,
    ErrorCode.NO_AGENT_CONFIGURED: 400,
    ErrorCode.NO_HEAD_AGENT: 400,
    # 401 Unauthorized
    ErrorCode.AUTH_REQUIRED: 401,
    ErrorCode.AUTH_INVALID_TOKEN: 401,
    ErrorCode.AUTH_INVALID_CRON_SECRET: 401,
    # 404 Not Found
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.AGENT_NOT_FOUND: 404,
    ErrorCode.CONVERSATION_NOT_FOUND: 404,
    # 409 Conflict
    ErrorCode.RESOURCE_CONFLICT: 409,
    # 429 Too Many Requests
    ErrorCode.PROVIDER_RATE_LIMITED: 429,
    # 500 Internal Server Error
    ErrorCode.CREDENTIAL_MISSING: 500,
    ErrorCode.PROVIDER_ERROR: 500,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.PERSISTENCE_FAILED: 500,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.EXECUTION_FAILED: 500,
    ErrorCode.INTERNAL_UNEXPECTED: 500,
    # 502 Bad Gateway
    ErrorCode.TOOL_CONNECTION_FAILED: 502,
    ErrorCode.TOOL_CALL_FAILED: 502,
}


def get_status_code(error_code: ErrorCode) -> int:
    """Get HTTP status code for an error code."""
    return ERROR_CODE_TO_STATUS.get(error_code, 500)


__all__ = [
    "ERROR_CODE_TO_STATUS",
    "ErrorCode",
    "ErrorResponse",
    "get_status_code",
]
