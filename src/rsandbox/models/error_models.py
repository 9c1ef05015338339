"""
Standardized error response models for the rsandbox API.

Provides consistent error formatting across REST and WebSocket endpoints
with support for request tracking and error categorization.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Application-specific error codes for categorization."""

    # Validation errors (2xxx)
    VALIDATION_ERROR = "VAL_2001"
    VALIDATION_MISSING_FIELD = "VAL_2002"
    VALIDATION_INVALID_FORMAT = "VAL_2003"
    UNSAFE_CODE = "VAL_2010"

    # Resource errors (3xxx)
    RESOURCE_NOT_FOUND = "RES_3001"
    RESOURCE_CONFLICT = "RES_3003"

    # Session errors (4xxx)
    SESSION_NOT_FOUND = "SES_4001"
    SESSION_BUSY = "SES_4004"
    SESSION_START_FAILED = "SES_4005"

    # Execution errors (5xxx)
    EXECUTION_TIMEOUT = "EXE_5001"
    EXECUTION_FAILED = "EXE_5002"
    EXECUTION_CANCELLED = "EXE_5003"
    INTERPRETER_UNAVAILABLE = "EXE_5004"
    POOL_SATURATED = "EXE_5005"

    # WebSocket errors (6xxx)
    WS_MESSAGE_INVALID = "WS_6002"
    WS_UNKNOWN_TYPE = "WS_6003"

    # Rate limiting (7xxx)
    RATE_LIMITED = "RATE_7003"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "INT_9001"
    INTERNAL_UNEXPECTED = "INT_9999"


class ErrorDetail(BaseModel):
    """Detailed information about a specific validation or sub-error."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Standardized error response model for REST endpoints.

    Example response:
    {
        "error": {
            "code": "VAL_2010",
            "message": "Unsafe R code: Dangerous function detected: system",
            "request_id": "req_abc123",
            "timestamp": "2025-01-15T10:30:00Z",
            "details": [{"field": "category", "message": "dangerous_function"}],
            "path": "/api/v1/r/execute"
        }
    }
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: list[ErrorDetail] | None = None
    path: str | None = None
    # Debug info - only included in development mode
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        data = self.model_dump(mode="json", exclude_none=True)
        if include_debug and self.debug:
            data["debug"] = self.debug
        return {"error": data}


class WebSocketError(BaseModel):
    """Error message sent over the sandbox WebSocket.

    `type` is the reply type for the failed operation
    (e.g. "execution_error", "prompt_error") or plain "error".
    """

    type: str = "error"
    code: ErrorCode
    error: str
    request_id: str | None = None
    session_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    recoverable: bool = True
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# HTTP status code mappings for error codes
ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    # 404 Not Found
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.SESSION_NOT_FOUND: 404,
    # 409 Conflict
    ErrorCode.RESOURCE_CONFLICT: 409,
    ErrorCode.SESSION_BUSY: 409,
    ErrorCode.EXECUTION_CANCELLED: 409,
    # 422 Unprocessable Entity
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.VALIDATION_MISSING_FIELD: 422,
    ErrorCode.VALIDATION_INVALID_FORMAT: 422,
    ErrorCode.UNSAFE_CODE: 422,
    # 429 Too Many Requests
    ErrorCode.RATE_LIMITED: 429,
    # 500 Internal Server Error
    ErrorCode.EXECUTION_FAILED: 500,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.INTERNAL_UNEXPECTED: 500,
    # 503 Service Unavailable
    ErrorCode.SESSION_START_FAILED: 503,
    ErrorCode.INTERPRETER_UNAVAILABLE: 503,
    ErrorCode.POOL_SATURATED: 503,
    # 504 Gateway Timeout
    ErrorCode.EXECUTION_TIMEOUT: 504,
}


def get_status_code(error_code: ErrorCode) -> int:
    """Get HTTP status code for an error code."""
    return ERROR_CODE_TO_STATUS.get(error_code, 500)


__all__ = [
    "ERROR_CODE_TO_STATUS",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "WebSocketError",
    "get_status_code",
]
