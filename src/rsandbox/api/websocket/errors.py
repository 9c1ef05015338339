"""
WebSocket error handling utilities for rsandbox.

Turns sandbox exceptions into typed error messages ("execution_error",
"prompt_error" or plain "error") with a recovery hint.
"""

from __future__ import annotations

import contextlib

from typing import Any

from fastapi import WebSocket
from pydantic import ValidationError

from rsandbox.api.middleware.request_context import get_request_id
from rsandbox.core.constants import get_settings
from rsandbox.core.exceptions import AppException
from rsandbox.models.error_models import ErrorCode, WebSocketError
from rsandbox.utils.logger import logger
from rsandbox.utils.metrics import ws_messages_total


# WebSocket close codes (RFC 6455 + application-specific)
class WSCloseCode:
    """WebSocket close codes for error scenarios."""

    # Standard codes
    NORMAL = 1000
    GOING_AWAY = 1001
    INVALID_PAYLOAD = 1007
    POLICY_VIOLATION = 1008
    INTERNAL_ERROR = 1011
    TRY_AGAIN_LATER = 1013

    # Application-specific codes (4000-4999)
    RATE_LIMITED = 4429
    SERVER_ERROR = 4500
    SERVICE_UNAVAILABLE = 4503


# Failures where retrying the same request cannot succeed
NON_RECOVERABLE: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.UNSAFE_CODE,
        ErrorCode.VALIDATION_ERROR,
        ErrorCode.INTERPRETER_UNAVAILABLE,
        ErrorCode.INTERNAL_UNEXPECTED,
    }
)


def is_recoverable(code: ErrorCode) -> bool:
    """Whether the client may usefully retry."""
    return code not in NON_RECOVERABLE


def error_from_exception(
    exc: Exception,
    message_type: str = "error",
    request_id: str | None = None,
    session_id: str | None = None,
) -> WebSocketError:
    """Build the error message for a failed operation."""
    if isinstance(exc, AppException):
        code, message = exc.code, exc.message
        details = {k: v for k, v in (exc.details or {}).items() if v is not None} or None
    elif isinstance(exc, ValidationError):
        code, message = ErrorCode.VALIDATION_ERROR, "Message validation failed"
        details = {
            "errors": [
                {"field": ".".join(str(loc) for loc in error["loc"]), "message": error["msg"]}
                for error in exc.errors()
            ]
        }
    else:
        code = ErrorCode.INTERNAL_UNEXPECTED
        message = str(exc) if get_settings().debug else "An unexpected error occurred"
        details = {"error_type": type(exc).__name__} if get_settings().debug else None

    return WebSocketError(
        type=message_type,
        code=code,
        error=message,
        request_id=request_id or get_request_id(),
        session_id=session_id,
        recoverable=is_recoverable(code),
        details=details,
    )


async def send_ws_message(websocket: WebSocket, message: dict[str, Any]) -> bool:
    """Send one JSON message; False if the connection is already gone."""
    try:
        await websocket.send_json(message)
    except (RuntimeError, OSError) as e:
        logger.warning(f"Failed to send WebSocket message: {e}")
        return False
    ws_messages_total.labels(direction="outbound").inc()
    return True


async def send_ws_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    message_type: str = "error",
    request_id: str | None = None,
    session_id: str | None = None,
    recoverable: bool = True,
    details: dict[str, Any] | None = None,
) -> None:
    """Send a standardized error message over WebSocket."""
    error = WebSocketError(
        type=message_type,
        code=code,
        error=message,
        request_id=request_id or get_request_id(),
        session_id=session_id,
        recoverable=recoverable,
        details=details,
    )
    await send_ws_message(websocket, error.to_dict())


async def close_with_error(websocket: WebSocket, code: ErrorCode, message: str, close_code: int) -> None:
    """Send an error message, then close the connection."""
    await send_ws_error(websocket, code=code, message=message, recoverable=False)
    with contextlib.suppress(RuntimeError, OSError):
        await websocket.close(code=close_code, reason=message.encode("utf-8")[:123].decode("utf-8", errors="ignore"))


__all__ = [
    "NON_RECOVERABLE",
    "WSCloseCode",
    "close_with_error",
    "error_from_exception",
    "is_recoverable",
    "send_ws_error",
    "send_ws_message",
]
