"""Unit tests for WebSocket error handling utilities."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from fastapi import WebSocket
from pydantic import BaseModel, ValidationError

from rsandbox.api.websocket.errors import (
    WSCloseCode,
    close_with_error,
    error_from_exception,
    is_recoverable,
    send_ws_error,
    send_ws_message,
)
from rsandbox.core.exceptions import ExecutionTimeoutError, UnsafeCodeError
from rsandbox.models.error_models import ErrorCode


@pytest.fixture
def mock_websocket() -> MagicMock:
    ws = MagicMock(spec=WebSocket)
    ws.send_json = AsyncMock()
    ws.close = AsyncMock()
    return ws


@pytest.mark.asyncio
async def test_send_ws_error_success(mock_websocket: MagicMock) -> None:
    await send_ws_error(
        mock_websocket,
        code=ErrorCode.INTERNAL_ERROR,
        message="Something went wrong",
        session_id="sess_123",
        recoverable=True,
    )

    mock_websocket.send_json.assert_called_once()
    payload = mock_websocket.send_json.call_args[0][0]
    assert payload["type"] == "error"
    assert payload["code"] == "INT_9001"
    assert payload["error"] == "Something went wrong"
    assert payload["session_id"] == "sess_123"
    assert payload["recoverable"] is True


@pytest.mark.asyncio
async def test_send_ws_message_connection_closed(mock_websocket: MagicMock) -> None:
    mock_websocket.send_json.side_effect = RuntimeError("WebSocket disconnected")

    # Should not raise, just log warning
    assert await send_ws_message(mock_websocket, {"type": "pong"}) is False


@pytest.mark.asyncio
async def test_close_with_error(mock_websocket: MagicMock) -> None:
    await close_with_error(
        mock_websocket,
        code=ErrorCode.INTERPRETER_UNAVAILABLE,
        message="R interpreter is not available",
        close_code=WSCloseCode.SERVICE_UNAVAILABLE,
    )

    payload = mock_websocket.send_json.call_args[0][0]
    assert payload["recoverable"] is False
    mock_websocket.close.assert_awaited_once()
    assert mock_websocket.close.call_args.kwargs["code"] == 4503


def test_recoverable_codes() -> None:
    assert is_recoverable(ErrorCode.SESSION_BUSY) is True
    assert is_recoverable(ErrorCode.EXECUTION_TIMEOUT) is True
    assert is_recoverable(ErrorCode.POOL_SATURATED) is True
    assert is_recoverable(ErrorCode.UNSAFE_CODE) is False
    assert is_recoverable(ErrorCode.INTERPRETER_UNAVAILABLE) is False


def test_error_from_app_exception() -> None:
    error = error_from_exception(ExecutionTimeoutError("s1", 2.0), "execution_error", "r1", "s1")

    assert error.type == "execution_error"
    assert error.code == ErrorCode.EXECUTION_TIMEOUT
    assert error.error == "Execution timeout after 2000ms"
    assert error.request_id == "r1"
    assert error.details == {"session_id": "s1", "timeout_ms": 2000}


def test_error_from_unsafe_code_drops_empty_details() -> None:
    error = error_from_exception(UnsafeCodeError("Network access is not allowed"))

    assert error.code == ErrorCode.UNSAFE_CODE
    assert error.details == {"reason": "Network access is not allowed"}
    assert error.recoverable is False


def test_error_from_validation_error() -> None:
    class Payload(BaseModel):
        code: str

    with pytest.raises(ValidationError) as exc_info:
        Payload.model_validate({})

    error = error_from_exception(exc_info.value, "execution_error")

    assert error.code == ErrorCode.VALIDATION_ERROR
    assert error.details == {"errors": [{"field": "code", "message": "Field required"}]}


def test_error_from_unexpected_exception_hides_message() -> None:
    error = error_from_exception(KeyError("internal detail"))

    assert error.code == ErrorCode.INTERNAL_UNEXPECTED
    assert error.error == "An unexpected error occurred"
    assert error.details is None
