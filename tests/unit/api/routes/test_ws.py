"""Tests for the sandbox WebSocket endpoint."""

from __future__ import annotations

import asyncio

from unittest.mock import MagicMock

import pytest

from fastapi import FastAPI, WebSocketDisconnect
from fastapi.testclient import TestClient

from rsandbox.api.routes import ws
from rsandbox.core.exceptions import SessionBusyError, UnsafeCodeError
from rsandbox.core.session import ExecutionResult
from rsandbox.core.session_pool import ExecuteOptions, PromptExecution


@pytest.fixture
def app(mock_pool: MagicMock) -> FastAPI:
    app = FastAPI()
    app.include_router(ws.router, prefix="/ws")
    app.state.session_pool = mock_pool
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def _result(output: str = "[1] 2") -> ExecutionResult:
    return ExecutionResult(success=True, output=output, execution_time_ms=7)


def test_connected_message_carries_session(client: TestClient) -> None:
    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "connected"
    assert message["session_id"] == "s1"
    assert message["client_id"].startswith("client_")
    assert "timestamp" in message


def test_closes_when_pool_not_ready() -> None:
    app = FastAPI()
    app.include_router(ws.router, prefix="/ws")

    with TestClient(app).websocket_connect("/ws/sandbox") as websocket:
        error = websocket.receive_json()
        with pytest.raises(WebSocketDisconnect) as exc_info:
            websocket.receive_json()

    assert error["code"] == "EXE_5004"
    assert error["recoverable"] is False
    assert exc_info.value.code == 4503


def test_session_generated_when_not_given(client: TestClient) -> None:
    with client.websocket_connect("/ws/sandbox") as websocket:
        message = websocket.receive_json()

    assert len(message["session_id"]) == 36


def test_ping_pong(client: TestClient) -> None:
    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "ping", "request_id": "r1"})
        message = websocket.receive_json()

    assert message["type"] == "pong"
    assert message["request_id"] == "r1"


def test_execute_code(client: TestClient, mock_pool: MagicMock) -> None:
    mock_pool.execute_code.return_value = _result()

    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "execute_code", "code": "print(1 + 1)", "timeout": 3000, "request_id": "r1"})
        started = websocket.receive_json()
        complete = websocket.receive_json()

    assert started == {"type": "execution_started", "request_id": "r1", "timestamp": started["timestamp"]}
    assert complete["type"] == "execution_complete"
    assert complete["request_id"] == "r1"
    assert complete["session_id"] == "s1"
    assert complete["result"]["output"] == "[1] 2"
    assert complete["result"]["success"] is True
    mock_pool.execute_code.assert_awaited_once_with(
        "s1", "print(1 + 1)", ExecuteOptions(timeout=3.0, data=None, variable_name="data")
    )


def test_execute_code_rejected(client: TestClient, mock_pool: MagicMock) -> None:
    mock_pool.execute_code.side_effect = UnsafeCodeError("Dangerous function detected: system", "dangerous_function")

    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "execute_code", "code": 'system("ls")', "request_id": "r2"})
        websocket.receive_json()
        error = websocket.receive_json()

    assert error["type"] == "execution_error"
    assert error["code"] == "VAL_2010"
    assert error["error"] == "Unsafe R code: Dangerous function detected: system"
    assert error["request_id"] == "r2"
    assert error["recoverable"] is False


def test_execute_code_busy_is_recoverable(client: TestClient, mock_pool: MagicMock) -> None:
    mock_pool.execute_code.side_effect = SessionBusyError("s1")

    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "execute_code", "code": "print(1)"})
        websocket.receive_json()
        error = websocket.receive_json()

    assert error["code"] == "SES_4004"
    assert error["recoverable"] is True


def test_execute_code_invalid_payload(client: TestClient, mock_pool: MagicMock) -> None:
    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "execute_code", "request_id": "r3"})
        error = websocket.receive_json()

    assert error["type"] == "execution_error"
    assert error["code"] == "VAL_2001"
    assert error["details"]["errors"][0]["field"] == "code"
    mock_pool.execute_code.assert_not_awaited()


def test_execute_prompt(client: TestClient, mock_pool: MagicMock) -> None:
    mock_pool.execute_prompt.return_value = PromptExecution(code="print(summary(data))", result=_result("ok"))
    rows = [{"value": 1}]

    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "execute_prompt", "prompt": "summary", "data": rows, "request_id": "p1"})
        started = websocket.receive_json()
        complete = websocket.receive_json()

    assert started["type"] == "prompt_started"
    assert complete["type"] == "prompt_complete"
    assert complete["generated_code"] == "print(summary(data))"
    assert complete["result"]["output"] == "ok"
    mock_pool.execute_prompt.assert_awaited_once_with("s1", "summary", rows, ExecuteOptions(timeout=None))


def test_execute_prompt_invalid_payload(client: TestClient) -> None:
    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "execute_prompt", "prompt": "summary"})
        error = websocket.receive_json()

    assert error["type"] == "prompt_error"
    assert error["code"] == "VAL_2001"


def test_cancel_execution(client: TestClient, mock_pool: MagicMock) -> None:
    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "cancel_execution", "request_id": "c1"})
        message = websocket.receive_json()

    assert message["type"] == "execution_cancelled"
    assert message["cancelled"] is True
    assert message["request_id"] == "c1"
    mock_pool.cancel_execution.assert_awaited_once_with("s1")


def test_session_stats(client: TestClient, mock_pool: MagicMock) -> None:
    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "get_session_stats"})
        message = websocket.receive_json()

    assert message["type"] == "session_stats"
    assert message["stats"]["active_sessions"] == 1
    assert message["stats"]["max_sessions"] == 5


def test_unknown_message_type(client: TestClient) -> None:
    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "format_disk", "request_id": "u1"})
        error = websocket.receive_json()

    assert error["type"] == "error"
    assert error["code"] == "WS_6003"
    assert error["error"] == "Unknown message type: format_disk"
    assert error["request_id"] == "u1"


def test_invalid_json(client: TestClient) -> None:
    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_text("{not json")
        error = websocket.receive_json()

    assert error["code"] == "WS_6002"


def test_non_object_message(client: TestClient) -> None:
    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json([1, 2, 3])
        error = websocket.receive_json()

    assert error["code"] == "WS_6002"


def test_disconnect_cancels_running_execution(client: TestClient, mock_pool: MagicMock) -> None:
    cancelled = []

    async def slow_execute(*args: object, **kwargs: object) -> ExecutionResult:
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise
        return _result()

    mock_pool.execute_code.side_effect = slow_execute

    with client.websocket_connect("/ws/sandbox?session_id=s1") as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "execute_code", "code": "print(1)"})
        assert websocket.receive_json()["type"] == "execution_started"

    assert cancelled == [True]
