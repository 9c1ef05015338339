"""
Sandbox WebSocket endpoint.

One connection maps to one sandbox session. Executions run as background
tasks so cancel/ping/stats messages are handled while code is running.

Client -> server message types:
    execute_code       {code, data?, timeout?, variable_name?, request_id?}
    execute_prompt     {prompt, data, timeout?, request_id?}
    cancel_execution   {request_id?}
    get_session_stats  {request_id?}
    ping               {request_id?}

Server -> client replies echo the client's request_id.
"""

from __future__ import annotations

import asyncio
import contextlib
import json

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from rsandbox.api.middleware.request_context import create_websocket_context, generate_request_id
from rsandbox.api.websocket.errors import (
    WSCloseCode,
    close_with_error,
    error_from_exception,
    send_ws_error,
    send_ws_message,
)
from rsandbox.core.session_pool import ExecuteOptions, SessionPool
from rsandbox.models.error_models import ErrorCode
from rsandbox.models.schemas.execute import (
    ExecuteCodeRequest,
    ExecutePromptRequest,
    ExecutionResultModel,
    timeout_seconds,
)
from rsandbox.utils.logger import logger
from rsandbox.utils.metrics import ws_messages_total

router = APIRouter()


def _now() -> str:
    return datetime.now(UTC).isoformat()


class SandboxConnection:
    """Message dispatch for one sandbox WebSocket."""

    def __init__(self, websocket: WebSocket, pool: SessionPool, session_id: str) -> None:
        self.websocket = websocket
        self.pool = pool
        self.session_id = session_id
        self.client_id = generate_request_id("client_")
        self._tasks: set[asyncio.Task[None]] = set()
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "execute_code": self._on_execute_code,
            "execute_prompt": self._on_execute_prompt,
            "cancel_execution": self._on_cancel_execution,
            "get_session_stats": self._on_session_stats,
            "ping": self._on_ping,
        }

    async def send(self, message: dict[str, Any]) -> None:
        await send_ws_message(self.websocket, message)

    async def send_connected(self) -> None:
        await self.send(
            {
                "type": "connected",
                "client_id": self.client_id,
                "session_id": self.session_id,
                "timestamp": _now(),
            }
        )

    async def dispatch(self, data: Any) -> None:
        """Route one inbound message to its handler."""
        if not isinstance(data, dict):
            await send_ws_error(
                self.websocket,
                code=ErrorCode.WS_MESSAGE_INVALID,
                message="Messages must be JSON objects",
                session_id=self.session_id,
            )
            return

        msg_type = data.get("type")
        handler = self._handlers.get(msg_type) if isinstance(msg_type, str) else None
        if handler is None:
            await send_ws_error(
                self.websocket,
                code=ErrorCode.WS_UNKNOWN_TYPE,
                message=f"Unknown message type: {msg_type}",
                request_id=data.get("request_id"),
                session_id=self.session_id,
            )
            return
        await handler(data)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        """Cancel executions still in flight; the session itself is left to the reaper."""
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

    # ============================================
    # Handlers
    # ============================================

    async def _on_execute_code(self, data: dict[str, Any]) -> None:
        request_id = data.get("request_id")
        try:
            body = ExecuteCodeRequest.model_validate(data)
        except ValidationError as e:
            error = error_from_exception(e, "execution_error", request_id, self.session_id)
            await self.send(error.to_dict())
            return

        await self.send({"type": "execution_started", "request_id": request_id, "timestamp": _now()})
        self._spawn(self._run_code(body, request_id))

    async def _run_code(self, body: ExecuteCodeRequest, request_id: str | None) -> None:
        try:
            result = await self.pool.execute_code(
                self.session_id,
                body.code,
                ExecuteOptions(
                    timeout=timeout_seconds(body.timeout),
                    data=body.data,
                    variable_name=body.variable_name,
                ),
            )
        except Exception as e:
            logger.warning(f"WebSocket execution failed for session {self.session_id}: {e}")
            await self.send(error_from_exception(e, "execution_error", request_id, self.session_id).to_dict())
            return

        logger.log_execution(self.session_id, body.code, result.output, result.execution_time_ms)
        await self.send(
            {
                "type": "execution_complete",
                "request_id": request_id,
                "session_id": self.session_id,
                "result": ExecutionResultModel.from_result(result).model_dump(),
                "timestamp": _now(),
            }
        )

    async def _on_execute_prompt(self, data: dict[str, Any]) -> None:
        request_id = data.get("request_id")
        try:
            body = ExecutePromptRequest.model_validate(data)
        except ValidationError as e:
            await self.send(error_from_exception(e, "prompt_error", request_id, self.session_id).to_dict())
            return

        await self.send({"type": "prompt_started", "request_id": request_id, "timestamp": _now()})
        self._spawn(self._run_prompt(body, request_id))

    async def _run_prompt(self, body: ExecutePromptRequest, request_id: str | None) -> None:
        try:
            execution = await self.pool.execute_prompt(
                self.session_id,
                body.prompt,
                body.data,
                ExecuteOptions(timeout=timeout_seconds(body.timeout)),
            )
        except Exception as e:
            logger.warning(f"WebSocket prompt failed for session {self.session_id}: {e}")
            await self.send(error_from_exception(e, "prompt_error", request_id, self.session_id).to_dict())
            return

        logger.log_execution(
            self.session_id,
            execution.code,
            execution.result.output,
            execution.result.execution_time_ms,
            source="prompt",
        )
        await self.send(
            {
                "type": "prompt_complete",
                "request_id": request_id,
                "session_id": self.session_id,
                "generated_code": execution.code,
                "result": ExecutionResultModel.from_result(execution.result).model_dump(),
                "timestamp": _now(),
            }
        )

    async def _on_cancel_execution(self, data: dict[str, Any]) -> None:
        cancelled = await self.pool.cancel_execution(self.session_id)
        await self.send(
            {
                "type": "execution_cancelled",
                "request_id": data.get("request_id"),
                "session_id": self.session_id,
                "cancelled": cancelled,
                "timestamp": _now(),
            }
        )

    async def _on_session_stats(self, data: dict[str, Any]) -> None:
        await self.send(
            {
                "type": "session_stats",
                "request_id": data.get("request_id"),
                "stats": self.pool.get_session_stats(),
                "timestamp": _now(),
            }
        )

    async def _on_ping(self, data: dict[str, Any]) -> None:
        await self.send({"type": "pong", "request_id": data.get("request_id"), "timestamp": _now()})


@router.websocket("/sandbox")
async def sandbox_websocket(
    websocket: WebSocket,
    session_id: str | None = Query(default=None, max_length=128),
) -> None:
    """WebSocket endpoint for interactive sandbox sessions."""
    session_id = session_id or str(uuid4())
    create_websocket_context(websocket, session_id)

    pool: SessionPool | None = getattr(websocket.app.state, "session_pool", None)
    await websocket.accept()
    if pool is None:
        await close_with_error(
            websocket,
            code=ErrorCode.INTERPRETER_UNAVAILABLE,
            message="Sandbox is not ready",
            close_code=WSCloseCode.SERVICE_UNAVAILABLE,
        )
        return
    logger.info(f"WebSocket connected for session {session_id}")

    connection = SandboxConnection(websocket, pool, session_id)
    await connection.send_connected()

    try:
        try:
            while True:
                raw = await websocket.receive_text()
                ws_messages_total.labels(direction="inbound").inc()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    await send_ws_error(
                        websocket,
                        code=ErrorCode.WS_MESSAGE_INVALID,
                        message="Invalid JSON message",
                        session_id=session_id,
                    )
                    continue
                await connection.dispatch(data)
        finally:
            await connection.close()
    except WebSocketDisconnect:
        pass  # Normal client disconnect
    except RuntimeError as e:
        # Handle "WebSocket is not connected" errors gracefully
        if "not connected" not in str(e).lower():
            raise
    finally:
        logger.info(f"WebSocket disconnected for session {session_id}")


__all__ = ["SandboxConnection", "router"]
