"""
Request context for the rsandbox API.

Every HTTP request and every WebSocket connection gets a RequestContext held
in a ContextVar. The logger and the error handlers read it, so records and
error bodies carry the request id and the sandbox session key without either
being passed down explicitly.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import HTTPConnection, Request
from starlette.responses import Response

_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)

REQUEST_ID_PREFIX = "req_"
WEBSOCKET_ID_PREFIX = "ws_"

#: Header carrying the sandbox session key
SESSION_HEADER = "X-Session-ID"
REQUEST_ID_HEADER = "X-Request-ID"


@dataclass(slots=True)
class RequestContext:
    """Who is calling, which sandbox session they address, and since when."""

    request_id: str
    path: str = ""
    method: str = ""
    client_ip: str | None = None
    session_id: str | None = None
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def log_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "request_id": self.request_id,
            "path": self.path,
            "method": self.method,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        if self.client_ip:
            fields["client_ip"] = self.client_ip
        if self.session_id:
            fields["session_id"] = self.session_id
        return fields


def generate_request_id(prefix: str = REQUEST_ID_PREFIX) -> str:
    """Prefix plus 16 hex characters, e.g. req_a1b2c3d4e5f60718."""
    return f"{prefix}{secrets.token_hex(8)}"


def get_request_context() -> RequestContext | None:
    return _request_context.get()


def get_request_id() -> str | None:
    ctx = _request_context.get()
    return ctx.request_id if ctx else None


def set_request_context(context: RequestContext) -> Token[RequestContext | None]:
    return _request_context.set(context)


def clear_request_context(token: Token[RequestContext | None] | None = None) -> None:
    """Restore the previous context when given its token, else drop the current one."""
    if token is not None:
        _request_context.reset(token)
    else:
        _request_context.set(None)


def bind_session(session_id: str) -> None:
    """Attach the sandbox session key once a route has resolved it."""
    ctx = _request_context.get()
    if ctx is not None:
        ctx.session_id = session_id


def get_client_ip(connection: HTTPConnection) -> str | None:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded_for = connection.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return connection.client.host if connection.client else None


def session_from_request(request: Request) -> str | None:
    """Session key from a /sessions/{id} path segment, else the session header."""
    parts = request.url.path.split("/")
    if "sessions" in parts:
        idx = parts.index("sessions")
        if idx + 1 < len(parts) and parts[idx + 1]:
            return parts[idx + 1]
    return request.headers.get(SESSION_HEADER)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Opens a context per request and echoes X-Request-ID with the response time."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or generate_request_id(),
            path=request.url.path,
            method=request.method,
            client_ip=get_client_ip(request),
            session_id=session_from_request(request),
        )
        token = set_request_context(context)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = context.request_id
            response.headers["X-Response-Time"] = f"{context.elapsed_ms:.2f}ms"
            return response
        finally:
            clear_request_context(token)


def create_websocket_context(connection: HTTPConnection, session_id: str) -> RequestContext:
    """Context for one WebSocket connection; messages on it share the id."""
    context = RequestContext(
        request_id=generate_request_id(WEBSOCKET_ID_PREFIX),
        path=connection.url.path,
        method="WEBSOCKET",
        client_ip=get_client_ip(connection),
        session_id=session_id,
    )
    set_request_context(context)
    return context


__all__ = [
    "REQUEST_ID_HEADER",
    "REQUEST_ID_PREFIX",
    "SESSION_HEADER",
    "WEBSOCKET_ID_PREFIX",
    "RequestContext",
    "RequestContextMiddleware",
    "bind_session",
    "clear_request_context",
    "create_websocket_context",
    "generate_request_id",
    "get_client_ip",
    "get_request_context",
    "get_request_id",
    "session_from_request",
    "set_request_context",
]
