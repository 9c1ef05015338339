"""Tests for request context tracking."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from rsandbox.api.middleware.request_context import (
    RequestContext,
    RequestContextMiddleware,
    bind_session,
    clear_request_context,
    create_websocket_context,
    generate_request_id,
    get_client_ip,
    get_request_context,
    get_request_id,
    set_request_context,
)


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()

    @app.get("/echo")
    async def echo() -> dict[str, Any]:
        ctx = get_request_context()
        assert ctx is not None
        return {"request_id": ctx.request_id, "session_id": ctx.session_id, "client_ip": ctx.client_ip}

    @app.get("/api/v1/r/sessions/{session_id}")
    async def session_info(session_id: str) -> dict[str, Any]:
        ctx = get_request_context()
        assert ctx is not None
        return {"session_id": ctx.session_id}

    app.add_middleware(RequestContextMiddleware)
    return TestClient(app)


class TestRequestContextMiddleware:
    def test_generates_request_id(self, client: TestClient) -> None:
        response = client.get("/echo")

        request_id = response.headers["X-Request-ID"]
        assert request_id.startswith("req_")
        assert response.json()["request_id"] == request_id
        assert response.headers["X-Response-Time"].endswith("ms")

    def test_echoes_incoming_request_id(self, client: TestClient) -> None:
        response = client.get("/echo", headers={"X-Request-ID": "req_from_client"})

        assert response.headers["X-Request-ID"] == "req_from_client"
        assert response.json()["request_id"] == "req_from_client"

    def test_session_from_header(self, client: TestClient) -> None:
        response = client.get("/echo", headers={"X-Session-ID": "analysis-1"})

        assert response.json()["session_id"] == "analysis-1"

    def test_session_from_path(self, client: TestClient) -> None:
        response = client.get("/api/v1/r/sessions/from-path", headers={"X-Session-ID": "ignored"})

        assert response.json()["session_id"] == "from-path"

    def test_forwarded_for(self, client: TestClient) -> None:
        response = client.get("/echo", headers={"X-Forwarded-For": "10.0.0.9, 172.16.0.1"})

        assert response.json()["client_ip"] == "10.0.0.9"

    def test_context_cleared_after_request(self, client: TestClient) -> None:
        client.get("/echo")

        assert get_request_context() is None


class TestContextHelpers:
    def test_generate_request_id(self) -> None:
        request_id = generate_request_id()

        assert request_id.startswith("req_")
        assert len(request_id) == len("req_") + 16
        assert generate_request_id("client_").startswith("client_")

    def test_get_request_id_without_context(self) -> None:
        assert get_request_id() is None

    def test_bind_session(self) -> None:
        set_request_context(RequestContext(request_id="req_1"))

        bind_session("s1")

        ctx = get_request_context()
        assert ctx is not None
        assert ctx.session_id == "s1"
        clear_request_context()

    def test_bind_session_without_context_is_a_no_op(self) -> None:
        bind_session("s1")
        assert get_request_context() is None

    def test_clear_with_token_restores_outer_context(self) -> None:
        outer = RequestContext(request_id="req_outer")
        set_request_context(outer)
        token = set_request_context(RequestContext(request_id="req_inner"))

        clear_request_context(token)

        assert get_request_context() is outer
        clear_request_context()

    def test_log_fields_omit_empty_fields(self) -> None:
        ctx = RequestContext(request_id="req_1", path="/x", method="GET")

        fields = ctx.log_fields()

        assert fields["request_id"] == "req_1"
        assert "client_ip" not in fields
        assert "session_id" not in fields

    def test_get_client_ip_from_peer(self) -> None:
        peer = SimpleNamespace(headers={}, client=SimpleNamespace(host="127.0.0.1"))
        assert get_client_ip(peer) == "127.0.0.1"  # type: ignore[arg-type]
        assert get_client_ip(SimpleNamespace(headers={}, client=None)) is None  # type: ignore[arg-type]

    def test_create_websocket_context(self) -> None:
        connection = SimpleNamespace(
            headers={},
            client=SimpleNamespace(host="1.2.3.4"),
            url=SimpleNamespace(path="/ws/sandbox"),
        )

        ctx = create_websocket_context(connection, "s1")  # type: ignore[arg-type]

        assert ctx.request_id.startswith("ws_")
        assert ctx.method == "WEBSOCKET"
        assert ctx.path == "/ws/sandbox"
        assert ctx.client_ip == "1.2.3.4"
        assert ctx.session_id == "s1"
        assert get_request_id() == ctx.request_id
