"""Tests for the global exception handlers."""

from __future__ import annotations

import pytest

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel

from rsandbox.api.middleware.exception_handlers import (
    create_error_response,
    details_from_exception,
    register_exception_handlers,
)
from rsandbox.api.middleware.request_context import RequestContextMiddleware
from rsandbox.core.exceptions import ExecutionFailedError, SessionNotFoundError, UnsafeCodeError
from rsandbox.models.error_models import ErrorCode


class Body(BaseModel):
    code: str


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()
    register_exception_handlers(app)
    app.add_middleware(RequestContextMiddleware)

    @app.get("/missing-session")
    async def missing_session() -> None:
        raise SessionNotFoundError("abc")

    @app.get("/failed")
    async def failed() -> None:
        raise ExecutionFailedError("abc", "interpreter exited", stderr="Killed")

    @app.get("/teapot")
    async def teapot() -> None:
        raise HTTPException(status_code=409, detail="Conflict here")

    @app.post("/validate")
    async def validate(body: Body) -> dict[str, str]:
        return {"code": body.code}

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("secret internals")

    return TestClient(app, raise_server_exceptions=False)


def test_app_exception_uses_error_code_status(client: TestClient) -> None:
    response = client.get("/missing-session", headers={"X-Request-ID": "req_fixed"})

    assert response.status_code == 404
    error = response.json()["error"]
    assert error["code"] == "SES_4001"
    assert error["message"] == "Session 'abc' not found"
    assert error["request_id"] == "req_fixed"
    assert error["path"] == "/missing-session"
    assert error["details"] == [{"field": "session_id", "message": "abc"}]


def test_execution_failure_is_server_error(client: TestClient) -> None:
    response = client.get("/failed")

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "EXE_5002"
    assert {"field": "stderr", "message": "Killed"} in error["details"]


def test_http_exception(client: TestClient) -> None:
    response = client.get("/teapot")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "RES_3003"
    assert response.json()["error"]["message"] == "Conflict here"


def test_unknown_route_uses_standard_body(client: TestClient) -> None:
    response = client.get("/does-not-exist")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "RES_3001"


def test_request_validation(client: TestClient) -> None:
    response = client.post("/validate", json={})

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VAL_2001"
    assert error["details"][0]["field"] == "body.code"
    assert error["details"][0]["code"] == "missing"


def test_unexpected_exception_is_hidden(client: TestClient) -> None:
    response = client.get("/boom")

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "INT_9999"
    assert error["message"] == "An unexpected error occurred"
    assert "debug" not in error


def test_create_error_response_without_context() -> None:
    response = create_error_response(ErrorCode.RATE_LIMITED, "slow down", path="/x")

    body = response.to_dict()["error"]
    assert body["code"] == "RATE_7003"
    assert "request_id" not in body
    assert body["path"] == "/x"


def test_details_from_exception_skips_none() -> None:
    details = details_from_exception(UnsafeCodeError("bad", None))

    assert details is not None
    assert [detail.field for detail in details] == ["reason"]
