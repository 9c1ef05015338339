from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from rsandbox.api.routes.v1.health import router


@pytest.fixture
def app(mock_pool: MagicMock) -> FastAPI:
    app = FastAPI()
    app.include_router(router, prefix="")  # router has paths starting with /health
    app.state.session_pool = mock_pool
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def test_liveness_check(client: TestClient) -> None:
    response = client.get("/health/live")
    assert response.status_code == 200
    assert response.json()["alive"] is True


def test_readiness_check_success(client: TestClient) -> None:
    response = client.get("/health/ready")

    assert response.status_code == 200
    assert response.json()["ready"] is True


def test_readiness_check_without_interpreter(client: TestClient, mock_pool: MagicMock) -> None:
    mock_pool.is_available.return_value = False

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.json() == {"ready": False, "error": "R interpreter is not available"}


def test_health_check_healthy(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"
    assert data["uptime_seconds"] >= 0
    assert data["interpreter"] == {
        "available": True,
        "interpreter": "r",
        "active_sessions": 1,
        "max_sessions": 5,
        "busy_sessions": 0,
    }


def test_health_check_degraded(client: TestClient, mock_pool: MagicMock) -> None:
    mock_pool.get_session_stats.return_value = {
        **mock_pool.get_session_stats.return_value,
        "available": False,
        "active_sessions": 0,
    }

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["interpreter"]["available"] is False
