"""
Health check endpoints (v1).

Health, readiness, and liveness probes. The service stays up without an
interpreter; health then reports "degraded" and readiness fails.
"""

from __future__ import annotations

import time

from datetime import UTC, datetime

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from rsandbox.api.dependencies import AppSettings, Pool
from rsandbox.models.schemas.health import (
    HealthResponse,
    InterpreterHealth,
    LivenessResponse,
    ReadinessResponse,
)

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Interpreter availability and session pool statistics.",
)
async def health_check(request: Request, pool: Pool, settings: AppSettings) -> HealthResponse:
    stats = pool.get_session_stats()
    started = getattr(request.app.state, "startup_monotonic", time.monotonic())
    startup_time = getattr(request.app.state, "startup_time", datetime.now(UTC))

    return HealthResponse(
        status="healthy" if stats["available"] else "degraded",
        version=settings.app_version,
        uptime_seconds=round(time.monotonic() - started, 3),
        startup_time=startup_time.isoformat(),
        interpreter=InterpreterHealth(
            available=stats["available"],
            interpreter=stats["interpreter"],
            active_sessions=stats["active_sessions"],
            max_sessions=stats["max_sessions"],
            busy_sessions=stats["busy_sessions"],
        ),
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    responses={
        200: {
            "description": "Service ready",
            "content": {"application/json": {"example": {"ready": True}}},
        },
        503: {
            "description": "Interpreter unavailable",
            "content": {"application/json": {"example": {"ready": False, "error": "R interpreter is not available"}}},
        },
    },
)
async def readiness_check(pool: Pool) -> ReadinessResponse | JSONResponse:
    if pool.is_available():
        return ReadinessResponse(ready=True)
    return JSONResponse(
        status_code=503,
        content={"ready": False, "error": f"{pool.dialect.display_name} interpreter is not available"},
    )


@router.get("/health/live", response_model=LivenessResponse, summary="Liveness probe")
async def liveness_check() -> LivenessResponse:
    return LivenessResponse(alive=True)
