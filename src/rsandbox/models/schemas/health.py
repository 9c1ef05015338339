"""
Health check API schemas.

Response models for health, readiness, and liveness probes.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class InterpreterHealth(BaseModel):
    """Session pool and interpreter health."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "available": True,
                "interpreter": "r",
                "active_sessions": 2,
                "max_sessions": 5,
                "busy_sessions": 1,
            }
        }
    )

    available: bool = Field(..., description="Interpreter runtime was found at start-up")
    interpreter: str = Field(..., description="Interpreter dialect")
    active_sessions: int = Field(default=0, ge=0, description="Live sessions")
    max_sessions: int = Field(default=0, ge=0, description="Configured pool capacity")
    busy_sessions: int = Field(default=0, ge=0, description="Sessions with an execution in flight")


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "uptime_seconds": 3600.5,
                "startup_time": "2025-01-15T10:30:00+00:00",
                "interpreter": {
                    "available": True,
                    "interpreter": "r",
                    "active_sessions": 2,
                    "max_sessions": 5,
                    "busy_sessions": 1,
                },
            }
        }
    )

    status: Literal["healthy", "degraded"] = Field(
        ...,
        description="'degraded' when the interpreter is unavailable",
        json_schema_extra={"example": "healthy"},
    )
    version: str = Field(..., description="Application version")
    uptime_seconds: float = Field(..., description="Seconds since startup")
    startup_time: str = Field(..., description="Startup timestamp (ISO 8601)")
    interpreter: InterpreterHealth = Field(..., description="Interpreter and pool health")


class ReadinessResponse(BaseModel):
    """Readiness probe response."""

    model_config = ConfigDict(json_schema_extra={"example": {"ready": True}})

    ready: bool = Field(..., description="Service is ready to execute code")
    error: str | None = Field(default=None, description="Error message if not ready")


class LivenessResponse(BaseModel):
    """Liveness probe response."""

    model_config = ConfigDict(json_schema_extra={"example": {"alive": True}})

    alive: bool = Field(default=True, description="Process is running")
