"""
Execution API schemas.

Request and response models for the code and prompt execution endpoints,
the package and template catalogues, and session inspection.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rsandbox.core.constants import MAX_CODE_LENGTH, MAX_PROMPT_LENGTH, MAX_TIMEOUT_MS, MIN_TIMEOUT_MS
from rsandbox.core.session import ExecutionResult

# ============================================================================
# Requests
# ============================================================================


class ExecuteCodeRequest(BaseModel):
    """Code submission."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "print(mean(data$value))",
                "data": [{"value": 1}, {"value": 3}],
                "timeout": 30000,
            }
        }
    )

    code: str = Field(..., min_length=1, max_length=MAX_CODE_LENGTH, description="R source to execute")
    data: list[dict[str, Any]] | None = Field(
        default=None, description="Rows bound to `variable_name` as a data.frame before the code runs"
    )
    timeout: int | None = Field(
        default=None, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS, description="Execution timeout in milliseconds"
    )
    variable_name: str = Field(default="data", min_length=1, max_length=64, description="Name bound to the dataset")


class ExecutePromptRequest(BaseModel):
    """Natural-language analysis request."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "prompt": "Show me a histogram of the values",
                "data": [{"value": 1.5}, {"value": 2.5}, {"value": 4.0}],
            }
        }
    )

    prompt: str = Field(..., min_length=1, max_length=MAX_PROMPT_LENGTH, description="What to analyse")
    data: list[dict[str, Any]] = Field(..., description="Rows the generated code runs against")
    timeout: int | None = Field(
        default=None, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS, description="Execution timeout in milliseconds"
    )


def timeout_seconds(timeout_ms: int | None) -> float | None:
    """Gateway timeouts are milliseconds; the sandbox works in seconds."""
    return timeout_ms / 1000 if timeout_ms is not None else None


# ============================================================================
# Responses
# ============================================================================


class ExecutionResultModel(BaseModel):
    """Outcome of one execution."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "output": "[1] 2",
                "execution_time_ms": 41,
                "stderr": "",
                "images": [],
                "has_error": False,
            }
        }
    )

    success: bool = Field(..., description="The sandbox ran the code to completion")
    output: str = Field(..., description="Captured standard output; interpreter errors appear as 'ERROR:' lines")
    execution_time_ms: int = Field(..., ge=0, description="Wall-clock execution time")
    stderr: str = Field(default="", description="Standard error produced during the call")
    images: list[str] = Field(default_factory=list, description="Inline plots as data URIs")
    has_error: bool = Field(default=False, description="Output contains an 'ERROR:' line")

    @classmethod
    def from_result(cls, result: ExecutionResult) -> ExecutionResultModel:
        return cls(
            success=result.success,
            output=result.output,
            execution_time_ms=result.execution_time_ms,
            stderr=result.stderr,
            images=result.images,
            has_error=result.has_error,
        )


class ExecuteCodeResponse(BaseModel):
    success: bool = Field(default=True)
    session_id: str = Field(..., description="Session the code ran in")
    result: ExecutionResultModel


class ExecutePromptResponse(BaseModel):
    success: bool = Field(default=True)
    session_id: str = Field(..., description="Session the code ran in")
    code: str = Field(..., description="Code generated from the prompt")
    result: ExecutionResultModel


class PackageInfo(BaseModel):
    name: str
    description: str


class PackagesResponse(BaseModel):
    packages: list[PackageInfo]


class TemplateInfo(BaseModel):
    name: str
    description: str
    code: str


class TemplatesResponse(BaseModel):
    templates: dict[str, TemplateInfo]


class SessionStatsResponse(BaseModel):
    """Bookkeeping for one live session."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "session_id": "3f0c6a1e-8d4b-4a51-9e0f-2b7c1d9a6e55",
                "state": "ready",
                "busy": False,
                "alive": True,
                "interpreter": "r",
                "pid": 4242,
                "created_at": "2025-01-15T10:30:00+00:00",
                "idle_seconds": 12.5,
                "execution_count": 3,
            }
        }
    )

    session_id: str
    state: str
    busy: bool
    alive: bool
    interpreter: str
    pid: int | None = None
    created_at: str
    idle_seconds: float
    execution_count: int


class CancelSessionResponse(BaseModel):
    session_id: str
    cancelled: bool = Field(..., description="A session existed and was terminated")
