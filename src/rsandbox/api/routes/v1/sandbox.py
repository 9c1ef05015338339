"""
Sandbox endpoints (v1).

Code and prompt execution against an optional dataset, the package and
template catalogues, and session inspection/termination. The session key
comes from the X-Session-ID header.
"""

from __future__ import annotations

from fastapi import APIRouter, Response

from rsandbox.api.dependencies import Pool, SessionId
from rsandbox.api.middleware.request_context import SESSION_HEADER, bind_session
from rsandbox.core.codegen import AVAILABLE_PACKAGES, TEMPLATES
from rsandbox.core.exceptions import SessionNotFoundError
from rsandbox.core.session_pool import ExecuteOptions
from rsandbox.models.schemas.execute import (
    CancelSessionResponse,
    ExecuteCodeRequest,
    ExecuteCodeResponse,
    ExecutePromptRequest,
    ExecutePromptResponse,
    ExecutionResultModel,
    PackageInfo,
    PackagesResponse,
    SessionStatsResponse,
    TemplateInfo,
    TemplatesResponse,
    timeout_seconds,
)
from rsandbox.utils.logger import logger

router = APIRouter()

_ERROR_RESPONSES: dict[int | str, dict[str, str]] = {
    409: {"description": "Session busy"},
    422: {"description": "Invalid request or unsafe code"},
    429: {"description": "Rate limited"},
    503: {"description": "Interpreter unavailable or pool saturated"},
    504: {"description": "Execution timed out"},
}


@router.post(
    "/execute",
    response_model=ExecuteCodeResponse,
    summary="Execute code",
    description="Validate and run code in the caller's session, optionally against a dataset.",
    responses=_ERROR_RESPONSES,
)
async def execute_code(
    body: ExecuteCodeRequest,
    pool: Pool,
    session_id: SessionId,
    response: Response,
) -> ExecuteCodeResponse:
    bind_session(session_id)
    response.headers[SESSION_HEADER] = session_id

    result = await pool.execute_code(
        session_id,
        body.code,
        ExecuteOptions(
            timeout=timeout_seconds(body.timeout),
            data=body.data,
            variable_name=body.variable_name,
        ),
    )
    logger.log_execution(session_id, body.code, result.output, result.execution_time_ms)

    return ExecuteCodeResponse(session_id=session_id, result=ExecutionResultModel.from_result(result))


@router.post(
    "/prompt",
    response_model=ExecutePromptResponse,
    summary="Execute a prompt",
    description="Generate code from a natural-language prompt and run it against the dataset.",
    responses=_ERROR_RESPONSES,
)
async def execute_prompt(
    body: ExecutePromptRequest,
    pool: Pool,
    session_id: SessionId,
    response: Response,
) -> ExecutePromptResponse:
    bind_session(session_id)
    response.headers[SESSION_HEADER] = session_id

    execution = await pool.execute_prompt(
        session_id,
        body.prompt,
        body.data,
        ExecuteOptions(timeout=timeout_seconds(body.timeout)),
    )
    logger.log_execution(
        session_id,
        execution.code,
        execution.result.output,
        execution.result.execution_time_ms,
        source="prompt",
    )

    return ExecutePromptResponse(
        session_id=session_id,
        code=execution.code,
        result=ExecutionResultModel.from_result(execution.result),
    )


@router.get("/packages", response_model=PackagesResponse, summary="Available packages")
async def list_packages() -> PackagesResponse:
    return PackagesResponse(packages=[PackageInfo(**package) for package in AVAILABLE_PACKAGES])


@router.get("/templates", response_model=TemplatesResponse, summary="Code templates")
async def list_templates() -> TemplatesResponse:
    return TemplatesResponse(templates={key: TemplateInfo(**template) for key, template in TEMPLATES.items()})


@router.get(
    "/sessions/{session_id}",
    response_model=SessionStatsResponse,
    summary="Session details",
    responses={404: {"description": "Session not found"}},
)
async def get_session(session_id: str, pool: Pool) -> SessionStatsResponse:
    session = pool.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    return SessionStatsResponse(**session.get_stats())


@router.delete(
    "/sessions/{session_id}",
    response_model=CancelSessionResponse,
    summary="Terminate a session",
    description="Terminates the session's interpreter; an execution in flight fails as cancelled.",
    responses={404: {"description": "Session not found"}},
)
async def cancel_session(session_id: str, pool: Pool) -> CancelSessionResponse:
    if not await pool.cancel_execution(session_id):
        raise SessionNotFoundError(session_id)
    return CancelSessionResponse(session_id=session_id, cancelled=True)
