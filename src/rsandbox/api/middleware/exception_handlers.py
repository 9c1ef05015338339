"""
Global exception handlers for the rsandbox API.

Every failure leaves the API as the standard {"error": {...}} body. Sandbox
exceptions carry their ErrorCode, which decides the HTTP status.
"""

from __future__ import annotations

import traceback

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from rsandbox.api.middleware.request_context import get_request_context, get_request_id
from rsandbox.core.constants import get_settings
from rsandbox.core.exceptions import AppException
from rsandbox.models.error_models import (
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    get_status_code,
)
from rsandbox.utils.logger import logger

# Map HTTP status codes raised directly by FastAPI/Starlette to error codes
STATUS_TO_CODE: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    405: ErrorCode.VALIDATION_INVALID_FORMAT,
    409: ErrorCode.RESOURCE_CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMITED,
    500: ErrorCode.INTERNAL_ERROR,
}


def create_error_response(
    code: ErrorCode,
    message: str,
    path: str | None = None,
    details: list[ErrorDetail] | None = None,
    debug_info: dict[str, Any] | None = None,
) -> ErrorResponse:
    """Create a standardized error response.

    Args:
        code: Application error code
        message: Human-readable error message
        path: Request path, when known
        details: List of detailed error information
        debug_info: Debug information (only included in debug mode)
    """
    return ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=path,
        details=details,
        debug=debug_info,
    )


def _log_error(error: Exception, code: ErrorCode, status_code: int) -> None:
    """Log error with appropriate level and context."""
    ctx = get_request_context()
    log_context = ctx.log_fields() if ctx else {}
    log_context["error_code"] = code.value
    log_context["status_code"] = status_code

    if status_code >= 500:
        logger.error(f"Server error: {code.value} - {error}", exc_info=True, **log_context)
    elif status_code >= 400:
        logger.warning(f"Client error: {code.value} - {error}", **log_context)


def details_from_exception(exc: AppException) -> list[ErrorDetail] | None:
    if not exc.details:
        return None
    return [ErrorDetail(field=key, message=str(value)) for key, value in exc.details.items() if value is not None]


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle sandbox and application exceptions."""
    status_code = get_status_code(exc.code)

    settings = get_settings()
    debug_info = None
    if settings.debug:
        debug_info = {
            "exception_type": type(exc).__name__,
            "cause": str(exc.cause) if exc.cause else None,
        }

    error_response = create_error_response(
        code=exc.code,
        message=exc.message,
        path=request.url.path,
        details=details_from_exception(exc),
        debug_info=debug_info,
    )

    _log_error(exc, exc.code, status_code)

    return JSONResponse(
        status_code=status_code,
        content=error_response.to_dict(include_debug=settings.debug),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException (FastAPI's and Starlette's routing errors) with consistent formatting."""
    code = STATUS_TO_CODE.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    error_response = create_error_response(code=code, message=message, path=request.url.path)

    _log_error(exc, code, exc.status_code)

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response.to_dict(),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors from request parsing."""
    details = [
        ErrorDetail(
            field=".".join(str(loc) for loc in error["loc"]),
            message=error["msg"],
            code=error["type"],
        )
        for error in exc.errors()
    ]

    error_response = create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        path=request.url.path,
        details=details,
    )

    _log_error(exc, ErrorCode.VALIDATION_ERROR, 422)

    return JSONResponse(status_code=422, content=error_response.to_dict())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with graceful degradation."""
    settings = get_settings()

    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
        request_id=get_request_id(),
        path=request.url.path,
    )

    debug_info = None
    if settings.debug:
        debug_info = {
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "traceback": traceback.format_exc(),
        }

    error_response = create_error_response(
        code=ErrorCode.INTERNAL_UNEXPECTED,
        message="An unexpected error occurred",
        path=request.url.path,
        debug_info=debug_info,
    )

    return JSONResponse(
        status_code=500,
        content=error_response.to_dict(include_debug=settings.debug),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""
    # Covariant exception types in handlers are safe at runtime
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "app_exception_handler",
    "create_error_response",
    "details_from_exception",
    "generic_exception_handler",
    "http_exception_handler",
    "register_exception_handlers",
    "validation_exception_handler",
]
