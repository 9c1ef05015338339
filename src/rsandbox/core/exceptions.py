"""
Typed failures raised by the sandbox core.

Every failure path in the validator, sessions and pool surfaces as one of
these; the gateway maps the attached ErrorCode to an HTTP status or a
WebSocket error message.
"""

from __future__ import annotations

from typing import Any

from rsandbox.models.error_models import ErrorCode


class AppException(Exception):
    """Base application exception with error code support.

    Example:
        raise AppException(
            code=ErrorCode.SESSION_NOT_FOUND,
            message="Session not found",
            details={"session_id": session_id}
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)


class UnsafeCodeError(AppException):
    """Validator rejected the code; no subprocess was touched."""

    def __init__(self, reason: str, category: str | None = None):
        super().__init__(
            code=ErrorCode.UNSAFE_CODE,
            message=f"Unsafe R code: {reason}",
            details={"reason": reason, "category": category},
        )
        self.reason = reason
        self.category = category


class SessionNotStartedError(AppException):
    """Execute was called on a session without a live process."""

    def __init__(self, session_id: str, message: str | None = None, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.SESSION_START_FAILED,
            message=message or f"Session '{session_id}' is not started",
            details={"session_id": session_id},
            cause=cause,
        )
        self.session_id = session_id


class SessionStartError(SessionNotStartedError):
    """The interpreter could not be spawned or never became ready."""

    def __init__(self, session_id: str, reason: str, cause: Exception | None = None):
        super().__init__(
            session_id,
            message=f"Failed to start session '{session_id}': {reason}",
            cause=cause,
        )


class SessionBusyError(AppException):
    """Another execution is already in flight on this session."""

    def __init__(self, session_id: str):
        super().__init__(
            code=ErrorCode.SESSION_BUSY,
            message=f"Session '{session_id}' is busy",
            details={"session_id": session_id},
        )
        self.session_id = session_id


class SessionNotFoundError(AppException):
    def __init__(self, session_id: str):
        super().__init__(
            code=ErrorCode.SESSION_NOT_FOUND,
            message=f"Session '{session_id}' not found",
            details={"session_id": session_id},
        )
        self.session_id = session_id


class ExecutionTimeoutError(AppException):
    """Wall-clock budget exceeded; the session stays registered."""

    def __init__(self, session_id: str, timeout: float):
        super().__init__(
            code=ErrorCode.EXECUTION_TIMEOUT,
            message=f"Execution timeout after {int(timeout * 1000)}ms",
            details={"session_id": session_id, "timeout_ms": int(timeout * 1000)},
        )
        self.session_id = session_id
        self.timeout = timeout


class ExecutionFailedError(AppException):
    """The sandbox itself failed to run the code (e.g. the interpreter died)."""

    def __init__(self, session_id: str, reason: str, stderr: str = "", cause: Exception | None = None):
        details: dict[str, Any] = {"session_id": session_id}
        if stderr:
            details["stderr"] = stderr
        super().__init__(
            code=ErrorCode.EXECUTION_FAILED,
            message=f"Execution failed in session '{session_id}': {reason}",
            details=details,
            cause=cause,
        )
        self.session_id = session_id
        self.stderr = stderr


class ExecutionCancelledError(AppException):
    """The session was terminated while an execution was waiting for output."""

    def __init__(self, session_id: str):
        super().__init__(
            code=ErrorCode.EXECUTION_CANCELLED,
            message=f"Execution in session '{session_id}' was cancelled",
            details={"session_id": session_id},
        )
        self.session_id = session_id


class InterpreterUnavailableError(AppException):
    """The interpreter runtime was not found when the pool initialized."""

    def __init__(self, interpreter: str = "R"):
        super().__init__(
            code=ErrorCode.INTERPRETER_UNAVAILABLE,
            message=f"{interpreter} interpreter is not available",
            details={"interpreter": interpreter},
        )


class PoolSaturatedError(AppException):
    """Pool is at capacity and every session is busy."""

    def __init__(self, max_sessions: int):
        super().__init__(
            code=ErrorCode.POOL_SATURATED,
            message=f"All {max_sessions} sessions are busy; retry shortly",
            details={"max_sessions": max_sessions},
        )
        self.max_sessions = max_sessions


class VisualizationConfigError(AppException):
    """A chart was requested with missing or unknown columns."""

    def __init__(self, reason: str, field: str | None = None):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=f"Invalid visualization config: {reason}",
            details={"field": field} if field else None,
        )
        self.reason = reason
        self.field = field


__all__ = [
    "AppException",
    "ExecutionCancelledError",
    "ExecutionFailedError",
    "ExecutionTimeoutError",
    "InterpreterUnavailableError",
    "PoolSaturatedError",
    "SessionBusyError",
    "SessionNotFoundError",
    "SessionNotStartedError",
    "SessionStartError",
    "UnsafeCodeError",
    "VisualizationConfigError",
]
