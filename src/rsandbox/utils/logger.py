"""
Logging setup for rsandbox using Python's standard logging with JSON
formatting for structured logs.

Log destinations:
- Console (stderr): Human-readable format for debugging
- logs/executions.jsonl: JSON format for execution history
- logs/errors.jsonl: JSON format for error tracking

Modules under rsandbox log through logging.getLogger(__name__) and reach these
handlers by propagation to the "rsandbox" logger.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from pathlib import Path
from typing import Any, cast

from pythonjsonlogger import json as jsonlogger

from rsandbox.api.middleware.request_context import get_request_context
from rsandbox.core.constants import (
    DEFAULT_LOG_DIR,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_BACKUP_COUNT_EXECUTIONS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    SESSION_ID_LENGTH,
    get_settings,
)

LOGGER_NAME = "rsandbox"

# PII Redaction patterns
REDACTION_PATTERNS = [
    (r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b", "[EMAIL]"),
    (r"\b(?:\d{4}[- ]?){3}\d{4}\b", "[CARD]"),
    (r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b", "[API_KEY]"),
    (r"\b(password|secret|token)\s*[:=]\s*\S+", "[REDACTED]"),
]


class ExecutionFilter(logging.Filter):
    """Allow INFO and above (not DEBUG) into the execution log"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO


class ErrorFilter(logging.Filter):
    """Filter to only allow ERROR and CRITICAL logs"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """
    Adds colors to log levels.
    Format: HH:MM:SS [LEVEL] logger_name - message
    """

    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        level_fmt = f"[{record.levelname}]"
        if color:
            level_fmt = f"{color}{level_fmt}{self.RESET}"

        record.asctime = self.formatTime(record, "%H:%M:%S")

        # uvicorn access args: (client_addr, method, full_path, http_version, status_code)
        if record.name == "uvicorn.access" and record.args and len(record.args) == 5:
            client_addr, method, full_path, http_version, status_code = record.args
            status_num = int(cast(Any, status_code))
            if status_num < 400:
                status_fmt = f"{self.GREEN}{status_code}{self.RESET}"
            elif status_num < 500:
                status_fmt = f"{self.YELLOW}{status_code}{self.RESET}"
            else:
                status_fmt = f"{self.RED}{status_code}{self.RESET}"
            message = f'{client_addr} - "\x1b[1m{method}\x1b[0m {full_path} HTTP/{http_version}" {status_fmt}'
            return f"{record.asctime} {level_fmt} {record.name} - {message}"

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"{record.asctime} {level_fmt} {record.name} - {message}"


def configure_uvicorn_logging() -> None:
    """Route uvicorn's access and error logs through the colored formatter."""
    formatter = ColoredConsoleFormatter()

    main_logger = logging.getLogger("uvicorn")
    main_logger.handlers = []
    main_logger.setLevel(logging.INFO)

    for name in ("uvicorn.access", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        uv_logger.addHandler(handler)
        uv_logger.propagate = False


def _log_dir() -> Path:
    return Path(os.getenv("LOG_DIR", str(DEFAULT_LOG_DIR)))


def setup_logging(name: str = LOGGER_NAME, debug: bool | None = None) -> logging.Logger:
    """
    Set up logging with console and rotating JSON file handlers.

    Args:
        name: Logger name
        debug: Enable debug logging (overrides DEBUG env var)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    logger.handlers = []

    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    # --- Console Handler (Human-readable) ---
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    logger.addHandler(console_handler)

    log_dir = _log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    # --- Execution Log Handler (JSON) ---
    exec_handler = logging.handlers.RotatingFileHandler(
        log_dir / "executions.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_EXECUTIONS,
        encoding="utf-8",
    )
    exec_handler.setLevel(logging.INFO)
    exec_handler.addFilter(ExecutionFilter())
    exec_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s %(session_id)s %(request_id)s",
            timestamp=True,
        )
    )
    logger.addHandler(exec_handler)

    # --- Error Log Handler (JSON) ---
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "errors.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_ERRORS,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.addFilter(ErrorFilter())
    error_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(error_handler)

    return logger


class SandboxLogger:
    """
    High-level logging interface for rsandbox.
    Wraps standard Python logging with request-context enrichment.
    """

    def __init__(self, name: str = LOGGER_NAME):
        self.logger = setup_logging(name)
        # Component id; replaced by the request's session id when one is known
        self.session_id = str(uuid.uuid4())[:SESSION_ID_LENGTH]

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Enrich log arguments with request context and session ID."""
        kwargs.setdefault("session_id", self.session_id)
        if ctx := get_request_context():
            kwargs.update(ctx.log_fields())
            if ctx.session_id:
                kwargs["session_id"] = ctx.session_id
        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._enrich_context(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._enrich_context(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._enrich_context(kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Error level logging with optional exception info"""
        self.logger.error(message, extra=self._enrich_context(kwargs), exc_info=exc_info)

    def _should_log_content(self) -> bool:
        """Check if content logging is enabled via settings."""
        try:
            return bool(get_settings().enable_content_logging)
        except ValueError:
            # Settings failed validation; keep content out of the logs
            return False

    def _redact_content(self, text: str) -> str:
        """Redact PII from text using defined patterns."""
        if not text:
            return text
        redacted = text
        for pattern, replacement in REDACTION_PATTERNS:
            redacted = re.sub(pattern, replacement, redacted)
        return redacted

    def _preview(self, text: str) -> str:
        preview = self._redact_content(text[:LOG_PREVIEW_LENGTH].replace("\n", " "))
        if len(text) > LOG_PREVIEW_LENGTH:
            preview += "..."
        return preview

    def log_execution(
        self,
        session_id: str,
        code: str,
        output: str | None = None,
        duration_ms: int | None = None,
        outcome: str = "completed",
        source: str = "code",
    ) -> None:
        """
        Log one execution. Code and output appear only as redacted previews,
        and only when content logging is enabled.
        """
        should_log_content = self._should_log_content()

        if should_log_content:
            code_preview = self._preview(code)
            output_preview = self._preview(output) if output is not None else "-"
        else:
            code_preview = "[HIDDEN]"
            output_preview = "[HIDDEN]"

        msg_parts = [f"Execution {outcome}: {code_preview} → {output_preview}"]
        if duration_ms is not None:
            msg_parts.append(f"[{duration_ms}ms]")

        extra_data: dict[str, Any] = {
            "execution": True,
            "outcome": outcome,
            "source": source,
            "chars_code": len(code),
            "content_logging": should_log_content,
        }
        if output is not None:
            extra_data["chars_output"] = len(output)
        if duration_ms is not None:
            extra_data["ms"] = duration_ms

        extra_data = self._enrich_context(extra_data)
        # The caller's session key is authoritative
        extra_data["session_id"] = session_id

        self.logger.info(" ".join(msg_parts), extra=extra_data)


# Global logger instance
logger = SandboxLogger()
