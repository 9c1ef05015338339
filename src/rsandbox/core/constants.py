"""
Constants and configuration for rsandbox.
Centralizes all magic numbers and configuration values.
Includes Pydantic validation for environment variables.
"""

from __future__ import annotations

import os
import threading

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import (
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
)

# ============================================================================
# Project Paths
# ============================================================================

#: Project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

#: Default directory for rotating log files (override with LOG_DIR)
DEFAULT_LOG_DIR = PROJECT_ROOT / "logs"

# ============================================================================
# Sandbox Defaults
# ============================================================================

#: Maximum number of live interpreter sessions
DEFAULT_MAX_SESSIONS = 5

#: Idle seconds after which the reaper removes a session
DEFAULT_SESSION_TIMEOUT = 300.0

#: Seconds between reaper sweeps
DEFAULT_REAP_INTERVAL = 60.0

#: Default per-execution wall-clock budget (seconds)
DEFAULT_EXECUTION_TIMEOUT = 30.0

#: How long start() waits for the subprocess to come up (seconds)
DEFAULT_START_TIMEOUT = 5.0

#: Poll interval while waiting for the subprocess handle (seconds)
START_POLL_INTERVAL = 0.1

#: Grace period between SIGTERM and SIGKILL on terminate (seconds)
TERMINATE_GRACE_PERIOD = 2.0

#: Timeout for the interpreter version check at pool start-up (seconds)
AVAILABILITY_CHECK_TIMEOUT = 10.0

#: Interpreter memory ceiling passed through the environment
DEFAULT_MAX_MEMORY = "512M"

#: Maximum accepted code length (characters)
MAX_CODE_LENGTH = 10_000

#: Maximum accepted prompt length (characters)
MAX_PROMPT_LENGTH = 500

#: Client-supplied timeout bounds (milliseconds, as accepted by the gateway)
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 300_000

#: Stderr kept per session for diagnostics (characters)
MAX_STDERR_BUFFER = 64 * 1024

#: Length of execution token (hex chars) minted per call
EXECUTION_TOKEN_BYTES = 16

#: Log preview length for code/output when content logging is enabled
LOG_PREVIEW_LENGTH = 120

#: Rotating log sizes
LOG_MAX_SIZE = 10 * 1024 * 1024
LOG_BACKUP_COUNT_EXECUTIONS = 5
LOG_BACKUP_COUNT_ERRORS = 3

#: Length of the short component id used by the logger facade
SESSION_ID_LENGTH = 8

# ============================================================================
# Environment Configuration with Pydantic Validation
# ============================================================================

#: Valid environment names for configuration loading
Environment = Literal["development", "production", "test"]

#: Supported interpreter dialects
Dialect = Literal["r", "python"]

#: Directory searched for .env files
_ENV_DIR = PROJECT_ROOT


def _get_env_files() -> list[Path]:
    """Determine which .env files to load based on APP_ENV.

    Load order (later files override earlier - pydantic-settings last-wins):
    1. .env (base defaults) - lowest priority
    2. .env.{environment} (environment-specific overrides)
    3. .env.local (local developer overrides, gitignored) - highest priority

    Returns:
        List of Path objects for env files that exist.
    """
    env_name = os.getenv("APP_ENV", "development").lower()
    if env_name not in ("development", "production", "test"):
        env_name = "development"

    candidates = [
        _ENV_DIR / ".env",
        _ENV_DIR / f".env.{env_name}",
        _ENV_DIR / ".env.local",
    ]
    return [p for p in candidates if p.exists()]


class Settings(BaseSettings):
    """Environment settings with validation and environment-specific file support.

    Configuration priority (highest to lowest):
    1. Values passed to Settings() constructor
    2. Environment variables
    3. .env.local > .env.{APP_ENV} > .env (dotenv files, last wins)
    """

    # Environment identification
    app_env: Environment = Field(default="development", description="Application environment")

    # Debug and logging
    debug: bool = Field(default=False, description="Enable debug logging")
    enable_content_logging: bool = Field(
        default=False,
        description="Log (redacted) code and output previews alongside execution metadata",
    )

    # API server
    api_port: int = Field(default=3001, description="FastAPI port")
    api_host: str = Field(default="0.0.0.0", description="FastAPI host")
    app_version: str = Field(default="1.0.0", description="Application version")
    cors_origins: str = Field(
        default="http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Interpreter
    interpreter_dialect: Dialect = Field(default="r", description="Interpreter dialect: 'r' or 'python'")
    interpreter_path: str | None = Field(
        default=None,
        description="Interpreter executable (resolved on PATH when not absolute; dialect default when unset)",
    )
    interpreter_max_memory: str = Field(default=DEFAULT_MAX_MEMORY, description="Interpreter memory ceiling")

    # Session pool
    max_sessions: int = Field(default=DEFAULT_MAX_SESSIONS, ge=1, description="Maximum live sessions")
    session_timeout: float = Field(
        default=DEFAULT_SESSION_TIMEOUT, gt=0, description="Reap sessions idle longer than this (seconds)"
    )
    reap_interval: float = Field(default=DEFAULT_REAP_INTERVAL, gt=0, description="Reaper sweep interval (seconds)")
    execution_timeout: float = Field(
        default=DEFAULT_EXECUTION_TIMEOUT, gt=0, description="Default execution timeout (seconds)"
    )
    session_start_timeout: float = Field(
        default=DEFAULT_START_TIMEOUT, gt=0, description="Session start-up timeout (seconds)"
    )

    # Validation
    max_code_length: int = Field(default=MAX_CODE_LENGTH, ge=1, description="Maximum code length (characters)")

    # Rate limiting (requests per minute per client)
    execute_rate_limit: int = Field(default=10, ge=1, description="Execution requests per minute per client")
    api_rate_limit: int = Field(default=100, ge=1, description="Other API requests per minute per client")
    rate_limit_enabled: bool = Field(default=True, description="Enable the rate limiting middleware")

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Constructor values beat environment variables, which beat dotenv files."""
        dotenv_source = DotEnvSettingsSource(
            settings_cls,
            env_file=_get_env_files(),
            env_file_encoding="utf-8",
        )
        return (init_settings, env_settings, dotenv_source)

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | None) -> str:
        """Validate and normalize APP_ENV value."""
        if v is None:
            return "development"
        normalized = str(v).lower()
        if normalized not in ("development", "production", "test"):
            raise ValueError(f"app_env must be 'development', 'production', or 'test', got '{v}'")
        return normalized

    @field_validator("interpreter_dialect", mode="before")
    @classmethod
    def normalize_dialect(cls, v: str) -> str:
        return str(v).lower()

    @field_validator("interpreter_max_memory")
    @classmethod
    def validate_max_memory(cls, v: str) -> str:
        """Memory ceiling must look like 512M / 2G / 1048576."""
        value = v.strip().upper()
        digits = value[:-1] if value[-1:] in ("K", "M", "G") else value
        if not digits.isdigit():
            raise ValueError(f"interpreter_max_memory must be a size such as '512M', got '{v}'")
        return value

    @model_validator(mode="after")
    def validate_pool_timing(self) -> Settings:
        """The reaper must sweep at least once per idle window."""
        if self.reap_interval > self.session_timeout:
            raise ValueError(
                "Configuration Error: reap_interval must not exceed session_timeout.\n"
                "Set REAP_INTERVAL lower or SESSION_TIMEOUT higher."
            )
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


# ============================================================================
# Settings Management (Thread-safe singleton)
# ============================================================================


class _SettingsManager:
    """Thread-safe settings cache.

    Uses a class to avoid global statement warnings from linters.
    """

    __slots__ = ("_instance", "_lock")

    def __init__(self) -> None:
        self._instance: Settings | None = None
        self._lock = threading.Lock()

    def get(self) -> Settings:
        if self._instance is not None:
            return self._instance

        with self._lock:
            # Double-check after acquiring lock
            if self._instance is None:
                self._instance = Settings()
            return self._instance

    def clear(self) -> None:
        with self._lock:
            self._instance = None


# Module-level singleton manager
_settings_manager = _SettingsManager()


def get_settings() -> Settings:
    """Get the validated, cached Settings instance.

    Raises:
        ValueError: If configuration is missing or invalid.
    """
    return _settings_manager.get()


def clear_settings_cache() -> None:
    """Clear cached settings instance.

    Primarily useful for testing to ensure fresh settings on each test.
    """
    _settings_manager.clear()
