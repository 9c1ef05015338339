"""Shared test fixtures for the rsandbox test suite.

This module provides common fixtures used across all test modules,
including settings isolation and sample datasets.
"""

from __future__ import annotations

import os
import tempfile

from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# ============================================================================
# EARLY INITIALIZATION: Runs before test collection
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Point logs at a scratch directory before any rsandbox module is imported.

    The global logger opens its rotating file handlers at import time, which
    happens during collection.
    """
    os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="rsandbox-test-logs-"))
    os.environ.setdefault("APP_ENV", "test")


# ============================================================================
# Test Isolation: Settings and singletons
# ============================================================================


@pytest.fixture(autouse=True)
def reset_settings_singleton() -> Generator[None, None, None]:
    """Fresh settings for every test so monkeypatched env vars take effect."""
    from rsandbox.core.constants import clear_settings_cache

    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_rate_limiter_singleton() -> Generator[None, None, None]:
    """Rate limiter state never leaks between tests."""
    from rsandbox.api.middleware.rate_limiter import reset_rate_limiter

    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest.fixture(autouse=True)
def clear_request_context_var() -> Generator[None, None, None]:
    from rsandbox.api.middleware.request_context import clear_request_context

    clear_request_context()
    yield
    clear_request_context()


# ============================================================================
# Sample Data
# ============================================================================


@pytest.fixture
def sample_rows() -> list[dict[str, Any]]:
    """Small mixed-type dataset."""
    return [
        {"name": "alpha", "value": 1.5, "count": 3},
        {"name": "beta", "value": 2.5, "count": 5},
        {"name": "gamma", "value": 4.0, "count": 8},
    ]


# ============================================================================
# Mock Pool
# ============================================================================


@pytest.fixture
def mock_pool() -> MagicMock:
    """SessionPool stand-in for route and WebSocket tests."""
    pool = MagicMock()
    pool.dialect.display_name = "R"
    pool.dialect.name = "r"
    pool.is_available.return_value = True
    pool.execute_code = AsyncMock()
    pool.execute_prompt = AsyncMock()
    pool.cancel_execution = AsyncMock(return_value=True)
    pool.get_session.return_value = None
    pool.get_session_stats.return_value = {
        "available": True,
        "interpreter": "r",
        "active_sessions": 1,
        "max_sessions": 5,
        "busy_sessions": 0,
        "session_timeout": 300.0,
        "sessions": [],
    }
    return pool
