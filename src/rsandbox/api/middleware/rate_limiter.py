"""Rate limiting middleware with a sliding window algorithm.

Two tiers, both per client IP:
- execute: code and prompt execution endpoints (EXECUTE_RATE_LIMIT per minute)
- api: everything else under the API (API_RATE_LIMIT per minute)

Health and metrics endpoints are exempt. Over-limit requests get 429 with the
standard error body and a Retry-After header.
"""

from __future__ import annotations

import asyncio
import contextlib
import time

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field as dataclass_field
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from rsandbox.api.middleware.request_context import get_client_ip, get_request_id
from rsandbox.core.constants import get_settings
from rsandbox.models.error_models import ErrorCode, ErrorResponse
from rsandbox.utils.logger import logger

WINDOW_SECONDS = 60.0


@dataclass
class RateLimitConfig:
    """Configuration for a rate limit tier."""

    requests_per_minute: int


@dataclass
class RateLimitEntry:
    """Request timestamps inside the sliding window."""

    timestamps: list[float] = dataclass_field(default_factory=list)


# Paths exempt from rate limiting
EXEMPT_PATHS: set[str] = {
    "/metrics",
    "/api/v1/health",
    "/api/v1/health/live",
    "/api/v1/health/ready",
}

EXECUTE_PATTERNS: tuple[str, ...] = (
    "/api/v1/r/execute",
    "/api/v1/r/prompt",
)


def get_tier_for_path(path: str) -> str:
    """Determine rate limit tier for a given path."""
    if any(path.startswith(pattern) for pattern in EXECUTE_PATTERNS):
        return "execute"
    return "api"


def default_tiers() -> dict[str, RateLimitConfig]:
    settings = get_settings()
    return {
        "execute": RateLimitConfig(requests_per_minute=settings.execute_rate_limit),
        "api": RateLimitConfig(requests_per_minute=settings.api_rate_limit),
    }


class SlidingWindowRateLimiter:
    """In-memory sliding window rate limiter.

    A sliding window gives smoother limits than fixed windows: a client can
    never exceed the tier's limit within any 60 second span.
    """

    def __init__(
        self,
        tiers: dict[str, RateLimitConfig] | None = None,
        cleanup_interval: float = 60.0,
    ) -> None:
        self.tiers = tiers or default_tiers()
        # Dict[tier][identifier] -> RateLimitEntry
        self._entries: dict[str, dict[str, RateLimitEntry]] = defaultdict(dict)
        self._lock = asyncio.Lock()
        self._cleanup_task: asyncio.Task[None] | None = None
        self._cleanup_interval = cleanup_interval

    async def start(self) -> None:
        """Start the background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Rate limiter cleanup task started")

    async def stop(self) -> None:
        """Stop the background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None
            logger.info("Rate limiter cleanup task stopped")

    async def is_allowed(self, identifier: str, tier: str) -> tuple[bool, dict[str, int]]:
        """Check and record a request.

        Returns:
            Tuple of (is_allowed, headers_dict) for the rate limit headers.
        """
        config = self.tiers.get(tier, self.tiers["api"])
        now = time.monotonic()
        cutoff = now - WINDOW_SECONDS

        async with self._lock:
            entry = self._entries[tier].setdefault(identifier, RateLimitEntry())
            entry.timestamps = [ts for ts in entry.timestamps if ts > cutoff]

            if len(entry.timestamps) >= config.requests_per_minute:
                retry_after = max(1, int(entry.timestamps[0] + WINDOW_SECONDS - now) + 1)
                return False, self._build_headers(config, len(entry.timestamps), retry_after)

            entry.timestamps.append(now)
            return True, self._build_headers(config, len(entry.timestamps), int(WINDOW_SECONDS))

    def _build_headers(self, config: RateLimitConfig, current_count: int, reset_seconds: int) -> dict[str, int]:
        return {
            "X-RateLimit-Limit": config.requests_per_minute,
            "X-RateLimit-Remaining": max(0, config.requests_per_minute - current_count),
            "X-RateLimit-Reset": reset_seconds,
        }

    async def _cleanup_loop(self) -> None:
        """Periodically clean up expired entries."""
        while True:
            await asyncio.sleep(self._cleanup_interval)
            await self.cleanup_expired()

    async def cleanup_expired(self) -> int:
        """Drop clients with no request inside the window."""
        cutoff = time.monotonic() - WINDOW_SECONDS
        removed = 0
        async with self._lock:
            for tier, entries in self._entries.items():
                expired = [
                    identifier
                    for identifier, entry in entries.items()
                    if not entry.timestamps or entry.timestamps[-1] <= cutoff
                ]
                for identifier in expired:
                    del entries[identifier]
                if expired:
                    removed += len(expired)
                    logger.debug(f"Rate limiter cleanup: removed {len(expired)} expired entries from {tier}")
        return removed


# Module-level singleton
_rate_limiter: SlidingWindowRateLimiter | None = None


def get_rate_limiter() -> SlidingWindowRateLimiter:
    """Get or create the singleton rate limiter."""
    global _rate_limiter  # noqa: PLW0603
    if _rate_limiter is None:
        _rate_limiter = SlidingWindowRateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Forget the singleton; tests build a fresh one per app."""
    global _rate_limiter  # noqa: PLW0603
    _rate_limiter = None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware for rate limiting requests."""

    def __init__(
        self,
        app: Callable[..., Any],
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        super().__init__(app)
        self._rate_limiter = rate_limiter

    @property
    def rate_limiter(self) -> SlidingWindowRateLimiter:
        return self._rate_limiter or get_rate_limiter()

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        if path in EXEMPT_PATHS or not get_settings().rate_limit_enabled:
            return await call_next(request)

        # WebSocket connections are not request/response shaped
        if request.headers.get("upgrade", "").lower() == "websocket":
            return await call_next(request)

        tier = get_tier_for_path(path)
        identifier = f"ip:{get_client_ip(request) or 'unknown'}"

        allowed, headers = await self.rate_limiter.is_allowed(identifier, tier)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {identifier} on {tier} tier (path: {path})")
            error = ErrorResponse(
                code=ErrorCode.RATE_LIMITED,
                message="Too many requests. Please try again later.",
                request_id=get_request_id(),
                path=path,
            )
            response = JSONResponse(status_code=429, content=error.to_dict())
            for header, value in headers.items():
                response.headers[header] = str(value)
            response.headers["Retry-After"] = str(headers["X-RateLimit-Reset"])
            return response

        result = await call_next(request)
        for header, value in headers.items():
            result.headers[header] = str(value)
        return result


__all__ = [
    "EXEMPT_PATHS",
    "RateLimitConfig",
    "RateLimitMiddleware",
    "SlidingWindowRateLimiter",
    "get_rate_limiter",
    "get_tier_for_path",
    "reset_rate_limiter",
]
