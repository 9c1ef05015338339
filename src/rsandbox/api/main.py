from __future__ import annotations

import time

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from rsandbox import __version__
from rsandbox.api.middleware.exception_handlers import register_exception_handlers
from rsandbox.api.middleware.rate_limiter import RateLimitMiddleware, get_rate_limiter
from rsandbox.api.middleware.request_context import RequestContextMiddleware
from rsandbox.api.routes import ws
from rsandbox.api.routes.v1 import router as v1_router
from rsandbox.core.codegen import generate_r_code
from rsandbox.core.constants import get_settings
from rsandbox.core.dialects import get_dialect
from rsandbox.core.session_pool import SessionPool
from rsandbox.utils.logger import configure_uvicorn_logging, logger

# Settings are loaded via Pydantic Settings with environment-specific file support
# (.env, .env.{APP_ENV}, .env.local)
settings = get_settings()

if settings.debug:
    from rsandbox.core.constants import _get_env_files

    logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
    logger.info(
        f"Settings: app_env={settings.app_env}, dialect={settings.interpreter_dialect}, "
        f"max_sessions={settings.max_sessions}"
    )

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


def create_session_pool() -> SessionPool:
    """Build the session pool from settings."""
    settings = get_settings()
    return SessionPool(
        dialect=get_dialect(settings.interpreter_dialect),
        max_code_length=settings.max_code_length,
        code_generator=generate_r_code,
        executable=settings.interpreter_path,
        max_sessions=settings.max_sessions,
        session_timeout=settings.session_timeout,
        reap_interval=settings.reap_interval,
        execution_timeout=settings.execution_timeout,
        start_timeout=settings.session_start_timeout,
        max_memory=settings.interpreter_max_memory,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown with graceful handling."""
    app.state.startup_time = datetime.now(UTC)
    app.state.startup_monotonic = time.monotonic()

    # Phase 1: Session pool (degraded mode when the interpreter is missing)
    pool = create_session_pool()
    await pool.initialize()
    app.state.session_pool = pool

    # Phase 2: Rate limiter cleanup task
    rate_limiter = get_rate_limiter()
    await rate_limiter.start()
    app.state.rate_limiter = rate_limiter

    logger.info(f"rsandbox {__version__} started (available: {pool.is_available()})")

    try:
        yield
    finally:
        logger.info("Shutting down...")

        # Phase 1: Terminate every interpreter
        if getattr(app.state, "session_pool", None):
            await app.state.session_pool.cleanup()
            logger.info("Session pool shutdown complete")

        # Phase 2: Stop rate limiter cleanup task
        if getattr(app.state, "rate_limiter", None):
            await app.state.rate_limiter.stop()
            logger.info("Rate limiter shutdown complete")


app = FastAPI(
    title="rsandbox API",
    description="""
## rsandbox API

Sandboxed R code execution for data analysis.

### Features
- **Code execution**: Validated R code runs in a per-client interpreter session
- **Prompt execution**: Natural-language requests turned into analysis code
- **Datasets**: Rows bound as a data.frame before the code runs
- **Inline plots**: Base64 PNG images returned with the output
- **WebSocket**: Interactive sessions at `/ws/sandbox`

### Sessions
Clients identify their session with the `X-Session-ID` header. Sessions idle
longer than the configured timeout are reaped.
""",
    version=__version__,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Health",
            "description": "Health check endpoints for monitoring and orchestration",
        },
        {
            "name": "Sandbox",
            "description": "Code and prompt execution, packages, templates, and sessions",
        },
        {
            "name": "WebSocket",
            "description": "Interactive sandbox sessions",
        },
    ],
    openapi_url="/api/v1/openapi.json",
    docs_url="/api/v1/docs",
    redoc_url="/api/v1/redoc",
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Middleware is executed in reverse order of registration (last added = first executed)
# 1. CORS
# 2. Request context (request ID available to everything below)
# 3. Rate limiter
app.add_middleware(RateLimitMiddleware)

app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Session-ID", "X-Response-Time", "Retry-After"],
)

# Routes - API v1
app.include_router(v1_router, prefix="/api/v1")

# WebSocket routes (not versioned - protocol-level)
app.include_router(ws.router, prefix="/ws", tags=["WebSocket"])

# Prometheus metrics
app.mount("/metrics", make_asgi_app())


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "rsandbox.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_config=None,
    )


if __name__ == "__main__":
    run()
