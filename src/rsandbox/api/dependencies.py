from __future__ import annotations

from typing import Annotated
from uuid import uuid4

from fastapi import Depends, Header, Request

from rsandbox.core.constants import Settings, get_settings
from rsandbox.core.session_pool import SessionPool


def get_app_settings() -> Settings:
    """Provide application settings via dependency injection.

    Usage in routes:
        @router.get("/example")
        async def example(settings: AppSettings):
            return {"debug": settings.debug}
    """
    return get_settings()


def get_session_pool(request: Request) -> SessionPool:
    """Get the session pool from application state."""
    return request.app.state.session_pool


def get_session_id(x_session_id: Annotated[str | None, Header(max_length=128)] = None) -> str:
    """Session key from the X-Session-ID header; a fresh uuid4 when absent."""
    return x_session_id or str(uuid4())


# Type aliases for cleaner route signatures
Pool = Annotated[SessionPool, Depends(get_session_pool)]
SessionId = Annotated[str, Depends(get_session_id)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
