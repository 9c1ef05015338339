"""
API v1 Router - Aggregates all v1 endpoints.

Usage in main.py:
    from rsandbox.api.routes.v1 import router as v1_router
    app.include_router(v1_router, prefix="/api/v1")
"""

from fastapi import APIRouter

from rsandbox.api.routes.v1 import health, sandbox, visualizations

router = APIRouter()

router.include_router(
    health.router,
    tags=["Health"],
)

router.include_router(
    sandbox.router,
    prefix="/r",
    tags=["Sandbox"],
)

router.include_router(
    visualizations.router,
    prefix="/visualizations",
    tags=["Visualizations"],
)

__all__ = ["router"]
