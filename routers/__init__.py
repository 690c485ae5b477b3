"""
API routers

Usage in main.py:
    from routers import include_all_routers
    include_all_routers(app)
"""

from fastapi import FastAPI

from .fleet_router import router as fleet_router

__all__ = ["fleet_router", "include_all_routers"]


def include_all_routers(app: FastAPI) -> None:
    """Register every router on the app."""
    app.include_router(fleet_router)
