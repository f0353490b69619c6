"""
ASO Analytics API package initialization.

This package contains FastAPI router modules:
- data: Scoped raw metric rows (POST /data)
- dashboard: Dashboard sessions (view, refresh, org switch, logout)
"""

from fastapi import APIRouter

from aso_analytics.api.data import router as data_router
from aso_analytics.api.dashboard import router as dashboard_router

# Create main API router
api_router = APIRouter()

api_router.include_router(data_router, prefix="/data", tags=["data"])
api_router.include_router(dashboard_router, prefix="/dashboard", tags=["dashboard"])

__all__ = [
    "api_router",
    "data_router",
    "dashboard_router",
]
