"""
FastAPI application entry point for the ASO Analytics API.

This module wires the service layer together: it configures logging and CORS,
builds the process-wide orchestrator and dashboard service at startup,
registers the API routers and renders AsoAnalyticsError as JSON.

Process-wide state on app.state:
- data_access: DataAccessService (hot cache + in-flight query map)
- dashboard: DashboardService (per-principal client cache sessions)
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aso_analytics import __version__
from aso_analytics.api import api_router
from aso_analytics.core.config import get_settings
from aso_analytics.core.database import close_db, init_db
from aso_analytics.core.errors import AsoAnalyticsError
from aso_analytics.core.formulas import validate_formula_config
from aso_analytics.core.warehouse import WarehouseClient
from aso_analytics.services.access import AccessRepository
from aso_analytics.services.dashboard import DashboardService
from aso_analytics.services.data_access import DataAccessService

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Initialize database connection pool
        - Validate the formula registry
        - Build the orchestrator and dashboard service

    On shutdown:
        - Wait for pending audit writes
        - Close database connection pool
    """
    # Startup
    logger.info("ASO Analytics API starting")
    try:
        await init_db()
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        # Continue startup; scope resolution reports AccessLookupFailed per request

    for problem in validate_formula_config():
        logger.warning(f"Formula config: {problem}")

    data_access = DataAccessService(settings, AccessRepository(), WarehouseClient(settings))
    app.state.data_access = data_access
    app.state.dashboard = DashboardService(settings, data_access)

    yield

    # Shutdown
    logger.info("ASO Analytics API shutting down")
    await data_access.drain()
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


# Create FastAPI application
app = FastAPI(
    title="ASO Analytics API",
    version=__version__,
    description=(
        "App Store Optimization analytics backend. "
        "Provides scoped warehouse data access, two-path conversion "
        "analysis and dashboard intelligence."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(AsoAnalyticsError)
async def aso_analytics_error_handler(request: Request, exc: AsoAnalyticsError) -> JSONResponse:
    """Render domain errors as {error, code, hint?, details?} with their status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "ASO Analytics API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "aso_analytics.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
