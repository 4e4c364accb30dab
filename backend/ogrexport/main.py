"""
OGR Export Service - Main Application Entry Point
=================================================

This module initializes the FastAPI application with the export routes,
middleware, and lifecycle handlers.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator
import logging

from fastapi import FastAPI

from ogrexport import __version__
from ogrexport.api.v1.router import api_router
from ogrexport.api.v1.metrics import router as metrics_router
from ogrexport.api.v1.endpoints.ogr_exports import get_export_service
from ogrexport.core.config import settings
from ogrexport.core.database import dispose_engines
from ogrexport.middleware.request_logging import StructuredLoggingMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    - Startup: apply the configured log level
    - Shutdown: let in-flight exports drain, then close database engines
    """
    if settings.LOG_LEVEL:
        logging.getLogger("ogrexport").setLevel(settings.LOG_LEVEL.upper())

    yield

    await get_export_service().wait_idle()
    await dispose_engines()


def create_application() -> FastAPI:
    """
    Application factory function.

    Returns:
        FastAPI: Configured application instance
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description="Coalescing OGR file exports of SQL query results",
        version=__version__,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        docs_url="/docs",
        lifespan=lifespan,
    )

    # Structured logging middleware (JSON logs with correlation IDs)
    logger = logging.getLogger(__name__)
    app.add_middleware(StructuredLoggingMiddleware, logger=logger)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for container orchestration."""
        service = get_export_service()
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": __version__,
            "baking_exports": len(service.registry),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(metrics_router, prefix="")
    app.include_router(api_router, prefix=settings.API_PREFIX)

    return app


# Create application instance
app = create_application()
