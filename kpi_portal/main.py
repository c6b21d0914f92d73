"""
FastAPI application entry point for the KPI Portal API.

This module configures logging, CORS, error rendering and the API routers,
and owns the storage lifecycle:

- storage_backend=postgres: an asyncpg pool is opened on startup, stored on
  `app.state.db_pool` and closed on shutdown. Requests acquire a connection
  from it through kpi_portal.core.dependencies.get_repository.
- storage_backend=memory: an empty InMemoryRepository is stored on
  `app.state.repository` and shared by every request.

Errors:
    PortalError subclasses render as {"error", "message", "details"} with the
    status code of the error class. Request validation failures render as
    400 VALIDATION_ERROR.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kpi_portal.api import api_router
from kpi_portal.core.config import Settings, get_settings
from kpi_portal.core.database import close_pool, create_pool
from kpi_portal.core.errors import PortalError, StorageError
from kpi_portal.repositories import InMemoryRepository

API_TITLE = "KPI Portal API"
API_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Memory backend: attach an InMemoryRepository
        - Postgres backend: open the connection pool
    On shutdown:
        - Close the connection pool, if one was opened
    """
    settings: Settings = app.state.settings
    logger.info("KPI Portal API starting (storage backend: %s)", settings.storage_backend)

    if settings.storage_backend == "memory":
        if getattr(app.state, "repository", None) is None:
            app.state.repository = InMemoryRepository()
    else:
        try:
            app.state.db_pool = await create_pool(settings)
            logger.info("Database connection pool initialized")
        except StorageError as e:
            # Requests fail with StorageError until the database is reachable
            logger.error("Failed to initialize database: %s", e.message)
            app.state.db_pool = None

    yield

    logger.info("KPI Portal API shutting down")
    await close_pool(getattr(app.state, "db_pool", None))
    app.state.db_pool = None


# =============================================================================
# Error handlers
# =============================================================================


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    logger.warning("%s %s rejected: invalid request (%s)", request.method, request.url.path, field or "body")
    return JSONResponse(
        status_code=400,
        content={
            "error": "VALIDATION_ERROR",
            "message": first.get("msg", "Invalid request"),
            "details": {"field": field or None, "errors": [
                {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg")} for e in errors
            ]},
        },
    )


# =============================================================================
# Application factory
# =============================================================================


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to run with; the cached settings when omitted.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=API_TITLE,
        version=API_VERSION,
        description=(
            "Backend for the KPI Portal. Provides sales, home, marketing and "
            "customer-success dashboards, payment plans and revenue attribution."
        ),
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(api_router, prefix="/api")

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint for monitoring and load balancers.

        Returns:
            Dict with status 'healthy' and the storage backend in use
        """
        return {"status": "healthy", "storage": settings.storage_backend}

    @app.get("/")
    async def root():
        """
        Root endpoint providing API information.

        Returns:
            Dict with API name and version
        """
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    return app


app = create_app()


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "kpi_portal.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
