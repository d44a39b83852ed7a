"""
FastAPI application entry point.

Configures the application with:
- Lifespan handlers for database setup and the expiry sweep
- CORS middleware
- Correlation ID middleware
- Error family to HTTP status mapping
- Health and readiness probes
- API routes
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from gatepass.api import api_router
from gatepass.api.deps import get_document_storage, get_notification_relay
from gatepass.application.documents import DocumentReleaser
from gatepass.application.expiry_sweep import ExpirySweeper
from gatepass.core.config import get_settings
from gatepass.core.logging import (
    get_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)
from gatepass.domain.errors import (
    ConflictError,
    DependencyError,
    GatepassError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from gatepass.infrastructure.db.repository import VisitRequestRepository
from gatepass.infrastructure.db.session import close_db, get_session_factory, init_db, ping_db

# Initialize logging
setup_logging()
logger = get_logger(__name__)

ERROR_STATUS: list[tuple[type[GatepassError], int]] = [
    (ValidationError, 422),
    (ConflictError, 409),
    (NotFoundError, 404),
    (NotAuthorizedError, 403),
    (DependencyError, 503),
]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str = "1.0.0"


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    status: str
    database_connected: bool
    expiry_sweep_running: bool


def status_for_error(exc: GatepassError) -> int:
    """HTTP status for a lifecycle error family."""
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown tasks:
    - Startup: Initialize DB, start the expiry sweep
    - Shutdown: Stop the sweep, drain notifications, close connections
    """
    logger.info("application_starting")
    settings = get_settings()

    try:
        await init_db()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    sweep_task: asyncio.Task | None = None
    if settings.expiry_sweep_interval_seconds > 0:
        visits = VisitRequestRepository(get_session_factory())
        sweeper = ExpirySweeper(visits, DocumentReleaser(get_document_storage(), visits))
        sweep_task = asyncio.create_task(
            sweeper.run(settings.expiry_sweep_interval_seconds)
        )
    app.state.sweep_task = sweep_task

    logger.info("application_started")

    yield

    logger.info("application_shutting_down")
    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    await get_notification_relay().drain()
    await close_db()
    logger.info("application_shutdown_complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Gatepass",
        description="Visitor access requests, resident decisions and single-use gate passes",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.sweep_task = None

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else ["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Add correlation ID to each request."""
        set_correlation_id(request.headers.get("X-Correlation-ID"))

        response = await call_next(request)

        response.headers["X-Correlation-ID"] = get_correlation_id()
        return response

    @app.exception_handler(GatepassError)
    async def gatepass_error_handler(request: Request, exc: GatepassError) -> JSONResponse:
        status_code = status_for_error(exc)
        logger.info(
            "request_refused",
            path=request.url.path,
            code=exc.code,
            status_code=status_code,
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("database_error", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Database unavailable", "code": DependencyError.code},
        )

    # Health check endpoints
    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["health"],
    )
    async def health_check() -> HealthResponse:
        """
        Basic liveness probe.

        Returns 200 if the application is running.
        """
        return HealthResponse(status="healthy")

    @app.get(
        "/ready",
        response_model=ReadinessResponse,
        tags=["health"],
    )
    async def readiness_check() -> ReadinessResponse:
        """
        Readiness probe for Kubernetes/load balancers.

        Returns 200 only if the database answers. The sweep is reported
        but optional, since reads never depend on it.
        """
        try:
            database_connected = await ping_db()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("readiness_db_unavailable", error=str(e))
            database_connected = False

        sweep_task = app.state.sweep_task
        sweep_running = sweep_task is not None and not sweep_task.done()

        response = ReadinessResponse(
            status="ready" if database_connected else "not_ready",
            database_connected=database_connected,
            expiry_sweep_running=sweep_running,
        )

        if not database_connected:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content=response.model_dump(),
            )

        return response

    # Include API routes
    app.include_router(api_router)

    return app


# Create app instance
app = create_app()
