"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_core.api.routes import (
    adjustments_router,
    calculations_router,
    health_router,
    periods_router,
    review_router,
)
from payroll_core.config import get_settings
from payroll_core.database import create_all, dispose_db, init_db
from payroll_core.errors import (
    DomainStateError,
    FatalRunError,
    NotFoundError,
    PayrollError,
    ValidationError,
)
from payroll_core.payroll import PayrollService
from payroll_core.repositories import SqlPayrollRepository
from payroll_core.services import StaticEmployeeSource

logger = logging.getLogger(__name__)

# PayrollError subclass -> HTTP status; first match wins
ERROR_STATUS: tuple[tuple[type[PayrollError], int], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DomainStateError, status.HTTP_409_CONFLICT),
    (FatalRunError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(exc: PayrollError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def build_default_service() -> PayrollService:
    """Service over the configured database and employee file."""
    settings = get_settings()
    engine, session_factory = init_db(settings.database_url)
    await create_all(engine)
    employees = StaticEmployeeSource()
    if settings.employees_path:
        employees.load_file(settings.employees_path)
    return PayrollService.from_settings(settings, SqlPayrollRepository(session_factory), employees)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    owns_service = getattr(app.state, "payroll_service", None) is None
    if owns_service:
        app.state.payroll_service = await build_default_service()
    service: PayrollService = app.state.payroll_service
    interval = max(service.config.heartbeat_timeout_seconds / 4, 1)
    reaper = asyncio.create_task(service.runner.run_reaper(interval))
    yield
    # Shutdown
    reaper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await reaper
    await service.shutdown()
    if owns_service:
        await dispose_db()


def create_app(service: PayrollService | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass ``service`` to serve an already wired PayrollService (tests, demos);
    otherwise one is built from the environment at startup.
    """
    app = FastAPI(
        title="Payroll Core API",
        description="Payroll period lifecycle, calculation and approval",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.payroll_service = service

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollError)
    async def payroll_error_handler(request: Request, exc: PayrollError) -> JSONResponse:
        """Map domain errors to 4xx bodies carrying their code."""
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(periods_router, prefix="/api/v1")
    app.include_router(calculations_router, prefix="/api/v1")
    app.include_router(adjustments_router, prefix="/api/v1")
    app.include_router(review_router, prefix="/api/v1")

    return app
