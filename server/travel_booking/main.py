"""FastAPI application initialization and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .core.config import settings
from .core.database import close_db, engine, init_db
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    problem_details_handler,
    validation_exception_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    SERVICE_NAME,
    SERVICE_VERSION,
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_metrics,
    setup_structured_logging,
    setup_tracing,
)
from .routers import availability, booking, cancellation_policy, health, metrics
from .workers.manager import worker_manager

setup_structured_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Sets up observability, creates tables when running outside production
    (production schemas come from migrations) and runs the background workers.
    """
    logger.info(
        "Starting booking service",
        extra={"environment": settings.environment, "debug": settings.debug}
    )

    try:
        setup_tracing()
        setup_metrics()
        instrument_sqlalchemy(engine)

        if not settings.is_production:
            await init_db()

        if settings.workers_enabled:
            await worker_manager.start_all()
    except Exception:
        logger.error("Failed to initialize application", exc_info=True)
        raise

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down booking service")
    try:
        await worker_manager.stop_all()
        await close_db()
    except Exception:
        logger.error("Error during application cleanup", exc_info=True)

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="Travel Booking API",
        description=(
            "Capacity holds, priced bookings with promo codes and agent commission, "
            "tiered cancellation refunds and idempotent mutating requests for travel packages"
        ),
        version=SERVICE_VERSION,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "traceparent", "tracestate", "Idempotency-Replayed", "Retry-After"],
    )

    setup_middleware(app, enable_logging=True)

    instrument_fastapi(app)

    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get("/health", status_code=status.HTTP_200_OK, tags=["Health"], summary="Health Check")
    async def health_check():
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "environment": settings.environment,
        }

    @app.get("/ready", tags=["Health"], summary="Readiness Check")
    async def readiness_check():
        """Ready when the database answers a trivial query."""
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            database = "ok"
        except Exception as e:
            logger.warning("Readiness check failed", extra={"error": str(e)})
            database = "unavailable"

        ready = database == "ok"
        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "ready" if ready else "not_ready",
                "service": SERVICE_NAME,
                "checks": {"database": database, "workers": worker_manager.get_worker_status()},
            },
        )

    @app.get("/info", status_code=status.HTTP_200_OK, tags=["Info"], summary="Service Information")
    async def service_info():
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "environment": settings.environment,
            "settings": {
                "hold_ttl_minutes": settings.hold_ttl_minutes,
                "tax_rate": str(settings.tax_rate),
                "default_currency": settings.default_currency,
                "idempotency_ttl_hours": settings.idempotency_ttl_hours,
            },
            "features": {
                "authentication": True,
                "idempotency": True,
                "tracing": True,
                "problem_details": True,
            },
        }

    app.include_router(health.router)
    app.include_router(availability.router)
    app.include_router(booking.router)
    app.include_router(cancellation_policy.router)
    app.include_router(metrics.router)

    logger.info("FastAPI application created and configured")

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "travel_booking.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
