"""FastAPI application entry point."""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from estetica.api.v1.router import api_router
from estetica.config import settings
from estetica.core.exceptions import AppException
from estetica.core.firebase import initialize_firebase
from estetica.core.redis_client import (
    check_redis_connection,
    close_redis_connection,
    get_cache_manager,
)
from estetica.core.scheduler import PeriodicScheduler
from estetica.database import (
    AsyncSessionLocal,
    check_database_connection,
    check_overlap_guard,
    engine,
)
from estetica.dependencies import build_scheduling_service
from estetica.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from estetica.middleware.logging import LoggingMiddleware, configure_logging
from estetica.repositories.sql import SqlClinicStore
from estetica.services.reminder_service import ReminderService, register_clinic_jobs
from estetica.services.scheduling_service import SchedulingService

# Configure logging
configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def job_service_scope() -> AsyncIterator[SchedulingService]:
    """Scheduling service bound to a fresh database session, for background sweeps."""
    async with AsyncSessionLocal() as session:
        yield build_scheduling_service(SqlClinicStore(session), get_cache_manager())


def create_job_scheduler() -> PeriodicScheduler:
    """Build the periodic scheduler with the clinic sweeps registered."""
    scheduler = PeriodicScheduler(tick_seconds=settings.jobs_tick_seconds)
    register_clinic_jobs(scheduler, ReminderService(job_service_scope))
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("application_startup", environment=settings.environment)

    # Initialize Firebase Admin SDK
    try:
        initialize_firebase(settings.firebase_credentials_path, settings.firebase_config_json)
        logger.info("firebase_initialized")
    except Exception as e:
        logger.warning(
            "firebase_initialization_failed",
            error=str(e),
            note="Push notifications are disabled. Set FIREBASE_CREDENTIALS_PATH env var.",
        )

    # Test database connection
    if await check_database_connection():
        logger.info("database_connected")
        if not await check_overlap_guard():
            logger.warning("overlap_guard_missing", note="Run migrations to install the no-overlap constraint.")
    else:
        logger.error("database_connection_failed")

    # Test Redis connection
    if await check_redis_connection():
        logger.info("redis_connected")
    else:
        logger.error("redis_connection_failed")

    # Background sweeps
    scheduler = create_job_scheduler()
    app.state.scheduler = scheduler
    if settings.jobs_enabled:
        scheduler.start()
    else:
        logger.info("scheduler_disabled", tasks=[task.name for task in scheduler.tasks])

    yield

    # Shutdown
    logger.info("application_shutdown")

    await scheduler.stop()

    # Close database connections
    await engine.dispose()
    logger.info("database_connections_closed")

    # Close Redis connection
    close_redis_connection()
    logger.info("redis_connection_closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Appointment scheduling core for aesthetic clinics",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# Add exception handlers
app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

# Include API router
app.include_router(api_router, prefix=settings.api_v1_prefix)

# Setup Prometheus instrumentation
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/docs", "/redoc", "/openapi.json"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """
    Root endpoint.

    Returns:
        Welcome message
    """
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "estetica.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
