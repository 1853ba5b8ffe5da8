"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from estetica.config import settings
from estetica.core.firebase import is_firebase_initialized
from estetica.core.redis_client import check_redis_connection
from estetica.database import check_database_connection, check_overlap_guard
from estetica.dependencies import JobScheduler

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str
    clinic_timezone: str


class FailingJob(BaseModel):
    """A periodic job whose last run raised."""

    name: str
    last_error: str


class SchedulerHealth(BaseModel):
    """State of the background sweeps."""

    running: bool
    jobs: int
    failing: list[FailingJob]


class DetailedHealthResponse(BaseModel):
    """Detailed health check response model."""

    status: str
    version: str
    environment: str
    database: str
    redis: str
    overlap_guard: str
    notifications: str
    calendar: str
    scheduler: SchedulerHealth


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns:
        Basic health status
    """
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
        clinic_timezone=settings.clinic_timezone,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check(scheduler: JobScheduler) -> DetailedHealthResponse:
    """
    Detailed health check of the scheduling backend.

    The service is degraded when the database or Redis is unreachable, the
    no-overlap constraint is missing, or a periodic job failed on its last
    run. Optional collaborators are reported but never degrade it.

    Args:
        scheduler: Application scheduler

    Returns:
        Detailed health status including dependencies and sweeps
    """
    db_healthy = await check_database_connection()
    redis_healthy = await check_redis_connection()
    guard_installed = db_healthy and await check_overlap_guard()

    failing = [
        FailingJob(name=job["name"], last_error=job["last_error"])
        for job in scheduler.status()
        if job["last_error"]
    ]
    calendar_enabled = settings.google_calendar_enabled and bool(settings.google_calendar_access_token)

    healthy = db_healthy and redis_healthy and guard_installed and not failing
    return DetailedHealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis="healthy" if redis_healthy else "unhealthy",
        overlap_guard="installed" if guard_installed else "missing",
        notifications="enabled" if is_firebase_initialized() else "disabled",
        calendar="enabled" if calendar_enabled else "disabled",
        scheduler=SchedulerHealth(
            running=scheduler.running,
            jobs=len(scheduler.tasks),
            failing=failing,
        ),
    )
