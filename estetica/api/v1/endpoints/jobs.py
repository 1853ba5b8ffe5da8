"""Background job endpoints."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from estetica.dependencies import AdminActor, JobScheduler

router = APIRouter()


class JobStatusResponse(BaseModel):
    """Cadence and last outcome of a periodic job."""

    name: str
    interval_seconds: int
    last_run_at: datetime | None = None
    last_error: str | None = None
    run_count: int


class JobListResponse(BaseModel):
    """Registered periodic jobs."""

    running: bool
    jobs: list[JobStatusResponse]


@router.get(
    "/",
    response_model=JobListResponse,
    status_code=status.HTTP_200_OK,
    summary="List periodic jobs",
)
async def list_jobs(actor: AdminActor, scheduler: JobScheduler) -> JobListResponse:
    """
    List the periodic jobs and their last outcome (admin only).

    Args:
        actor: Authenticated administrator
        scheduler: Application scheduler

    Returns:
        Job cadences and run history
    """
    return JobListResponse(
        running=scheduler.running,
        jobs=[JobStatusResponse(**job) for job in scheduler.status()],
    )


@router.post(
    "/{name}/run",
    response_model=JobStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Run a periodic job now",
)
async def run_job(name: str, actor: AdminActor, scheduler: JobScheduler) -> JobStatusResponse:
    """
    Run one periodic job immediately (admin only).

    Args:
        name: Job name
        actor: Authenticated administrator
        scheduler: Application scheduler

    Returns:
        The job's status after the run
    """
    if name not in {task.name for task in scheduler.tasks}:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {name} not found")

    await scheduler.run_task(name)
    return next(JobStatusResponse(**job) for job in scheduler.status() if job["name"] == name)
