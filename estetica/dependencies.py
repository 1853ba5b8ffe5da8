"""FastAPI dependencies."""

from collections.abc import AsyncGenerator
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from estetica.config import settings
from estetica.core.exceptions import ForbiddenException, UnauthorizedException
from estetica.core.firebase import is_firebase_initialized
from estetica.core.redis_client import CacheManager, get_cache_manager
from estetica.core.scheduler import PeriodicScheduler
from estetica.core.security import decode_staff_token
from estetica.database import get_db
from estetica.repositories.base import ClinicStore
from estetica.repositories.sql import SqlClinicStore
from estetica.scheduling.permissions import Actor, Role
from estetica.scheduling.policy import WorkingHoursConfig
from estetica.scheduling.state_machine import AppointmentStateMachine
from estetica.services.calendar_service import GoogleCalendarService
from estetica.services.notification_service import PushNotificationService
from estetica.services.scheduling_service import SchedulingService

# Security
security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Actor:
    """
    Extract the acting staff member from the JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Actor built from the ``sub`` and ``role`` claims

    Raises:
        UnauthorizedException: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise UnauthorizedException("Not authenticated")

    claims = decode_staff_token(credentials.credentials)
    if claims is None:
        raise UnauthorizedException("Could not validate credentials")
    return Actor(id=claims.user_id, role=claims.role)


async def get_admin_actor(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
    """Require an ADMIN actor."""
    if actor.role is not Role.ADMIN:
        raise ForbiddenException("Administrator role required")
    return actor


async def get_clinic_store(db: Annotated[AsyncSession, Depends(get_db)]) -> AsyncGenerator[ClinicStore, None]:
    """Provide the clinic store for the request's database session."""
    yield SqlClinicStore(db)


def get_cache() -> CacheManager | None:
    """Provide the availability cache."""
    return get_cache_manager()


def build_scheduling_service(store: ClinicStore, cache: CacheManager | None = None) -> SchedulingService:
    """Wire a scheduling service from application settings."""
    return SchedulingService(
        store=store,
        notifier=PushNotificationService(timezone=settings.clinic_timezone) if is_firebase_initialized() else None,
        calendar=GoogleCalendarService(
            calendar_id=settings.google_calendar_id,
            access_token=settings.google_calendar_access_token,
            enabled=settings.google_calendar_enabled,
            timezone=settings.clinic_timezone,
            timeout=settings.google_calendar_timeout_seconds,
        ),
        cache=cache,
        config=WorkingHoursConfig.from_settings(settings),
        state_machine=AppointmentStateMachine(
            no_show_grace=timedelta(minutes=settings.no_show_grace_minutes)
        ),
        default_duration_minutes=settings.default_duration_minutes,
        cache_ttl_seconds=settings.availability_cache_ttl_seconds,
    )


async def get_scheduling_service(
    store: Annotated[ClinicStore, Depends(get_clinic_store)],
    cache: Annotated[CacheManager | None, Depends(get_cache)],
) -> SchedulingService:
    """Provide the scheduling service."""
    return build_scheduling_service(store, cache)


def get_job_scheduler(request: Request) -> PeriodicScheduler:
    """Provide the application's periodic scheduler."""
    return request.app.state.scheduler


# Type aliases for dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
AdminActor = Annotated[Actor, Depends(get_admin_actor)]
Scheduling = Annotated[SchedulingService, Depends(get_scheduling_service)]
JobScheduler = Annotated[PeriodicScheduler, Depends(get_job_scheduler)]
