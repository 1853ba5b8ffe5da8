"""Appointment endpoints."""

from datetime import date, datetime
from typing import TypeVar
from uuid import UUID

from fastapi import APIRouter, Query, status

from estetica.core.exceptions import SchedulingException
from estetica.dependencies import CurrentActor, Scheduling
from estetica.scheduling.appointment import AppointmentStatus
from estetica.scheduling.results import OperationResult
from estetica.scheduling.state_machine import AppointmentEvent
from estetica.schemas.appointments import (
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatsResponse,
    AppointmentUpdate,
    AvailabilityResponse,
    CancelRequest,
    CompleteRequest,
    StatusChange,
    StatusCount,
    TimeSlotResponse,
    TreatmentCountResponse,
)
from estetica.services.scheduling_service import MAX_PAGE_SIZE

router = APIRouter()

T = TypeVar("T")


def unwrap(result: OperationResult[T]) -> T:
    """
    Return a successful result's value.

    Raises:
        SchedulingException: If the result is a failure
    """
    if not result.ok:
        raise SchedulingException.from_error(result.error)
    return result.value


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book an appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    actor: CurrentActor,
    service: Scheduling,
) -> AppointmentResponse:
    """
    Book an appointment after policy and conflict checks.

    Args:
        data: Appointment creation data
        actor: Authenticated staff member
        service: Scheduling service

    Returns:
        Created appointment with any notification or calendar warnings
    """
    result = await service.create(
        actor,
        patient_id=data.patient_id,
        treatment_id=data.treatment_id,
        practitioner_id=data.practitioner_id,
        start=data.start_time,
        end=data.end_time,
        notes=data.notes,
    )
    return AppointmentResponse.from_appointment(unwrap(result), result.warnings)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    actor: CurrentActor,
    service: Scheduling,
    practitioner_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    day: date | None = Query(None, alias="date"),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
) -> AppointmentListResponse:
    """
    List appointments ordered by start time, one page at a time.

    Args:
        actor: Authenticated staff member
        service: Scheduling service
        practitioner_id: Filter by practitioner
        patient_id: Filter by patient
        day: Only appointments starting on this clinic-local day
        from_date: Only appointments starting at or after this time
        to_date: Only appointments starting before this time
        status_filter: Filter by status
        page: Page number
        limit: Page size

    Returns:
        Matching appointments with pagination data
    """
    result = await service.search(
        actor,
        practitioner_id=practitioner_id,
        patient_id=patient_id,
        day=day,
        start_from=from_date,
        start_before=to_date,
        status=status_filter,
        page=page,
        limit=limit,
    )
    found = unwrap(result)
    return AppointmentListResponse(
        items=[AppointmentResponse.from_appointment(a) for a in found.items],
        total=found.total,
        page=found.page,
        limit=found.limit,
        pages=found.pages,
    )


@router.get(
    "/stats",
    response_model=AppointmentStatsResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Appointment statistics",
)
async def get_appointment_stats(
    actor: CurrentActor,
    service: Scheduling,
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
) -> AppointmentStatsResponse:
    """
    Get status counts, today's and upcoming counts and the most requested treatments.

    Args:
        actor: Authenticated staff member
        service: Scheduling service
        from_date: Period start
        to_date: Period end

    Returns:
        Appointment statistics
    """
    stats = unwrap(await service.get_stats(actor, start_from=from_date, start_before=to_date))
    return AppointmentStatsResponse(
        total=stats.total,
        today=stats.today,
        upcoming=stats.upcoming,
        by_status=[StatusCount(status=name, count=count) for name, count in sorted(stats.by_status.items())],
        popular_treatments=[TreatmentCountResponse.model_validate(t) for t in stats.popular_treatments],
        from_date=stats.start_from,
        to_date=stats.start_before,
    )


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Free slots of a practitioner",
)
async def get_availability(
    actor: CurrentActor,
    service: Scheduling,
    practitioner_id: UUID = Query(...),
    day: date = Query(..., alias="date"),
    treatment_id: UUID | None = Query(None),
    duration_minutes: int | None = Query(None, ge=1, le=480),
) -> AvailabilityResponse:
    """
    Get the free slots of a practitioner on a day.

    Args:
        actor: Authenticated staff member
        service: Scheduling service
        practitioner_id: Practitioner whose calendar is inspected
        day: Local calendar day
        treatment_id: Size slots to this treatment's duration
        duration_minutes: Explicit slot length when no treatment is given

    Returns:
        Free slots in ascending order
    """
    result = await service.get_availability(
        actor,
        practitioner_id,
        day,
        treatment_id=treatment_id,
        duration_minutes=duration_minutes,
    )
    return AvailabilityResponse(
        practitioner_id=practitioner_id,
        day=day,
        slots=[TimeSlotResponse.model_validate(slot) for slot in unwrap(result)],
    )


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: Scheduling,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Args:
        appointment_id: Appointment ID
        actor: Authenticated staff member
        service: Scheduling service

    Returns:
        Appointment details
    """
    result = await service.get(actor, appointment_id)
    return AppointmentResponse.from_appointment(unwrap(result))


@router.patch(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule or advance an appointment",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    actor: CurrentActor,
    service: Scheduling,
) -> AppointmentResponse:
    """
    Reschedule an appointment and/or move it to CONFIRMED or IN_PROGRESS.

    When both are requested, the status change is checked against the
    current status before the move is committed.

    Args:
        appointment_id: Appointment ID
        data: New interval and/or status
        actor: Authenticated staff member
        service: Scheduling service

    Returns:
        Updated appointment
    """
    warnings: list[str] = []
    appointment = None
    event = None
    if data.status is not None:
        event = AppointmentEvent.CONFIRM if data.status is StatusChange.CONFIRMED else AppointmentEvent.START

    if data.start_time is not None:
        if event is not None:
            unwrap(await service.check_event(actor, appointment_id, event))
        result = await service.reschedule(actor, appointment_id, data.start_time, data.end_time)
        appointment = unwrap(result)
        warnings.extend(result.warnings)

    if event is not None:
        if event is AppointmentEvent.CONFIRM:
            result = await service.confirm(actor, appointment_id)
        else:
            result = await service.start(actor, appointment_id)
        appointment = unwrap(result)
        warnings.extend(result.warnings)

    return AppointmentResponse.from_appointment(appointment, warnings)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    data: CancelRequest,
    actor: CurrentActor,
    service: Scheduling,
) -> AppointmentResponse:
    """
    Cancel an appointment, keeping the reason in its notes.

    Args:
        appointment_id: Appointment ID
        data: Cancellation reason
        actor: Authenticated staff member
        service: Scheduling service

    Returns:
        Cancelled appointment
    """
    result = await service.cancel(actor, appointment_id, data.reason)
    return AppointmentResponse.from_appointment(unwrap(result), result.warnings)


@router.post(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Complete appointment",
)
async def complete_appointment(
    appointment_id: UUID,
    data: CompleteRequest,
    actor: CurrentActor,
    service: Scheduling,
) -> AppointmentResponse:
    """
    Complete an appointment, consuming stock and advancing treatment progress.

    Args:
        appointment_id: Appointment ID
        data: Completion and clinical notes
        actor: Authenticated practitioner
        service: Scheduling service

    Returns:
        Completed appointment
    """
    result = await service.complete(
        actor,
        appointment_id,
        notes=data.notes,
        treatment_notes=data.treatment_notes,
    )
    return AppointmentResponse.from_appointment(unwrap(result), result.warnings)
