"""Appointment schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator

from estetica.scheduling.appointment import Appointment, AppointmentStatus


class AppointmentCreate(BaseModel):
    """Schema for booking an appointment."""

    patient_id: UUID
    treatment_id: UUID
    practitioner_id: UUID
    start_time: AwareDatetime
    end_time: AwareDatetime | None = Field(
        None, description="Defaults to start time plus the treatment duration"
    )
    notes: str | None = Field(None, max_length=2000)


class StatusChange(str, Enum):
    """Status changes accepted by the update endpoint."""

    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"


class AppointmentUpdate(BaseModel):
    """Schema for rescheduling an appointment and/or advancing its status."""

    start_time: AwareDatetime | None = None
    end_time: AwareDatetime | None = None
    status: StatusChange | None = None

    @model_validator(mode="after")
    def validate_fields(self) -> "AppointmentUpdate":
        """Require a change and a start time whenever an end time is given."""
        if self.start_time is None and self.end_time is None and self.status is None:
            raise ValueError("Provide start_time, end_time or status")
        if self.end_time is not None and self.start_time is None:
            raise ValueError("end_time requires start_time")
        return self


class CancelRequest(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str = Field(..., min_length=1, max_length=500)


class CompleteRequest(BaseModel):
    """Schema for completing an appointment."""

    notes: str | None = Field(None, max_length=2000)
    treatment_notes: str | None = Field(None, max_length=5000)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    patient_id: UUID
    treatment_id: UUID
    practitioner_id: UUID
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    notes: str | None = None
    external_calendar_event_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_appointment(
        cls,
        appointment: Appointment,
        warnings: tuple[str, ...] | list[str] = (),
    ) -> "AppointmentResponse":
        """Build the response for an appointment and its operation warnings."""
        response = cls.model_validate(appointment)
        response.warnings = list(warnings)
        return response


class AppointmentListResponse(BaseModel):
    """Schema for a page of appointments."""

    items: list[AppointmentResponse]
    total: int
    page: int
    limit: int
    pages: int


class TimeSlotResponse(BaseModel):
    """Schema for a free slot."""

    model_config = ConfigDict(from_attributes=True)

    start: datetime
    end: datetime
    duration_minutes: int


class AvailabilityResponse(BaseModel):
    """Schema for a practitioner's free slots on a day."""

    practitioner_id: UUID
    day: date
    slots: list[TimeSlotResponse]


class StatusCount(BaseModel):
    """Number of appointments in one status."""

    status: AppointmentStatus
    count: int


class TreatmentCountResponse(BaseModel):
    """Number of bookings of one treatment."""

    model_config = ConfigDict(from_attributes=True)

    treatment_id: UUID
    name: str | None = None
    count: int


class AppointmentStatsResponse(BaseModel):
    """Schema for the appointment dashboard summary."""

    total: int
    today: int
    upcoming: int
    by_status: list[StatusCount]
    popular_treatments: list[TreatmentCountResponse]
    from_date: datetime | None = None
    to_date: datetime | None = None
