"""Appointment entity and related value types."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from estetica.scheduling.interval import Interval


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        """Check whether no further transitions are possible."""
        return self in TERMINAL_STATUSES

    @property
    def blocks_schedule(self) -> bool:
        """Check whether the appointment still occupies its interval."""
        return self is not AppointmentStatus.CANCELLED


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)

# Statuses swept by reminders and no-show marking
PENDING_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})


@dataclass
class Appointment:
    """A patient's booking with a practitioner for one treatment session."""

    id: UUID
    patient_id: UUID
    treatment_id: UUID
    practitioner_id: UUID
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    notes: str | None = None
    external_calendar_event_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def interval(self) -> Interval:
        """Booked interval."""
        return Interval(self.start_time, self.end_time)

    def as_booking(self) -> "Booking":
        """Project the appointment onto the fields conflict checks need."""
        return Booking(
            id=self.id,
            practitioner_id=self.practitioner_id,
            interval=self.interval,
            status=self.status,
        )


@dataclass(frozen=True)
class Booking:
    """An existing booking as seen by conflict detection and slot generation."""

    id: UUID
    practitioner_id: UUID
    interval: Interval
    status: AppointmentStatus = AppointmentStatus.SCHEDULED


@dataclass(frozen=True)
class RequiredProduct:
    """A consumable used by each session of a treatment."""

    product_id: UUID
    quantity_per_session: int


@dataclass(frozen=True)
class Treatment:
    """Catalog treatment, read-only to the scheduling core."""

    id: UUID
    name: str
    duration_minutes: int
    required_products: tuple[RequiredProduct, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StockConsumptionRecord:
    """Inventory decrement produced when an appointment is completed."""

    product_id: UUID
    quantity: int
    appointment_id: UUID
    reason: str = ""


@dataclass(frozen=True)
class MedicalRecordEntry:
    """Clinical note written when a session is completed."""

    patient_id: UUID
    appointment_id: UUID
    title: str
    description: str
