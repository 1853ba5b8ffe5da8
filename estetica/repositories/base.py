"""Persistence contracts used by the scheduling service."""

from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from estetica.scheduling.appointment import (
    Appointment,
    AppointmentStatus,
    Booking,
    MedicalRecordEntry,
    StockConsumptionRecord,
    Treatment,
)


class PersistenceError(Exception):
    """A store operation failed and its transaction was rolled back."""


class StaleAppointmentError(PersistenceError):
    """The appointment changed status under a concurrent writer."""


class BookingOverlapError(PersistenceError):
    """The store rejected an overlapping booking."""

    def __init__(self, message: str, conflicting_id: UUID | None = None):
        """Initialize with the conflicting booking if the store reported it."""
        super().__init__(message)
        self.conflicting_id = conflicting_id


@dataclass(frozen=True)
class TreatmentProgress:
    """A patient's prescribed course of a treatment."""

    id: UUID
    patient_id: UUID
    treatment_id: UUID
    sessions: int
    completed_sessions: int
    status: str
    end_date: datetime | None = None

    @property
    def is_completed(self) -> bool:
        """Check whether every prescribed session is done."""
        return self.status == "COMPLETED"


@runtime_checkable
class AppointmentRepository(Protocol):
    """Appointment persistence."""

    def transaction(self, lock_key: str | None = None) -> AbstractAsyncContextManager[None]:
        """
        Open a unit of work.

        Writes inside the block commit together on exit and roll back if the
        block raises. When ``lock_key`` is given, units of work sharing the
        key are serialized, which makes read-check-write sequences safe.
        """
        ...

    async def get_appointment(self, appointment_id: UUID) -> Appointment | None:
        """Get an appointment by ID."""
        ...

    async def load_bookings(
        self,
        practitioner_id: UUID,
        start: datetime,
        end: datetime,
    ) -> list[Booking]:
        """Load a practitioner's non-cancelled bookings overlapping ``[start, end)``."""
        ...

    async def list_appointments(
        self,
        practitioner_id: UUID | None = None,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
        end_before: datetime | None = None,
        created_before: datetime | None = None,
        statuses: Iterable[AppointmentStatus] | None = None,
        patient_id: UUID | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Appointment]:
        """List appointments ordered by start time."""
        ...

    async def count_appointments(
        self,
        practitioner_id: UUID | None = None,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
        statuses: Iterable[AppointmentStatus] | None = None,
        patient_id: UUID | None = None,
    ) -> int:
        """Count appointments matching the same filters as ``list_appointments``."""
        ...

    async def add_appointment(self, appointment: Appointment) -> Appointment:
        """Persist a new appointment."""
        ...

    async def link_calendar_event(
        self,
        appointment_id: UUID,
        event_id: str,
        now: datetime,
    ) -> Appointment | None:
        """
        Store the external calendar event id of an appointment.

        Only the event id and ``updated_at`` are written, so changes made by
        other writers since the appointment was read are kept.

        Returns:
            The stored appointment, or None if it no longer exists
        """
        ...

    async def update_appointment(
        self,
        appointment: Appointment,
        expected_status: AppointmentStatus,
    ) -> Appointment:
        """
        Persist appointment changes.

        Raises:
            StaleAppointmentError: If the stored status is no longer ``expected_status``
        """
        ...


@runtime_checkable
class TreatmentCatalog(Protocol):
    """Read-only treatment lookup."""

    async def get_treatment(self, treatment_id: UUID) -> Treatment | None:
        """Get a treatment with its required products."""
        ...


@runtime_checkable
class ClinicalRecords(Protocol):
    """Writes performed atomically with an appointment completion."""

    async def apply_stock_consumption(
        self,
        records: list[StockConsumptionRecord],
        actor_id: UUID,
    ) -> None:
        """Record stock movements and decrement on-hand stock."""
        ...

    async def advance_treatment_progress(
        self,
        patient_id: UUID,
        treatment_id: UUID,
        now: datetime,
    ) -> TreatmentProgress | None:
        """Count one more completed session of the patient's active course."""
        ...

    async def add_medical_record(self, entry: MedicalRecordEntry, now: datetime) -> None:
        """Store a clinical note."""
        ...


@runtime_checkable
class ReminderLedger(Protocol):
    """Idempotency ledger for reminder sweeps."""

    async def record_reminder(self, appointment_id: UUID, kind: str, now: datetime) -> bool:
        """
        Record that a reminder went out.

        Returns:
            False if the reminder had already been recorded
        """
        ...

    async def count_by_status(self, start: datetime | None, end: datetime | None) -> dict[str, int]:
        """Count appointments starting in ``[start, end)`` by status; a None bound is open."""
        ...

    async def count_by_treatment(
        self,
        start: datetime | None,
        end: datetime | None,
        limit: int = 5,
    ) -> list[tuple[UUID, int]]:
        """Most booked treatments starting in ``[start, end)``, most booked first."""
        ...


@runtime_checkable
class ClinicDirectory(Protocol):
    """Lookup of the patients and practitioners appointments refer to."""

    async def patient_exists(self, patient_id: UUID) -> bool:
        """Check that an active patient exists."""
        ...

    async def practitioner_exists(self, practitioner_id: UUID) -> bool:
        """Check that an active practitioner exists."""
        ...


class ClinicStore(
    AppointmentRepository,
    TreatmentCatalog,
    ClinicalRecords,
    ReminderLedger,
    ClinicDirectory,
    Protocol,
):
    """Everything the scheduling service needs from persistence."""
