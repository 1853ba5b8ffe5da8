"""In-process clinic store.

Used by the test suite and for local runs without PostgreSQL. All units of
work are serialized behind one ``asyncio.Lock`` and each one snapshots the
state on entry, so a failing block leaves no partial writes behind.
"""

import asyncio
import copy
from collections import Counter
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from uuid import UUID, uuid4

import structlog

from estetica.repositories.base import (
    PersistenceError,
    StaleAppointmentError,
    TreatmentProgress,
)
from estetica.scheduling.appointment import (
    Appointment,
    AppointmentStatus,
    Booking,
    MedicalRecordEntry,
    RequiredProduct,
    StockConsumptionRecord,
    Treatment,
)

logger = structlog.get_logger(__name__)


@dataclass
class ProductStock:
    """On-hand stock of a consumable."""

    id: UUID
    name: str
    current_stock: int
    min_stock: int = 0


@dataclass
class StockMovement:
    """Signed stock change."""

    product_id: UUID
    user_id: UUID
    type: str
    quantity: int
    reason: str
    reference: UUID
    created_at: datetime


@dataclass
class _State:
    appointments: dict[UUID, Appointment] = field(default_factory=dict)
    treatments: dict[UUID, Treatment] = field(default_factory=dict)
    products: dict[UUID, ProductStock] = field(default_factory=dict)
    stock_movements: list[StockMovement] = field(default_factory=list)
    courses: dict[UUID, TreatmentProgress] = field(default_factory=dict)
    medical_records: list[MedicalRecordEntry] = field(default_factory=list)
    reminders: set[tuple[UUID, str]] = field(default_factory=set)
    patients: set[UUID] = field(default_factory=set)
    practitioners: set[UUID] = field(default_factory=set)


class InMemoryClinicStore:
    """Clinic store backed by plain Python containers."""

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._state = _State()
        self._lock = asyncio.Lock()

    # Seeding helpers

    def add_patient(self, patient_id: UUID | None = None) -> UUID:
        """Register a patient."""
        patient_id = patient_id or uuid4()
        self._state.patients.add(patient_id)
        return patient_id

    def add_practitioner(self, practitioner_id: UUID | None = None) -> UUID:
        """Register a practitioner."""
        practitioner_id = practitioner_id or uuid4()
        self._state.practitioners.add(practitioner_id)
        return practitioner_id

    def add_treatment(
        self,
        name: str,
        duration_minutes: int,
        required_products: Iterable[tuple[UUID, int]] = (),
        treatment_id: UUID | None = None,
    ) -> Treatment:
        """Register a catalog treatment."""
        treatment = Treatment(
            id=treatment_id or uuid4(),
            name=name,
            duration_minutes=duration_minutes,
            required_products=tuple(
                RequiredProduct(product_id=product_id, quantity_per_session=quantity)
                for product_id, quantity in required_products
            ),
        )
        self._state.treatments[treatment.id] = treatment
        return treatment

    def add_product(
        self,
        name: str,
        current_stock: int,
        min_stock: int = 0,
        product_id: UUID | None = None,
    ) -> ProductStock:
        """Register a product with its on-hand stock."""
        product = ProductStock(
            id=product_id or uuid4(),
            name=name,
            current_stock=current_stock,
            min_stock=min_stock,
        )
        self._state.products[product.id] = product
        return product

    def add_treatment_course(self, patient_id: UUID, treatment_id: UUID, sessions: int) -> TreatmentProgress:
        """Prescribe a course of sessions to a patient."""
        course = TreatmentProgress(
            id=uuid4(),
            patient_id=patient_id,
            treatment_id=treatment_id,
            sessions=sessions,
            completed_sessions=0,
            status="ACTIVE",
        )
        self._state.courses[course.id] = course
        return course

    # Inspection helpers

    def product(self, product_id: UUID) -> ProductStock:
        """Get a product's current stock."""
        return self._state.products[product_id]

    def course(self, course_id: UUID) -> TreatmentProgress:
        """Get a treatment course."""
        return self._state.courses[course_id]

    @property
    def stock_movements(self) -> list[StockMovement]:
        """Recorded stock movements."""
        return list(self._state.stock_movements)

    @property
    def medical_records(self) -> list[MedicalRecordEntry]:
        """Stored clinical notes."""
        return list(self._state.medical_records)

    # Unit of work

    @asynccontextmanager
    async def transaction(self, lock_key: str | None = None) -> AsyncIterator[None]:
        """Serialize the block and roll the state back if it raises."""
        async with self._lock:
            snapshot = copy.deepcopy(self._state)
            try:
                yield
            except BaseException:
                self._state = snapshot
                raise

    # Appointments

    async def get_appointment(self, appointment_id: UUID) -> Appointment | None:
        """Get an appointment by ID."""
        appointment = self._state.appointments.get(appointment_id)
        return replace(appointment) if appointment else None

    async def load_bookings(self, practitioner_id: UUID, start: datetime, end: datetime) -> list[Booking]:
        """Load a practitioner's non-cancelled bookings overlapping ``[start, end)``."""
        return [
            appointment.as_booking()
            for appointment in self._sorted(self._state.appointments.values())
            if appointment.practitioner_id == practitioner_id
            and appointment.status.blocks_schedule
            and appointment.start_time < end
            and appointment.end_time > start
        ]

    def _matching(
        self,
        practitioner_id: UUID | None = None,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
        end_before: datetime | None = None,
        created_before: datetime | None = None,
        statuses: Iterable[AppointmentStatus] | None = None,
        patient_id: UUID | None = None,
    ) -> list[Appointment]:
        wanted = set(statuses) if statuses is not None else None
        result = []
        for appointment in self._sorted(self._state.appointments.values()):
            if practitioner_id is not None and appointment.practitioner_id != practitioner_id:
                continue
            if patient_id is not None and appointment.patient_id != patient_id:
                continue
            if start_from is not None and appointment.start_time < start_from:
                continue
            if start_before is not None and appointment.start_time >= start_before:
                continue
            if end_before is not None and appointment.end_time >= end_before:
                continue
            if created_before is not None and (
                appointment.created_at is None or appointment.created_at >= created_before
            ):
                continue
            if wanted is not None and appointment.status not in wanted:
                continue
            result.append(appointment)
        return result

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
        matching = self._matching(
            practitioner_id=practitioner_id,
            start_from=start_from,
            start_before=start_before,
            end_before=end_before,
            created_before=created_before,
            statuses=statuses,
            patient_id=patient_id,
        )
        page = matching[offset:] if limit is None else matching[offset : offset + limit]
        return [replace(appointment) for appointment in page]

    async def count_appointments(
        self,
        practitioner_id: UUID | None = None,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
        statuses: Iterable[AppointmentStatus] | None = None,
        patient_id: UUID | None = None,
    ) -> int:
        """Count appointments matching the listing filters."""
        return len(
            self._matching(
                practitioner_id=practitioner_id,
                start_from=start_from,
                start_before=start_before,
                statuses=statuses,
                patient_id=patient_id,
            )
        )

    async def add_appointment(self, appointment: Appointment) -> Appointment:
        """Persist a new appointment."""
        now = datetime.now(UTC)
        stored = replace(
            appointment,
            created_at=appointment.created_at or now,
            updated_at=appointment.updated_at or now,
        )
        self._state.appointments[stored.id] = stored
        return replace(stored)

    async def update_appointment(
        self,
        appointment: Appointment,
        expected_status: AppointmentStatus,
    ) -> Appointment:
        """Persist appointment changes guarded by the expected current status."""
        current = self._state.appointments.get(appointment.id)
        if current is None:
            raise PersistenceError(f"Appointment {appointment.id} does not exist")
        if current.status is not expected_status:
            raise StaleAppointmentError(
                f"Appointment {appointment.id} is {current.status.value}, expected {expected_status.value}"
            )
        self._state.appointments[appointment.id] = replace(appointment)
        return replace(appointment)

    async def link_calendar_event(self, appointment_id: UUID, event_id: str, now: datetime) -> Appointment | None:
        """Store the external calendar event id, leaving every other field as stored."""
        current = self._state.appointments.get(appointment_id)
        if current is None:
            return None
        linked = replace(current, external_calendar_event_id=event_id, updated_at=now)
        self._state.appointments[appointment_id] = linked
        return replace(linked)

    # Directory

    async def patient_exists(self, patient_id: UUID) -> bool:
        """Check that a patient is registered."""
        return patient_id in self._state.patients

    async def practitioner_exists(self, practitioner_id: UUID) -> bool:
        """Check that a practitioner is registered."""
        return practitioner_id in self._state.practitioners

    # Catalog

    async def get_treatment(self, treatment_id: UUID) -> Treatment | None:
        """Get a treatment with its required products."""
        return self._state.treatments.get(treatment_id)

    # Completion writes

    async def apply_stock_consumption(self, records: list[StockConsumptionRecord], actor_id: UUID) -> None:
        """Record stock movements and decrement on-hand stock."""
        now = datetime.now(UTC)
        for record in records:
            product = self._state.products.get(record.product_id)
            if product is None:
                raise PersistenceError(f"Product {record.product_id} does not exist")

            self._state.stock_movements.append(
                StockMovement(
                    product_id=record.product_id,
                    user_id=actor_id,
                    type="TREATMENT_USE",
                    quantity=record.quantity,
                    reason=record.reason,
                    reference=record.appointment_id,
                    created_at=now,
                )
            )
            product.current_stock += record.quantity

            if product.current_stock <= product.min_stock:
                logger.warning(
                    "low_stock_alert",
                    product_id=str(product.id),
                    current_stock=product.current_stock,
                    min_stock=product.min_stock,
                )

    async def advance_treatment_progress(
        self,
        patient_id: UUID,
        treatment_id: UUID,
        now: datetime,
    ) -> TreatmentProgress | None:
        """Count one more completed session of the patient's active course."""
        for course in self._state.courses.values():
            if (
                course.patient_id == patient_id
                and course.treatment_id == treatment_id
                and course.status == "ACTIVE"
            ):
                completed = course.completed_sessions + 1
                finished = completed >= course.sessions
                updated = replace(
                    course,
                    completed_sessions=completed,
                    status="COMPLETED" if finished else "ACTIVE",
                    end_date=now if finished else None,
                )
                self._state.courses[course.id] = updated
                return updated
        return None

    async def add_medical_record(self, entry: MedicalRecordEntry, now: datetime) -> None:
        """Store a clinical note."""
        self._state.medical_records.append(entry)

    # Sweeps

    async def record_reminder(self, appointment_id: UUID, kind: str, now: datetime) -> bool:
        """Record that a reminder went out; False if it already had."""
        key = (appointment_id, kind)
        if key in self._state.reminders:
            return False
        self._state.reminders.add(key)
        return True

    async def count_by_status(self, start: datetime | None, end: datetime | None) -> dict[str, int]:
        """Count appointments starting in ``[start, end)`` by status."""
        counts = Counter(
            appointment.status.value
            for appointment in self._matching(start_from=start, start_before=end)
        )
        return dict(counts)

    async def count_by_treatment(
        self,
        start: datetime | None,
        end: datetime | None,
        limit: int = 5,
    ) -> list[tuple[UUID, int]]:
        """Most booked treatments starting in ``[start, end)``."""
        counts = Counter(
            appointment.treatment_id
            for appointment in self._matching(start_from=start, start_before=end)
        )
        return sorted(counts.items(), key=lambda item: (-item[1], str(item[0])))[:limit]

    @staticmethod
    def _sorted(appointments: Iterable[Appointment]) -> list[Appointment]:
        return sorted(appointments, key=lambda appointment: (appointment.start_time, str(appointment.id)))
