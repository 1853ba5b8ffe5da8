"""PostgreSQL clinic store using SQLAlchemy Core."""

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from estetica.models.appointments import (
    APPOINTMENTS_NO_OVERLAP,
    appointment_reminders,
    appointments,
)
from estetica.models.inventory import products, stock_movements
from estetica.models.people import patients, practitioners
from estetica.models.treatments import (
    medical_records,
    patient_treatments,
    treatment_products,
    treatments,
)
from estetica.repositories.base import (
    BookingOverlapError,
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

# Columns persisted for an appointment
_APPOINTMENT_FIELDS = (
    "patient_id",
    "treatment_id",
    "practitioner_id",
    "start_time",
    "end_time",
    "notes",
    "external_calendar_event_id",
    "created_at",
    "updated_at",
    "cancelled_at",
    "completed_at",
)


def _row_to_appointment(row: Any) -> Appointment:
    data = dict(row._mapping)
    return Appointment(
        id=data["id"],
        patient_id=data["patient_id"],
        treatment_id=data["treatment_id"],
        practitioner_id=data["practitioner_id"],
        start_time=data["start_time"],
        end_time=data["end_time"],
        status=AppointmentStatus(data["status"]),
        notes=data["notes"],
        external_calendar_event_id=data["external_calendar_event_id"],
        created_at=data["created_at"],
        updated_at=data["updated_at"],
        cancelled_at=data["cancelled_at"],
        completed_at=data["completed_at"],
    )


def _appointment_values(appointment: Appointment) -> dict[str, Any]:
    values = {name: getattr(appointment, name) for name in _APPOINTMENT_FIELDS}
    values["status"] = appointment.status.value
    # Let the server fill audit timestamps that are still unset
    return {key: value for key, value in values.items() if value is not None or key == "notes"}


def _appointment_conditions(
    practitioner_id: UUID | None = None,
    patient_id: UUID | None = None,
    start_from: datetime | None = None,
    start_before: datetime | None = None,
    statuses: Iterable[AppointmentStatus] | None = None,
) -> list[Any]:
    conditions = []
    if practitioner_id is not None:
        conditions.append(appointments.c.practitioner_id == practitioner_id)
    if patient_id is not None:
        conditions.append(appointments.c.patient_id == patient_id)
    if start_from is not None:
        conditions.append(appointments.c.start_time >= start_from)
    if start_before is not None:
        conditions.append(appointments.c.start_time < start_before)
    if statuses is not None:
        conditions.append(appointments.c.status.in_([s.value for s in statuses]))
    return conditions


class SqlClinicStore:
    """Clinic store backed by PostgreSQL."""

    def __init__(self, db: AsyncSession):
        """Initialize store with database session."""
        self.db = db

    @asynccontextmanager
    async def transaction(self, lock_key: str | None = None) -> AsyncIterator[None]:
        """
        Run the block in one database transaction.

        With a ``lock_key`` a transaction-scoped advisory lock is taken first,
        so concurrent units of work on the same key run one after another.
        The lock is released by PostgreSQL on commit or rollback.

        Raises:
            BookingOverlapError: If the no-overlap exclusion constraint fired
            PersistenceError: For any other database failure
        """
        try:
            if lock_key:
                await self.db.execute(select(func.pg_advisory_xact_lock(func.hashtext(lock_key))))
            yield
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if APPOINTMENTS_NO_OVERLAP in str(e.orig):
                logger.warning("booking_overlap_rejected", lock_key=lock_key)
                raise BookingOverlapError("Practitioner already has a booking in that interval") from e
            logger.error("transaction_integrity_error", lock_key=lock_key, error=str(e.orig))
            raise PersistenceError(str(e.orig)) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("transaction_failed", lock_key=lock_key, error=str(e))
            raise PersistenceError(str(e)) from e
        except BaseException:
            await self.db.rollback()
            raise

    # Appointments

    async def get_appointment(self, appointment_id: UUID) -> Appointment | None:
        """Get an appointment by ID."""
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        result = await self.db.execute(stmt)
        row = result.fetchone()
        return _row_to_appointment(row) if row else None

    async def load_bookings(self, practitioner_id: UUID, start: datetime, end: datetime) -> list[Booking]:
        """Load a practitioner's non-cancelled bookings overlapping ``[start, end)``."""
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.practitioner_id == practitioner_id,
                    appointments.c.status != AppointmentStatus.CANCELLED.value,
                    appointments.c.start_time < end,
                    appointments.c.end_time > start,
                )
            )
            .order_by(appointments.c.start_time)
        )
        result = await self.db.execute(stmt)
        return [_row_to_appointment(row).as_booking() for row in result.fetchall()]

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
        conditions = _appointment_conditions(
            practitioner_id=practitioner_id,
            patient_id=patient_id,
            start_from=start_from,
            start_before=start_before,
            statuses=statuses,
        )
        if end_before is not None:
            conditions.append(appointments.c.end_time < end_before)
        if created_before is not None:
            conditions.append(appointments.c.created_at < created_before)

        stmt = select(appointments).order_by(appointments.c.start_time, appointments.c.id)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.db.execute(stmt)
        return [_row_to_appointment(row) for row in result.fetchall()]

    async def count_appointments(
        self,
        practitioner_id: UUID | None = None,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
        statuses: Iterable[AppointmentStatus] | None = None,
        patient_id: UUID | None = None,
    ) -> int:
        """Count appointments matching the listing filters."""
        conditions = _appointment_conditions(
            practitioner_id=practitioner_id,
            patient_id=patient_id,
            start_from=start_from,
            start_before=start_before,
            statuses=statuses,
        )
        stmt = select(func.count()).select_from(appointments)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def add_appointment(self, appointment: Appointment) -> Appointment:
        """Persist a new appointment."""
        values = _appointment_values(appointment)
        values["id"] = appointment.id
        stmt = insert(appointments).values(**values).returning(appointments)
        result = await self._write_appointment(stmt, appointment)
        return _row_to_appointment(result.fetchone())

    async def update_appointment(
        self,
        appointment: Appointment,
        expected_status: AppointmentStatus,
    ) -> Appointment:
        """Persist appointment changes guarded by the expected current status."""
        values = _appointment_values(appointment)
        values.pop("created_at", None)
        values["updated_at"] = appointment.updated_at or datetime.now(UTC)

        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment.id,
                    appointments.c.status == expected_status.value,
                )
            )
            .values(**values)
            .returning(appointments)
        )
        result = await self._write_appointment(stmt, appointment)
        row = result.fetchone()
        if row is None:
            raise StaleAppointmentError(
                f"Appointment {appointment.id} is no longer {expected_status.value}"
            )
        return _row_to_appointment(row)

    async def link_calendar_event(self, appointment_id: UUID, event_id: str, now: datetime) -> Appointment | None:
        """Store the external calendar event id, leaving every other column as stored."""
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(external_calendar_event_id=event_id, updated_at=now)
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        return _row_to_appointment(row) if row else None

    async def _write_appointment(self, stmt: Any, appointment: Appointment) -> Any:
        """
        Execute an appointment write, reporting which booking an overlap hit.

        Raises:
            BookingOverlapError: If the no-overlap exclusion constraint fired
        """
        try:
            return await self.db.execute(stmt)
        except IntegrityError as e:
            if APPOINTMENTS_NO_OVERLAP not in str(e.orig):
                raise
            await self.db.rollback()
            bookings = await self.load_bookings(
                appointment.practitioner_id, appointment.start_time, appointment.end_time
            )
            conflicting_id = next((b.id for b in bookings if b.id != appointment.id), None)
            logger.warning(
                "booking_overlap_rejected",
                appointment_id=str(appointment.id),
                conflicting_id=str(conflicting_id) if conflicting_id else None,
            )
            raise BookingOverlapError(
                "Practitioner already has a booking in that interval", conflicting_id
            ) from e

    # Directory

    async def patient_exists(self, patient_id: UUID) -> bool:
        """Check that an active patient exists."""
        stmt = select(patients.c.id).where(and_(patients.c.id == patient_id, patients.c.is_active))
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def practitioner_exists(self, practitioner_id: UUID) -> bool:
        """Check that an active practitioner exists."""
        stmt = select(practitioners.c.id).where(
            and_(practitioners.c.id == practitioner_id, practitioners.c.is_active)
        )
        result = await self.db.execute(stmt)
        return result.first() is not None

    # Catalog

    async def get_treatment(self, treatment_id: UUID) -> Treatment | None:
        """Get a treatment with its required products."""
        result = await self.db.execute(select(treatments).where(treatments.c.id == treatment_id))
        row = result.fetchone()
        if not row:
            return None

        products_result = await self.db.execute(
            select(treatment_products.c.product_id, treatment_products.c.quantity)
            .where(treatment_products.c.treatment_id == treatment_id)
            .order_by(treatment_products.c.id)
        )

        return Treatment(
            id=row.id,
            name=row.name,
            duration_minutes=row.duration_minutes,
            required_products=tuple(
                RequiredProduct(product_id=p.product_id, quantity_per_session=p.quantity)
                for p in products_result.fetchall()
            ),
        )

    # Completion writes

    async def apply_stock_consumption(self, records: list[StockConsumptionRecord], actor_id: UUID) -> None:
        """Record stock movements and decrement on-hand stock."""
        for record in records:
            stmt = (
                update(products)
                .where(products.c.id == record.product_id)
                .values(
                    current_stock=products.c.current_stock + record.quantity,
                    updated_at=func.now(),
                )
                .returning(products.c.id, products.c.current_stock, products.c.min_stock)
            )
            result = await self.db.execute(stmt)
            product = result.fetchone()
            if product is None:
                raise PersistenceError(f"Product {record.product_id} does not exist")

            await self.db.execute(
                insert(stock_movements).values(
                    product_id=record.product_id,
                    user_id=actor_id,
                    type="TREATMENT_USE",
                    quantity=record.quantity,
                    reason=record.reason,
                    reference=record.appointment_id,
                )
            )

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
        stmt = (
            select(patient_treatments)
            .where(
                and_(
                    patient_treatments.c.patient_id == patient_id,
                    patient_treatments.c.treatment_id == treatment_id,
                    patient_treatments.c.status == "ACTIVE",
                )
            )
            .order_by(patient_treatments.c.start_date)
            .limit(1)
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        course = result.fetchone()
        if course is None:
            return None

        completed = course.completed_sessions + 1
        finished = completed >= course.sessions
        result = await self.db.execute(
            update(patient_treatments)
            .where(patient_treatments.c.id == course.id)
            .values(
                completed_sessions=completed,
                status="COMPLETED" if finished else "ACTIVE",
                end_date=now if finished else None,
            )
            .returning(patient_treatments)
        )
        row = result.fetchone()
        return TreatmentProgress(
            id=row.id,
            patient_id=row.patient_id,
            treatment_id=row.treatment_id,
            sessions=row.sessions,
            completed_sessions=row.completed_sessions,
            status=row.status,
            end_date=row.end_date,
        )

    async def add_medical_record(self, entry: MedicalRecordEntry, now: datetime) -> None:
        """Store a clinical note."""
        await self.db.execute(
            insert(medical_records).values(
                patient_id=entry.patient_id,
                appointment_id=entry.appointment_id,
                title=entry.title,
                description=entry.description,
                record_date=now,
            )
        )

    # Sweeps

    async def record_reminder(self, appointment_id: UUID, kind: str, now: datetime) -> bool:
        """Record that a reminder went out; False if it already had."""
        stmt = (
            pg_insert(appointment_reminders)
            .values(appointment_id=appointment_id, kind=kind, sent_at=now)
            .on_conflict_do_nothing(index_elements=["appointment_id", "kind"])
            .returning(appointment_reminders.c.id)
        )
        result = await self.db.execute(stmt)
        return result.fetchone() is not None

    async def count_by_status(self, start: datetime | None, end: datetime | None) -> dict[str, int]:
        """Count appointments starting in ``[start, end)`` by status."""
        stmt = select(appointments.c.status, func.count().label("total")).group_by(appointments.c.status)
        conditions = _appointment_conditions(start_from=start, start_before=end)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        result = await self.db.execute(stmt)
        return {row.status: row.total for row in result.fetchall()}

    async def count_by_treatment(
        self,
        start: datetime | None,
        end: datetime | None,
        limit: int = 5,
    ) -> list[tuple[UUID, int]]:
        """Most booked treatments starting in ``[start, end)``."""
        total = func.count().label("total")
        stmt = (
            select(appointments.c.treatment_id, total)
            .group_by(appointments.c.treatment_id)
            .order_by(total.desc(), appointments.c.treatment_id)
            .limit(limit)
        )
        conditions = _appointment_conditions(start_from=start, start_before=end)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        result = await self.db.execute(stmt)
        return [(row.treatment_id, row.total) for row in result.fetchall()]
