"""Integration tests for the PostgreSQL clinic store.

These run only when TEST_DATABASE_URL points at a disposable database.
"""

import asyncio
import os
from collections.abc import AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import insert, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from estetica.models import metadata, patients, practitioners, products, treatment_products, treatments
from estetica.repositories.base import BookingOverlapError
from estetica.repositories.sql import SqlClinicStore
from estetica.scheduling.appointment import Appointment, AppointmentStatus
from estetica.scheduling.permissions import Actor, Role
from estetica.scheduling.results import ErrorKind
from estetica.services.scheduling_service import SchedulingService
from helpers import at

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL not set")

NO_OVERLAP_DDL = """
ALTER TABLE appointments
ADD CONSTRAINT appointments_practitioner_no_overlap
EXCLUDE USING gist (
    practitioner_id WITH =,
    tstzrange(start_time, end_time, '[)') WITH &&
)
WHERE (status <> 'cancelled')
"""


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create the schema in the test database and drop it afterwards."""
    url = TEST_DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
    engine = create_async_engine(url, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "btree_gist"'))
        await conn.run_sync(metadata.create_all)
        await conn.execute(text(NO_OVERLAP_DDL))

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def seeded(session_factory) -> dict[str, UUID]:
    """A one-hour treatment consuming two units of one product, a patient and a practitioner."""
    product_id, treatment_id = uuid4(), uuid4()
    patient_id, practitioner_id = uuid4(), uuid4()
    async with session_factory() as session:
        await session.execute(insert(products).values(id=product_id, name="Botulinum toxin", current_stock=5))
        await session.execute(insert(treatments).values(id=treatment_id, name="Botox", duration_minutes=60))
        await session.execute(
            insert(treatment_products).values(treatment_id=treatment_id, product_id=product_id, quantity=2)
        )
        await session.execute(insert(patients).values(id=patient_id, first_name="Lucia", last_name="Ferreyra"))
        await session.execute(
            insert(practitioners).values(id=practitioner_id, first_name="Marina", last_name="Quiroga")
        )
        await session.commit()
    return {
        "product_id": product_id,
        "treatment_id": treatment_id,
        "patient_id": patient_id,
        "practitioner_id": practitioner_id,
    }


def appointment_for(treatment_id: UUID, practitioner_id: UUID, hour: int) -> Appointment:
    return Appointment(
        id=uuid4(),
        patient_id=uuid4(),
        treatment_id=treatment_id,
        practitioner_id=practitioner_id,
        start_time=at(hour),
        end_time=at(hour + 1),
    )


@pytest.mark.asyncio
async def test_appointment_round_trip(session_factory, seeded):
    practitioner = uuid4()
    async with session_factory() as session:
        store = SqlClinicStore(session)
        async with store.transaction(lock_key=f"practitioner:{practitioner}"):
            added = await store.add_appointment(appointment_for(seeded["treatment_id"], practitioner, 10))

        loaded = await store.get_appointment(added.id)
        bookings = await store.load_bookings(practitioner, at(8), at(18))

    assert loaded.status is AppointmentStatus.SCHEDULED
    assert loaded.start_time == at(10)
    assert loaded.created_at is not None
    assert [booking.id for booking in bookings] == [added.id]


@pytest.mark.asyncio
async def test_exclusion_constraint_rejects_overlap(session_factory, seeded):
    """The database refuses an overlap even when the application check is skipped."""
    practitioner = uuid4()
    async with session_factory() as session:
        store = SqlClinicStore(session)
        async with store.transaction():
            first = await store.add_appointment(appointment_for(seeded["treatment_id"], practitioner, 10))

        overlapping = appointment_for(seeded["treatment_id"], practitioner, 10)
        with pytest.raises(BookingOverlapError) as exc_info:
            async with store.transaction():
                await store.add_appointment(overlapping)

    assert exc_info.value.conflicting_id == first.id


@pytest.mark.asyncio
async def test_concurrent_bookings_across_sessions(session_factory, seeded):
    """Two sessions booking the same slot end with exactly one appointment."""
    practitioner = seeded["practitioner_id"]
    actor = Actor(id=uuid4(), role=Role.SECRETARIA)

    async def book():
        async with session_factory() as session:
            service = SchedulingService(SqlClinicStore(session))
            return await service.create(actor, seeded["patient_id"], seeded["treatment_id"], practitioner, at(10))

    results = await asyncio.gather(book(), book())

    assert sorted(result.ok for result in results) == [False, True]
    assert next(r for r in results if not r.ok).error.kind is ErrorKind.SCHEDULE_CONFLICT


@pytest.mark.asyncio
async def test_completion_writes_stock_and_record(session_factory, seeded):
    practitioner = seeded["practitioner_id"]
    secretary = Actor(id=uuid4(), role=Role.SECRETARIA)
    medico = Actor(id=uuid4(), role=Role.MEDICO)

    async with session_factory() as session:
        service = SchedulingService(SqlClinicStore(session))
        appointment = (
            await service.create(secretary, seeded["patient_id"], seeded["treatment_id"], practitioner, at(10))
        ).value
        await service.confirm(secretary, appointment.id)
        result = await service.complete(medico, appointment.id, treatment_notes="Forehead, 20 units")

        stock = await session.execute(
            text("SELECT current_stock FROM products WHERE id = :id"), {"id": seeded["product_id"]}
        )
        records = await session.execute(text("SELECT count(*) FROM medical_records"))

    assert result.ok, result.error
    assert stock.scalar_one() == 3
    assert records.scalar_one() == 1


@pytest.mark.asyncio
async def test_reminder_ledger_is_idempotent(session_factory, seeded):
    practitioner = uuid4()
    async with session_factory() as session:
        store = SqlClinicStore(session)
        async with store.transaction():
            added = await store.add_appointment(appointment_for(seeded["treatment_id"], practitioner, 10))

        async with store.transaction():
            first = await store.record_reminder(added.id, "reminder24h", at(9))
        async with store.transaction():
            second = await store.record_reminder(added.id, "reminder24h", at(9))

    assert (first, second) == (True, False)


@pytest.mark.asyncio
async def test_directory_lookups(session_factory, seeded):
    async with session_factory() as session:
        store = SqlClinicStore(session)
        assert await store.patient_exists(seeded["patient_id"])
        assert await store.practitioner_exists(seeded["practitioner_id"])
        assert not await store.patient_exists(uuid4())
        assert not await store.practitioner_exists(seeded["patient_id"])


@pytest.mark.asyncio
async def test_link_calendar_event_keeps_other_columns(session_factory, seeded):
    """Linking an event id never overwrites a reschedule stored in between."""
    practitioner = uuid4()
    async with session_factory() as session:
        store = SqlClinicStore(session)
        async with store.transaction():
            added = await store.add_appointment(appointment_for(seeded["treatment_id"], practitioner, 10))
        async with store.transaction():
            await session.execute(
                text("UPDATE appointments SET start_time = :start, end_time = :end WHERE id = :id"),
                {"start": at(14), "end": at(15), "id": added.id},
            )
        async with store.transaction():
            linked = await store.link_calendar_event(added.id, "evt-1", at(9))
        async with store.transaction():
            missing = await store.link_calendar_event(uuid4(), "evt-2", at(9))

    assert linked.external_calendar_event_id == "evt-1"
    assert (linked.start_time, linked.end_time) == (at(14), at(15))
    assert missing is None


@pytest.mark.asyncio
async def test_search_counts(session_factory, seeded):
    practitioner = uuid4()
    async with session_factory() as session:
        store = SqlClinicStore(session)
        async with store.transaction():
            for hour in (9, 11, 14):
                await store.add_appointment(appointment_for(seeded["treatment_id"], practitioner, hour))

        page = await store.list_appointments(practitioner_id=practitioner, limit=2, offset=2)
        total = await store.count_appointments(practitioner_id=practitioner)
        by_treatment = await store.count_by_treatment(None, None)

    assert [a.start_time for a in page] == [at(14)]
    assert total == 3
    assert by_treatment == [(seeded["treatment_id"], 3)]
