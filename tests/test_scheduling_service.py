"""Tests for the scheduling service."""

import asyncio
from datetime import timedelta
from fnmatch import fnmatch
from typing import Any
from uuid import UUID, uuid4

import pytest

from estetica.repositories.memory import InMemoryClinicStore
from estetica.scheduling.appointment import AppointmentStatus
from estetica.scheduling.permissions import Actor, Role
from estetica.scheduling.results import ErrorKind
from estetica.scheduling.state_machine import NotificationKind
from estetica.services.scheduling_service import SchedulingService, availability_cache_key
from helpers import MONDAY, SUNDAY, GatedCalendar, RecordingCalendar, RecordingNotifier, at


class DictCache:
    """Cache double with the CacheManager interface."""

    def __init__(self):
        self.data: dict[str, Any] = {}
        self.reads = 0

    def get_json(self, key: str) -> Any | None:
        self.reads += 1
        return self.data.get(key)

    def set_json(self, key: str, value: Any, ttl: int | None = None) -> bool:
        self.data[key] = value
        return True

    def delete_pattern(self, pattern: str) -> int:
        matched = [key for key in self.data if fnmatch(key, pattern)]
        for key in matched:
            del self.data[key]
        return len(matched)


@pytest.fixture
def book(service, secretary, patient_id, treatment, practitioner_id):
    """Book the filler treatment for the default patient and practitioner."""

    async def _book(start, end=None, practitioner=None, patient=None):
        return await service.create(
            secretary,
            patient_id=patient or patient_id,
            treatment_id=treatment.id,
            practitioner_id=practitioner or practitioner_id,
            start=start,
            end=end,
        )

    return _book


# Booking


@pytest.mark.asyncio
async def test_create_books_scheduled_appointment(book, notifier, calendar):
    result = await book(at(10))

    assert result.ok, result.error
    appointment = result.value
    assert appointment.status is AppointmentStatus.SCHEDULED
    assert (appointment.start_time, appointment.end_time) == (at(10), at(11))
    assert appointment.external_calendar_event_id == "evt-1"
    assert notifier.sent == [(NotificationKind.CONFIRMATION, appointment.id)]
    assert result.warnings == ()


@pytest.mark.asyncio
async def test_create_with_explicit_end(book):
    result = await book(at(10), at(10, 30))
    assert result.value.end_time == at(10, 30)


@pytest.mark.asyncio
async def test_create_unknown_treatment(service, secretary, patient_id, practitioner_id):
    result = await service.create(secretary, patient_id, uuid4(), practitioner_id, at(10))
    assert result.error.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_create_unknown_patient(service, secretary, treatment, practitioner_id, store):
    unknown = uuid4()
    result = await service.create(secretary, unknown, treatment.id, practitioner_id, at(10))

    assert result.error.kind is ErrorKind.NOT_FOUND
    assert result.error.details["patient_id"] == str(unknown)
    assert await store.list_appointments() == []


@pytest.mark.asyncio
async def test_create_unknown_practitioner(service, secretary, treatment, patient_id, notifier):
    """Unknown references are reported before the working-hours policy."""
    unknown = uuid4()
    result = await service.create(secretary, patient_id, treatment.id, unknown, at(10, day=SUNDAY))

    assert result.error.kind is ErrorKind.NOT_FOUND
    assert result.error.details["practitioner_id"] == str(unknown)
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_create_inverted_interval(book):
    result = await book(at(11), at(10))
    assert result.error.kind is ErrorKind.INVALID_INTERVAL


@pytest.mark.asyncio
async def test_create_on_sunday_violates_policy(book, notifier):
    result = await book(at(10, day=SUNDAY))

    assert result.error.kind is ErrorKind.POLICY_VIOLATION
    assert result.error.details["rule"] == "business_day"
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_overlapping_booking_conflicts(book):
    first = await book(at(10))
    second = await book(at(10, 30))

    assert second.error.kind is ErrorKind.SCHEDULE_CONFLICT
    assert second.error.details["conflicting_appointment_id"] == str(first.value.id)


@pytest.mark.asyncio
async def test_back_to_back_and_other_practitioner_allowed(book, store):
    await book(at(10))

    assert (await book(at(11))).ok
    assert (await book(at(9))).ok
    assert (await book(at(10), practitioner=store.add_practitioner())).ok


@pytest.mark.asyncio
async def test_concurrent_bookings_for_same_slot(book):
    """Only one of two simultaneous bookings of the same interval wins."""
    results = await asyncio.gather(book(at(15)), book(at(15)))

    assert sorted(result.ok for result in results) == [False, True]
    loser = next(result for result in results if not result.ok)
    assert loser.error.kind is ErrorKind.SCHEDULE_CONFLICT


@pytest.mark.asyncio
async def test_viewer_cannot_book(service, viewer, patient_id, treatment, practitioner_id, store):
    result = await service.create(viewer, patient_id, treatment.id, practitioner_id, at(10))

    assert result.error.kind is ErrorKind.FORBIDDEN
    assert await store.list_appointments() == []


# Collaborator failures


@pytest.mark.asyncio
async def test_notification_failure_is_a_warning(store, config, clock, secretary, patient_id, treatment, practitioner_id):
    service = SchedulingService(store, notifier=RecordingNotifier(fail=True), config=config, clock=clock)

    result = await service.create(secretary, patient_id, treatment.id, practitioner_id, at(10))

    assert result.ok
    assert len(result.warnings) == 1
    assert "confirmation" in result.warnings[0]
    assert await store.get_appointment(result.value.id) is not None


@pytest.mark.asyncio
async def test_calendar_failure_is_a_warning(store, config, clock, secretary, patient_id, treatment, practitioner_id):
    service = SchedulingService(store, calendar=RecordingCalendar(fail=True), config=config, clock=clock)

    result = await service.create(secretary, patient_id, treatment.id, practitioner_id, at(10))

    assert result.ok
    assert result.value.external_calendar_event_id is None
    assert result.warnings and "Calendar create failed" in result.warnings[0]


@pytest.mark.asyncio
async def test_unavailable_calendar_is_skipped(store, config, clock, secretary, patient_id, treatment, practitioner_id):
    calendar = RecordingCalendar(available=False)
    service = SchedulingService(store, calendar=calendar, config=config, clock=clock)

    result = await service.create(secretary, patient_id, treatment.id, practitioner_id, at(10))

    assert result.ok and result.warnings == ()
    assert calendar.created == []


# Rescheduling


@pytest.mark.asyncio
async def test_reschedule_keeps_duration_and_status(book, service, secretary, calendar, notifier):
    appointment = (await book(at(10))).value
    await service.confirm(secretary, appointment.id)

    result = await service.reschedule(secretary, appointment.id, at(14))

    assert result.ok, result.error
    assert (result.value.start_time, result.value.end_time) == (at(14), at(15))
    assert result.value.status is AppointmentStatus.CONFIRMED
    assert calendar.updated == ["evt-1"]
    assert notifier.kinds()[-1] is NotificationKind.RESCHEDULED


@pytest.mark.asyncio
async def test_reschedule_moves_availability(book, service, secretary, viewer, practitioner_id, treatment):
    appointment = (await book(at(10))).value

    assert (await service.reschedule(secretary, appointment.id, at(14))).ok

    slots = (await service.get_availability(viewer, practitioner_id, MONDAY, treatment_id=treatment.id)).value
    starts = [(slot.start.hour, slot.start.minute) for slot in slots]
    assert (10, 0) in starts
    assert (14, 0) not in starts and (13, 30) not in starts


@pytest.mark.asyncio
async def test_calendar_link_keeps_concurrent_reschedule(
    store, config, clock, secretary, patient_id, treatment, practitioner_id
):
    """A reschedule committed while the calendar event is created survives the link."""
    calendar = GatedCalendar()
    service = SchedulingService(store, calendar=calendar, config=config, clock=clock)
    front_desk = SchedulingService(store, config=config, clock=clock)

    booking = asyncio.create_task(service.create(secretary, patient_id, treatment.id, practitioner_id, at(10)))
    await calendar.entered.wait()
    [appointment] = await store.list_appointments()

    moved = await front_desk.reschedule(secretary, appointment.id, at(14))
    assert moved.ok, moved.error
    other = await front_desk.create(secretary, store.add_patient(), treatment.id, practitioner_id, at(10))
    assert other.ok, other.error

    calendar.release.set()
    result = await booking

    assert result.ok
    assert result.value.start_time == at(14)
    stored = await store.get_appointment(appointment.id)
    assert stored.start_time == at(14)
    assert stored.external_calendar_event_id == "evt-1"
    assert calendar.updated == ["evt-1"]
    active = await store.load_bookings(practitioner_id, at(8), at(18))
    assert sorted(b.interval.start for b in active) == [at(10), at(14)]


@pytest.mark.asyncio
async def test_reschedule_overlapping_itself(book, service, secretary):
    """Shifting by half an hour overlaps only the appointment being moved."""
    appointment = (await book(at(10))).value

    result = await service.reschedule(secretary, appointment.id, at(10, 30))

    assert result.ok


@pytest.mark.asyncio
async def test_reschedule_into_other_booking(book, service, secretary):
    first = (await book(at(10))).value
    second = (await book(at(12))).value

    result = await service.reschedule(secretary, second.id, at(10, 30))

    assert result.error.kind is ErrorKind.SCHEDULE_CONFLICT
    assert result.error.details["conflicting_appointment_id"] == str(first.id)


@pytest.mark.asyncio
async def test_reschedule_outside_office_hours(book, service, secretary):
    appointment = (await book(at(10))).value
    result = await service.reschedule(secretary, appointment.id, at(17, 30))

    assert result.error.kind is ErrorKind.POLICY_VIOLATION


@pytest.mark.asyncio
async def test_reschedule_cancelled_reports_transition_error(book, service, secretary):
    """Status is checked before policy."""
    appointment = (await book(at(10))).value
    await service.cancel(secretary, appointment.id, "Patient request")

    result = await service.reschedule(secretary, appointment.id, at(10, day=SUNDAY))

    assert result.error.kind is ErrorKind.INVALID_TRANSITION


@pytest.mark.asyncio
async def test_reschedule_missing_appointment(service, secretary):
    result = await service.reschedule(secretary, uuid4(), at(10))
    assert result.error.kind is ErrorKind.NOT_FOUND


# Cancellation


@pytest.mark.asyncio
async def test_cancel_is_not_repeatable(book, service, secretary, notifier, calendar, store):
    appointment = (await book(at(10))).value

    first = await service.cancel(secretary, appointment.id, "Patient request")
    second = await service.cancel(secretary, appointment.id, "Patient request")

    assert first.value.status is AppointmentStatus.CANCELLED
    assert first.value.notes.count("Cancelled: Patient request") == 1
    assert second.error.kind is ErrorKind.ALREADY_CANCELLED
    stored = await store.get_appointment(appointment.id)
    assert stored.notes == first.value.notes
    assert stored.cancelled_at == first.value.cancelled_at
    assert notifier.kinds().count(NotificationKind.CANCELLED) == 1
    assert calendar.cancelled == ["evt-1"]


@pytest.mark.asyncio
async def test_cancel_frees_the_interval(book, service, secretary):
    appointment = (await book(at(10))).value
    await service.cancel(secretary, appointment.id, "Patient request")

    assert (await book(at(10))).ok


@pytest.mark.asyncio
async def test_cancel_requires_reason(book, service, secretary):
    appointment = (await book(at(10))).value
    result = await service.cancel(secretary, appointment.id, "")

    assert result.error.kind is ErrorKind.INVALID_REQUEST


# Completion


@pytest.mark.asyncio
async def test_full_lifecycle_consumes_stock_and_advances_course(
    book, service, secretary, medico, store, hyaluronic, treatment, patient_id
):
    course = store.add_treatment_course(patient_id, treatment.id, sessions=1)
    appointment = (await book(at(10))).value

    assert (await service.confirm(secretary, appointment.id)).ok
    assert (await service.start(medico, appointment.id)).value.status is AppointmentStatus.IN_PROGRESS
    result = await service.complete(medico, appointment.id, notes="Went well", treatment_notes="0.5ml each lip")

    assert result.ok, result.error
    assert result.value.status is AppointmentStatus.COMPLETED
    assert result.value.completed_at is not None
    assert store.product(hyaluronic).current_stock == 8
    assert len(store.stock_movements) == 1
    movement = store.stock_movements[0]
    assert (movement.quantity, movement.type, movement.reference) == (-2, "TREATMENT_USE", appointment.id)
    assert movement.reason == "Used in treatment: Lip filler"
    assert store.course(course.id).completed_sessions == 1
    assert store.course(course.id).status == "COMPLETED"
    assert store.medical_records[0].title == "Treatment session: Lip filler"


@pytest.mark.asyncio
async def test_complete_is_atomic(service, secretary, medico, store, patient_id, practitioner_id):
    """A failing stock write leaves the appointment, course and records untouched."""
    missing_product = uuid4()
    treatment = store.add_treatment("Peeling", 30, required_products=[(missing_product, 1)])
    course = store.add_treatment_course(patient_id, treatment.id, sessions=4)
    appointment = (await service.create(secretary, patient_id, treatment.id, practitioner_id, at(10))).value
    await service.confirm(secretary, appointment.id)

    result = await service.complete(medico, appointment.id, treatment_notes="Mild redness")

    assert result.error.kind is ErrorKind.PERSISTENCE_FAILURE
    assert (await store.get_appointment(appointment.id)).status is AppointmentStatus.CONFIRMED
    assert store.course(course.id).completed_sessions == 0
    assert store.medical_records == []
    assert store.stock_movements == []


@pytest.mark.asyncio
async def test_secretary_cannot_complete(book, service, secretary):
    appointment = (await book(at(10))).value
    await service.confirm(secretary, appointment.id)

    result = await service.complete(secretary, appointment.id)

    assert result.error.kind is ErrorKind.FORBIDDEN


@pytest.mark.asyncio
async def test_complete_twice(book, service, secretary, medico):
    appointment = (await book(at(10))).value
    await service.confirm(secretary, appointment.id)
    await service.complete(medico, appointment.id)

    result = await service.complete(medico, appointment.id)

    assert result.error.kind is ErrorKind.ALREADY_COMPLETED


# No-shows


@pytest.mark.asyncio
async def test_mark_no_show_after_grace(book, service, clock):
    admin = Actor(id=uuid4(), role=Role.ADMIN)
    appointment = (await book(at(10))).value

    clock.now = at(11, 15)
    assert (await service.mark_no_show(admin, appointment.id)).error.kind is ErrorKind.INVALID_TRANSITION

    clock.now = at(11, 45)
    result = await service.mark_no_show(admin, appointment.id)
    assert result.value.status is AppointmentStatus.NO_SHOW


# Queries


@pytest.mark.asyncio
async def test_get_and_list(book, service, viewer, practitioner_id, secretary):
    late = (await book(at(15))).value
    early = (await book(at(9))).value
    await service.cancel(secretary, late.id, "Patient request")

    assert (await service.get(viewer, early.id)).value.id == early.id
    assert (await service.get(viewer, uuid4())).error.kind is ErrorKind.NOT_FOUND

    listed = (await service.list_for_practitioner(viewer, practitioner_id)).value
    assert [a.id for a in listed] == [early.id, late.id]

    cancelled = await service.list_for_practitioner(viewer, practitioner_id, status=AppointmentStatus.CANCELLED)
    assert [a.id for a in cancelled.value] == [late.id]


@pytest.mark.asyncio
async def test_availability_excludes_bookings(book, service, viewer, practitioner_id, treatment):
    await book(at(10))

    result = await service.get_availability(viewer, practitioner_id, MONDAY, treatment_id=treatment.id)
    starts = [(slot.start.hour, slot.start.minute) for slot in result.value]

    assert (9, 0) in starts and (11, 0) in starts
    assert (10, 0) not in starts and (10, 30) not in starts


@pytest.mark.asyncio
async def test_availability_on_closed_day_is_empty(service, viewer, practitioner_id):
    result = await service.get_availability(viewer, practitioner_id, SUNDAY)
    assert result.ok and result.value == []


@pytest.mark.asyncio
async def test_availability_unknown_treatment(service, viewer, practitioner_id):
    result = await service.get_availability(viewer, practitioner_id, MONDAY, treatment_id=uuid4())
    assert result.error.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_availability_cached_and_invalidated(store, config, clock, secretary, viewer, patient_id, treatment, practitioner_id):
    cache = DictCache()
    service = SchedulingService(store, cache=cache, config=config, clock=clock)

    first = await service.get_availability(viewer, practitioner_id, MONDAY, duration_minutes=60)
    key = availability_cache_key(practitioner_id, MONDAY, 60)
    assert key in cache.data

    cached = await service.get_availability(viewer, practitioner_id, MONDAY, duration_minutes=60)
    assert cached.value == first.value

    await service.create(secretary, patient_id, treatment.id, practitioner_id, at(10))
    assert key not in cache.data

    fresh = await service.get_availability(viewer, practitioner_id, MONDAY, duration_minutes=60)
    assert len(fresh.value) < len(first.value)


class SlowLoadStore(InMemoryClinicStore):
    """Store whose first bookings load waits until resumed."""

    def __init__(self):
        super().__init__()
        self.loading = asyncio.Event()
        self.resume = asyncio.Event()

    async def load_bookings(self, practitioner_id: UUID, start, end):
        if not self.loading.is_set():
            self.loading.set()
            await self.resume.wait()
        return await super().load_bookings(practitioner_id, start, end)


@pytest.mark.asyncio
async def test_availability_cache_not_stale_after_concurrent_booking(config, clock, secretary, viewer):
    store = SlowLoadStore()
    treatment = store.add_treatment("Peeling", 60)
    patient, practitioner = store.add_patient(), store.add_practitioner()
    cache = DictCache()
    service = SchedulingService(store, cache=cache, config=config, clock=clock)

    lookup = asyncio.create_task(service.get_availability(viewer, practitioner, MONDAY, duration_minutes=60))
    await store.loading.wait()
    booking = asyncio.create_task(service.create(secretary, patient, treatment.id, practitioner, at(10)))
    for _ in range(3):
        await asyncio.sleep(0)
    store.resume.set()
    await lookup
    assert (await booking).ok

    again = await service.get_availability(viewer, practitioner, MONDAY, duration_minutes=60)
    starts = [(slot.start.hour, slot.start.minute) for slot in again.value]
    assert (10, 0) not in starts


# Search and statistics


@pytest.mark.asyncio
async def test_search_paginates(book, service, viewer):
    first = (await book(at(9))).value
    second = (await book(at(11))).value
    third = (await book(at(14))).value

    page = (await service.search(viewer, page=2, limit=2)).value

    assert [a.id for a in page.items] == [third.id]
    assert (page.total, page.page, page.limit, page.pages) == (3, 2, 2, 2)
    assert [a.id for a in (await service.search(viewer, limit=2)).value.items] == [first.id, second.id]


@pytest.mark.asyncio
async def test_search_by_patient_and_day(book, service, viewer, store, patient_id):
    tuesday = MONDAY + timedelta(days=1)
    monday_visit = (await book(at(9))).value
    tuesday_visit = (await book(at(9, day=tuesday))).value
    other = (await book(at(11), patient=store.add_patient())).value

    by_patient = (await service.search(viewer, patient_id=patient_id)).value
    assert [a.id for a in by_patient.items] == [monday_visit.id, tuesday_visit.id]

    by_day = (await service.search(viewer, day=MONDAY)).value
    assert [a.id for a in by_day.items] == [monday_visit.id, other.id]
    assert by_day.total == 2


@pytest.mark.asyncio
async def test_search_rejects_day_with_range(service, viewer):
    result = await service.search(viewer, day=MONDAY, start_from=at(8))
    assert result.error.kind is ErrorKind.INVALID_REQUEST


@pytest.mark.asyncio
async def test_search_rejects_oversized_page(service, viewer):
    result = await service.search(viewer, limit=500)
    assert result.error.kind is ErrorKind.INVALID_REQUEST


@pytest.mark.asyncio
async def test_stats(book, service, secretary, viewer, clock, store, patient_id, practitioner_id):
    peeling = store.add_treatment("Peeling", 30)
    clock.now = at(8)
    await book(at(9))
    cancelled = (await book(at(11))).value
    await service.cancel(secretary, cancelled.id, "Patient request")
    await book(at(10, day=MONDAY + timedelta(days=2)))
    await service.create(secretary, patient_id, peeling.id, practitioner_id, at(14))

    stats = (await service.get_stats(viewer)).value

    assert stats.total == 4
    assert stats.by_status == {"scheduled": 3, "cancelled": 1}
    assert stats.today == 3
    assert stats.upcoming == 3
    assert [(t.name, t.count) for t in stats.popular_treatments] == [("Lip filler", 3), ("Peeling", 1)]


@pytest.mark.asyncio
async def test_stats_for_period(book, service, viewer, clock):
    clock.now = at(8)
    await book(at(9))
    await book(at(9, day=MONDAY + timedelta(days=1)))

    stats = (await service.get_stats(viewer, start_from=at(0), start_before=at(12))).value

    assert stats.total == 1
    assert stats.upcoming == 2
