"""Tests for booking conflict detection."""

from uuid import uuid4

from estetica.scheduling.appointment import AppointmentStatus, Booking
from estetica.scheduling.conflicts import find_conflict, find_conflicts
from estetica.scheduling.interval import Interval
from helpers import at


def booking(practitioner_id, start, end, status=AppointmentStatus.SCHEDULED):
    return Booking(id=uuid4(), practitioner_id=practitioner_id, interval=Interval(start, end), status=status)


def test_no_conflict_on_empty_calendar():
    assert find_conflict(Interval(at(10), at(11)), []) is None


def test_overlapping_booking_reported():
    practitioner = uuid4()
    existing = booking(practitioner, at(10), at(11))

    assert find_conflict(Interval(at(10, 30), at(11, 30)), [existing]) == existing.id


def test_back_to_back_booking_allowed():
    practitioner = uuid4()
    existing = booking(practitioner, at(10), at(11))

    assert find_conflict(Interval(at(11), at(12)), [existing]) is None
    assert find_conflict(Interval(at(9), at(10)), [existing]) is None


def test_cancelled_bookings_ignored():
    practitioner = uuid4()
    cancelled = booking(practitioner, at(10), at(11), AppointmentStatus.CANCELLED)

    assert find_conflict(Interval(at(10), at(11)), [cancelled]) is None


def test_completed_and_no_show_still_block():
    practitioner = uuid4()
    completed = booking(practitioner, at(10), at(11), AppointmentStatus.COMPLETED)
    no_show = booking(practitioner, at(14), at(15), AppointmentStatus.NO_SHOW)

    assert find_conflict(Interval(at(10), at(11)), [completed, no_show]) == completed.id
    assert find_conflict(Interval(at(14), at(15)), [completed, no_show]) == no_show.id


def test_excluded_booking_ignored_when_moving():
    """Moving an appointment within its own interval is not a conflict."""
    practitioner = uuid4()
    existing = booking(practitioner, at(10), at(11))

    assert find_conflict(Interval(at(10, 30), at(11, 30)), [existing], exclude_id=existing.id) is None


def test_other_practitioners_ignored_when_filtered():
    mine, theirs = uuid4(), uuid4()
    other = booking(theirs, at(10), at(11))

    assert find_conflict(Interval(at(10), at(11)), [other], practitioner_id=mine) is None
    assert find_conflict(Interval(at(10), at(11)), [other]) == other.id


def test_find_conflicts_returns_all_overlaps():
    practitioner = uuid4()
    first = booking(practitioner, at(9), at(10))
    second = booking(practitioner, at(10), at(11))
    unrelated = booking(practitioner, at(15), at(16))

    conflicts = find_conflicts(Interval(at(9, 30), at(10, 30)), [first, second, unrelated])

    assert conflicts == [first.id, second.id]
