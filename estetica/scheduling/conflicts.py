"""Booking conflict detection."""

from collections.abc import Iterable, Iterator
from uuid import UUID

from estetica.scheduling.appointment import Booking
from estetica.scheduling.interval import Interval


def _relevant_bookings(
    existing: Iterable[Booking],
    practitioner_id: UUID | None,
    exclude_id: UUID | None,
) -> Iterator[Booking]:
    for booking in existing:
        if exclude_id is not None and booking.id == exclude_id:
            continue
        if not booking.status.blocks_schedule:
            continue
        if practitioner_id is not None and booking.practitioner_id != practitioner_id:
            continue
        yield booking


def find_conflict(
    candidate: Interval,
    existing: Iterable[Booking],
    exclude_id: UUID | None = None,
    practitioner_id: UUID | None = None,
) -> UUID | None:
    """
    Find a booking that overlaps the candidate interval.

    Args:
        candidate: Proposed interval
        existing: Bookings to check against
        exclude_id: Booking to ignore, used when moving an existing appointment
        practitioner_id: When given, only this practitioner's bookings count

    Returns:
        ID of the first overlapping booking, or None
    """
    for booking in _relevant_bookings(existing, practitioner_id, exclude_id):
        if booking.interval.overlaps(candidate):
            return booking.id
    return None


def find_conflicts(
    candidate: Interval,
    existing: Iterable[Booking],
    exclude_id: UUID | None = None,
    practitioner_id: UUID | None = None,
) -> list[UUID]:
    """Find every booking that overlaps the candidate interval."""
    return [
        booking.id
        for booking in _relevant_bookings(existing, practitioner_id, exclude_id)
        if booking.interval.overlaps(candidate)
    ]
