"""Free slot generation for a practitioner's day."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from uuid import UUID

from estetica.scheduling.appointment import Booking
from estetica.scheduling.interval import Interval
from estetica.scheduling.policy import WorkingHoursConfig


@dataclass(frozen=True, order=True)
class TimeSlot:
    """Candidate free interval offered to a patient."""

    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        """Slot length in minutes."""
        return int((self.end - self.start).total_seconds() // 60)

    @property
    def interval(self) -> Interval:
        """Slot as an interval."""
        return Interval(self.start, self.end)


class SlotSequence:
    """
    Ordered, lazily computed free slots for one practitioner and day.

    Iterating the sequence walks candidate starts from office opening at
    ``slot_generation_step_minutes`` spacing and yields those whose end fits
    before closing and which overlap none of the practitioner's active
    bookings. Each ``iter()`` starts over, so the sequence can be consumed
    more than once and always yields the same slots for the same input.
    """

    def __init__(
        self,
        day: date,
        practitioner_id: UUID,
        duration_minutes: int,
        bookings: Iterable[Booking],
        config: WorkingHoursConfig,
    ):
        """Snapshot the inputs of a slot computation."""
        if duration_minutes <= 0:
            raise ValueError("Slot duration must be positive")

        self.day = day
        self.practitioner_id = practitioner_id
        self.duration_minutes = duration_minutes
        self.config = config
        self._busy = tuple(
            booking.interval
            for booking in bookings
            if booking.practitioner_id == practitioner_id and booking.status.blocks_schedule
        )

    def __iter__(self) -> Iterator[TimeSlot]:
        """Yield free slots in ascending start order."""
        if not self.config.is_business_day(self.day):
            return

        zone = self.config.zone
        duration = timedelta(minutes=self.duration_minutes)
        step = timedelta(minutes=self.config.slot_generation_step_minutes)

        # Arithmetic in UTC so wall-clock shifts cannot skew the grid
        start = self.config.opening_on(self.day).astimezone(UTC)
        closing = self.config.closing_on(self.day).astimezone(UTC)

        while start + duration <= closing:
            candidate = Interval(start, start + duration)
            if not any(busy.overlaps(candidate) for busy in self._busy):
                yield TimeSlot(start=start.astimezone(zone), end=(start + duration).astimezone(zone))
            start += step

    def __repr__(self) -> str:
        return (
            f"SlotSequence(day={self.day.isoformat()}, practitioner_id={self.practitioner_id}, "
            f"duration_minutes={self.duration_minutes})"
        )


def generate_slots(
    day: date,
    practitioner_id: UUID,
    duration_minutes: int,
    existing_bookings: Iterable[Booking],
    config: WorkingHoursConfig,
) -> SlotSequence:
    """
    Compute the free slots of a practitioner on a given day.

    Args:
        day: Local calendar day in the clinic time zone
        practitioner_id: Practitioner whose calendar is inspected
        duration_minutes: Length of the slot being looked for
        existing_bookings: Bookings of that day; other practitioners and
            cancelled bookings are ignored
        config: Clinic scheduling rules

    Returns:
        Restartable sequence of free slots
    """
    return SlotSequence(day, practitioner_id, duration_minutes, existing_bookings, config)
