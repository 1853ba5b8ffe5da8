"""Half-open time interval ``[start, end)``."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from estetica.scheduling.results import ErrorKind, Result


class InvalidIntervalError(ValueError):
    """Raised when an interval is constructed with bad bounds."""


@dataclass(frozen=True, order=True)
class Interval:
    """Time interval closed at the start and open at the end.

    Both bounds must be timezone-aware and ``start`` must be strictly before
    ``end``. Touching intervals (``a.end == b.start``) do not overlap, which is
    what allows back-to-back bookings.
    """

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        """Validate interval bounds."""
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise InvalidIntervalError("Interval bounds must be timezone-aware")
        if self.end <= self.start:
            raise InvalidIntervalError("Interval end must be after its start")

    @classmethod
    def build(cls, start: datetime, end: datetime) -> Result["Interval"]:
        """Build an interval, reporting bad bounds as an INVALID_INTERVAL result."""
        try:
            return Result.success(cls(start, end))
        except InvalidIntervalError as e:
            return Result.failure(
                ErrorKind.INVALID_INTERVAL,
                str(e),
                start=start.isoformat(),
                end=end.isoformat(),
            )

    def overlaps(self, other: "Interval") -> bool:
        """Check whether two intervals share any instant."""
        return self.start < other.end and self.end > other.start

    def contains(self, other: "Interval") -> bool:
        """Check whether ``other`` lies fully inside this interval."""
        return self.start <= other.start and other.end <= self.end

    def duration_minutes(self) -> int:
        """Length of the interval in whole minutes."""
        return int((self.end - self.start).total_seconds() // 60)

    def shifted(self, delta: timedelta) -> "Interval":
        """Return the same interval moved by ``delta``."""
        return Interval(self.start + delta, self.end + delta)
