"""Working-hours policy for appointment intervals."""

from datetime import date, datetime, time, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from estetica.config import Settings
from estetica.scheduling.interval import Interval
from estetica.scheduling.results import ErrorKind, Result

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class PolicyRule(str, Enum):
    """Business rules checked by the working-hours policy."""

    BUSINESS_DAY = "business_day"
    OFFICE_HOURS = "office_hours"
    DURATION = "duration"
    ALIGNMENT = "alignment"


class WorkingHoursConfig(BaseModel):
    """Clinic scheduling rules.

    ``slot_granularity_minutes`` is the grid that booked start/end times must
    align to, while ``slot_generation_step_minutes`` is the spacing between
    candidate starts offered by availability. They are independent settings
    and are not required to match.
    """

    model_config = ConfigDict(frozen=True)

    timezone: str = "America/Argentina/Cordoba"
    office_open: time = time(8, 0)
    office_close: time = time(18, 0)
    # Python weekday numbers, Monday=0
    business_days: frozenset[int] = Field(default=frozenset({0, 1, 2, 3, 4, 5}))
    min_duration_minutes: int = Field(default=15, ge=1)
    max_duration_minutes: int = Field(default=240, ge=1)
    slot_granularity_minutes: int = Field(default=15, ge=1, le=60)
    slot_generation_step_minutes: int = Field(default=30, ge=1)

    @field_validator("business_days")
    @classmethod
    def validate_business_days(cls, v: frozenset[int]) -> frozenset[int]:
        """Validate weekday numbers."""
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("Business days must be weekday numbers between 0 and 6")
        return v

    @model_validator(mode="after")
    def validate_ranges(self) -> "WorkingHoursConfig":
        """Validate office hours and duration bounds."""
        if self.office_close <= self.office_open:
            raise ValueError("Office close must be after office open")
        if self.max_duration_minutes < self.min_duration_minutes:
            raise ValueError("Maximum duration must not be below minimum duration")
        return self

    @property
    def zone(self) -> ZoneInfo:
        """Clinic time zone."""
        return ZoneInfo(self.timezone)

    def opening_on(self, day: date) -> datetime:
        """Aware datetime of office opening on ``day``."""
        return datetime.combine(day, self.office_open, tzinfo=self.zone)

    def closing_on(self, day: date) -> datetime:
        """Aware datetime of office closing on ``day``."""
        return datetime.combine(day, self.office_close, tzinfo=self.zone)

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        """Local midnight of ``day`` and of the following day."""
        start = datetime.combine(day, time.min, tzinfo=self.zone)
        return start, datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.zone)

    def is_business_day(self, day: date) -> bool:
        """Check whether appointments may be booked on ``day``."""
        return day.weekday() in self.business_days

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkingHoursConfig":
        """Build the policy config from application settings."""
        return cls(
            timezone=settings.clinic_timezone,
            office_open=time.fromisoformat(settings.office_open),
            office_close=time.fromisoformat(settings.office_close),
            business_days=frozenset(settings.business_days),
            min_duration_minutes=settings.min_duration_minutes,
            max_duration_minutes=settings.max_duration_minutes,
            slot_granularity_minutes=settings.slot_granularity_minutes,
            slot_generation_step_minutes=settings.slot_generation_step_minutes,
        )


def _violation(rule: PolicyRule, message: str) -> Result[None]:
    return Result.failure(ErrorKind.POLICY_VIOLATION, message, rule=rule.value)


def _is_aligned(moment: datetime, granularity: int) -> bool:
    return moment.minute % granularity == 0 and moment.second == 0 and moment.microsecond == 0


def validate_working_hours(interval: Interval, config: WorkingHoursConfig) -> Result[None]:
    """
    Check an interval against the clinic's working-hours rules.

    Rules are evaluated in a fixed order (business day, office hours,
    duration, alignment) and the first failing rule is returned.

    Args:
        interval: Proposed appointment interval
        config: Clinic scheduling rules

    Returns:
        Empty success, or a POLICY_VIOLATION result naming the broken rule
    """
    local_start = interval.start.astimezone(config.zone)
    local_end = interval.end.astimezone(config.zone)

    if not config.is_business_day(local_start.date()):
        return _violation(
            PolicyRule.BUSINESS_DAY,
            f"Appointments cannot be booked on {WEEKDAY_NAMES[local_start.weekday()]}",
        )

    open_label = config.office_open.strftime("%H:%M")
    close_label = config.office_close.strftime("%H:%M")

    if local_start.time() < config.office_open:
        return _violation(
            PolicyRule.OFFICE_HOURS,
            f"Appointments must start at or after {open_label}",
        )

    if local_end.date() != local_start.date() or local_end.time() > config.office_close:
        return _violation(
            PolicyRule.OFFICE_HOURS,
            f"Appointments must end at or before {close_label}",
        )

    duration = interval.duration_minutes()
    if duration < config.min_duration_minutes:
        return _violation(
            PolicyRule.DURATION,
            f"Minimum appointment duration is {config.min_duration_minutes} minutes",
        )
    if duration > config.max_duration_minutes:
        return _violation(
            PolicyRule.DURATION,
            f"Maximum appointment duration is {config.max_duration_minutes} minutes",
        )

    granularity = config.slot_granularity_minutes
    if not (_is_aligned(local_start, granularity) and _is_aligned(local_end, granularity)):
        return _violation(
            PolicyRule.ALIGNMENT,
            f"Appointments must start and end on {granularity}-minute boundaries",
        )

    return Result.success()
