"""Shared test doubles and fixed dates."""

import asyncio
from datetime import datetime, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

from estetica.scheduling.appointment import Appointment
from estetica.scheduling.state_machine import NotificationKind

CORDOBA = ZoneInfo("America/Argentina/Cordoba")

# Monday; the clinic is open Monday to Saturday, 08:00-18:00
MONDAY = datetime(2026, 10, 19, tzinfo=CORDOBA).date()
SUNDAY = datetime(2026, 10, 18, tzinfo=CORDOBA).date()


def at(hour: int, minute: int = 0, day=MONDAY) -> datetime:
    """Clinic-local aware datetime on a test day."""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=CORDOBA)


class FixedClock:
    """Settable clock for time-based rules."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class RecordingNotifier:
    """Notifier double that records sends and can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[NotificationKind, UUID]] = []

    async def notify(self, kind: NotificationKind, appointment: Appointment) -> None:
        if self.fail:
            raise RuntimeError("FCM unavailable")
        self.sent.append((kind, appointment.id))

    def kinds(self) -> list[NotificationKind]:
        return [kind for kind, _ in self.sent]


class RecordingCalendar:
    """Calendar gateway double."""

    def __init__(self, available: bool = True, fail: bool = False):
        self.available = available
        self.fail = fail
        self.created: list[UUID] = []
        self.updated: list[str] = []
        self.cancelled: list[str] = []

    def is_available(self) -> bool:
        return self.available

    async def create_event(self, appointment: Appointment, summary: str) -> str | None:
        if self.fail:
            raise RuntimeError("calendar down")
        self.created.append(appointment.id)
        return f"evt-{len(self.created)}"

    async def update_event(self, event_id: str, appointment: Appointment) -> str | None:
        if self.fail:
            raise RuntimeError("calendar down")
        self.updated.append(event_id)
        return event_id

    async def cancel_event(self, event_id: str) -> str | None:
        if self.fail:
            raise RuntimeError("calendar down")
        self.cancelled.append(event_id)
        return event_id


class GatedCalendar(RecordingCalendar):
    """Calendar double whose first event creation waits until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def create_event(self, appointment: Appointment, summary: str) -> str | None:
        if not self.entered.is_set():
            self.entered.set()
            await self.release.wait()
        return await super().create_event(appointment, summary)
