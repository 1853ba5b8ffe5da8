"""Periodic appointment sweeps: reminders, follow-ups, no-shows and reports."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta
from uuid import UUID

import structlog

from estetica.core.scheduler import PeriodicScheduler
from estetica.repositories.base import PersistenceError
from estetica.scheduling.appointment import PENDING_STATUSES, Appointment, AppointmentStatus
from estetica.scheduling.permissions import Actor, Role
from estetica.scheduling.state_machine import NotificationKind
from estetica.services.scheduling_service import SchedulingService

logger = structlog.get_logger(__name__)

# Actor recorded on changes made by the sweeps
SYSTEM_ACTOR = Actor(id=UUID(int=0), role=Role.ADMIN)

# Ledger kind of the unconfirmed follow-up, distinct from the creation notice
FOLLOWUP_KIND = "confirmation_followup"

ServiceScope = Callable[[], AbstractAsyncContextManager[SchedulingService]]


class ReminderService:
    """
    Sweeps run by the periodic scheduler.

    Each sweep opens its own service scope (and therefore its own database
    session) through ``service_scope``. Sends are recorded in the reminder
    ledger before the notification goes out, so re-running a sweep never
    sends the same reminder twice.
    """

    def __init__(
        self,
        service_scope: ServiceScope,
        two_hour_window: timedelta = timedelta(minutes=15),
        followup_after: timedelta = timedelta(hours=48),
    ):
        """
        Initialize sweeps.

        Args:
            service_scope: Factory of scheduling service contexts
            two_hour_window: Width of the 2-hour reminder window
            followup_after: Age at which unconfirmed appointments are chased
        """
        self.service_scope = service_scope
        self.two_hour_window = two_hour_window
        self.followup_after = followup_after

    async def _remind(
        self,
        service: SchedulingService,
        appointments: list[Appointment],
        ledger_kind: str,
        notification: NotificationKind,
        now: datetime,
    ) -> int:
        sent = 0
        for appointment in appointments:
            try:
                async with service.store.transaction():
                    first_time = await service.store.record_reminder(appointment.id, ledger_kind, now)
            except PersistenceError as e:
                logger.error("reminder_ledger_failed", appointment_id=str(appointment.id), error=str(e))
                continue

            if not first_time:
                continue

            warnings = await service.notify_patient(notification, appointment)
            if not warnings:
                sent += 1
        return sent

    async def send_day_before_reminders(self, now: datetime) -> int:
        """Remind patients of pending appointments on the next local day."""
        async with self.service_scope() as service:
            tomorrow = now.astimezone(service.config.zone).date() + timedelta(days=1)
            day_start, day_end = service.config.day_bounds(tomorrow)

            appointments = await service.store.list_appointments(
                start_from=day_start,
                start_before=day_end,
                statuses=PENDING_STATUSES,
            )
            sent = await self._remind(
                service,
                appointments,
                NotificationKind.REMINDER_24H.value,
                NotificationKind.REMINDER_24H,
                now,
            )

        logger.info("day_before_reminders_sent", date=tomorrow.isoformat(), candidates=len(appointments), sent=sent)
        return sent

    async def send_two_hour_reminders(self, now: datetime) -> int:
        """Remind patients whose appointment starts about two hours from now."""
        window_start = now + timedelta(hours=2)
        window_end = window_start + self.two_hour_window

        async with self.service_scope() as service:
            appointments = await service.store.list_appointments(
                start_from=window_start,
                start_before=window_end,
                statuses=PENDING_STATUSES,
            )
            sent = await self._remind(
                service,
                appointments,
                NotificationKind.REMINDER_2H.value,
                NotificationKind.REMINDER_2H,
                now,
            )

        logger.info("two_hour_reminders_sent", candidates=len(appointments), sent=sent)
        return sent

    async def follow_up_unconfirmed(self, now: datetime) -> int:
        """Ask again for confirmation of old, still unconfirmed future appointments."""
        async with self.service_scope() as service:
            appointments = await service.store.list_appointments(
                start_from=now,
                created_before=now - self.followup_after,
                statuses=[AppointmentStatus.SCHEDULED],
            )
            sent = await self._remind(
                service,
                appointments,
                FOLLOWUP_KIND,
                NotificationKind.CONFIRMATION,
                now,
            )

        logger.info("unconfirmed_followups_sent", candidates=len(appointments), sent=sent)
        return sent

    async def mark_no_shows(self, now: datetime) -> int:
        """Mark pending appointments whose grace period elapsed as no-shows."""
        marked = 0
        async with self.service_scope() as service:
            grace = service.state_machine.no_show_grace
            appointments = await service.store.list_appointments(
                end_before=now - grace,
                statuses=PENDING_STATUSES,
            )
            for appointment in appointments:
                result = await service.mark_no_show(SYSTEM_ACTOR, appointment.id)
                if result.ok:
                    marked += 1
                else:
                    logger.warning(
                        "no_show_not_marked",
                        appointment_id=str(appointment.id),
                        kind=result.error.kind.value,
                        reason=result.error.message,
                    )

        logger.info("no_shows_marked", candidates=len(appointments), marked=marked)
        return marked

    async def daily_report(self, now: datetime) -> dict[str, int]:
        """Log today's appointment counts by status."""
        async with self.service_scope() as service:
            today = now.astimezone(service.config.zone).date()
            counts = await service.store.count_by_status(*service.config.day_bounds(today))

        logger.info("daily_report", date=today.isoformat(), total=sum(counts.values()), **counts)
        return counts


def register_clinic_jobs(scheduler: PeriodicScheduler, reminders: ReminderService) -> None:
    """Register the clinic sweeps on a scheduler."""
    scheduler.register("reminders-24h", timedelta(days=1), reminders.send_day_before_reminders)
    scheduler.register("reminders-2h", timedelta(minutes=30), reminders.send_two_hour_reminders)
    scheduler.register("unconfirmed-followup", timedelta(hours=2), reminders.follow_up_unconfirmed)
    scheduler.register("mark-no-show", timedelta(hours=1), reminders.mark_no_shows)
    scheduler.register("daily-report", timedelta(days=1), reminders.daily_report)
