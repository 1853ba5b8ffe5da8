"""Scheduling service orchestrating appointment operations.

Every operation checks the actor's capabilities, runs the pure scheduling
rules, commits its own state change, and only then talks to the notification
and calendar collaborators. Collaborator failures come back as warnings on a
successful result; they never undo a committed change.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, timedelta
from uuid import UUID, uuid4

import structlog

from estetica.core.redis_client import CacheManager
from estetica.repositories.base import (
    BookingOverlapError,
    ClinicStore,
    PersistenceError,
    StaleAppointmentError,
)
from estetica.scheduling.appointment import (
    PENDING_STATUSES,
    Appointment,
    AppointmentStatus,
    MedicalRecordEntry,
    StockConsumptionRecord,
    Treatment,
)
from estetica.scheduling.conflicts import find_conflict
from estetica.scheduling.interval import Interval
from estetica.scheduling.permissions import Action, Actor, Resource
from estetica.scheduling.policy import WorkingHoursConfig, validate_working_hours
from estetica.scheduling.results import ErrorKind, OperationResult, Result
from estetica.scheduling.slots import TimeSlot, generate_slots
from estetica.scheduling.state_machine import (
    AppointmentEvent,
    AppointmentStateMachine,
    NotificationKind,
    SideEffect,
    SideEffectKind,
    Transition,
)
from estetica.services.calendar_service import CalendarGateway
from estetica.services.notification_service import Notifier

logger = structlog.get_logger(__name__)

Decision = Callable[[Appointment, datetime], Result[Transition]]

MAX_PAGE_SIZE = 100
UPCOMING_WINDOW = timedelta(days=7)


@dataclass(frozen=True)
class AppointmentPage:
    """One page of an appointment listing."""

    items: list[Appointment]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        """Number of pages for the total."""
        return math.ceil(self.total / self.limit)


@dataclass(frozen=True)
class TreatmentCount:
    """Bookings of one treatment."""

    treatment_id: UUID
    name: str | None
    count: int


@dataclass(frozen=True)
class AppointmentStats:
    """Dashboard summary of appointments."""

    total: int
    today: int
    upcoming: int
    by_status: dict[str, int]
    popular_treatments: list[TreatmentCount]
    start_from: datetime | None = None
    start_before: datetime | None = None


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def practitioner_lock_key(practitioner_id: UUID) -> str:
    """Lock key serializing writes to one practitioner's calendar."""
    return f"practitioner:{practitioner_id}"


def availability_cache_key(practitioner_id: UUID, day: date, duration_minutes: int) -> str:
    """Cache key of a practitioner's free slots for a day and duration."""
    return f"availability:{practitioner_id}:{day.isoformat()}:{duration_minutes}"


def stock_consumption_for(treatment: Treatment, appointment_id: UUID) -> list[StockConsumptionRecord]:
    """Build one negative stock movement per product the treatment uses."""
    return [
        StockConsumptionRecord(
            product_id=required.product_id,
            quantity=-required.quantity_per_session,
            appointment_id=appointment_id,
            reason=f"Used in treatment: {treatment.name}",
        )
        for required in treatment.required_products
    ]


class SchedulingService:
    """Service for booking and managing appointments."""

    def __init__(
        self,
        store: ClinicStore,
        notifier: Notifier | None = None,
        calendar: CalendarGateway | None = None,
        cache: CacheManager | None = None,
        config: WorkingHoursConfig | None = None,
        state_machine: AppointmentStateMachine | None = None,
        clock: Callable[[], datetime] = utcnow,
        default_duration_minutes: int = 60,
        cache_ttl_seconds: int = 300,
    ):
        """
        Initialize service with its collaborators.

        Args:
            store: Persistence for appointments and completion writes
            notifier: Patient notification sender, optional
            calendar: External calendar gateway, optional
            cache: Availability cache, optional
            config: Clinic working-hours rules
            state_machine: Lifecycle rules
            clock: Source of the current time
            default_duration_minutes: Slot length when none is requested
            cache_ttl_seconds: Availability cache lifetime
        """
        self.store = store
        self.notifier = notifier
        self.calendar = calendar
        self.cache = cache
        self.config = config or WorkingHoursConfig()
        self.state_machine = state_machine or AppointmentStateMachine()
        self.clock = clock
        self.default_duration_minutes = default_duration_minutes
        self.cache_ttl_seconds = cache_ttl_seconds

    # Commands

    async def create(
        self,
        actor: Actor,
        patient_id: UUID,
        treatment_id: UUID,
        practitioner_id: UUID,
        start: datetime,
        end: datetime | None = None,
        notes: str | None = None,
    ) -> OperationResult[Appointment]:
        """
        Book a new appointment.

        Args:
            actor: User performing the booking
            patient_id: Patient being booked
            treatment_id: Treatment to perform
            practitioner_id: Practitioner whose calendar is booked
            start: Appointment start
            end: Appointment end; derived from the treatment duration if omitted
            notes: Optional free-text notes

        Returns:
            The SCHEDULED appointment, or a NOT_FOUND, INVALID_INTERVAL,
            POLICY_VIOLATION or SCHEDULE_CONFLICT failure
        """
        if denied := self._authorize(actor, Resource.APPOINTMENTS, Action.WRITE):
            return denied

        if not await self.store.patient_exists(patient_id):
            return Result.failure(ErrorKind.NOT_FOUND, "Patient not found", patient_id=str(patient_id))
        if not await self.store.practitioner_exists(practitioner_id):
            return Result.failure(
                ErrorKind.NOT_FOUND, "Practitioner not found", practitioner_id=str(practitioner_id)
            )

        treatment = await self.store.get_treatment(treatment_id)
        if treatment is None:
            return Result.failure(ErrorKind.NOT_FOUND, "Treatment not found", treatment_id=str(treatment_id))

        if end is None:
            end = start + timedelta(minutes=treatment.duration_minutes)

        built = Interval.build(start, end)
        if not built.ok:
            return built.propagate()
        interval = built.value

        policy = validate_working_hours(interval, self.config)
        if not policy.ok:
            return policy.propagate()

        now = self.clock()
        appointment = Appointment(
            id=uuid4(),
            patient_id=patient_id,
            treatment_id=treatment_id,
            practitioner_id=practitioner_id,
            start_time=interval.start,
            end_time=interval.end,
            status=AppointmentStatus.SCHEDULED,
            notes=notes,
            created_at=now,
            updated_at=now,
        )

        try:
            async with self.store.transaction(lock_key=practitioner_lock_key(practitioner_id)):
                bookings = await self.store.load_bookings(practitioner_id, interval.start, interval.end)
                conflicting_id = find_conflict(interval, bookings, practitioner_id=practitioner_id)
                if conflicting_id is not None:
                    return self._conflict(conflicting_id)
                appointment = await self.store.add_appointment(appointment)
        except BookingOverlapError as e:
            return self._conflict(e.conflicting_id)
        except PersistenceError as e:
            return self._persistence_failure("create", e)

        logger.info(
            "appointment_created",
            appointment_id=str(appointment.id),
            practitioner_id=str(practitioner_id),
            start_time=appointment.start_time.isoformat(),
            actor_id=str(actor.id),
        )
        self._invalidate_availability(appointment)

        warnings = await self.notify_patient(NotificationKind.CONFIRMATION, appointment)
        appointment, calendar_warnings = await self._create_calendar_event(appointment, treatment)
        return Result.success(appointment, warnings + calendar_warnings)

    async def reschedule(
        self,
        actor: Actor,
        appointment_id: UUID,
        start: datetime,
        end: datetime | None = None,
    ) -> OperationResult[Appointment]:
        """
        Move an appointment to a new interval.

        Args:
            actor: User performing the change
            appointment_id: Appointment to move
            start: New start
            end: New end; keeps the current duration if omitted

        Returns:
            The moved appointment with its status unchanged
        """
        if denied := self._authorize(actor, Resource.APPOINTMENTS, Action.WRITE):
            return denied

        current = await self.store.get_appointment(appointment_id)
        if current is None:
            return self._not_found(appointment_id)

        if end is None:
            end = start + (current.end_time - current.start_time)

        built = Interval.build(start, end)
        if not built.ok:
            return built.propagate()
        interval = built.value

        # Status is checked before policy so terminal appointments report the transition error
        allowed = self.state_machine.reschedule(current, interval, self.clock())
        if not allowed.ok:
            return allowed.propagate()

        policy = validate_working_hours(interval, self.config)
        if not policy.ok:
            return policy.propagate()

        return await self._apply(
            actor,
            current,
            lambda appointment, now: self.state_machine.reschedule(appointment, interval, now),
            candidate=interval,
        )

    async def confirm(self, actor: Actor, appointment_id: UUID) -> OperationResult[Appointment]:
        """Confirm a scheduled appointment."""
        return await self._transition(
            actor,
            appointment_id,
            self.state_machine.confirm,
        )

    async def start(self, actor: Actor, appointment_id: UUID) -> OperationResult[Appointment]:
        """Mark a confirmed appointment as in progress."""
        return await self._transition(
            actor,
            appointment_id,
            self.state_machine.start,
        )

    async def cancel(self, actor: Actor, appointment_id: UUID, reason: str) -> OperationResult[Appointment]:
        """
        Cancel an appointment.

        Args:
            actor: User performing the cancellation
            appointment_id: Appointment to cancel
            reason: Non-empty cancellation reason, appended to the notes

        Returns:
            The cancelled appointment, or ALREADY_CANCELLED
        """
        return await self._transition(
            actor,
            appointment_id,
            lambda appointment, now: self.state_machine.cancel(appointment, reason, now),
        )

    async def complete(
        self,
        actor: Actor,
        appointment_id: UUID,
        notes: str | None = None,
        treatment_notes: str | None = None,
    ) -> OperationResult[Appointment]:
        """
        Complete an appointment.

        The status change, the stock consumption of every product the
        treatment uses, the treatment-progress advance and the optional
        medical record are written in one transaction. If any of them fails
        nothing is written and PERSISTENCE_FAILURE is returned.

        Args:
            actor: Practitioner closing the session
            appointment_id: Appointment to complete
            notes: Completion notes replacing the appointment notes
            treatment_notes: Clinical notes stored as a medical record

        Returns:
            The completed appointment
        """
        if denied := self._authorize(actor, Resource.MEDICAL_RECORDS, Action.WRITE):
            return denied
        return await self._transition(
            actor,
            appointment_id,
            lambda appointment, now: self.state_machine.complete(
                appointment, now, notes=notes, treatment_notes=treatment_notes
            ),
        )

    async def mark_no_show(self, actor: Actor, appointment_id: UUID) -> OperationResult[Appointment]:
        """Flag a pending appointment whose grace period elapsed."""
        return await self._transition(
            actor,
            appointment_id,
            self.state_machine.mark_no_show,
        )

    # Queries

    async def get(self, actor: Actor, appointment_id: UUID) -> OperationResult[Appointment]:
        """Get an appointment by ID."""
        if denied := self._authorize(actor, Resource.APPOINTMENTS, Action.READ):
            return denied

        appointment = await self.store.get_appointment(appointment_id)
        if appointment is None:
            return self._not_found(appointment_id)
        return Result.success(appointment)

    async def list_for_practitioner(
        self,
        actor: Actor,
        practitioner_id: UUID,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
        status: AppointmentStatus | None = None,
    ) -> OperationResult[list[Appointment]]:
        """
        List a practitioner's appointments ordered by start time.

        Args:
            actor: User performing the query
            practitioner_id: Practitioner whose calendar is listed
            start_from: Only appointments starting at or after this time
            start_before: Only appointments starting before this time
            status: Only appointments in this status

        Returns:
            Matching appointments
        """
        if denied := self._authorize(actor, Resource.APPOINTMENTS, Action.READ):
            return denied

        appointments = await self.store.list_appointments(
            practitioner_id=practitioner_id,
            start_from=start_from,
            start_before=start_before,
            statuses=[status] if status else None,
        )
        return Result.success(appointments)

    async def search(
        self,
        actor: Actor,
        practitioner_id: UUID | None = None,
        patient_id: UUID | None = None,
        day: date | None = None,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
        status: AppointmentStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> OperationResult[AppointmentPage]:
        """
        Page through appointments ordered by start time.

        Args:
            actor: User performing the query
            practitioner_id: Only this practitioner's appointments
            patient_id: Only this patient's appointments
            day: Only appointments starting on this clinic-local day
            start_from: Only appointments starting at or after this time
            start_before: Only appointments starting before this time
            status: Only appointments in this status
            page: 1-based page number
            limit: Page size

        Returns:
            One page of matching appointments with the total count
        """
        if denied := self._authorize(actor, Resource.APPOINTMENTS, Action.READ):
            return denied

        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            return Result.failure(
                ErrorKind.INVALID_REQUEST, f"Page must be at least 1 and limit between 1 and {MAX_PAGE_SIZE}"
            )
        if day is not None:
            if start_from is not None or start_before is not None:
                return Result.failure(ErrorKind.INVALID_REQUEST, "Filter by date or by time range, not both")
            start_from, start_before = self.config.day_bounds(day)

        filters = {
            "practitioner_id": practitioner_id,
            "patient_id": patient_id,
            "start_from": start_from,
            "start_before": start_before,
            "statuses": [status] if status else None,
        }
        items = await self.store.list_appointments(**filters, limit=limit, offset=(page - 1) * limit)
        total = await self.store.count_appointments(**filters)
        return Result.success(AppointmentPage(items=items, total=total, page=page, limit=limit))

    async def get_stats(
        self,
        actor: Actor,
        start_from: datetime | None = None,
        start_before: datetime | None = None,
    ) -> OperationResult[AppointmentStats]:
        """
        Summarize appointments for the dashboard.

        Status counts, the total and the most requested treatments cover the
        optional period. Today's count covers the clinic-local current day and
        the upcoming count covers pending appointments in the next seven days,
        both regardless of the period.

        Args:
            actor: User performing the query
            start_from: Period start, open if omitted
            start_before: Period end, open if omitted

        Returns:
            Appointment statistics
        """
        if denied := self._authorize(actor, Resource.REPORTS, Action.READ):
            return denied

        now = self.clock()
        today_start, today_end = self.config.day_bounds(now.astimezone(self.config.zone).date())

        by_status = await self.store.count_by_status(start_from, start_before)
        today = await self.store.count_appointments(start_from=today_start, start_before=today_end)
        upcoming = await self.store.count_appointments(
            start_from=now,
            start_before=now + UPCOMING_WINDOW,
            statuses=PENDING_STATUSES,
        )

        popular = []
        for treatment_id, count in await self.store.count_by_treatment(start_from, start_before, limit=5):
            treatment = await self.store.get_treatment(treatment_id)
            popular.append(
                TreatmentCount(
                    treatment_id=treatment_id,
                    name=treatment.name if treatment else None,
                    count=count,
                )
            )

        return Result.success(
            AppointmentStats(
                total=sum(by_status.values()),
                today=today,
                upcoming=upcoming,
                by_status=by_status,
                popular_treatments=popular,
                start_from=start_from,
                start_before=start_before,
            )
        )

    async def check_event(
        self,
        actor: Actor,
        appointment_id: UUID,
        event: AppointmentEvent,
    ) -> OperationResult[Appointment]:
        """Check that ``event`` is allowed from the appointment's current status without applying it."""
        found = await self.get(actor, appointment_id)
        if not found.ok:
            return found
        if error := self.state_machine.check(found.value, event):
            return error
        return found

    async def get_availability(
        self,
        actor: Actor,
        practitioner_id: UUID,
        day: date,
        treatment_id: UUID | None = None,
        duration_minutes: int | None = None,
    ) -> OperationResult[list[TimeSlot]]:
        """
        Get the free slots of a practitioner on a day.

        The slot length is the treatment duration when a treatment is given,
        else ``duration_minutes``, else the configured default.

        Args:
            actor: User performing the query
            practitioner_id: Practitioner whose calendar is inspected
            day: Local calendar day in the clinic time zone
            treatment_id: Treatment the slot is for
            duration_minutes: Explicit slot length

        Returns:
            Free slots in ascending start order
        """
        if denied := self._authorize(actor, Resource.APPOINTMENTS, Action.READ):
            return denied

        if treatment_id is not None:
            treatment = await self.store.get_treatment(treatment_id)
            if treatment is None:
                return Result.failure(
                    ErrorKind.NOT_FOUND, "Treatment not found", treatment_id=str(treatment_id)
                )
            duration = treatment.duration_minutes
        else:
            duration = duration_minutes or self.default_duration_minutes

        if duration <= 0:
            return Result.failure(ErrorKind.INVALID_REQUEST, "Slot duration must be positive")

        key = availability_cache_key(practitioner_id, day, duration)
        cached = self.cache.get_json(key) if self.cache else None
        if cached is not None:
            logger.debug("availability_cache_hit", key=key)
            return Result.success(
                [TimeSlot(datetime.fromisoformat(start), datetime.fromisoformat(end)) for start, end in cached]
            )

        # Writers invalidate after committing under this lock, so a list cached
        # here is either current or deleted by the writer that changed it
        try:
            async with self.store.transaction(lock_key=practitioner_lock_key(practitioner_id)):
                bookings = []
                if self.config.is_business_day(day):
                    bookings = await self.store.load_bookings(
                        practitioner_id,
                        self.config.opening_on(day),
                        self.config.closing_on(day),
                    )
                slots = list(generate_slots(day, practitioner_id, duration, bookings, self.config))

                if self.cache:
                    self.cache.set_json(
                        key,
                        [[slot.start.isoformat(), slot.end.isoformat()] for slot in slots],
                        ttl=self.cache_ttl_seconds,
                    )
        except PersistenceError as e:
            logger.error("availability_load_failed", practitioner_id=str(practitioner_id), error=str(e))
            return Result.failure(ErrorKind.PERSISTENCE_FAILURE, f"Could not load availability: {e!s}")
        return Result.success(slots)

    # Internals

    def _authorize(self, actor: Actor, resource: Resource, action: Action) -> Result | None:
        if actor.can(resource, action):
            return None
        logger.warning(
            "permission_denied",
            actor_id=str(actor.id),
            role=actor.role.value,
            resource=resource.value,
            action=action.value,
        )
        return Result.failure(
            ErrorKind.FORBIDDEN,
            f"Role {actor.role.value} cannot {action.value} {resource.value}",
            resource=resource.value,
            action=action.value,
        )

    @staticmethod
    def _not_found(appointment_id: UUID) -> Result:
        return Result.failure(ErrorKind.NOT_FOUND, "Appointment not found", appointment_id=str(appointment_id))

    @staticmethod
    def _conflict(conflicting_id: UUID | None) -> Result:
        return Result.failure(
            ErrorKind.SCHEDULE_CONFLICT,
            "Practitioner already has an appointment in that interval",
            conflicting_appointment_id=str(conflicting_id) if conflicting_id else None,
        )

    @staticmethod
    def _persistence_failure(operation: str, error: PersistenceError) -> Result:
        logger.error("appointment_write_failed", operation=operation, error=str(error))
        return Result.failure(ErrorKind.PERSISTENCE_FAILURE, f"Could not {operation} appointment: {error!s}")

    async def _transition(
        self,
        actor: Actor,
        appointment_id: UUID,
        decide: Decision,
    ) -> OperationResult[Appointment]:
        if denied := self._authorize(actor, Resource.APPOINTMENTS, Action.WRITE):
            return denied

        current = await self.store.get_appointment(appointment_id)
        if current is None:
            return self._not_found(appointment_id)
        return await self._apply(actor, current, decide)

    async def _apply(
        self,
        actor: Actor,
        appointment: Appointment,
        decide: Decision,
        candidate: Interval | None = None,
    ) -> OperationResult[Appointment]:
        """Decide and commit a transition under the practitioner lock, then dispatch its effects."""
        now = self.clock()
        transition: Transition | None = None
        try:
            async with self.store.transaction(lock_key=practitioner_lock_key(appointment.practitioner_id)):
                # Re-read under the lock; the status may have moved since the caller looked
                current = await self.store.get_appointment(appointment.id)
                if current is None:
                    return self._not_found(appointment.id)

                decision = decide(current, now)
                if not decision.ok:
                    return decision.propagate()
                transition = decision.value

                if candidate is not None:
                    bookings = await self.store.load_bookings(
                        current.practitioner_id, candidate.start, candidate.end
                    )
                    conflicting_id = find_conflict(
                        candidate,
                        bookings,
                        exclude_id=current.id,
                        practitioner_id=current.practitioner_id,
                    )
                    if conflicting_id is not None:
                        return self._conflict(conflicting_id)

                updated = await self.store.update_appointment(
                    transition.apply(current), expected_status=current.status
                )
                for effect in transition.transactional_effects:
                    await self._apply_transactional(effect, updated, actor, now)
        except BookingOverlapError as e:
            return self._conflict(e.conflicting_id)
        except StaleAppointmentError as e:
            return Result.failure(
                ErrorKind.INVALID_TRANSITION,
                "Appointment changed while it was being updated",
                reason=str(e),
            )
        except PersistenceError as e:
            operation = transition.event.value if transition else "update"
            return self._persistence_failure(operation, e)

        logger.info(
            "appointment_status_changed",
            appointment_id=str(updated.id),
            action=transition.event.value,
            from_status=transition.from_status.value,
            to_status=transition.to_status.value,
            actor_id=str(actor.id),
        )

        self._invalidate_availability(current)
        if candidate is not None:
            self._invalidate_availability(updated)

        warnings = await self._dispatch(transition, updated)
        return Result.success(updated, warnings)

    async def _apply_transactional(
        self,
        effect: SideEffect,
        appointment: Appointment,
        actor: Actor,
        now: datetime,
    ) -> None:
        if effect.kind is SideEffectKind.CONSUME_STOCK:
            treatment = await self.store.get_treatment(appointment.treatment_id)
            if treatment is None:
                raise PersistenceError(f"Treatment {appointment.treatment_id} does not exist")
            records = stock_consumption_for(treatment, appointment.id)
            if records:
                await self.store.apply_stock_consumption(records, actor.id)

        elif effect.kind is SideEffectKind.ADVANCE_TREATMENT_PROGRESS:
            progress = await self.store.advance_treatment_progress(
                appointment.patient_id, appointment.treatment_id, now
            )
            if progress is not None and progress.is_completed:
                logger.info(
                    "treatment_course_completed",
                    patient_id=str(appointment.patient_id),
                    treatment_id=str(appointment.treatment_id),
                    sessions=progress.sessions,
                )

        elif effect.kind is SideEffectKind.PERSIST_MEDICAL_RECORD:
            treatment = await self.store.get_treatment(appointment.treatment_id)
            title = f"Treatment session: {treatment.name}" if treatment else "Treatment session"
            await self.store.add_medical_record(
                MedicalRecordEntry(
                    patient_id=appointment.patient_id,
                    appointment_id=appointment.id,
                    title=title,
                    description=effect.payload["description"],
                ),
                now,
            )

    async def _dispatch(self, transition: Transition, appointment: Appointment) -> list[str]:
        """Run post-commit effects, collecting their failures as warnings."""
        warnings: list[str] = []
        for effect in transition.deferred_effects:
            if effect.kind is SideEffectKind.NOTIFY and effect.notification is not None:
                warnings.extend(await self.notify_patient(effect.notification, appointment))
            elif effect.kind is SideEffectKind.CALENDAR_UPDATE:
                warnings.extend(await self._sync_calendar("update", appointment))
            elif effect.kind is SideEffectKind.CALENDAR_CANCEL:
                warnings.extend(await self._sync_calendar("cancel", appointment))
        return warnings

    async def notify_patient(self, kind: NotificationKind, appointment: Appointment) -> list[str]:
        """Send a patient notification, returning a warning instead of raising on failure."""
        if self.notifier is None:
            return []
        try:
            await self.notifier.notify(kind, appointment)
        except Exception as e:
            logger.warning(
                "appointment_notification_failed",
                appointment_id=str(appointment.id),
                kind=kind.value,
                error=str(e),
            )
            return [f"Notification '{kind.value}' could not be sent: {e!s}"]
        return []

    async def _sync_calendar(self, action: str, appointment: Appointment) -> list[str]:
        event_id = appointment.external_calendar_event_id
        if self.calendar is None or not self.calendar.is_available() or not event_id:
            return []
        try:
            if action == "update":
                await self.calendar.update_event(event_id, appointment)
            else:
                await self.calendar.cancel_event(event_id)
        except Exception as e:
            logger.warning(
                "calendar_sync_failed",
                appointment_id=str(appointment.id),
                action=action,
                error=str(e),
            )
            return [f"Calendar {action} failed: {e!s}"]
        return []

    async def _create_calendar_event(
        self,
        appointment: Appointment,
        treatment: Treatment,
    ) -> tuple[Appointment, list[str]]:
        if self.calendar is None or not self.calendar.is_available():
            return appointment, []

        try:
            event_id = await self.calendar.create_event(appointment, summary=treatment.name)
        except Exception as e:
            logger.warning("calendar_sync_failed", appointment_id=str(appointment.id), action="create", error=str(e))
            return appointment, [f"Calendar create failed: {e!s}"]

        if not event_id:
            return appointment, []

        try:
            async with self.store.transaction(lock_key=practitioner_lock_key(appointment.practitioner_id)):
                linked = await self.store.link_calendar_event(appointment.id, event_id, self.clock())
        except PersistenceError as e:
            logger.warning("calendar_event_link_failed", appointment_id=str(appointment.id), error=str(e))
            return appointment, [f"Calendar event {event_id} created but not linked: {e!s}"]

        if linked is None:
            return replace(appointment, external_calendar_event_id=event_id), []

        # Changes committed while the event was being created skipped the
        # calendar because no event id was stored yet
        if linked.status is AppointmentStatus.CANCELLED:
            return linked, await self._sync_calendar("cancel", linked)
        if linked.interval != appointment.interval:
            return linked, await self._sync_calendar("update", linked)
        return linked, []

    def _invalidate_availability(self, appointment: Appointment) -> None:
        if self.cache is None:
            return
        day = appointment.start_time.astimezone(self.config.zone).date()
        self.cache.delete_pattern(f"availability:{appointment.practitioner_id}:{day.isoformat()}:*")
