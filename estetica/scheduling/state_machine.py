"""Appointment lifecycle state machine.

The machine decides whether an event is allowed from the appointment's
current status and describes the outcome as a ``Transition``: the resulting
status, the field changes and the side effects the orchestrator must carry
out. It never performs I/O itself.

    SCHEDULED -> CONFIRMED -> IN_PROGRESS -> COMPLETED
    SCHEDULED | CONFIRMED | IN_PROGRESS -> CANCELLED
    SCHEDULED | CONFIRMED -> NO_SHOW   (time based, silent)
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from estetica.scheduling.appointment import Appointment, AppointmentStatus
from estetica.scheduling.interval import Interval
from estetica.scheduling.results import ErrorKind, Result


class AppointmentEvent(str, Enum):
    """Events that drive the appointment lifecycle."""

    CONFIRM = "confirm"
    START = "start"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    COMPLETE = "complete"
    MARK_NO_SHOW = "mark_no_show"


class NotificationKind(str, Enum):
    """Patient notifications emitted by the lifecycle and reminder sweeps."""

    CONFIRMATION = "confirmation"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    REMINDER_24H = "reminder24h"
    REMINDER_2H = "reminder2h"


class SideEffectKind(str, Enum):
    """Work requested by a transition."""

    NOTIFY = "notify"
    CALENDAR_UPDATE = "calendar_update"
    CALENDAR_CANCEL = "calendar_cancel"
    PERSIST_MEDICAL_RECORD = "persist_medical_record"
    CONSUME_STOCK = "consume_stock"
    ADVANCE_TREATMENT_PROGRESS = "advance_treatment_progress"


# Effects that must commit together with the status change
TRANSACTIONAL_EFFECTS = frozenset(
    {
        SideEffectKind.PERSIST_MEDICAL_RECORD,
        SideEffectKind.CONSUME_STOCK,
        SideEffectKind.ADVANCE_TREATMENT_PROGRESS,
    }
)


@dataclass(frozen=True)
class SideEffect:
    """A side effect request attached to a transition."""

    kind: SideEffectKind
    notification: NotificationKind | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def transactional(self) -> bool:
        """Check whether the effect belongs to the state-change transaction."""
        return self.kind in TRANSACTIONAL_EFFECTS


@dataclass(frozen=True)
class Transition:
    """Accepted lifecycle transition."""

    event: AppointmentEvent
    from_status: AppointmentStatus
    to_status: AppointmentStatus
    changes: dict[str, Any] = field(default_factory=dict)
    side_effects: tuple[SideEffect, ...] = ()

    def apply(self, appointment: Appointment) -> Appointment:
        """Return the appointment with this transition's changes applied."""
        return replace(appointment, status=self.to_status, **self.changes)

    @property
    def transactional_effects(self) -> list[SideEffect]:
        """Effects committed with the status change."""
        return [effect for effect in self.side_effects if effect.transactional]

    @property
    def deferred_effects(self) -> list[SideEffect]:
        """Best-effort effects run after commit."""
        return [effect for effect in self.side_effects if not effect.transactional]


S = AppointmentStatus

ALLOWED_SOURCES: dict[AppointmentEvent, frozenset[AppointmentStatus]] = {
    AppointmentEvent.CONFIRM: frozenset({S.SCHEDULED}),
    AppointmentEvent.START: frozenset({S.CONFIRMED}),
    AppointmentEvent.RESCHEDULE: frozenset({S.SCHEDULED, S.CONFIRMED, S.IN_PROGRESS}),
    AppointmentEvent.CANCEL: frozenset({S.SCHEDULED, S.CONFIRMED, S.IN_PROGRESS}),
    AppointmentEvent.COMPLETE: frozenset({S.CONFIRMED, S.IN_PROGRESS}),
    AppointmentEvent.MARK_NO_SHOW: frozenset({S.SCHEDULED, S.CONFIRMED}),
}


def _notify(kind: NotificationKind) -> SideEffect:
    return SideEffect(kind=SideEffectKind.NOTIFY, notification=kind)


def _invalid(appointment: Appointment, event: AppointmentEvent, reason: str | None = None) -> Result[Any]:
    message = f"Cannot {event.value} an appointment in status {appointment.status.value}"
    if reason:
        message = f"{message}: {reason}"
    return Result.failure(
        ErrorKind.INVALID_TRANSITION,
        message,
        current_status=appointment.status.value,
        requested=event.value,
    )


def append_note(existing: str | None, addition: str) -> str:
    """Append a paragraph to free-text notes without overwriting them."""
    if existing:
        return f"{existing}\n\n{addition}"
    return addition


class AppointmentStateMachine:
    """Lifecycle rules for appointments."""

    def __init__(self, no_show_grace: timedelta = timedelta(minutes=30)):
        """Initialize with the grace period used by no-show marking."""
        self.no_show_grace = no_show_grace

    def can(self, appointment: Appointment, event: AppointmentEvent) -> bool:
        """Check whether ``event`` is allowed from the appointment's status."""
        return appointment.status in ALLOWED_SOURCES[event]

    def check(self, appointment: Appointment, event: AppointmentEvent) -> Result[Any] | None:
        """Return the INVALID_TRANSITION failure for a disallowed event, else None."""
        if not self.can(appointment, event):
            return _invalid(appointment, event)
        return None

    def confirm(self, appointment: Appointment, now: datetime) -> Result[Transition]:
        """Patient or staff confirmed attendance."""
        if error := self.check(appointment, AppointmentEvent.CONFIRM):
            return error
        return Result.success(
            Transition(
                event=AppointmentEvent.CONFIRM,
                from_status=appointment.status,
                to_status=S.CONFIRMED,
                changes={"updated_at": now},
                side_effects=(_notify(NotificationKind.CONFIRMED),),
            )
        )

    def start(self, appointment: Appointment, now: datetime) -> Result[Transition]:
        """Patient arrived and the session began."""
        if error := self.check(appointment, AppointmentEvent.START):
            return error
        return Result.success(
            Transition(
                event=AppointmentEvent.START,
                from_status=appointment.status,
                to_status=S.IN_PROGRESS,
                changes={"updated_at": now},
            )
        )

    def reschedule(
        self,
        appointment: Appointment,
        new_interval: Interval,
        now: datetime,
    ) -> Result[Transition]:
        """
        Move an appointment to a new interval, keeping its status.

        Working-hours and conflict checks on ``new_interval`` are the
        caller's responsibility; this only decides whether the status allows
        a move.
        """
        if error := self.check(appointment, AppointmentEvent.RESCHEDULE):
            return error

        effects = [_notify(NotificationKind.RESCHEDULED)]
        if appointment.external_calendar_event_id:
            effects.append(SideEffect(kind=SideEffectKind.CALENDAR_UPDATE))

        return Result.success(
            Transition(
                event=AppointmentEvent.RESCHEDULE,
                from_status=appointment.status,
                to_status=appointment.status,
                changes={
                    "start_time": new_interval.start,
                    "end_time": new_interval.end,
                    "updated_at": now,
                },
                side_effects=tuple(effects),
            )
        )

    def cancel(self, appointment: Appointment, reason: str, now: datetime) -> Result[Transition]:
        """Cancel an appointment, keeping the reason in its notes."""
        if appointment.status is S.CANCELLED:
            return Result.failure(
                ErrorKind.ALREADY_CANCELLED,
                "Appointment is already cancelled",
                appointment_id=str(appointment.id),
            )
        if error := self.check(appointment, AppointmentEvent.CANCEL):
            return error
        if not reason or not reason.strip():
            return Result.failure(ErrorKind.INVALID_REQUEST, "A cancellation reason is required")

        effects = [_notify(NotificationKind.CANCELLED)]
        if appointment.external_calendar_event_id:
            effects.append(SideEffect(kind=SideEffectKind.CALENDAR_CANCEL))

        return Result.success(
            Transition(
                event=AppointmentEvent.CANCEL,
                from_status=appointment.status,
                to_status=S.CANCELLED,
                changes={
                    "notes": append_note(appointment.notes, f"Cancelled: {reason.strip()}"),
                    "cancelled_at": now,
                    "updated_at": now,
                },
                side_effects=tuple(effects),
            )
        )

    def complete(
        self,
        appointment: Appointment,
        now: datetime,
        notes: str | None = None,
        treatment_notes: str | None = None,
    ) -> Result[Transition]:
        """Close a session; stock and treatment progress move with it."""
        if appointment.status is S.COMPLETED:
            return Result.failure(
                ErrorKind.ALREADY_COMPLETED,
                "Appointment is already completed",
                appointment_id=str(appointment.id),
            )
        if error := self.check(appointment, AppointmentEvent.COMPLETE):
            return error

        effects = []
        if treatment_notes:
            effects.append(
                SideEffect(
                    kind=SideEffectKind.PERSIST_MEDICAL_RECORD,
                    payload={"description": treatment_notes},
                )
            )
        effects.append(SideEffect(kind=SideEffectKind.CONSUME_STOCK))
        effects.append(SideEffect(kind=SideEffectKind.ADVANCE_TREATMENT_PROGRESS))

        return Result.success(
            Transition(
                event=AppointmentEvent.COMPLETE,
                from_status=appointment.status,
                to_status=S.COMPLETED,
                changes={
                    "notes": notes or appointment.notes,
                    "completed_at": now,
                    "updated_at": now,
                },
                side_effects=tuple(effects),
            )
        )

    def mark_no_show(self, appointment: Appointment, now: datetime) -> Result[Transition]:
        """Flag a pending appointment whose end passed the grace period."""
        if error := self.check(appointment, AppointmentEvent.MARK_NO_SHOW):
            return error
        if now <= appointment.end_time + self.no_show_grace:
            return _invalid(appointment, AppointmentEvent.MARK_NO_SHOW, "grace period has not elapsed")

        return Result.success(
            Transition(
                event=AppointmentEvent.MARK_NO_SHOW,
                from_status=appointment.status,
                to_status=S.NO_SHOW,
                changes={"updated_at": now},
            )
        )
