"""Tests for the appointment lifecycle state machine."""

from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest

from estetica.scheduling.appointment import Appointment, AppointmentStatus
from estetica.scheduling.interval import Interval
from estetica.scheduling.results import ErrorKind
from estetica.scheduling.state_machine import (
    AppointmentEvent,
    AppointmentStateMachine,
    NotificationKind,
    SideEffectKind,
)
from helpers import at

S = AppointmentStatus


@pytest.fixture
def machine() -> AppointmentStateMachine:
    return AppointmentStateMachine(no_show_grace=timedelta(minutes=30))


def make_appointment(status: S = S.SCHEDULED, **changes) -> Appointment:
    appointment = Appointment(
        id=uuid4(),
        patient_id=uuid4(),
        treatment_id=uuid4(),
        practitioner_id=uuid4(),
        start_time=at(10),
        end_time=at(11),
        status=status,
    )
    return replace(appointment, **changes)


def effect_kinds(transition) -> list[SideEffectKind]:
    return [effect.kind for effect in transition.side_effects]


def test_confirm_from_scheduled(machine):
    result = machine.confirm(make_appointment(), at(9))

    assert result.ok
    assert result.value.to_status is S.CONFIRMED
    assert result.value.side_effects[0].notification is NotificationKind.CONFIRMED


@pytest.mark.parametrize("status", [S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED, S.CANCELLED, S.NO_SHOW])
def test_confirm_only_from_scheduled(machine, status):
    result = machine.confirm(make_appointment(status), at(9))

    assert result.error.kind is ErrorKind.INVALID_TRANSITION
    assert result.error.details["current_status"] == status.value


def test_start_requires_confirmation(machine):
    assert not machine.start(make_appointment(S.SCHEDULED), at(10)).ok
    assert machine.start(make_appointment(S.CONFIRMED), at(10)).value.to_status is S.IN_PROGRESS


def test_reschedule_keeps_status_and_moves_interval(machine):
    appointment = make_appointment(S.CONFIRMED)
    result = machine.reschedule(appointment, Interval(at(14), at(15)), at(9))

    transition = result.value
    moved = transition.apply(appointment)
    assert transition.to_status is S.CONFIRMED
    assert (moved.start_time, moved.end_time) == (at(14), at(15))
    assert effect_kinds(transition) == [SideEffectKind.NOTIFY]


def test_reschedule_updates_linked_calendar_event(machine):
    appointment = make_appointment(external_calendar_event_id="evt-1")
    transition = machine.reschedule(appointment, Interval(at(14), at(15)), at(9)).value

    assert SideEffectKind.CALENDAR_UPDATE in effect_kinds(transition)


@pytest.mark.parametrize("status", [S.COMPLETED, S.CANCELLED, S.NO_SHOW])
def test_terminal_appointments_cannot_be_rescheduled(machine, status):
    result = machine.reschedule(make_appointment(status), Interval(at(14), at(15)), at(9))
    assert result.error.kind is ErrorKind.INVALID_TRANSITION


def test_cancel_appends_reason_to_notes(machine):
    appointment = make_appointment(notes="Allergic to lidocaine")
    transition = machine.cancel(appointment, "Patient travelling", at(9)).value
    cancelled = transition.apply(appointment)

    assert cancelled.status is S.CANCELLED
    assert cancelled.notes == "Allergic to lidocaine\n\nCancelled: Patient travelling"
    assert cancelled.cancelled_at == at(9)
    assert transition.side_effects[0].notification is NotificationKind.CANCELLED


def test_cancel_twice_reports_already_cancelled(machine):
    result = machine.cancel(make_appointment(S.CANCELLED), "again", at(9))
    assert result.error.kind is ErrorKind.ALREADY_CANCELLED


def test_cancel_requires_reason(machine):
    result = machine.cancel(make_appointment(), "   ", at(9))
    assert result.error.kind is ErrorKind.INVALID_REQUEST


def test_cancel_completed_is_invalid(machine):
    result = machine.cancel(make_appointment(S.COMPLETED), "late", at(9))
    assert result.error.kind is ErrorKind.INVALID_TRANSITION


def test_complete_requests_transactional_effects(machine):
    transition = machine.complete(make_appointment(S.IN_PROGRESS), at(11), treatment_notes="1ml upper lip").value

    assert transition.to_status is S.COMPLETED
    assert {effect.kind for effect in transition.transactional_effects} == {
        SideEffectKind.PERSIST_MEDICAL_RECORD,
        SideEffectKind.CONSUME_STOCK,
        SideEffectKind.ADVANCE_TREATMENT_PROGRESS,
    }
    assert transition.deferred_effects == []


def test_complete_without_clinical_notes_skips_medical_record(machine):
    transition = machine.complete(make_appointment(S.CONFIRMED), at(11)).value
    assert SideEffectKind.PERSIST_MEDICAL_RECORD not in effect_kinds(transition)


def test_complete_scheduled_is_invalid(machine):
    result = machine.complete(make_appointment(S.SCHEDULED), at(11))
    assert result.error.kind is ErrorKind.INVALID_TRANSITION


def test_complete_twice_reports_already_completed(machine):
    result = machine.complete(make_appointment(S.COMPLETED), at(11))
    assert result.error.kind is ErrorKind.ALREADY_COMPLETED


def test_no_show_waits_for_grace_period(machine):
    appointment = make_appointment(S.CONFIRMED)

    assert not machine.mark_no_show(appointment, at(11, 30)).ok
    result = machine.mark_no_show(appointment, at(11, 31))
    assert result.value.to_status is S.NO_SHOW
    assert result.value.side_effects == ()


def test_in_progress_cannot_be_no_show(machine):
    result = machine.mark_no_show(make_appointment(S.IN_PROGRESS), at(13))
    assert result.error.kind is ErrorKind.INVALID_TRANSITION


def test_can_matches_allowed_sources(machine):
    assert machine.can(make_appointment(S.SCHEDULED), AppointmentEvent.CANCEL)
    assert not machine.can(make_appointment(S.NO_SHOW), AppointmentEvent.CANCEL)


def test_check_reports_without_transitioning(machine):
    appointment = make_appointment(S.SCHEDULED)

    assert machine.check(appointment, AppointmentEvent.CONFIRM) is None
    error = machine.check(appointment, AppointmentEvent.START)
    assert error.error.kind is ErrorKind.INVALID_TRANSITION
    assert appointment.status is S.SCHEDULED
