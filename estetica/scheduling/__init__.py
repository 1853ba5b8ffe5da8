"""Appointment scheduling core."""

from estetica.scheduling.appointment import (
    Appointment,
    AppointmentStatus,
    Booking,
    MedicalRecordEntry,
    RequiredProduct,
    StockConsumptionRecord,
    Treatment,
)
from estetica.scheduling.conflicts import find_conflict, find_conflicts
from estetica.scheduling.interval import Interval, InvalidIntervalError
from estetica.scheduling.permissions import Action, Actor, Resource, Role, can
from estetica.scheduling.policy import PolicyRule, WorkingHoursConfig, validate_working_hours
from estetica.scheduling.results import ErrorKind, OperationResult, Result, SchedulingError
from estetica.scheduling.slots import SlotSequence, TimeSlot, generate_slots
from estetica.scheduling.state_machine import (
    AppointmentEvent,
    AppointmentStateMachine,
    NotificationKind,
    SideEffect,
    SideEffectKind,
    Transition,
)

__all__ = [
    "Action",
    "Actor",
    "Appointment",
    "AppointmentEvent",
    "AppointmentStateMachine",
    "AppointmentStatus",
    "Booking",
    "ErrorKind",
    "Interval",
    "InvalidIntervalError",
    "MedicalRecordEntry",
    "NotificationKind",
    "OperationResult",
    "PolicyRule",
    "RequiredProduct",
    "Resource",
    "Result",
    "Role",
    "SchedulingError",
    "SideEffect",
    "SideEffectKind",
    "SlotSequence",
    "StockConsumptionRecord",
    "TimeSlot",
    "Transition",
    "Treatment",
    "WorkingHoursConfig",
    "can",
    "find_conflict",
    "find_conflicts",
    "generate_slots",
    "validate_working_hours",
]
