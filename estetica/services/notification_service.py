"""Notification service for sending appointment push notifications via FCM."""

from typing import Protocol
from zoneinfo import ZoneInfo

import structlog
from firebase_admin import messaging

from estetica.scheduling.appointment import Appointment
from estetica.scheduling.state_machine import NotificationKind

logger = structlog.get_logger(__name__)


class NotificationError(Exception):
    """A patient notification could not be delivered."""


class Notifier(Protocol):
    """Patient notification collaborator."""

    async def notify(self, kind: NotificationKind, appointment: Appointment) -> None:
        """
        Send a notification about an appointment.

        Raises:
            NotificationError: If delivery failed
        """
        ...


# Title and body template per notification kind
MESSAGES: dict[NotificationKind, tuple[str, str]] = {
    NotificationKind.CONFIRMATION: (
        "Please confirm your appointment",
        "You have an appointment on {when}. Please confirm your attendance.",
    ),
    NotificationKind.CONFIRMED: (
        "Appointment confirmed",
        "Your appointment on {when} has been confirmed.",
    ),
    NotificationKind.CANCELLED: (
        "Appointment cancelled",
        "Your appointment on {when} has been cancelled.",
    ),
    NotificationKind.RESCHEDULED: (
        "Appointment rescheduled",
        "Your appointment has been moved to {when}.",
    ),
    NotificationKind.REMINDER_24H: (
        "Reminder: your appointment is tomorrow",
        "See you on {when}.",
    ),
    NotificationKind.REMINDER_2H: (
        "Reminder: your appointment is in 2 hours",
        "See you at {when}.",
    ),
}

# Cancellations are pushed with high priority
HIGH_PRIORITY_KINDS = frozenset({NotificationKind.CANCELLED, NotificationKind.REMINDER_2H})


def patient_topic(appointment: Appointment) -> str:
    """FCM topic the patient's devices subscribe to."""
    return f"patient_{appointment.patient_id}"


class PushNotificationService:
    """Sends appointment notifications to a patient's FCM topic."""

    def __init__(self, timezone: str = "America/Argentina/Cordoba", dry_run: bool = False):
        """
        Initialize the notifier.

        Args:
            timezone: Clinic time zone used to render appointment times
            dry_run: Validate messages with FCM without delivering them
        """
        self.zone = ZoneInfo(timezone)
        self.dry_run = dry_run

    def build_message(self, kind: NotificationKind, appointment: Appointment) -> messaging.Message:
        """
        Build the FCM message for a notification.

        Args:
            kind: Notification kind
            appointment: Appointment the notification is about

        Returns:
            FCM message addressed to the patient topic
        """
        title, template = MESSAGES[kind]
        when = appointment.start_time.astimezone(self.zone).strftime("%d/%m/%Y %H:%M")
        priority = "high" if kind in HIGH_PRIORITY_KINDS else "normal"

        return messaging.Message(
            notification=messaging.Notification(
                title=title,
                body=template.format(when=when),
            ),
            data={
                "type": kind.value,
                "appointment_id": str(appointment.id),
                "start_time": appointment.start_time.isoformat(),
                "screen": f"/appointments/{appointment.id}",
            },
            topic=patient_topic(appointment),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(
                        sound="default",
                        badge=1,
                    ),
                ),
            ),
            android=messaging.AndroidConfig(
                priority=priority,
                notification=messaging.AndroidNotification(
                    sound="default",
                    priority=priority,
                ),
            ),
        )

    async def notify(self, kind: NotificationKind, appointment: Appointment) -> None:
        """
        Push a notification about an appointment to the patient.

        Args:
            kind: Notification kind
            appointment: Appointment the notification is about

        Raises:
            NotificationError: If FCM rejected the message
        """
        message = self.build_message(kind, appointment)

        try:
            message_id = messaging.send(message, dry_run=self.dry_run)
        except Exception as e:
            logger.error(
                "push_notification_failed",
                kind=kind.value,
                appointment_id=str(appointment.id),
                error=str(e),
            )
            raise NotificationError(f"Failed to send {kind.value} notification: {e!s}") from e

        logger.info(
            "push_notification_sent",
            kind=kind.value,
            appointment_id=str(appointment.id),
            message_id=message_id,
        )
