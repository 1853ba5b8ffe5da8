"""Tests for FCM appointment notifications."""

from unittest.mock import patch
from uuid import uuid4

import pytest

from estetica.scheduling.appointment import Appointment
from estetica.scheduling.state_machine import NotificationKind
from estetica.services.notification_service import (
    NotificationError,
    PushNotificationService,
    patient_topic,
)
from helpers import at


@pytest.fixture
def appointment() -> Appointment:
    return Appointment(
        id=uuid4(),
        patient_id=uuid4(),
        treatment_id=uuid4(),
        practitioner_id=uuid4(),
        start_time=at(10),
        end_time=at(11),
    )


def test_message_addressed_to_patient_topic(appointment):
    message = PushNotificationService().build_message(NotificationKind.REMINDER_24H, appointment)

    assert message.topic == patient_topic(appointment) == f"patient_{appointment.patient_id}"
    assert message.data["type"] == "reminder24h"
    assert message.data["appointment_id"] == str(appointment.id)
    assert "19/10/2026 10:00" in message.notification.body


def test_cancellations_are_high_priority(appointment):
    service = PushNotificationService()

    assert service.build_message(NotificationKind.CANCELLED, appointment).android.priority == "high"
    assert service.build_message(NotificationKind.CONFIRMED, appointment).android.priority == "normal"


@pytest.mark.asyncio
async def test_notify_sends_message(appointment):
    service = PushNotificationService(dry_run=True)

    with patch("estetica.services.notification_service.messaging.send", return_value="msg-1") as send:
        await service.notify(NotificationKind.CONFIRMATION, appointment)

    message = send.call_args.args[0]
    assert message.topic == patient_topic(appointment)
    assert send.call_args.kwargs == {"dry_run": True}


@pytest.mark.asyncio
async def test_notify_failure_raises_notification_error(appointment):
    service = PushNotificationService()

    with patch("estetica.services.notification_service.messaging.send", side_effect=ValueError("no app")):
        with pytest.raises(NotificationError):
            await service.notify(NotificationKind.CANCELLED, appointment)
