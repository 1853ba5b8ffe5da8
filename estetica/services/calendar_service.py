"""Google Calendar sync for appointments."""

from datetime import datetime
from typing import Any, Protocol

import httpx
import structlog

from estetica.scheduling.appointment import Appointment

logger = structlog.get_logger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


class CalendarError(Exception):
    """The external calendar rejected a request."""


class CalendarGateway(Protocol):
    """External calendar collaborator.

    When ``is_available()`` is False every call is a no-op returning None.
    """

    def is_available(self) -> bool:
        """Check whether calendar sync is configured."""
        ...

    async def create_event(self, appointment: Appointment, summary: str) -> str | None:
        """Create an event and return its external id."""
        ...

    async def update_event(self, event_id: str, appointment: Appointment) -> str | None:
        """Move an event to the appointment's current interval."""
        ...

    async def cancel_event(self, event_id: str) -> str | None:
        """Delete an event."""
        ...


class GoogleCalendarService:
    """Google Calendar REST client."""

    def __init__(
        self,
        calendar_id: str,
        access_token: str,
        enabled: bool = True,
        timezone: str = "America/Argentina/Cordoba",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            calendar_id: Target calendar, ``primary`` for the account's own
            access_token: OAuth access token with the calendar.events scope
            enabled: Feature switch; a disabled client never calls Google
            timezone: Time zone written on created events
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.calendar_id = calendar_id
        self.access_token = access_token
        self.enabled = enabled
        self.timezone = timezone
        self.timeout = timeout
        self.transport = transport

    def is_available(self) -> bool:
        """Check whether calendar sync is configured."""
        return self.enabled and bool(self.access_token)

    @property
    def events_url(self) -> str:
        """Events collection URL of the configured calendar."""
        return f"{GOOGLE_CALENDAR_API}/calendars/{self.calendar_id}/events"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
            },
        )

    def _time(self, moment: datetime) -> dict[str, str]:
        return {"dateTime": moment.isoformat(), "timeZone": self.timezone}

    def build_event(self, appointment: Appointment, summary: str) -> dict[str, Any]:
        """Build the event body for an appointment."""
        return {
            "summary": summary,
            "description": appointment.notes or "",
            "start": self._time(appointment.start_time),
            "end": self._time(appointment.end_time),
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 60},
                ],
            },
            "extendedProperties": {
                "private": {"appointment_id": str(appointment.id)},
            },
        }

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            logger.error(
                "calendar_request_failed",
                action=action,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise CalendarError(f"Google Calendar {action} failed with status {response.status_code}")

    async def create_event(self, appointment: Appointment, summary: str) -> str | None:
        """
        Create a calendar event for an appointment.

        Args:
            appointment: Appointment to mirror
            summary: Event title

        Returns:
            Google event id, or None when calendar sync is unavailable

        Raises:
            CalendarError: If Google rejected the request
        """
        if not self.is_available():
            logger.debug("calendar_unavailable_skip", action="create")
            return None

        async with self._client() as client:
            response = await client.post(self.events_url, json=self.build_event(appointment, summary))

        self._check(response, "create")
        event_id = response.json().get("id")
        logger.info("calendar_event_created", appointment_id=str(appointment.id), event_id=event_id)
        return event_id

    async def update_event(self, event_id: str, appointment: Appointment) -> str | None:
        """
        Move a calendar event to the appointment's interval.

        Args:
            event_id: Google event id
            appointment: Appointment with its new interval

        Returns:
            The event id, or None when calendar sync is unavailable

        Raises:
            CalendarError: If Google rejected the request
        """
        if not self.is_available():
            logger.debug("calendar_unavailable_skip", action="update")
            return None

        async with self._client() as client:
            response = await client.patch(
                f"{self.events_url}/{event_id}",
                json={
                    "start": self._time(appointment.start_time),
                    "end": self._time(appointment.end_time),
                },
            )

        self._check(response, "update")
        logger.info("calendar_event_updated", appointment_id=str(appointment.id), event_id=event_id)
        return event_id

    async def cancel_event(self, event_id: str) -> str | None:
        """
        Delete a calendar event.

        A 404 or 410 means the event is already gone and counts as success.

        Returns:
            The event id, or None when calendar sync is unavailable

        Raises:
            CalendarError: If Google rejected the request
        """
        if not self.is_available():
            logger.debug("calendar_unavailable_skip", action="cancel")
            return None

        async with self._client() as client:
            response = await client.delete(f"{self.events_url}/{event_id}")

        if response.status_code not in (404, 410):
            self._check(response, "cancel")
        logger.info("calendar_event_cancelled", event_id=event_id)
        return event_id
