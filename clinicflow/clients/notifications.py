from enum import Enum
from typing import Any, Dict, Optional

import httpx

from clinicflow.core.config import settings
from clinicflow.core.exceptions import CollaboratorUnavailable


class NotificationEvent(str, Enum):
    APPOINTMENT_CONFIRMED = "APPOINTMENT_CONFIRMED"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
    APPOINTMENT_RESCHEDULED = "APPOINTMENT_RESCHEDULED"
    APPOINTMENT_REMINDER = "APPOINTMENT_REMINDER"
    QUEUE_CALLED = "QUEUE_CALLED"


def appointment_message(event: NotificationEvent, appointment) -> Dict[str, Any]:
    when = appointment.appointment_date.strftime("%Y-%m-%d %H:%M")
    titles = {
        NotificationEvent.APPOINTMENT_CONFIRMED: ("Appointment confirmed", f"Your appointment on {when} is confirmed."),
        NotificationEvent.APPOINTMENT_CANCELLED: ("Appointment cancelled", f"Your appointment on {when} was cancelled."),
        NotificationEvent.APPOINTMENT_RESCHEDULED: ("Appointment rescheduled", f"Your appointment moved to {when}."),
        NotificationEvent.APPOINTMENT_REMINDER: ("Appointment reminder", f"Reminder: you have an appointment on {when}."),
    }
    title, message = titles[event]
    return {
        "event": event.value,
        "patient_id": str(appointment.patient_id),
        "appointment_id": str(appointment.id),
        "queue_entry_id": None,
        "title": title,
        "message": message,
    }


def queue_called_message(entry) -> Dict[str, Any]:
    room = f" in room {entry.room_number}" if entry.room_number else ""
    return {
        "event": NotificationEvent.QUEUE_CALLED.value,
        "patient_id": str(entry.patient_id),
        "appointment_id": str(entry.appointment_id) if entry.appointment_id else None,
        "queue_entry_id": str(entry.id),
        "title": "It's your turn",
        "message": f"Queue #{entry.queue_number}, please proceed to {entry.department}{room}.",
    }


class NotificationClient:
    """Fire-and-forget dispatch to the notification service."""

    name = "notifications"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else settings.NOTIFICATION_BASE_URL
        self.timeout = timeout if timeout else settings.NOTIFICATION_TIMEOUT_SECONDS
        self.transport = transport

    async def dispatch(self, payload: Dict[str, Any]) -> None:
        if not self.base_url:
            raise CollaboratorUnavailable(self.name, "NOTIFICATION_BASE_URL is not configured")
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = await client.post("/notifications", json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailable(self.name, f"{payload['event']} dispatch failed: {exc}") from exc

notification_client = NotificationClient()
