from sqlmodel import SQLModel
from .appointment import Appointment
from .queue_entry import QueueEntry
from .counter import QueueCounter
from .audit_log import AuditLog

__all__ = [
    "SQLModel",
    "Appointment",
    "QueueEntry",
    "QueueCounter",
    "AuditLog",
]
