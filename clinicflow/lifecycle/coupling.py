"""
Consistency rules between an appointment and its queue entry.

Whenever a queue entry references an appointment the two state machines
move in step. These checks run before any coupled mutation; a non-empty
result means the pair already diverged and needs manual reconciliation.
"""
from typing import List

from clinicflow.lifecycle.enums import ACTIVE_QUEUE_STATUSES, AppointmentStatus, QueueStatus


def coupling_problems(appointment, entry) -> List[str]:
    """``entry`` is the most recent queue entry for ``appointment`` (or None)."""
    if appointment is None:
        return []

    a_status = AppointmentStatus(appointment.status)
    if entry is None:
        if appointment.checked_in:
            return [f"appointment is checked in ({a_status.value}) but has no queue entry"]
        return []

    q_status = QueueStatus(entry.status)
    label = f"queue #{entry.queue_number} ({q_status.value})"
    problems = []

    if q_status in (QueueStatus.WAITING, QueueStatus.CALLED):
        if not appointment.checked_in:
            problems.append(f"{label} references an appointment that is not checked in")
        if a_status != AppointmentStatus.CONFIRMED:
            problems.append(f"{label} is active while the appointment is {a_status.value}")
    elif q_status == QueueStatus.IN_SERVICE:
        if a_status != AppointmentStatus.IN_PROGRESS:
            problems.append(f"{label} is in service while the appointment is {a_status.value}")
    elif q_status == QueueStatus.COMPLETED:
        if a_status != AppointmentStatus.COMPLETED:
            problems.append(f"{label} is completed while the appointment is {a_status.value}")
    elif a_status == AppointmentStatus.IN_PROGRESS:
        problems.append(f"appointment is IN_PROGRESS but its latest {label} is not in service")
    elif appointment.checked_in:
        problems.append(f"appointment is checked in but its latest {label} is no longer active")

    return problems


def needs_enqueue(appointment, entry) -> bool:
    """Checked in and awaiting service, but no active queue entry exists."""
    if not appointment.checked_in:
        return False
    if AppointmentStatus(appointment.status) != AppointmentStatus.CONFIRMED:
        return False
    return entry is None or QueueStatus(entry.status) not in ACTIVE_QUEUE_STATUSES
