"""
Queue entry state machine.

    WAITING -> CALLED -> IN_SERVICE -> COMPLETED
    WAITING | CALLED -> SKIPPED
    WAITING -> LEFT
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from clinicflow.core.exceptions import GuardViolation
from clinicflow.lifecycle.enums import PriorityLevel, QueueStatus, TERMINAL_QUEUE_STATUSES
from clinicflow.lifecycle.ordering import priority_score
from clinicflow.lifecycle.time_windows import minutes_between
from clinicflow.lifecycle.transition import Transition

Q = QueueStatus

SKIPPABLE_STATUSES = frozenset({Q.WAITING, Q.CALLED})


def _require_status(entry, allowed, action: str) -> QueueStatus:
    status = QueueStatus(entry.status)
    if status in TERMINAL_QUEUE_STATUSES:
        raise GuardViolation("terminal_state", f"Cannot {action}: queue entry is already {status.value}")
    if status not in allowed:
        raise GuardViolation("status", f"Cannot {action} a queue entry in status {status.value}")
    return status


def plan_call(
    entry,
    doctor_id: UUID,
    now: datetime,
    is_next: bool,
    override: bool = False,
    room_number: Optional[str] = None,
) -> Transition:
    _require_status(entry, frozenset({Q.WAITING}), "call")
    if not is_next and not override:
        raise GuardViolation(
            "call_order",
            f"Queue #{entry.queue_number} is not next in line; calling it requires an explicit override",
        )
    changes = {"called_time": now, "called_by": doctor_id, "updated_at": now}
    if room_number is not None:
        changes["room_number"] = room_number
    return Transition(
        action="call_next" if is_next else "call_out_of_order",
        target=Q.CALLED,
        allowed_from=frozenset({Q.WAITING}),
        changes=changes,
    )


def plan_start_service(entry, doctor_id: UUID, now: datetime) -> Transition:
    _require_status(entry, frozenset({Q.CALLED}), "start service for")
    if entry.called_by != doctor_id:
        raise GuardViolation("called_by", "Only the doctor who called this patient can start the service")
    return Transition(
        action="start_service",
        target=Q.IN_SERVICE,
        allowed_from=frozenset({Q.CALLED}),
        changes={
            "service_start_time": now,
            "actual_wait_time": minutes_between(entry.check_in_time, now),
            "updated_at": now,
        },
        expect={"called_by": doctor_id},
    )


def plan_complete_service(entry, doctor_id: UUID, now: datetime) -> Transition:
    _require_status(entry, frozenset({Q.IN_SERVICE}), "complete")
    if entry.called_by != doctor_id:
        raise GuardViolation("called_by", "Only the serving doctor can complete this queue entry")
    return Transition(
        action="complete_service",
        target=Q.COMPLETED,
        allowed_from=frozenset({Q.IN_SERVICE}),
        changes={"service_end_time": now, "updated_at": now},
    )


def plan_skip(entry, now: datetime) -> Transition:
    _require_status(entry, SKIPPABLE_STATUSES, "skip")
    return Transition(
        action="skip",
        target=Q.SKIPPED,
        allowed_from=SKIPPABLE_STATUSES,
        changes={"updated_at": now},
    )


def plan_leave(entry, now: datetime) -> Transition:
    _require_status(entry, frozenset({Q.WAITING}), "leave")
    return Transition(
        action="leave",
        target=Q.LEFT,
        allowed_from=frozenset({Q.WAITING}),
        changes={"updated_at": now},
    )


def plan_invalidate(entry, now: datetime) -> Transition:
    """Retire an entry whose appointment moved to another time."""
    status = QueueStatus(entry.status)
    if status == Q.IN_SERVICE:
        raise GuardViolation("in_service", "Patient is already being served")
    if status == Q.CALLED:
        return plan_skip(entry, now)
    return plan_leave(entry, now)


def plan_priority_change(
    entry,
    priority_level: PriorityLevel,
    is_emergency: Optional[bool],
    now: datetime,
) -> Transition:
    _require_status(entry, frozenset({Q.WAITING}), "re-prioritise")
    level = PriorityLevel(priority_level)
    emergency = entry.is_emergency if is_emergency is None else is_emergency
    return Transition(
        action="change_priority",
        target=Q.WAITING,
        allowed_from=frozenset({Q.WAITING}),
        changes={
            "priority_level": level,
            "is_emergency": emergency,
            "priority_score": priority_score(level, emergency),
            "updated_at": now,
        },
    )
