"""
Appointment state machine.

Each ``plan_*`` function checks the guards of one transition against the
appointment as read and returns a :class:`Transition` describing the
conditional write, or raises :class:`GuardViolation` naming the guard that
failed. Nothing here touches the database, so the same predicates back the
API, the batch sweeps and any client that wants to grey out a button.

    SCHEDULED -> CONFIRMED -> IN_PROGRESS -> COMPLETED
    SCHEDULED | CONFIRMED | RESCHEDULED -> CANCELLED | NO_SHOW | RESCHEDULED

A checked-in appointment whose queue entry is skipped becomes NO_SHOW; one
whose entry is left goes back to CONFIRMED without the check-in.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from clinicflow.core.exceptions import GuardViolation
from clinicflow.lifecycle.enums import AppointmentStatus, TERMINAL_APPOINTMENT_STATUSES
from clinicflow.lifecycle.time_windows import (
    TimeWindow,
    check_in_window,
    is_in_future,
    is_past_no_show_cutoff,
)
from clinicflow.lifecycle.transition import Transition

S = AppointmentStatus

CHECK_IN_STATUSES = frozenset({S.SCHEDULED, S.CONFIRMED})
CONFIRMABLE_STATUSES = frozenset({S.SCHEDULED, S.RESCHEDULED})
CANCELLABLE_STATUSES = frozenset({S.SCHEDULED, S.CONFIRMED, S.RESCHEDULED})
STARTABLE_STATUSES = frozenset({S.SCHEDULED, S.CONFIRMED})
NO_SHOW_STATUSES = frozenset({S.SCHEDULED, S.CONFIRMED, S.RESCHEDULED})
RESCHEDULABLE_STATUSES = frozenset({S.SCHEDULED, S.CONFIRMED, S.RESCHEDULED})

# Statuses in which confirmed_at / checked_in may be set
VISIT_STATUSES = frozenset({S.CONFIRMED, S.IN_PROGRESS, S.COMPLETED})

CLINICAL_FIELDS = (
    "chief_complaint",
    "symptoms",
    "vital_signs",
    "diagnosis",
    "prescription",
    "notes",
)


@dataclass(frozen=True)
class CheckInEligibility:
    eligible: bool
    window: TimeWindow
    guard: Optional[str] = None
    reason: Optional[str] = None


def _status(appointment) -> AppointmentStatus:
    return AppointmentStatus(appointment.status)


def _require_status(appointment, allowed, action: str) -> AppointmentStatus:
    status = _status(appointment)
    if status in TERMINAL_APPOINTMENT_STATUSES:
        raise GuardViolation("terminal_state", f"Cannot {action}: appointment is already {status.value}")
    if status not in allowed:
        raise GuardViolation("status", f"Cannot {action} an appointment in status {status.value}")
    return status


def _is_blank(value: Optional[str]) -> bool:
    return not (value or "").strip()


def check_in_eligibility(
    now: datetime,
    appointment_date: datetime,
    status: AppointmentStatus,
    checked_in: bool,
) -> CheckInEligibility:
    window = check_in_window(appointment_date)
    if checked_in:
        return CheckInEligibility(False, window, "already_checked_in", "Appointment is already checked in")
    status = AppointmentStatus(status)
    if status not in CHECK_IN_STATUSES:
        return CheckInEligibility(False, window, "status", f"Cannot check in an appointment in status {status.value}")
    if now < window.opens_at:
        return CheckInEligibility(False, window, "check_in_window", f"Check-in opens at {window.opens_at.isoformat()}")
    if now > window.closes_at:
        return CheckInEligibility(False, window, "check_in_window", f"Check-in closed at {window.closes_at.isoformat()}")
    return CheckInEligibility(True, window)


def can_check_in(now: datetime, appointment_date: datetime, status: AppointmentStatus, checked_in: bool) -> bool:
    return check_in_eligibility(now, appointment_date, status, checked_in).eligible


def plan_confirm(appointment, now: datetime) -> Transition:
    _require_status(appointment, CONFIRMABLE_STATUSES, "confirm")
    if not is_in_future(now, appointment.appointment_date):
        raise GuardViolation("future_only", "Cannot confirm an appointment whose time has passed")
    return Transition(
        action="confirm",
        target=S.CONFIRMED,
        allowed_from=CONFIRMABLE_STATUSES,
        changes={"confirmed_at": now, "updated_at": now},
    )


def plan_cancel(appointment, now: datetime, reason: Optional[str] = None) -> Transition:
    _require_status(appointment, CANCELLABLE_STATUSES, "cancel")
    if appointment.checked_in:
        raise GuardViolation("checked_in", "A checked-in appointment cannot be cancelled")
    if not is_in_future(now, appointment.appointment_date):
        raise GuardViolation("future_only", "Only future appointments can be cancelled")
    return Transition(
        action="cancel",
        target=S.CANCELLED,
        allowed_from=CANCELLABLE_STATUSES,
        changes={
            "cancelled_at": now,
            "cancellation_reason": reason,
            "confirmed_at": None,
            "updated_at": now,
        },
        expect={"checked_in": False},
    )


def plan_check_in(appointment, now: datetime) -> Transition:
    eligibility = check_in_eligibility(now, appointment.appointment_date, appointment.status, appointment.checked_in)
    if not eligibility.eligible:
        raise GuardViolation(eligibility.guard, eligibility.reason)

    status = _status(appointment)
    changes = {"checked_in": True, "check_in_time": now, "updated_at": now}
    if status == S.SCHEDULED:
        changes["confirmed_at"] = now
    return Transition(
        action="check_in",
        target=S.CONFIRMED,
        # Exact status: the changes above depend on it
        allowed_from=frozenset({status}),
        changes=changes,
        expect={"checked_in": False},
    )


def plan_start_consultation(appointment, doctor_id: UUID, now: datetime) -> Transition:
    _require_status(appointment, STARTABLE_STATUSES, "start a consultation for")
    if not appointment.checked_in:
        raise GuardViolation("not_checked_in", "Patient has not checked in")
    if appointment.doctor_id is not None and appointment.doctor_id != doctor_id:
        raise GuardViolation("assigned_doctor", "Appointment is assigned to another doctor")
    return Transition(
        action="start_consultation",
        target=S.IN_PROGRESS,
        allowed_from=STARTABLE_STATUSES,
        changes={"doctor_id": doctor_id, "actual_start_time": now, "updated_at": now},
        expect={"checked_in": True},
    )


def plan_complete(appointment, doctor_id: UUID, now: datetime, clinical: Optional[Dict[str, Optional[str]]] = None) -> Transition:
    _require_status(appointment, frozenset({S.IN_PROGRESS}), "complete")
    if appointment.doctor_id != doctor_id:
        raise GuardViolation("assigned_doctor", "Only the consulting doctor can complete this appointment")
    clinical = _clean_clinical(clinical)
    diagnosis = clinical.get("diagnosis", appointment.diagnosis)
    if _is_blank(diagnosis):
        raise GuardViolation("diagnosis_required", "A diagnosis is required to complete the consultation")
    return Transition(
        action="complete",
        target=S.COMPLETED,
        allowed_from=frozenset({S.IN_PROGRESS}),
        changes={**clinical, "actual_end_time": now, "updated_at": now},
        expect={"doctor_id": doctor_id},
    )


def plan_no_show(appointment, now: datetime) -> Transition:
    _require_status(appointment, NO_SHOW_STATUSES, "mark as no-show")
    if appointment.checked_in:
        raise GuardViolation("checked_in", "Patient has checked in")
    if not is_past_no_show_cutoff(now, appointment.appointment_date):
        raise GuardViolation("not_yet_due", "The check-in window for this appointment is still open")
    return Transition(
        action="no_show",
        target=S.NO_SHOW,
        allowed_from=NO_SHOW_STATUSES,
        changes={"confirmed_at": None, "updated_at": now},
        expect={"checked_in": False},
    )


def plan_skipped_at_queue(appointment, now: datetime) -> Transition:
    """The patient did not answer their call: the visit ends as a no-show."""
    _require_status(appointment, frozenset({S.CONFIRMED}), "mark as no-show")
    if not appointment.checked_in:
        raise GuardViolation("not_checked_in", "Patient has not checked in")
    return Transition(
        action="no_show_at_queue",
        target=S.NO_SHOW,
        allowed_from=frozenset({S.CONFIRMED}),
        changes={"checked_in": False, "confirmed_at": None, "updated_at": now},
        expect={"checked_in": True},
    )


def plan_release_check_in(appointment, now: datetime) -> Transition:
    """
    The patient left the queue before being served.

    The appointment stays CONFIRMED but is no longer checked in, so it can be
    checked in again inside its window, rescheduled, or swept as a no-show
    once the window has closed.
    """
    _require_status(appointment, frozenset({S.CONFIRMED}), "release the check-in of")
    if not appointment.checked_in:
        raise GuardViolation("not_checked_in", "Patient has not checked in")
    return Transition(
        action="release_check_in",
        target=S.CONFIRMED,
        allowed_from=frozenset({S.CONFIRMED}),
        changes={"checked_in": False, "check_in_time": None, "updated_at": now},
        expect={"checked_in": True},
    )


def plan_reschedule(appointment, new_date: datetime, now: datetime) -> Transition:
    if _status(appointment) == S.IN_PROGRESS:
        raise GuardViolation("consultation_started", "A consultation in progress cannot be rescheduled")
    _require_status(appointment, RESCHEDULABLE_STATUSES, "reschedule")
    if not is_in_future(now, new_date):
        raise GuardViolation("future_only", "The new appointment time must be in the future")
    return Transition(
        action="reschedule",
        target=S.RESCHEDULED,
        allowed_from=RESCHEDULABLE_STATUSES,
        changes={
            "appointment_date": new_date,
            "checked_in": False,
            "check_in_time": None,
            "confirmed_at": None,
            "reminder_sent": False,
            "reminder_sent_at": None,
            "updated_at": now,
        },
        # Queue entries are invalidated against the check-in state as read
        expect={"checked_in": bool(appointment.checked_in)},
    )


def plan_clinical_update(appointment, doctor_id: UUID, clinical: Dict[str, Optional[str]], now: datetime) -> Transition:
    status = _status(appointment)
    if status not in (S.IN_PROGRESS, S.COMPLETED):
        raise GuardViolation("status", "Clinical records can only be edited during or after a consultation")
    if appointment.doctor_id != doctor_id:
        raise GuardViolation("assigned_doctor", "Only the consulting doctor can edit the clinical record")
    clinical = _clean_clinical(clinical)
    if status == S.COMPLETED and "diagnosis" in clinical and _is_blank(clinical["diagnosis"]):
        raise GuardViolation("diagnosis_required", "A completed consultation must keep its diagnosis")
    return Transition(
        action="update_clinical_record",
        target=status,
        allowed_from=frozenset({status}),
        changes={**clinical, "updated_at": now},
        expect={"doctor_id": doctor_id},
    )


def _clean_clinical(clinical: Optional[Dict[str, Optional[str]]]) -> Dict[str, Optional[str]]:
    clinical = dict(clinical or {})
    unknown = set(clinical) - set(CLINICAL_FIELDS)
    if unknown:
        raise GuardViolation("unknown_field", f"Not a clinical field: {', '.join(sorted(unknown))}")
    return clinical


def available_actions(appointment, now: datetime) -> List[str]:
    """Actions the appointment currently admits, ignoring who is asking."""
    actions = []
    checks = {
        "confirm": lambda: plan_confirm(appointment, now),
        "cancel": lambda: plan_cancel(appointment, now),
        "check_in": lambda: plan_check_in(appointment, now),
        "no_show": lambda: plan_no_show(appointment, now),
    }
    for name, check in checks.items():
        try:
            check()
        except GuardViolation:
            continue
        actions.append(name)

    status = _status(appointment)
    if status in RESCHEDULABLE_STATUSES:
        actions.append("reschedule")
    if status in STARTABLE_STATUSES and appointment.checked_in:
        actions.append("start_consultation")
    if status == S.IN_PROGRESS:
        actions.append("complete")
    return actions


def invariant_problems(appointment) -> List[str]:
    status = _status(appointment)
    problems = []
    if appointment.confirmed_at is not None and status not in VISIT_STATUSES:
        problems.append(f"confirmed_at is set on a {status.value} appointment")
    if appointment.checked_in and status not in VISIT_STATUSES:
        problems.append(f"checked_in is set on a {status.value} appointment")
    return problems
