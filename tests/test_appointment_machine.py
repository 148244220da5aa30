import pytest
from datetime import datetime, timedelta
from uuid import uuid4

from clinicflow.core.exceptions import GuardViolation
from clinicflow.db.models import Appointment
from clinicflow.lifecycle.appointment_machine import (
    available_actions,
    invariant_problems,
    plan_cancel,
    plan_check_in,
    plan_clinical_update,
    plan_complete,
    plan_confirm,
    plan_no_show,
    plan_release_check_in,
    plan_reschedule,
    plan_skipped_at_queue,
    plan_start_consultation,
)
from clinicflow.lifecycle.enums import AppointmentStatus as S, TERMINAL_APPOINTMENT_STATUSES

NOW = datetime(2026, 3, 2, 8, 5)
BOOKING = datetime(2026, 3, 2, 9, 0)


def appointment(**fields):
    values = {"patient_id": uuid4(), "appointment_date": BOOKING, "status": S.SCHEDULED}
    values.update(fields)
    return Appointment(**values)


def test_confirm_sets_confirmed_at():
    transition = plan_confirm(appointment(), NOW)
    assert transition.target == S.CONFIRMED
    assert transition.values()["confirmed_at"] == NOW
    assert transition.allowed_from == {S.SCHEDULED, S.RESCHEDULED}


def test_confirm_rejects_past_appointment():
    with pytest.raises(GuardViolation) as exc:
        plan_confirm(appointment(appointment_date=NOW - timedelta(minutes=1)), NOW)
    assert exc.value.guard == "future_only"


def test_rescheduled_appointment_can_be_confirmed_again():
    assert plan_confirm(appointment(status=S.RESCHEDULED), NOW).target == S.CONFIRMED


def test_cancel_after_check_in_is_rejected():
    with pytest.raises(GuardViolation) as exc:
        plan_cancel(appointment(status=S.CONFIRMED, checked_in=True), NOW)
    assert exc.value.guard == "checked_in"


def test_cancel_records_reason_and_clears_confirmation():
    transition = plan_cancel(appointment(status=S.CONFIRMED, confirmed_at=NOW), NOW, reason="travel")
    values = transition.values()
    assert values["status"] == S.CANCELLED
    assert values["cancellation_reason"] == "travel"
    assert values["confirmed_at"] is None
    assert transition.expect == {"checked_in": False}


def test_cancel_rejects_past_appointment():
    with pytest.raises(GuardViolation) as exc:
        plan_cancel(appointment(appointment_date=NOW - timedelta(hours=1)), NOW)
    assert exc.value.guard == "future_only"


@pytest.mark.parametrize("status", sorted(TERMINAL_APPOINTMENT_STATUSES))
def test_terminal_appointments_accept_no_transition(status):
    appt = appointment(status=status, diagnosis="flu", doctor_id=uuid4())
    planners = [
        lambda: plan_confirm(appt, NOW),
        lambda: plan_cancel(appt, NOW),
        lambda: plan_check_in(appt, NOW),
        lambda: plan_start_consultation(appt, appt.doctor_id, NOW),
        lambda: plan_complete(appt, appt.doctor_id, NOW),
        lambda: plan_no_show(appt, NOW + timedelta(hours=2)),
        lambda: plan_reschedule(appt, BOOKING + timedelta(days=1), NOW),
    ]
    for plan in planners:
        with pytest.raises(GuardViolation):
            plan()
    assert available_actions(appt, NOW) == []


def test_check_in_from_scheduled_confirms():
    transition = plan_check_in(appointment(), NOW)
    values = transition.values()
    assert values["status"] == S.CONFIRMED
    assert values["checked_in"] is True
    assert values["check_in_time"] == NOW
    assert values["confirmed_at"] == NOW
    assert transition.allowed_from == {S.SCHEDULED}


def test_check_in_from_confirmed_keeps_confirmation_time():
    transition = plan_check_in(appointment(status=S.CONFIRMED, confirmed_at=NOW - timedelta(days=1)), NOW)
    assert "confirmed_at" not in transition.changes
    assert transition.allowed_from == {S.CONFIRMED}


def test_check_in_outside_window():
    with pytest.raises(GuardViolation) as exc:
        plan_check_in(appointment(), datetime(2026, 3, 2, 9, 35))
    assert exc.value.guard == "check_in_window"


def test_start_consultation_requires_check_in():
    with pytest.raises(GuardViolation) as exc:
        plan_start_consultation(appointment(status=S.CONFIRMED), uuid4(), NOW)
    assert exc.value.guard == "not_checked_in"


def test_start_consultation_assigns_opening_doctor():
    doctor_id = uuid4()
    transition = plan_start_consultation(appointment(status=S.CONFIRMED, checked_in=True), doctor_id, NOW)
    assert transition.values()["doctor_id"] == doctor_id
    assert transition.values()["actual_start_time"] == NOW


def test_start_consultation_respects_assigned_doctor():
    with pytest.raises(GuardViolation) as exc:
        plan_start_consultation(appointment(status=S.CONFIRMED, checked_in=True, doctor_id=uuid4()), uuid4(), NOW)
    assert exc.value.guard == "assigned_doctor"


@pytest.mark.parametrize("diagnosis", [None, "", "   "])
def test_complete_requires_diagnosis(diagnosis):
    doctor_id = uuid4()
    appt = appointment(status=S.IN_PROGRESS, checked_in=True, doctor_id=doctor_id, diagnosis=diagnosis)
    with pytest.raises(GuardViolation) as exc:
        plan_complete(appt, doctor_id, NOW)
    assert exc.value.guard == "diagnosis_required"


def test_complete_accepts_diagnosis_in_same_request():
    doctor_id = uuid4()
    appt = appointment(status=S.IN_PROGRESS, checked_in=True, doctor_id=doctor_id)
    transition = plan_complete(appt, doctor_id, NOW, {"diagnosis": "Viral fever", "prescription": "Rest"})
    assert transition.values()["status"] == S.COMPLETED
    assert transition.values()["diagnosis"] == "Viral fever"
    assert transition.values()["actual_end_time"] == NOW


def test_no_show_waits_for_window_to_close():
    with pytest.raises(GuardViolation) as exc:
        plan_no_show(appointment(), datetime(2026, 3, 2, 9, 30))
    assert exc.value.guard == "not_yet_due"
    assert plan_no_show(appointment(), datetime(2026, 3, 2, 9, 31)).target == S.NO_SHOW


def test_skipped_at_queue_ends_as_no_show():
    appt = appointment(status=S.CONFIRMED, checked_in=True, check_in_time=NOW, confirmed_at=NOW)
    transition = plan_skipped_at_queue(appt, NOW)
    values = transition.values()
    assert values["status"] == S.NO_SHOW
    assert values["checked_in"] is False
    assert values["confirmed_at"] is None
    assert transition.expect == {"checked_in": True}

    for key, value in values.items():
        setattr(appt, key, value)
    assert invariant_problems(appt) == []


def test_leaving_the_queue_releases_check_in():
    appt = appointment(status=S.CONFIRMED, checked_in=True, check_in_time=NOW, confirmed_at=NOW)
    transition = plan_release_check_in(appt, NOW)
    values = transition.values()
    assert values["status"] == S.CONFIRMED
    assert values["checked_in"] is False
    assert values["check_in_time"] is None
    assert "confirmed_at" not in values

    with pytest.raises(GuardViolation) as exc:
        plan_release_check_in(appointment(status=S.CONFIRMED), NOW)
    assert exc.value.guard == "not_checked_in"


def test_reschedule_resets_check_in_state():
    appt = appointment(status=S.CONFIRMED, checked_in=True, check_in_time=NOW, confirmed_at=NOW)
    new_date = BOOKING + timedelta(days=2)
    transition = plan_reschedule(appt, new_date, NOW)
    values = transition.values()
    assert values["status"] == S.RESCHEDULED
    assert values["appointment_date"] == new_date
    assert values["checked_in"] is False
    assert values["check_in_time"] is None
    assert values["confirmed_at"] is None
    assert transition.expect == {"checked_in": True}


def test_reschedule_rejects_consultation_in_progress():
    with pytest.raises(GuardViolation) as exc:
        plan_reschedule(appointment(status=S.IN_PROGRESS), BOOKING + timedelta(days=1), NOW)
    assert exc.value.guard == "consultation_started"


def test_reschedule_requires_future_date():
    with pytest.raises(GuardViolation) as exc:
        plan_reschedule(appointment(), NOW - timedelta(minutes=5), NOW)
    assert exc.value.guard == "future_only"


def test_clinical_update_rules():
    doctor_id = uuid4()
    completed = appointment(status=S.COMPLETED, doctor_id=doctor_id, diagnosis="Asthma")

    transition = plan_clinical_update(completed, doctor_id, {"prescription": "Inhaler"}, NOW)
    assert transition.target == S.COMPLETED
    assert transition.allowed_from == {S.COMPLETED}

    with pytest.raises(GuardViolation) as blank:
        plan_clinical_update(completed, doctor_id, {"diagnosis": " "}, NOW)
    assert blank.value.guard == "diagnosis_required"

    with pytest.raises(GuardViolation) as unknown:
        plan_clinical_update(completed, doctor_id, {"status": "SCHEDULED"}, NOW)
    assert unknown.value.guard == "unknown_field"

    with pytest.raises(GuardViolation) as other:
        plan_clinical_update(completed, uuid4(), {"notes": "x"}, NOW)
    assert other.value.guard == "assigned_doctor"


def test_available_actions():
    far_ahead = appointment(appointment_date=BOOKING + timedelta(days=1))
    assert available_actions(far_ahead, NOW) == ["confirm", "cancel", "reschedule"]

    in_window = appointment()
    assert "check_in" in available_actions(in_window, NOW)

    checked_in = appointment(status=S.CONFIRMED, checked_in=True)
    assert available_actions(checked_in, NOW) == ["reschedule", "start_consultation"]


def test_invariant_problems():
    assert invariant_problems(appointment(status=S.CONFIRMED, checked_in=True, confirmed_at=NOW)) == []
    problems = invariant_problems(appointment(status=S.CANCELLED, checked_in=True, confirmed_at=NOW))
    assert len(problems) == 2
