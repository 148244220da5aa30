"""
Lifecycle orchestration for appointments and their queue entries.

Every public method is one unit of work: guards are evaluated on freshly
read rows, all writes (including the coupled appointment / queue entry
steps) go through conditional updates, and the transaction is committed
once at the end or rolled back as a whole. Predictor and notification
calls only happen after the commit and can never undo a transition.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from clinicflow.clients.notifications import NotificationEvent, appointment_message, queue_called_message
from clinicflow.core.config import settings
from clinicflow.core.exceptions import (
    CollaboratorUnavailable,
    ConsistencyViolation,
    EntityNotFound,
    GuardViolation,
    PermissionDenied,
    StaleState,
)
from clinicflow.core.logger import logger
from clinicflow.core.security import Actor
from clinicflow.db.models import Appointment, QueueEntry
from clinicflow.lifecycle.appointment_machine import (
    CheckInEligibility,
    available_actions,
    check_in_eligibility,
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
from clinicflow.lifecycle.coupling import coupling_problems, needs_enqueue
from clinicflow.lifecycle.enums import ACTIVE_QUEUE_STATUSES, AppointmentStatus, PriorityLevel, QueueStatus
from clinicflow.lifecycle.ordering import next_to_call
from clinicflow.lifecycle.queue_machine import (
    plan_call,
    plan_complete_service,
    plan_invalidate,
    plan_leave,
    plan_priority_change,
    plan_skip,
    plan_start_service,
)
from clinicflow.lifecycle.time_windows import normalize_timestamp, utcnow
from clinicflow.schemas.appointment import AppointmentCreate
from clinicflow.schemas.predictions import NoShowPrediction, PriorityClassification, WaitTimePrediction
from clinicflow.schemas.queue import WalkInCreate
from clinicflow.services.appointment_service import AppointmentService
from clinicflow.services.persistence import record_audit
from clinicflow.services.queue_service import QueueService


@dataclass
class BookingResult:
    appointment: Appointment
    no_show_prediction: Optional[NoShowPrediction] = None


@dataclass
class CheckInResult:
    appointment: Appointment
    queue_entry: QueueEntry
    position: Optional[int] = None
    wait_time_prediction: Optional[WaitTimePrediction] = None


@dataclass
class ConsultationResult:
    queue_entry: QueueEntry
    appointment: Optional[Appointment] = None


class LifecycleService:
    def __init__(
        self,
        session: AsyncSession,
        predictor=None,
        notifier=None,
        durations=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.appointments = AppointmentService(session)
        self.queue = QueueService(session, durations)
        self.predictor = predictor
        self.notifier = notifier
        self.clock = clock or utcnow

    @asynccontextmanager
    async def _transaction(self):
        """
        One unit of work. Entities loaded inside it are detached after the
        commit, so the caller keeps their committed state even if a later
        unit of work on this session rolls back.
        """
        try:
            yield
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        self.session.expunge_all()

    # --- authorization -------------------------------------------------

    @staticmethod
    def _ensure_staff(actor: Actor, action: str):
        if not actor.is_staff:
            raise PermissionDenied(f"Only clinic staff can {action}")

    @staticmethod
    def _ensure_doctor(actor: Actor, action: str):
        if not actor.is_doctor:
            raise PermissionDenied(f"Only doctors can {action}")

    @staticmethod
    def _ensure_owner_or_staff(actor: Actor, patient_id: UUID, action: str):
        if actor.is_staff or (actor.is_patient and actor.id == patient_id):
            return
        raise PermissionDenied(f"Not allowed to {action} for this patient")

    @staticmethod
    def can_view_patient(actor: Actor, patient_id: UUID) -> bool:
        return not actor.is_patient or actor.id == patient_id

    def _ensure_can_view(self, actor: Actor, patient_id: UUID):
        if not self.can_view_patient(actor, patient_id):
            raise PermissionDenied("Patients can only view their own records")

    # --- collaborators -------------------------------------------------

    async def _advise(self, method: str, *args):
        if self.predictor is None:
            return None
        try:
            return await getattr(self.predictor, method)(*args)
        except CollaboratorUnavailable as exc:
            logger.warning(f"No recommendation from {method}: {exc}")
            return None

    async def _notify(self, payload: Dict) -> bool:
        if self.notifier is None:
            return False
        try:
            await self.notifier.dispatch(payload)
        except CollaboratorUnavailable as exc:
            logger.warning(f"Notification {payload['event']} not delivered: {exc}")
            return False
        return True

    async def _notify_called(self, entry: QueueEntry):
        if await self._notify(queue_called_message(entry)):
            async with self._transaction():
                await self.queue.annotate(entry, notified=True)

    # --- coupling ------------------------------------------------------

    def _ensure_coupled(self, appointment: Optional[Appointment], entry: Optional[QueueEntry]):
        problems = coupling_problems(appointment, entry)
        if appointment is not None:
            problems += invariant_problems(appointment)
        if problems:
            subject = appointment.id if appointment is not None else entry.id
            logger.error(f"Consistency violation for {subject}: {'; '.join(problems)}")
            raise ConsistencyViolation("Appointment and queue entry diverged; manual reconciliation required", problems)

    async def _linked_appointment(self, entry: QueueEntry) -> Optional[Appointment]:
        if entry.appointment_id is None:
            return None
        return await self.appointments.get(entry.appointment_id)

    async def _enqueue_for(self, appointment: Appointment, now: datetime) -> QueueEntry:
        priority = PriorityLevel(appointment.priority)
        entry = await self.queue.enqueue(
            department=appointment.department,
            day=now.date(),
            patient_id=appointment.patient_id,
            now=now,
            appointment_id=appointment.id,
            patient_name=appointment.patient_name,
            service_type=appointment.appointment_type.value,
            doctor_name=appointment.doctor_name,
            priority_level=priority,
            is_emergency=priority == PriorityLevel.EMERGENCY,
        )
        await self.queue.refresh_wait_times(entry.department, entry.queue_date)
        return entry

    # --- appointments --------------------------------------------------

    async def get_appointment(self, appointment_id: UUID, actor: Actor) -> Appointment:
        async with self._transaction():
            appointment = await self.appointments.get(appointment_id)
        self._ensure_can_view(actor, appointment.patient_id)
        return appointment

    async def list_appointments(
        self,
        actor: Actor,
        status: Optional[List[AppointmentStatus]] = None,
        day: Optional[date] = None,
        doctor_id: Optional[UUID] = None,
        patient_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Appointment]:
        if actor.is_patient:
            patient_id = actor.id
        async with self._transaction():
            appointments = await self.appointments.list_appointments(
                patient_id=patient_id, doctor_id=doctor_id, status=status, day=day, skip=skip, limit=limit
            )
        return appointments

    async def book_appointment(self, data: AppointmentCreate, actor: Actor) -> BookingResult:
        if actor.is_patient:
            if data.patient_id is not None and data.patient_id != actor.id:
                raise PermissionDenied("Patients can only book for themselves")
            patient_id = actor.id
        else:
            self._ensure_staff(actor, "book on behalf of a patient")
            if data.patient_id is None:
                raise GuardViolation("patient_required", "patient_id is required when staff book an appointment")
            patient_id = data.patient_id

        now = self.clock()
        async with self._transaction():
            appointment = await self.appointments.create(data, patient_id, now)
            await record_audit(self.session, "appointment.book", actor.id, appointment.id, {"to": appointment.status})
        logger.info(f"Booked appointment {appointment.id} for {appointment.appointment_date.isoformat()}")

        prediction = await self._advise("predict_no_show", appointment)
        if prediction is not None:
            async with self._transaction():
                await self.appointments.annotate(appointment, no_show_probability=prediction.no_show_probability)
        return BookingResult(appointment, prediction)

    async def confirm(self, appointment_id: UUID, actor: Actor) -> Appointment:
        self._ensure_staff(actor, "confirm appointments")
        now = self.clock()
        async with self._transaction():
            appointment = await self.appointments.get(appointment_id)
            appointment = await self.appointments.apply(appointment, plan_confirm(appointment, now), actor.id)
        await self._notify(appointment_message(NotificationEvent.APPOINTMENT_CONFIRMED, appointment))
        return appointment

    async def cancel(self, appointment_id: UUID, actor: Actor, reason: Optional[str] = None) -> Appointment:
        now = self.clock()
        async with self._transaction():
            appointment = await self.appointments.get(appointment_id)
            self._ensure_owner_or_staff(actor, appointment.patient_id, "cancel")
            appointment = await self.appointments.apply(appointment, plan_cancel(appointment, now, reason), actor.id)
        await self._notify(appointment_message(NotificationEvent.APPOINTMENT_CANCELLED, appointment))
        return appointment

    async def eligibility(self, appointment_id: UUID, actor: Actor) -> Tuple[Appointment, CheckInEligibility, List[str]]:
        now = self.clock()
        appointment = await self.get_appointment(appointment_id, actor)
        result = check_in_eligibility(now, appointment.appointment_date, appointment.status, appointment.checked_in)
        return appointment, result, available_actions(appointment, now)

    async def check_in(self, appointment_id: UUID, actor: Actor) -> CheckInResult:
        """
        Check a patient in and put them in their department's queue.

        The appointment update and the new queue entry commit together; if
        the enqueue fails the appointment stays ``checked_in = False``.
        """
        now = self.clock()
        async with self._transaction():
            appointment = await self.appointments.get(appointment_id)
            self._ensure_owner_or_staff(actor, appointment.patient_id, "check in")
            latest = await self.queue.latest_entry_for_appointment(appointment.id)
            self._ensure_coupled(appointment, latest)

            appointment = await self.appointments.apply(appointment, plan_check_in(appointment, now), actor.id)
            entry = await self._enqueue_for(appointment, now)
            position = await self.queue.position(entry)
        logger.info(f"Checked in appointment {appointment.id} as queue #{entry.queue_number} in {entry.department}")

        prediction = await self._advise("estimate_wait_time", appointment, position or 0, now)
        return CheckInResult(appointment, entry, position, prediction)

    async def reconcile_check_in(self, appointment_id: UUID, actor: Actor) -> CheckInResult:
        """Re-run the enqueue for a checked-in appointment that lost its queue entry."""
        self._ensure_staff(actor, "reconcile check-ins")
        now = self.clock()
        async with self._transaction():
            appointment = await self.appointments.get(appointment_id)
            latest = await self.queue.latest_entry_for_appointment(appointment.id)
            if not needs_enqueue(appointment, latest):
                raise GuardViolation(
                    "nothing_to_reconcile",
                    "Appointment is not a checked-in CONFIRMED appointment without an active queue entry",
                )
            entry = await self._enqueue_for(appointment, now)
            await record_audit(self.session, "queue.reconcile_enqueue", actor.id, entry.id, {"appointment_id": appointment.id})
            position = await self.queue.position(entry)
        logger.warning(f"Re-enqueued appointment {appointment.id} as queue #{entry.queue_number}")
        return CheckInResult(appointment, entry, position)

    async def reschedule(self, appointment_id: UUID, new_date: datetime, actor: Actor) -> Appointment:
        now = self.clock()
        new_date = normalize_timestamp(new_date)
        async with self._transaction():
            appointment = await self.appointments.get(appointment_id)
            self._ensure_owner_or_staff(actor, appointment.patient_id, "reschedule")
            latest = await self.queue.latest_entry_for_appointment(appointment.id)
            self._ensure_coupled(appointment, latest)

            transition = plan_reschedule(appointment, new_date, now)
            invalidation = None
            if latest is not None and QueueStatus(latest.status) in ACTIVE_QUEUE_STATUSES:
                invalidation = plan_invalidate(latest, now)

            appointment = await self.appointments.apply(appointment, transition, actor.id)
            if invalidation is not None:
                await self.queue.apply(latest, invalidation, actor.id, {"reason": "rescheduled"})
                await self.queue.refresh_wait_times(latest.department, latest.queue_date)
        await self._notify(appointment_message(NotificationEvent.APPOINTMENT_RESCHEDULED, appointment))
        return appointment

    async def mark_no_show(self, appointment_id: UUID, actor: Actor) -> Appointment:
        self._ensure_staff(actor, "mark no-shows")
        now = self.clock()
        async with self._transaction():
            appointment = await self.appointments.get(appointment_id)
            latest = await self.queue.latest_entry_for_appointment(appointment.id)
            self._ensure_coupled(appointment, latest)
            appointment = await self.appointments.apply(appointment, plan_no_show(appointment, now), actor.id)
        return appointment

    async def sweep_no_shows(self, actor: Actor, department: Optional[str] = None) -> List[UUID]:
        self._ensure_staff(actor, "run the no-show sweep")
        now = self.clock()
        marked = []
        async with self._transaction():
            for appointment in await self.appointments.find_no_show_candidates(now, department):
                appointment_id = appointment.id
                try:
                    transition = plan_no_show(appointment, now)
                    await self.appointments.apply(appointment, transition, actor.id)
                except (GuardViolation, StaleState) as exc:
                    logger.info(f"No-show sweep skipped {appointment_id}: {exc}")
                    continue
                marked.append(appointment_id)
        logger.info(f"No-show sweep marked {len(marked)} appointment(s)")
        return marked

    async def send_reminders(self, actor: Actor, horizon_hours: Optional[int] = None) -> List[UUID]:
        self._ensure_staff(actor, "send reminders")
        now = self.clock()
        horizon = timedelta(hours=horizon_hours or settings.REMINDER_HORIZON_HOURS)
        async with self._transaction():
            candidates = await self.appointments.find_reminder_candidates(now, horizon)

        sent = []
        for appointment in candidates:
            if not await self._notify(appointment_message(NotificationEvent.APPOINTMENT_REMINDER, appointment)):
                continue
            async with self._transaction():
                await self.appointments.annotate(appointment, reminder_sent=True, reminder_sent_at=now)
            sent.append(appointment.id)
        return sent

    async def update_clinical_record(self, appointment_id: UUID, actor: Actor, clinical: Dict[str, Optional[str]]) -> Appointment:
        self._ensure_doctor(actor, "edit clinical records")
        now = self.clock()
        async with self._transaction():
            appointment = await self.appointments.get(appointment_id)
            transition = plan_clinical_update(appointment, actor.id, clinical, now)
            appointment = await self.appointments.apply(appointment, transition, actor.id)
        return appointment

    async def classify_priority(self, appointment_id: UUID, actor: Actor) -> Tuple[Appointment, Optional[PriorityClassification]]:
        if not (actor.is_staff or actor.is_doctor):
            raise PermissionDenied("Only clinicians can request priority advice")
        async with self._transaction():
            appointment = await self.appointments.get(appointment_id)
        classification = await self._advise("classify_priority", appointment)
        if classification is not None:
            async with self._transaction():
                await self.appointments.annotate(
                    appointment,
                    ai_priority_score=classification.priority_score,
                    ai_priority_level=classification.priority_level,
                    ai_recommendation=classification.recommendation,
                )
        return appointment, classification

    # --- queue ---------------------------------------------------------

    async def register_walk_in(self, data: WalkInCreate, actor: Actor) -> Tuple[QueueEntry, Optional[int]]:
        self._ensure_staff(actor, "register walk-ins")
        now = self.clock()
        async with self._transaction():
            entry = await self.queue.enqueue(
                department=data.department or settings.DEFAULT_DEPARTMENT,
                day=now.date(),
                patient_id=data.patient_id,
                now=now,
                patient_name=data.patient_name,
                service_type=data.service_type,
                priority_level=data.priority_level,
                is_emergency=data.is_emergency,
            )
            await record_audit(self.session, "queue.walk_in", actor.id, entry.id, {"department": entry.department})
            await self.queue.refresh_wait_times(entry.department, entry.queue_date)
            position = await self.queue.position(entry)
        return entry, position

    async def get_entry(self, entry_id: UUID, actor: Actor) -> Tuple[QueueEntry, Optional[int]]:
        async with self._transaction():
            entry = await self.queue.get(entry_id)
            self._ensure_can_view(actor, entry.patient_id)
            position = await self.queue.position(entry)
        return entry, position

    async def my_position(self, actor: Actor) -> Tuple[QueueEntry, Optional[int]]:
        async with self._transaction():
            entry = await self.queue.active_entry_for_patient(actor.id, self.clock().date())
            if entry is None:
                raise EntityNotFound("Active queue entry", actor.id)
            position = await self.queue.position(entry)
        return entry, position

    async def queue_board(self, department: str, day: Optional[date] = None) -> Dict:
        day = day or self.clock().date()
        async with self._transaction():
            board = await self.queue.board(department, day)
        queue = board["queue"]
        board.update(
            department=department,
            queue_date=day,
            positions={entry.id: index for index, entry in enumerate(queue, start=1)},
            next_queue_number=queue[0].queue_number if queue else None,
        )
        return board

    async def call_next(self, department: str, actor: Actor, room_number: Optional[str] = None) -> QueueEntry:
        self._ensure_doctor(actor, "call patients")
        now = self.clock()
        day = now.date()
        async with self._transaction():
            candidate = next_to_call(await self.queue.entries_for_day(department, day), department)
            if candidate is None:
                raise GuardViolation("queue_empty", f"No patients waiting in {department}")
            transition = plan_call(candidate, actor.id, now, is_next=True, room_number=room_number)
            entry = await self.queue.apply(candidate, transition, actor.id)
            await self.queue.refresh_wait_times(department, day)
        await self._notify_called(entry)
        return entry

    async def call_entry(
        self,
        entry_id: UUID,
        actor: Actor,
        override: bool = False,
        reason: Optional[str] = None,
        room_number: Optional[str] = None,
    ) -> QueueEntry:
        """Call a specific entry; anything but the head of the queue needs ``override``."""
        self._ensure_doctor(actor, "call patients")
        now = self.clock()
        async with self._transaction():
            entry = await self.queue.get(entry_id)
            department, day = entry.department, entry.queue_date
            head = next_to_call(await self.queue.entries_for_day(department, day), department)
            is_next = head is not None and head.id == entry.id
            transition = plan_call(entry, actor.id, now, is_next=is_next, override=override, room_number=room_number)

            extra = {}
            if not is_next:
                extra = {"reason": reason, "ahead_of": head.queue_number}
                logger.warning(
                    f"Out-of-order call in {department}: #{entry.queue_number} ahead of #{head.queue_number} "
                    f"by doctor {actor.id} ({reason or 'no reason given'})"
                )
            entry = await self.queue.apply(entry, transition, actor.id, extra)
            await self.queue.refresh_wait_times(department, day)
        await self._notify_called(entry)
        return entry

    async def start_consultation(self, entry_id: UUID, actor: Actor) -> ConsultationResult:
        self._ensure_doctor(actor, "start consultations")
        now = self.clock()
        async with self._transaction():
            entry = await self.queue.get(entry_id)
            appointment = await self._linked_appointment(entry)
            self._ensure_coupled(appointment, entry)

            queue_transition = plan_start_service(entry, actor.id, now)
            appointment_transition = None
            if appointment is not None:
                appointment_transition = plan_start_consultation(appointment, actor.id, now)

            entry = await self.queue.apply(entry, queue_transition, actor.id)
            if appointment_transition is not None:
                appointment = await self.appointments.apply(appointment, appointment_transition, actor.id)
        return ConsultationResult(entry, appointment)

    async def complete_consultation(
        self,
        entry_id: UUID,
        actor: Actor,
        clinical: Optional[Dict[str, Optional[str]]] = None,
    ) -> ConsultationResult:
        self._ensure_doctor(actor, "complete consultations")
        now = self.clock()
        async with self._transaction():
            entry = await self.queue.get(entry_id)
            appointment = await self._linked_appointment(entry)
            self._ensure_coupled(appointment, entry)

            queue_transition = plan_complete_service(entry, actor.id, now)
            appointment_transition = None
            if appointment is not None:
                appointment_transition = plan_complete(appointment, actor.id, now, clinical)
            elif clinical:
                raise GuardViolation("no_appointment", "Walk-in queue entries carry no clinical record")

            entry = await self.queue.apply(entry, queue_transition, actor.id)
            if appointment_transition is not None:
                appointment = await self.appointments.apply(appointment, appointment_transition, actor.id)
        return ConsultationResult(entry, appointment)

    async def _active_entry_id(self, appointment_id: UUID) -> UUID:
        appointment = await self.appointments.get(appointment_id)
        latest = await self.queue.latest_entry_for_appointment(appointment.id)
        self._ensure_coupled(appointment, latest)
        if latest is None or QueueStatus(latest.status) not in ACTIVE_QUEUE_STATUSES:
            raise GuardViolation("not_enqueued", "Appointment has no active queue entry")
        return latest.id

    async def start_appointment(self, appointment_id: UUID, actor: Actor) -> ConsultationResult:
        self._ensure_doctor(actor, "start consultations")
        return await self.start_consultation(await self._active_entry_id(appointment_id), actor)

    async def complete_appointment(
        self,
        appointment_id: UUID,
        actor: Actor,
        clinical: Optional[Dict[str, Optional[str]]] = None,
    ) -> ConsultationResult:
        self._ensure_doctor(actor, "complete consultations")
        return await self.complete_consultation(await self._active_entry_id(appointment_id), actor, clinical)

    async def _exit_queue(self, entry_id: UUID, actor: Actor, plan_entry, plan_appointment, check=None) -> QueueEntry:
        now = self.clock()
        async with self._transaction():
            entry = await self.queue.get(entry_id)
            if check is not None:
                check(entry)
            appointment = await self._linked_appointment(entry)
            self._ensure_coupled(appointment, entry)

            queue_transition = plan_entry(entry, now)
            appointment_transition = None
            if appointment is not None:
                appointment_transition = plan_appointment(appointment, now)

            entry = await self.queue.apply(entry, queue_transition, actor.id)
            if appointment_transition is not None:
                await self.appointments.apply(appointment, appointment_transition, actor.id)
            await self.queue.refresh_wait_times(entry.department, entry.queue_date)
        return entry

    async def skip(self, entry_id: UUID, actor: Actor) -> QueueEntry:
        """Skip an entry; a linked appointment ends as NO_SHOW in the same transaction."""
        if not (actor.is_staff or actor.is_doctor):
            raise PermissionDenied("Only clinicians can skip queue entries")
        return await self._exit_queue(entry_id, actor, plan_skip, plan_skipped_at_queue)

    async def leave(self, entry_id: UUID, actor: Actor) -> QueueEntry:
        def check(entry):
            self._ensure_owner_or_staff(actor, entry.patient_id, "leave the queue")

        return await self._exit_queue(entry_id, actor, plan_leave, plan_release_check_in, check)

    async def change_priority(
        self,
        entry_id: UUID,
        actor: Actor,
        priority_level: PriorityLevel,
        is_emergency: Optional[bool] = None,
    ) -> Tuple[QueueEntry, Optional[int]]:
        if not (actor.is_staff or actor.is_doctor):
            raise PermissionDenied("Only clinicians can triage queue entries")
        now = self.clock()
        async with self._transaction():
            entry = await self.queue.get(entry_id)
            transition = plan_priority_change(entry, priority_level, is_emergency, now)
            entry = await self.queue.apply(entry, transition, actor.id)
            await self.queue.refresh_wait_times(entry.department, entry.queue_date)
            position = await self.queue.position(entry)
        return entry, position
