from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from uuid import UUID
from datetime import date, datetime, timedelta
from typing import List, Optional

from clinicflow.core.config import settings
from clinicflow.core.exceptions import EntityNotFound, GuardViolation
from clinicflow.core.logger import logger
from clinicflow.db.models import Appointment
from clinicflow.lifecycle.appointment_machine import NO_SHOW_STATUSES
from clinicflow.lifecycle.enums import AppointmentStatus, AppointmentType, PriorityLevel
from clinicflow.lifecycle.time_windows import CHECK_IN_CLOSES_AFTER, is_in_future, normalize_timestamp
from clinicflow.lifecycle.transition import Transition
from clinicflow.schemas.appointment import AppointmentCreate
from clinicflow.services.persistence import conditional_write, record_audit

REMINDABLE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)

class AppointmentService:
    """Reads, creates and conditionally updates appointments. Never commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, appointment_id: UUID) -> Appointment:
        appointment = await self.session.get(Appointment, appointment_id, populate_existing=True)
        if not appointment:
            raise EntityNotFound("Appointment", appointment_id)
        return appointment

    async def list_appointments(
        self,
        patient_id: Optional[UUID] = None,
        doctor_id: Optional[UUID] = None,
        status: Optional[List[AppointmentStatus]] = None,
        day: Optional[date] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Appointment]:
        stmt = select(Appointment)
        if patient_id:
            stmt = stmt.where(Appointment.patient_id == patient_id)
        if doctor_id:
            stmt = stmt.where(Appointment.doctor_id == doctor_id)
        if status:
            stmt = stmt.where(Appointment.status.in_(status))
        if day:
            start = datetime.combine(day, datetime.min.time())
            stmt = stmt.where(
                Appointment.appointment_date >= start,
                Appointment.appointment_date < start + timedelta(days=1),
            )
        stmt = stmt.order_by(Appointment.appointment_date).offset(skip).limit(limit).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(self, data: AppointmentCreate, patient_id: UUID, now: datetime) -> Appointment:
        appointment_date = normalize_timestamp(data.appointment_date)
        if not is_in_future(now, appointment_date):
            raise GuardViolation("future_only", "Appointments can only be booked for a future time")

        priority = data.priority
        if priority is None:
            priority = PriorityLevel.EMERGENCY if data.appointment_type == AppointmentType.EMERGENCY else PriorityLevel.MEDIUM

        appointment = Appointment(
            patient_id=patient_id,
            patient_name=data.patient_name,
            doctor_id=data.doctor_id,
            doctor_name=data.doctor_name,
            department=data.department or settings.DEFAULT_DEPARTMENT,
            appointment_date=appointment_date,
            appointment_type=data.appointment_type,
            status=AppointmentStatus.SCHEDULED,
            priority=priority,
            duration_minutes=data.duration_minutes,
            chief_complaint=data.chief_complaint,
            symptoms=data.symptoms,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        self.session.add(appointment)
        await self.session.flush()
        return appointment

    async def apply(self, appointment: Appointment, transition: Transition, actor_id: Optional[UUID] = None) -> Appointment:
        appointment_id = appointment.id
        previous = AppointmentStatus(appointment.status)

        await conditional_write(self.session, Appointment, appointment_id, transition)
        await record_audit(
            self.session,
            f"appointment.{transition.action}",
            actor_id,
            appointment_id,
            {"from": previous, "to": transition.target},
        )
        await self.session.refresh(appointment)

        logger.info(f"Appointment {appointment_id}: {previous.value} -> {transition.target.value} ({transition.action})")
        return appointment

    async def annotate(self, appointment: Appointment, **fields) -> Appointment:
        """Write non-status fields such as predictor output or reminder bookkeeping."""
        for key, value in fields.items():
            setattr(appointment, key, value)
        self.session.add(appointment)
        await self.session.flush()
        return appointment

    async def find_no_show_candidates(self, now: datetime, department: Optional[str] = None) -> List[Appointment]:
        stmt = select(Appointment).where(
            Appointment.status.in_(list(NO_SHOW_STATUSES)),
            Appointment.checked_in == False,
            Appointment.appointment_date < now - CHECK_IN_CLOSES_AFTER,
        )
        if department:
            stmt = stmt.where(Appointment.department == department)
        stmt = stmt.order_by(Appointment.appointment_date).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_reminder_candidates(self, now: datetime, horizon: timedelta) -> List[Appointment]:
        stmt = select(Appointment).where(
            Appointment.status.in_(REMINDABLE_STATUSES),
            Appointment.reminder_sent == False,
            Appointment.appointment_date >= now,
            Appointment.appointment_date <= now + horizon,
        ).order_by(Appointment.appointment_date).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
