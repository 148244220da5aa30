from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from uuid import UUID
from datetime import date, datetime
from typing import Dict, List, Optional

from clinicflow.clients.service_durations import StaticServiceDurations
from clinicflow.core.exceptions import EntityNotFound, StaleState
from clinicflow.core.logger import logger
from clinicflow.db.models import QueueCounter, QueueEntry
from clinicflow.lifecycle.enums import ACTIVE_QUEUE_STATUSES, PriorityLevel, QueueStatus
from clinicflow.lifecycle.ordering import estimate_wait_times, position_of, priority_score, rank_active
from clinicflow.lifecycle.transition import Transition
from clinicflow.services.persistence import conditional_write, record_audit

class QueueService:
    """Queue entries for one clinic: allocation, conditional updates, derived views. Never commits."""

    def __init__(self, session: AsyncSession, durations=None):
        self.session = session
        self.durations = durations or StaticServiceDurations()

    async def get(self, entry_id: UUID) -> QueueEntry:
        entry = await self.session.get(QueueEntry, entry_id, populate_existing=True)
        if not entry:
            raise EntityNotFound("Queue entry", entry_id)
        return entry

    async def entries_for_day(
        self,
        department: str,
        day: date,
        statuses: Optional[List[QueueStatus]] = None,
    ) -> List[QueueEntry]:
        stmt = select(QueueEntry).where(
            QueueEntry.department == department,
            QueueEntry.queue_date == day,
        )
        if statuses:
            stmt = stmt.where(QueueEntry.status.in_(statuses))
        stmt = stmt.order_by(QueueEntry.queue_number).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def latest_entry_for_appointment(self, appointment_id: UUID) -> Optional[QueueEntry]:
        stmt = (
            select(QueueEntry)
            .where(QueueEntry.appointment_id == appointment_id)
            .order_by(QueueEntry.created_at.desc(), QueueEntry.queue_number.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def active_entry_for_patient(self, patient_id: UUID, day: date) -> Optional[QueueEntry]:
        stmt = (
            select(QueueEntry)
            .where(
                QueueEntry.patient_id == patient_id,
                QueueEntry.queue_date == day,
                QueueEntry.status.in_(list(ACTIVE_QUEUE_STATUSES)),
            )
            .order_by(QueueEntry.check_in_time.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def next_queue_number(self, department: str, day: date) -> int:
        partition = (QueueCounter.department == department, QueueCounter.queue_date == day)
        stmt = (
            update(QueueCounter)
            .where(*partition)
            .values(last_number=QueueCounter.last_number + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            self.session.add(QueueCounter(department=department, queue_date=day, last_number=1))
            await self.session.flush()
            return 1

        result = await self.session.execute(select(QueueCounter.last_number).where(*partition))
        return result.scalar_one()

    async def enqueue(
        self,
        *,
        department: str,
        day: date,
        patient_id: UUID,
        now: datetime,
        appointment_id: Optional[UUID] = None,
        patient_name: Optional[str] = None,
        service_type: str = "CONSULTATION",
        doctor_name: Optional[str] = None,
        priority_level: PriorityLevel = PriorityLevel.MEDIUM,
        is_emergency: bool = False,
    ) -> QueueEntry:
        try:
            queue_number = await self.next_queue_number(department, day)
            entry = QueueEntry(
                queue_date=day,
                department=department,
                queue_number=queue_number,
                appointment_id=appointment_id,
                patient_id=patient_id,
                patient_name=patient_name,
                service_type=service_type,
                doctor_name=doctor_name,
                status=QueueStatus.WAITING,
                priority_level=priority_level,
                priority_score=priority_score(priority_level, is_emergency),
                is_emergency=is_emergency,
                check_in_time=now,
                created_at=now,
                updated_at=now,
            )
            self.session.add(entry)
            await self.session.flush()
        except IntegrityError as exc:
            raise StaleState("queue_entries", appointment_id or patient_id, "Queue allocation conflicted with a concurrent check-in") from exc

        logger.info(f"Queued #{queue_number} in {department} for patient {patient_id}")
        return entry

    async def apply(
        self,
        entry: QueueEntry,
        transition: Transition,
        actor_id: Optional[UUID] = None,
        extra: Optional[Dict] = None,
    ) -> QueueEntry:
        entry_id = entry.id
        previous = QueueStatus(entry.status)

        await conditional_write(self.session, QueueEntry, entry_id, transition)
        await record_audit(
            self.session,
            f"queue.{transition.action}",
            actor_id,
            entry_id,
            {"from": previous, "to": transition.target, **(extra or {})},
        )
        await self.session.refresh(entry)

        logger.info(f"Queue #{entry.queue_number} ({entry.department}): {previous.value} -> {transition.target.value}")
        return entry

    async def annotate(self, entry: QueueEntry, **fields) -> QueueEntry:
        for key, value in fields.items():
            setattr(entry, key, value)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def refresh_wait_times(self, department: str, day: date) -> Dict[UUID, int]:
        waiting = await self.entries_for_day(department, day, [QueueStatus.WAITING])
        minutes = await self.durations.average_minutes(department)
        estimates = estimate_wait_times(waiting, minutes)
        for entry in waiting:
            if entry.estimated_wait_time != estimates[entry.id]:
                entry.estimated_wait_time = estimates[entry.id]
                self.session.add(entry)
        await self.session.flush()
        return estimates

    async def position(self, entry: QueueEntry) -> Optional[int]:
        entries = await self.entries_for_day(entry.department, entry.queue_date)
        return position_of(entry, entries)

    async def board(self, department: str, day: date) -> Dict:
        entries = await self.entries_for_day(department, day)
        active = rank_active(entries, department)
        return {
            "in_service": [e for e in entries if QueueStatus(e.status) == QueueStatus.IN_SERVICE],
            "queue": active,
            "total_waiting": sum(1 for e in active if QueueStatus(e.status) == QueueStatus.WAITING),
        }
