from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import date, datetime
from uuid import UUID, uuid4
from sqlalchemy import DateTime, Index, UniqueConstraint, text

from clinicflow.lifecycle.enums import PriorityLevel, QueueStatus
from clinicflow.lifecycle.time_windows import utcnow

ACTIVE_STATUS_CLAUSE = "status IN ('WAITING', 'CALLED', 'IN_SERVICE')"

class QueueEntry(SQLModel, table=True):
    __tablename__ = "queue_entries"
    __table_args__ = (
        UniqueConstraint("department", "queue_date", "queue_number", name="uq_queue_entries_number"),
        # At most one active entry per appointment
        Index(
            "uq_queue_entries_active_appointment",
            "appointment_id",
            unique=True,
            postgresql_where=text(ACTIVE_STATUS_CLAUSE),
            sqlite_where=text(ACTIVE_STATUS_CLAUSE),
        ),
    )
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    queue_date: date = Field(index=True)
    department: str = Field(index=True)
    queue_number: int
    appointment_id: Optional[UUID] = Field(default=None, foreign_key="appointments.id") # None for walk-ins
    patient_id: UUID = Field(index=True)
    patient_name: Optional[str] = None
    service_type: str = Field(default="CONSULTATION")
    doctor_name: Optional[str] = None
    room_number: Optional[str] = None
    status: QueueStatus = Field(default=QueueStatus.WAITING, index=True)
    priority_level: PriorityLevel = Field(default=PriorityLevel.MEDIUM)
    priority_score: float = Field(default=0.0)
    is_emergency: bool = Field(default=False)
    check_in_time: datetime = Field(sa_type=DateTime)
    called_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    called_by: Optional[UUID] = None
    service_start_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    service_end_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    estimated_wait_time: Optional[int] = None # minutes
    actual_wait_time: Optional[int] = None # minutes
    notified: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
