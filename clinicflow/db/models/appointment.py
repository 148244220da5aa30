from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from sqlalchemy import DateTime
from uuid import UUID, uuid4

from clinicflow.lifecycle.enums import AppointmentStatus, AppointmentType, PriorityLevel
from clinicflow.lifecycle.time_windows import utcnow

class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    patient_id: UUID = Field(index=True)
    patient_name: Optional[str] = None
    doctor_id: Optional[UUID] = Field(default=None, index=True) # None = any available doctor
    doctor_name: Optional[str] = None
    department: str = Field(default="General", index=True)
    appointment_date: datetime = Field(index=True, sa_type=DateTime)
    appointment_type: AppointmentType = Field(default=AppointmentType.CONSULTATION)
    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED, index=True)
    priority: PriorityLevel = Field(default=PriorityLevel.MEDIUM)
    duration_minutes: int = Field(default=30)

    checked_in: bool = Field(default=False)
    check_in_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    confirmed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    actual_start_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    actual_end_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    cancellation_reason: Optional[str] = None

    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    vital_signs: Optional[str] = None
    diagnosis: Optional[str] = None
    prescription: Optional[str] = None
    notes: Optional[str] = None

    reminder_sent: bool = Field(default=False)
    reminder_sent_at: Optional[datetime] = Field(default=None, sa_type=DateTime)

    # Advisory predictor output, never read by a guard
    no_show_probability: Optional[float] = None
    ai_priority_score: Optional[float] = None
    ai_priority_level: Optional[str] = None
    ai_recommendation: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
