from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional, List

from clinicflow.lifecycle.enums import AppointmentStatus, AppointmentType, PriorityLevel
from clinicflow.schemas.predictions import NoShowPrediction, PriorityClassification, WaitTimePrediction
from clinicflow.schemas.queue import QueueEntryResponse

class AppointmentCreate(BaseModel):
    patient_id: Optional[UUID] = None # staff booking on a patient's behalf
    patient_name: Optional[str] = None
    doctor_id: Optional[UUID] = None
    doctor_name: Optional[str] = None
    department: Optional[str] = None
    appointment_date: datetime
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    priority: Optional[PriorityLevel] = None
    duration_minutes: int = Field(default=30, gt=0)
    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    notes: Optional[str] = None

class AppointmentCancel(BaseModel):
    reason: Optional[str] = None

class AppointmentReschedule(BaseModel):
    appointment_date: datetime

class ClinicalRecordUpdate(BaseModel):
    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    vital_signs: Optional[str] = None
    diagnosis: Optional[str] = None
    prescription: Optional[str] = None
    notes: Optional[str] = None

class AppointmentResponse(BaseModel):
    id: UUID
    patient_id: UUID
    patient_name: Optional[str] = None
    doctor_id: Optional[UUID] = None
    doctor_name: Optional[str] = None
    department: str
    appointment_date: datetime
    appointment_type: AppointmentType
    status: AppointmentStatus
    priority: PriorityLevel
    duration_minutes: int
    checked_in: bool
    check_in_time: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    vital_signs: Optional[str] = None
    diagnosis: Optional[str] = None
    prescription: Optional[str] = None
    notes: Optional[str] = None
    reminder_sent: bool
    no_show_probability: Optional[float] = None
    ai_priority_score: Optional[float] = None
    ai_priority_level: Optional[str] = None
    ai_recommendation: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class BookingResponse(BaseModel):
    appointment: AppointmentResponse
    no_show_prediction: Optional[NoShowPrediction] = None

class EligibilityResponse(BaseModel):
    appointment_id: UUID
    check_in_eligible: bool
    guard: Optional[str] = None
    reason: Optional[str] = None
    window_opens_at: datetime
    window_closes_at: datetime
    available_actions: List[str]

class CheckInResponse(BaseModel):
    appointment: AppointmentResponse
    queue_entry: QueueEntryResponse
    wait_time_prediction: Optional[WaitTimePrediction] = None

class ConsultationResponse(BaseModel):
    queue_entry: QueueEntryResponse
    appointment: Optional[AppointmentResponse] = None

class PriorityAdviceResponse(BaseModel):
    appointment: AppointmentResponse
    classification: Optional[PriorityClassification] = None

class BatchResponse(BaseModel):
    appointment_ids: List[UUID]
    count: int
