from pydantic import BaseModel
from uuid import UUID
from datetime import date, datetime
from typing import Optional, List

from clinicflow.lifecycle.enums import PriorityLevel, QueueStatus

class WalkInCreate(BaseModel):
    patient_id: UUID
    patient_name: Optional[str] = None
    department: Optional[str] = None
    service_type: str = "CONSULTATION"
    priority_level: PriorityLevel = PriorityLevel.MEDIUM
    is_emergency: bool = False

class CallNextRequest(BaseModel):
    department: str
    room_number: Optional[str] = None

class CallEntryRequest(BaseModel):
    override: bool = False
    reason: Optional[str] = None
    room_number: Optional[str] = None

class PriorityUpdate(BaseModel):
    priority_level: PriorityLevel
    is_emergency: Optional[bool] = None

class QueueEntryResponse(BaseModel):
    id: UUID
    queue_date: date
    department: str
    queue_number: int
    appointment_id: Optional[UUID] = None
    patient_id: Optional[UUID] = None
    patient_name: Optional[str] = None
    service_type: str
    doctor_name: Optional[str] = None
    room_number: Optional[str] = None
    status: QueueStatus
    priority_level: PriorityLevel
    priority_score: float
    is_emergency: bool
    check_in_time: datetime
    called_time: Optional[datetime] = None
    called_by: Optional[UUID] = None
    service_start_time: Optional[datetime] = None
    service_end_time: Optional[datetime] = None
    estimated_wait_time: Optional[int] = None
    actual_wait_time: Optional[int] = None
    notified: bool
    position: Optional[int] = None

    class Config:
        from_attributes = True

class QueueBoardResponse(BaseModel):
    department: str
    queue_date: date
    in_service: List[QueueEntryResponse]
    queue: List[QueueEntryResponse]
    total_waiting: int = 0
    next_queue_number: Optional[int] = None
