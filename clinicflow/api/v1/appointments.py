from fastapi import APIRouter, Depends, Query
from uuid import UUID
from datetime import date
from typing import List, Optional

from clinicflow.api.deps import get_current_actor, get_lifecycle_service
from clinicflow.core.security import Actor
from clinicflow.lifecycle.enums import AppointmentStatus
from clinicflow.schemas.appointment import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentResponse,
    BatchResponse,
    BookingResponse,
    CheckInResponse,
    ClinicalRecordUpdate,
    ConsultationResponse,
    EligibilityResponse,
    PriorityAdviceResponse,
)
from clinicflow.schemas.queue import QueueEntryResponse
from clinicflow.services.lifecycle_service import CheckInResult, ConsultationResult, LifecycleService

router = APIRouter()

def check_in_response(result: CheckInResult) -> CheckInResponse:
    entry = QueueEntryResponse.model_validate(result.queue_entry)
    entry.position = result.position
    return CheckInResponse(
        appointment=AppointmentResponse.model_validate(result.appointment),
        queue_entry=entry,
        wait_time_prediction=result.wait_time_prediction,
    )

def consultation_response(result: ConsultationResult) -> ConsultationResponse:
    return ConsultationResponse(
        queue_entry=QueueEntryResponse.model_validate(result.queue_entry),
        appointment=AppointmentResponse.model_validate(result.appointment) if result.appointment else None,
    )

def batch_response(ids: List[UUID]) -> BatchResponse:
    return BatchResponse(appointment_ids=ids, count=len(ids))

@router.get("/", response_model=List[AppointmentResponse])
async def list_appointments(
    status: Optional[List[AppointmentStatus]] = Query(None),
    day: Optional[date] = None,
    doctor_id: Optional[UUID] = None,
    patient_id: Optional[UUID] = None,
    skip: int = 0,
    limit: int = 100,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return await service.list_appointments(
        actor, status=status, day=day, doctor_id=doctor_id, patient_id=patient_id, skip=skip, limit=limit
    )

@router.post("/", response_model=BookingResponse, status_code=201)
async def book_appointment(
    request: AppointmentCreate,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    result = await service.book_appointment(request, actor)
    return BookingResponse(
        appointment=AppointmentResponse.model_validate(result.appointment),
        no_show_prediction=result.no_show_prediction,
    )

@router.post("/no-show-sweep", response_model=BatchResponse)
async def sweep_no_shows(
    department: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return batch_response(await service.sweep_no_shows(actor, department))

@router.post("/reminders", response_model=BatchResponse)
async def send_reminders(
    horizon_hours: Optional[int] = Query(None, gt=0),
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return batch_response(await service.send_reminders(actor, horizon_hours))

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def read_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return await service.get_appointment(appointment_id, actor)

@router.get("/{appointment_id}/eligibility", response_model=EligibilityResponse)
async def read_eligibility(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    appointment, eligibility, actions = await service.eligibility(appointment_id, actor)
    return EligibilityResponse(
        appointment_id=appointment.id,
        check_in_eligible=eligibility.eligible,
        guard=eligibility.guard,
        reason=eligibility.reason,
        window_opens_at=eligibility.window.opens_at,
        window_closes_at=eligibility.window.closes_at,
        available_actions=actions,
    )

@router.post("/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return await service.confirm(appointment_id, actor)

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: UUID,
    request: AppointmentCancel,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return await service.cancel(appointment_id, actor, request.reason)

@router.post("/{appointment_id}/check-in", response_model=CheckInResponse)
async def check_in(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return check_in_response(await service.check_in(appointment_id, actor))

@router.post("/{appointment_id}/reconcile-check-in", response_model=CheckInResponse)
async def reconcile_check_in(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return check_in_response(await service.reconcile_check_in(appointment_id, actor))

@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: UUID,
    request: AppointmentReschedule,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return await service.reschedule(appointment_id, request.appointment_date, actor)

@router.post("/{appointment_id}/no-show", response_model=AppointmentResponse)
async def mark_no_show(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return await service.mark_no_show(appointment_id, actor)

@router.post("/{appointment_id}/start", response_model=ConsultationResponse)
async def start_consultation(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return consultation_response(await service.start_appointment(appointment_id, actor))

@router.post("/{appointment_id}/complete", response_model=ConsultationResponse)
async def complete_consultation(
    appointment_id: UUID,
    request: Optional[ClinicalRecordUpdate] = None,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    clinical = request.model_dump(exclude_unset=True) if request else None
    return consultation_response(await service.complete_appointment(appointment_id, actor, clinical))

@router.patch("/{appointment_id}/clinical-record", response_model=AppointmentResponse)
async def update_clinical_record(
    appointment_id: UUID,
    request: ClinicalRecordUpdate,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return await service.update_clinical_record(appointment_id, actor, request.model_dump(exclude_unset=True))

@router.post("/{appointment_id}/priority-advice", response_model=PriorityAdviceResponse)
async def priority_advice(
    appointment_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    appointment, classification = await service.classify_priority(appointment_id, actor)
    return PriorityAdviceResponse(
        appointment=AppointmentResponse.model_validate(appointment),
        classification=classification,
    )
