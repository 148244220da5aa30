from fastapi import APIRouter, Depends
from uuid import UUID
from datetime import date
from typing import Optional

from clinicflow.api.deps import get_current_actor, get_lifecycle_service
from clinicflow.core.security import Actor
from clinicflow.schemas.appointment import AppointmentResponse, ClinicalRecordUpdate, ConsultationResponse
from clinicflow.schemas.queue import (
    CallEntryRequest,
    CallNextRequest,
    PriorityUpdate,
    QueueBoardResponse,
    QueueEntryResponse,
    WalkInCreate,
)
from clinicflow.services.lifecycle_service import ConsultationResult, LifecycleService

router = APIRouter()

def entry_response(entry, position: Optional[int] = None, redact: bool = False) -> QueueEntryResponse:
    response = QueueEntryResponse.model_validate(entry)
    response.position = position
    if redact:
        # Other patients on a public board are shown by queue number only
        response.patient_id = None
        response.patient_name = None
    return response

def consultation_response(result: ConsultationResult) -> ConsultationResponse:
    return ConsultationResponse(
        queue_entry=entry_response(result.queue_entry),
        appointment=AppointmentResponse.model_validate(result.appointment) if result.appointment else None,
    )

@router.post("/walk-ins", response_model=QueueEntryResponse, status_code=201)
async def register_walk_in(
    request: WalkInCreate,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    entry, position = await service.register_walk_in(request, actor)
    return entry_response(entry, position)

@router.get("/board/{department}", response_model=QueueBoardResponse)
async def read_board(
    department: str,
    queue_date: Optional[date] = None,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    board = await service.queue_board(department, queue_date)
    positions = board["positions"]

    def shown(entry, position=None):
        return entry_response(entry, position, redact=not service.can_view_patient(actor, entry.patient_id))

    return QueueBoardResponse(
        department=board["department"],
        queue_date=board["queue_date"],
        in_service=[shown(e) for e in board["in_service"]],
        queue=[shown(e, positions[e.id]) for e in board["queue"]],
        total_waiting=board["total_waiting"],
        next_queue_number=board["next_queue_number"],
    )

@router.get("/me", response_model=QueueEntryResponse)
async def read_my_position(
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    entry, position = await service.my_position(actor)
    return entry_response(entry, position)

@router.post("/call-next", response_model=QueueEntryResponse)
async def call_next(
    request: CallNextRequest,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return entry_response(await service.call_next(request.department, actor, request.room_number))

@router.get("/{entry_id}", response_model=QueueEntryResponse)
async def read_entry(
    entry_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    entry, position = await service.get_entry(entry_id, actor)
    return entry_response(entry, position)

@router.post("/{entry_id}/call", response_model=QueueEntryResponse)
async def call_entry(
    entry_id: UUID,
    request: CallEntryRequest,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    entry = await service.call_entry(
        entry_id, actor, override=request.override, reason=request.reason, room_number=request.room_number
    )
    return entry_response(entry)

@router.post("/{entry_id}/start", response_model=ConsultationResponse)
async def start_service(
    entry_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return consultation_response(await service.start_consultation(entry_id, actor))

@router.post("/{entry_id}/complete", response_model=ConsultationResponse)
async def complete_service(
    entry_id: UUID,
    request: Optional[ClinicalRecordUpdate] = None,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    clinical = request.model_dump(exclude_unset=True) if request else None
    return consultation_response(await service.complete_consultation(entry_id, actor, clinical))

@router.post("/{entry_id}/skip", response_model=QueueEntryResponse)
async def skip_entry(
    entry_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return entry_response(await service.skip(entry_id, actor))

@router.post("/{entry_id}/leave", response_model=QueueEntryResponse)
async def leave_queue(
    entry_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    return entry_response(await service.leave(entry_id, actor))

@router.patch("/{entry_id}/priority", response_model=QueueEntryResponse)
async def change_priority(
    entry_id: UUID,
    request: PriorityUpdate,
    actor: Actor = Depends(get_current_actor),
    service: LifecycleService = Depends(get_lifecycle_service),
):
    entry, position = await service.change_priority(entry_id, actor, request.priority_level, request.is_emergency)
    return entry_response(entry, position)
