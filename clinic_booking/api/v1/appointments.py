from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from ...core.database import get_db
from ...core.security import Actor
from ...api.deps import (
    get_current_actor, get_patient_actor, get_booking_coordinator,
    get_status_engine, rate_limit_check
)
from ...services.appointment_store import AppointmentStore
from ...services.booking_service import BookingCoordinator
from ...services.status_service import StatusTransitionEngine
from ...schemas.appointment import (
    AppointmentResponse, CreateAppointmentRequest,
    RescheduleAppointmentRequest, StatusUpdateRequest
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.get("", response_model=List[AppointmentResponse])
async def list_my_appointments(
    actor: Actor = Depends(get_patient_actor),
    db: Session = Depends(get_db)
):
    """List the authenticated patient's appointments, newest first."""
    appointments = AppointmentStore(db).list_for_patient(actor.id)
    return [AppointmentResponse.model_validate(a) for a in appointments]

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    request_data: CreateAppointmentRequest,
    actor: Actor = Depends(get_patient_actor),
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
    _: None = Depends(rate_limit_check)
):
    """Book an available slot for the authenticated patient."""
    appointment = coordinator.create_appointment(
        patient_id=actor.id,
        provider_id=request_data.doctor_id,
        slot_id=request_data.slot_id,
        reason=request_data.reason,
        actor=actor,
    )
    return AppointmentResponse.model_validate(appointment)

@router.post("/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
    _: None = Depends(rate_limit_check)
):
    """Cancel an appointment and release its slot."""
    cancelled = coordinator.cancel_appointment(appointment_id, actor)
    return {"message": "Appointment cancelled successfully", "cancelled": cancelled}

@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: int,
    request_data: RescheduleAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    coordinator: BookingCoordinator = Depends(get_booking_coordinator),
    _: None = Depends(rate_limit_check)
):
    """Move an appointment to another slot of the same doctor."""
    appointment = coordinator.reschedule_appointment(
        appointment_id, actor, request_data.new_slot_id
    )
    return AppointmentResponse.model_validate(appointment)

@router.patch("/{appointment_id}/status")
async def update_appointment_status(
    appointment_id: int,
    request_data: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    engine: StatusTransitionEngine = Depends(get_status_engine)
):
    """Apply a lifecycle transition; allowed moves depend on the caller's role."""
    updated = engine.update_status(
        appointment_id, actor, request_data.status, request_data.notes
    )
    return {"message": "Appointment status updated", "updated": updated}
