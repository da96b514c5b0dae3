from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from datetime import date
from typing import Optional

from ...core.config import settings
from ...core.database import get_db
from ...core.security import Actor
from ...api.deps import get_admin_actor, get_booking_coordinator, get_status_engine
from ...services.appointment_store import AppointmentStore
from ...services.booking_service import BookingCoordinator
from ...services.status_service import StatusTransitionEngine
from ...schemas.appointment import (
    AdminAppointmentResponse, AdminCreateAppointmentRequest,
    AppointmentDetailResponse, AppointmentFilter, AppointmentPage, StatusUpdateRequest
)

router = APIRouter(prefix="/admin/appointments", tags=["Administration"])

@router.get("", response_model=AppointmentPage)
async def list_appointments(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    doctor_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    _: Actor = Depends(get_admin_actor),
    db: Session = Depends(get_db)
):
    """List appointments with filters and pagination."""
    filters = AppointmentFilter(
        date_from=date_from,
        date_to=date_to,
        doctor_id=doctor_id,
        patient_id=patient_id,
        status=status_filter,
        search=search,
        page=page,
        page_size=page_size,
    )
    return AppointmentStore(db).search(filters)

@router.get("/{appointment_id}", response_model=AppointmentDetailResponse)
async def get_appointment(
    appointment_id: int,
    _: Actor = Depends(get_admin_actor),
    db: Session = Depends(get_db)
):
    """Full detail of one appointment, including its notes."""
    appointment = AppointmentStore(db).get_or_raise(appointment_id)
    return AppointmentDetailResponse.from_appointment(appointment)

@router.post("", response_model=AdminAppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    request_data: AdminCreateAppointmentRequest,
    actor: Actor = Depends(get_admin_actor),
    coordinator: BookingCoordinator = Depends(get_booking_coordinator)
):
    """Book on a patient's behalf; the appointment starts confirmed."""
    appointment = coordinator.create_appointment(
        patient_id=request_data.patient_id,
        provider_id=request_data.doctor_id,
        slot_id=request_data.slot_id,
        reason=request_data.reason,
        actor=actor,
        internal_notes=request_data.internal_notes,
        send_email=request_data.send_email,
    )
    return AdminAppointmentResponse.from_appointment(appointment)

@router.patch("/{appointment_id}/status")
async def update_appointment_status(
    appointment_id: int,
    request_data: StatusUpdateRequest,
    actor: Actor = Depends(get_admin_actor),
    engine: StatusTransitionEngine = Depends(get_status_engine)
):
    """Apply any allowed transition, including reactivation."""
    updated = engine.update_status(
        appointment_id, actor, request_data.status, request_data.notes
    )
    return {"message": "Appointment status updated", "updated": updated}

@router.delete("/{appointment_id}")
async def cancel_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_admin_actor),
    coordinator: BookingCoordinator = Depends(get_booking_coordinator)
):
    """Administrative cancellation; the record is kept and its slot released."""
    cancelled = coordinator.cancel_appointment(appointment_id, actor)
    return {"message": "Appointment cancelled successfully", "cancelled": cancelled}
