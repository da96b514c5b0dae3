from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from datetime import date
from typing import Optional

from ...core.config import settings
from ...core.database import get_db
from ...core.exceptions import NotFoundError
from ...core.security import Actor, UserRole
from ...api.deps import require_role
from ...services.appointment_store import AppointmentStore
from ...schemas.appointment import AppointmentDetailResponse, AppointmentFilter, AppointmentPage

router = APIRouter(prefix="/doctor/appointments", tags=["Doctor"])

@router.get("", response_model=AppointmentPage)
async def list_my_appointments(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    actor: Actor = Depends(require_role([UserRole.DOCTOR])),
    db: Session = Depends(get_db)
):
    """The authenticated doctor's agenda, with filters and pagination."""
    filters = AppointmentFilter(
        date_from=date_from,
        date_to=date_to,
        doctor_id=actor.id,
        status=status_filter,
        search=search,
        page=page,
        page_size=page_size,
    )
    return AppointmentStore(db).search(filters)

@router.get("/{appointment_id}", response_model=AppointmentDetailResponse)
async def get_my_appointment(
    appointment_id: int,
    actor: Actor = Depends(require_role([UserRole.DOCTOR])),
    db: Session = Depends(get_db)
):
    """One of the doctor's appointments, with its notes."""
    appointment = AppointmentStore(db).get_or_raise(appointment_id)
    # other doctors' appointments are reported as missing
    if appointment.doctor_id != actor.id:
        raise NotFoundError(f"Appointment {appointment_id} not found")
    return AppointmentDetailResponse.from_appointment(appointment)
