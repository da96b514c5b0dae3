from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import List, Optional

from ..models.appointment import AppointmentStatus

class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    slot_id: int
    reason: Optional[str] = Field(None, max_length=500)

class AdminCreateAppointmentRequest(CreateAppointmentRequest):
    patient_id: int
    internal_notes: Optional[str] = Field(None, max_length=1000)
    send_email: bool = True

class RescheduleAppointmentRequest(BaseModel):
    new_slot_id: int

class StatusUpdateRequest(BaseModel):
    # Parsed by the transition engine so unknown values surface as booking validation errors
    status: str
    notes: Optional[str] = Field(None, max_length=1000)

class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slot_id: int
    doctor_id: int
    patient_id: int
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    display_status: str
    reason: Optional[str] = None
    origin: str
    created_at: datetime
    updated_at: datetime

class AdminAppointmentResponse(AppointmentResponse):
    patient_name: Optional[str] = None
    doctor_name: Optional[str] = None
    specialty: Optional[str] = None

    @classmethod
    def from_appointment(cls, appointment) -> "AdminAppointmentResponse":
        response = cls.model_validate(appointment)
        if appointment.patient:
            response.patient_name = appointment.patient.full_name
        if appointment.doctor:
            response.doctor_name = appointment.doctor.display_name
            response.specialty = appointment.doctor.specialization or "General"
        return response

class AppointmentNoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    note: str
    created_at: datetime

class AppointmentDetailResponse(AdminAppointmentResponse):
    notes: List[AppointmentNoteResponse] = []

class AppointmentFilter(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    doctor_id: Optional[int] = None
    patient_id: Optional[int] = None
    status: Optional[str] = None
    search: Optional[str] = None
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1)

class AppointmentPage(BaseModel):
    items: List[AdminAppointmentResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
