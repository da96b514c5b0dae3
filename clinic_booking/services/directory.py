from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional

from ..core.exceptions import NotFoundError
from ..models.patient import Patient
from ..models.doctor import Doctor

DEFAULT_SPECIALTY = "General"

class DirectoryEntry(BaseModel):
    id: int
    name: str
    contact: str
    specialty: Optional[str] = None
    active: bool

class DirectoryService:
    """Read-only lookups of patients and providers for the booking core."""

    def __init__(self, db: Session):
        self.db = db

    def get_patient(self, patient_id: int) -> DirectoryEntry:
        patient = self.db.get(Patient, patient_id)
        if not patient or not patient.user:
            raise NotFoundError(f"Patient {patient_id} not found")

        return DirectoryEntry(
            id=patient.id,
            name=patient.full_name,
            contact=patient.user.email,
            active=bool(patient.user.is_active),
        )

    def get_provider(self, doctor_id: int) -> DirectoryEntry:
        doctor = self.db.get(Doctor, doctor_id)
        if not doctor or not doctor.user:
            raise NotFoundError(f"Doctor {doctor_id} not found")

        return DirectoryEntry(
            id=doctor.id,
            name=doctor.display_name,
            contact=doctor.user.email,
            specialty=doctor.specialization or DEFAULT_SPECIALTY,
            active=bool(doctor.user.is_active),
        )

    def notification_context(self, patient_id: int, doctor_id: int) -> dict:
        """Recipient and provider details shared by every booking email."""
        patient = self.get_patient(patient_id)
        provider = self.get_provider(doctor_id)
        return {
            "patient_contact": patient.contact,
            "patient_name": patient.name,
            "provider_name": provider.name,
            "specialty": provider.specialty or DEFAULT_SPECIALTY,
        }
