from sqlalchemy import or_, update
from sqlalchemy.orm import Session, aliased, joinedload
from datetime import datetime, time, timedelta
from typing import List, Optional
import logging
import math

from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..models.appointment import Appointment, AppointmentNote, AppointmentStatus
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..schemas.appointment import AppointmentFilter, AppointmentPage, AdminAppointmentResponse

logger = logging.getLogger(__name__)

def parse_status(value: str) -> AppointmentStatus:
    """Parse a status name or value, case-insensitively."""
    candidate = (value or "").strip()
    for status in AppointmentStatus:
        if candidate.upper() == status.name or candidate.lower() == status.value:
            return status
    raise ValidationError(f"Unknown appointment status: '{value}'")

class AppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: int) -> Optional[Appointment]:
        return self.db.get(Appointment, appointment_id)

    def get_or_raise(self, appointment_id: int) -> Appointment:
        appointment = self.get(appointment_id)
        if not appointment:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    def get_for_update(self, appointment_id: int) -> Appointment:
        """
        Load an appointment for a read-check-write sequence.

        The row is locked until the transaction ends where the backend supports
        it, and attributes are reloaded even if the session already holds a copy.
        """
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).populate_existing().with_for_update().first()
        if not appointment:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    def apply_change(self, appointment: Appointment, expected_status: AppointmentStatus,
                     expected_slot_id: int, **values) -> None:
        """
        Write new values only if the row still has the status and slot it was
        read with. ConflictError when another request changed it first.
        """
        result = self.db.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment.id,
                Appointment.status == expected_status,
                Appointment.slot_id == expected_slot_id
            )
            .values(updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            logger.warning(f"Appointment {appointment.id} changed concurrently, update refused")
            raise ConflictError("The appointment was changed by another request, please reload it")

    def add(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def add_note(self, appointment: Appointment, text: str) -> AppointmentNote:
        note = AppointmentNote(
            appointment_id=appointment.id,
            note=text,
            created_at=datetime.utcnow()
        )
        self.db.add(note)
        return note

    def list_for_patient(self, patient_id: int) -> List[Appointment]:
        """All appointments of a patient, newest first."""
        return self.db.query(Appointment).options(
            joinedload(Appointment.doctor)
        ).filter(
            Appointment.patient_id == patient_id
        ).order_by(Appointment.start_time.desc()).all()

    def search(self, filters: AppointmentFilter) -> AppointmentPage:
        """Filtered, paginated listing for the administration panel."""
        patient_alias = aliased(Patient)
        doctor_alias = aliased(Doctor)

        query = self.db.query(Appointment).join(
            patient_alias, Appointment.patient_id == patient_alias.id
        ).join(
            doctor_alias, Appointment.doctor_id == doctor_alias.id
        )

        if filters.date_from:
            query = query.filter(
                Appointment.start_time >= datetime.combine(filters.date_from, time(0, 0))
            )

        if filters.date_to:
            # inclusive of the whole last day
            query = query.filter(
                Appointment.start_time < datetime.combine(filters.date_to, time(0, 0)) + timedelta(days=1)
            )

        if filters.doctor_id:
            query = query.filter(Appointment.doctor_id == filters.doctor_id)

        if filters.patient_id:
            query = query.filter(Appointment.patient_id == filters.patient_id)

        if filters.status:
            query = query.filter(Appointment.status == parse_status(filters.status))

        if filters.search and filters.search.strip():
            pattern = f"%{filters.search.strip()}%"
            query = query.filter(or_(
                patient_alias.first_name.ilike(pattern),
                patient_alias.last_name.ilike(pattern),
                doctor_alias.first_name.ilike(pattern),
                doctor_alias.last_name.ilike(pattern),
                Appointment.reason.ilike(pattern),
            ))

        total = query.count()
        appointments = query.options(
            joinedload(Appointment.patient),
            joinedload(Appointment.doctor)
        ).order_by(
            Appointment.start_time.desc(), Appointment.id.desc()
        ).offset(
            (filters.page - 1) * filters.page_size
        ).limit(filters.page_size).all()

        return AppointmentPage(
            items=[AdminAppointmentResponse.from_appointment(a) for a in appointments],
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=math.ceil(total / filters.page_size) if total else 0,
        )
