from datetime import datetime
from sqlalchemy import Column, Integer, ForeignKey, DateTime, Text, Index, text, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ATTENDED = "attended"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    NO_SHOW = "no_show"

# Statuses in which an appointment no longer occupies its slot
RELEASED_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED})

# Calendar labels shown to patients; several statuses share one label
DISPLAY_STATUS = {
    AppointmentStatus.PENDING: "scheduled",
    AppointmentStatus.CONFIRMED: "scheduled",
    AppointmentStatus.ATTENDED: "completed",
    AppointmentStatus.CANCELLED: "cancelled",
    AppointmentStatus.REJECTED: "cancelled",
    AppointmentStatus.NO_SHOW: "missed",
}

def display_status(status: AppointmentStatus) -> str:
    """Project a stored status onto the coarser label used by calendars."""
    return DISPLAY_STATUS[AppointmentStatus(status)]

_ACTIVE_SLOT_CLAUSE = text("status NOT IN ('CANCELLED', 'REJECTED')")

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Backstop for the conditional slot update: one live appointment per slot
        Index(
            "uq_appointments_active_slot",
            "slot_id",
            unique=True,
            sqlite_where=_ACTIVE_SLOT_CLAUSE,
            postgresql_where=_ACTIVE_SLOT_CLAUSE,
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)

    # Appointment details, copied from the slot so history survives slot edits
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING)
    reason = Column(Text, nullable=True)

    # Tracking
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    slot = relationship("Slot")
    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")
    notes = relationship(
        "AppointmentNote",
        back_populates="appointment",
        order_by="AppointmentNote.id",
        cascade="all, delete-orphan",
    )

    @property
    def display_status(self) -> str:
        return display_status(self.status)

    @property
    def origin(self) -> str:
        return "PATIENT" if self.created_by == self.patient_id else "ADMIN"

    @property
    def holds_slot(self) -> bool:
        return self.status not in RELEASED_STATUSES

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, status='{self.status}')>"

class AppointmentNote(Base):
    __tablename__ = "appointment_notes"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    note = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    appointment = relationship("Appointment", back_populates="notes")

    def __repr__(self):
        return f"<AppointmentNote(id={self.id}, appointment_id={self.appointment_id})>"
