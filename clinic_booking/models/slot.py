from datetime import datetime
from sqlalchemy import Column, Integer, ForeignKey, DateTime, CheckConstraint, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class SlotState(str, enum.Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    BLOCKED = "blocked"  # administratively withheld, not bookable

class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_slots_end_after_start"),
        UniqueConstraint("doctor_id", "start_time", name="uq_slots_doctor_start"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)

    # Time window
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    state = Column(SQLEnum(SlotState), nullable=False, default=SlotState.AVAILABLE)

    # Tracking
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    doctor = relationship("Doctor", back_populates="slots")

    def __repr__(self):
        return f"<Slot(id={self.id}, doctor_id={self.doctor_id}, start='{self.start_time}', state='{self.state}')>"
