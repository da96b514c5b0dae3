from datetime import datetime
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship

from ..core.database import Base

class Doctor(Base):
    __tablename__ = "doctors"

    # A doctor profile shares its id with the owning user account
    id = Column(Integer, ForeignKey("users.id"), primary_key=True)

    # Personal information
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    specialization = Column(String(100), nullable=True)
    license_number = Column(String(50), nullable=True, unique=True)

    # Professional information
    bio = Column(Text, nullable=True)

    # Contact information
    phone_number = Column(String(20), nullable=True)
    office_address = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="doctor")
    slots = relationship("Slot", back_populates="doctor")
    appointments = relationship("Appointment", back_populates="doctor")

    @property
    def display_name(self) -> str:
        return f"Dr. {self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Doctor(id={self.id}, name='{self.first_name} {self.last_name}', specialization='{self.specialization}')>"
