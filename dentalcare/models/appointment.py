"""Appointment model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import relationship
from dentalcare.database import Base
from dentalcare.models.patient import Patient


def _utc_naive_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Appointment(Base):
    """Represents a scheduled clinic visit.

    ``scheduled_at`` and ``end_at`` are stored as naive UTC.
    """
    __tablename__ = "appointments"
    __table_args__ = (Index("idx_appointments_doctor_start", "doctor_id", "scheduled_at"),)

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"))
    doctor_id = Column(Integer, index=True)
    branch_id = Column(Integer, index=True)
    scheduled_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime)
    status = Column(String, default="booked")
    notes = Column(String)
    source = Column(String)
    source_encounter_id = Column(Integer)
    created_at = Column(DateTime, default=_utc_naive_now)

    patient = relationship(Patient, lazy="joined")
