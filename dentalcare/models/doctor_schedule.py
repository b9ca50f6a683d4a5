"""Doctor schedule model definitions."""

from sqlalchemy import Column, Integer, Date, Index, String
from dentalcare.database import Base


class DoctorSchedule(Base):
    """One working-hour window of a doctor at a branch on a calendar day."""
    __tablename__ = "doctor_schedules"
    __table_args__ = (Index("idx_doctor_schedules_doctor_date", "doctor_id", "date"),)

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, index=True, nullable=False)
    branch_id = Column(Integer, index=True, nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM, clinic local time
    end_time = Column(String(5), nullable=False)
    note = Column(String)
