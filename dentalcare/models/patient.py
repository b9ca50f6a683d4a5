"""Patient model definitions."""

from sqlalchemy import Column, Integer, String
from dentalcare.database import Base


class Patient(Base):
    """The patient columns the scheduling grid displays."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    ovog = Column(String)
    book_number = Column(String, unique=True, index=True)
