from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from medcheck.database import Base


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    dob = Column(String(50), nullable=False)  # free-form, not validated as a date
    medical_history = Column(JSON, default=list)
    medications = Column(JSON, default=list)
    ehr_data = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
