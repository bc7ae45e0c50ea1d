from sqlalchemy import Column, Integer, DateTime, JSON
from sqlalchemy.sql import func
from medcheck.database import Base


class DrugInteraction(Base):
    __tablename__ = "drug_interactions"

    id = Column(Integer, primary_key=True, index=True)
    # 0 means the check was not tied to a stored patient, so no foreign key
    patient_id = Column(Integer, nullable=False, default=0, index=True)
    medications = Column(JSON, default=list)
    interactions_detected = Column(JSON, default=list)
    checked_at = Column(DateTime(timezone=True), server_default=func.now())
