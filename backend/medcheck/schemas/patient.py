from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, Optional


class MedicalHistoryEntry(BaseModel):
    condition: str
    diagnosed_at: str


class PatientCreate(BaseModel):
    name: str
    dob: str
    medical_history: list[MedicalHistoryEntry] = []
    medications: list[str] = []
    ehr_data: dict[str, Any] = {}

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class PatientRecord(PatientCreate):
    id: int
    created_at: Optional[datetime] = None
