from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, Optional


class InteractionFinding(BaseModel):
    drug1: str
    drug2: str
    risk: str
    description: str = ""


class InteractionCheckCreate(BaseModel):
    patient_id: int = 0
    medications: list[str]
    interactions_detected: list[InteractionFinding] = []

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class InteractionCheckRecord(InteractionCheckCreate):
    id: int
    checked_at: Optional[datetime] = None


class InteractionCheckRequest(BaseModel):
    medications: list[str]
    patient_id: Optional[int] = Field(default=None, ge=0)

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class RecommendationRequest(BaseModel):
    condition: str = Field(..., min_length=1)
    medications: list[str]


class Recommendation(BaseModel):
    recommendations: list[Any] = []
    warnings: list[Any] = []
    references: list[Any] = []
