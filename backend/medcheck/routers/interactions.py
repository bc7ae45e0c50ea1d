import logging

from fastapi import APIRouter, Depends, HTTPException

from medcheck.auth import get_analyzer, get_current_user, get_storage
from medcheck.schemas.drug_interaction import (
    InteractionCheckCreate,
    InteractionCheckRecord,
    InteractionCheckRequest,
    Recommendation,
    RecommendationRequest,
)
from medcheck.schemas.user import UserRecord
from medcheck.services.analyzer import ClinicalTextAnalyzer
from medcheck.services.storage import Storage

router = APIRouter()
logger = logging.getLogger(__name__)


def distinct_medications(medications: list[str]) -> list[str]:
    """Drop blanks and case-insensitive repeats, keeping first-seen order."""
    seen = set()
    result = []
    for name in medications:
        cleaned = name.strip()
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            result.append(cleaned)
    return result


@router.post("/interaction-checks", response_model=InteractionCheckRecord)
@router.post("/drug-interactions", response_model=InteractionCheckRecord, include_in_schema=False)
async def check_interactions(
    body: InteractionCheckRequest,
    storage: Storage = Depends(get_storage),
    analyzer: ClinicalTextAnalyzer = Depends(get_analyzer),
    current_user: UserRecord = Depends(get_current_user),
):
    patient_id = body.patient_id or 0
    if patient_id and not await storage.get_patient_by_id(patient_id):
        raise HTTPException(status_code=404, detail=f"Patient {patient_id} not found")

    medications = distinct_medications(body.medications)
    findings = []
    if len(medications) >= 2:
        findings = await analyzer.detect_interactions(medications)

    check = await storage.create_interaction_check(
        InteractionCheckCreate(
            patient_id=patient_id,
            medications=body.medications,
            interactions_detected=findings,
        )
    )
    logger.info("Interaction check %s: %d finding(s)", check.id, len(findings))
    return check


@router.post("/recommendations", response_model=Recommendation)
async def recommendations(
    body: RecommendationRequest,
    analyzer: ClinicalTextAnalyzer = Depends(get_analyzer),
    current_user: UserRecord = Depends(get_current_user),
):
    return await analyzer.recommend_treatment(body.condition, body.medications)
