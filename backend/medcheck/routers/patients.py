import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from medcheck.auth import get_analyzer, get_current_user, get_storage
from medcheck.schemas.drug_interaction import InteractionCheckRecord
from medcheck.schemas.patient import PatientCreate, PatientRecord
from medcheck.schemas.user import UserRecord
from medcheck.services.analyzer import ClinicalTextAnalyzer
from medcheck.services.storage import Storage

router = APIRouter()
logger = logging.getLogger(__name__)


def _parse_json_list(raw: Optional[str], field: str) -> list:
    if raw is None or not raw.strip():
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail=f"{field} must be a JSON array")
    if not isinstance(value, list):
        raise HTTPException(status_code=400, detail=f"{field} must be a JSON array")
    return value


@router.get("", response_model=list[PatientRecord])
async def list_patients(
    storage: Storage = Depends(get_storage),
    current_user: UserRecord = Depends(get_current_user),
):
    return await storage.list_patients()


@router.post("", response_model=PatientRecord, status_code=201)
async def create_patient(
    name: str = Form(...),
    dob: str = Form(...),
    ehr_file: Optional[UploadFile] = File(None, alias="ehrFile"),
    medical_history: Optional[str] = Form(None, alias="medicalHistory"),
    medications: Optional[str] = Form(None),
    storage: Storage = Depends(get_storage),
    analyzer: ClinicalTextAnalyzer = Depends(get_analyzer),
    current_user: UserRecord = Depends(get_current_user),
):
    if ehr_file is None:
        raise HTTPException(status_code=400, detail="No EHR file provided")
    text = (await ehr_file.read()).decode("utf-8", errors="replace")
    if not text.strip():
        raise HTTPException(status_code=400, detail="No EHR file provided")

    # pydantic ValidationError here is mapped to 400 by the app handler
    data = PatientCreate(
        name=name,
        dob=dob,
        medical_history=_parse_json_list(medical_history, "medicalHistory"),
        medications=_parse_json_list(medications, "medications"),
    )
    data.ehr_data = await analyzer.extract_structured_data(text)

    patient = await storage.create_patient(data)
    logger.info("Patient %s created by user %s", patient.id, current_user.id)
    return patient


@router.get("/{patient_id}", response_model=PatientRecord)
async def get_patient(
    patient_id: int,
    storage: Storage = Depends(get_storage),
    current_user: UserRecord = Depends(get_current_user),
):
    patient = await storage.get_patient_by_id(patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail=f"Patient {patient_id} not found")
    return patient


@router.get("/{patient_id}/history", response_model=list[InteractionCheckRecord])
async def get_patient_history(
    patient_id: int,
    storage: Storage = Depends(get_storage),
    current_user: UserRecord = Depends(get_current_user),
):
    if not await storage.get_patient_by_id(patient_id):
        raise HTTPException(status_code=404, detail=f"Patient {patient_id} not found")
    return await storage.list_interaction_checks_for_patient(patient_id)
