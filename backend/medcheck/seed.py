"""
Demo data for in-memory deployments: one doctor account and a batch of
synthetic patients. Skipped when a database is connected.
"""

import asyncio
import logging
import random

from medcheck.auth import hash_password
from medcheck.config import Settings
from medcheck.schemas.patient import MedicalHistoryEntry, PatientCreate
from medcheck.schemas.user import UserCreate
from medcheck.services.storage import Storage

logger = logging.getLogger(__name__)

DEMO_USERNAME = "doctor"
DEMO_PASSWORD = "password123"

CONDITIONS = [
    "Hypertension", "Diabetes Type 2", "Asthma", "Arthritis",
    "Depression", "Anxiety", "COPD", "Heart Disease", "Migraine",
]

MEDICATIONS = [
    "Lisinopril", "Metformin", "Albuterol", "Ibuprofen",
    "Sertraline", "Alprazolam", "Ventolin", "Atorvastatin", "Sumatriptan",
    "Amlodipine", "Levothyroxine", "Omeprazole", "Losartan", "Gabapentin",
]


def _random_date(rng: random.Random, first_year: int, span_years: int) -> str:
    return f"{rng.randint(first_year, first_year + span_years - 1)}-{rng.randint(1, 12):02d}-{rng.randint(1, 28):02d}"


def generate_patient(rng: random.Random, index: int) -> PatientCreate:
    dob = _random_date(rng, 1940, 60)
    history = [
        MedicalHistoryEntry(condition=rng.choice(CONDITIONS), diagnosed_at=_random_date(rng, 2010, 10))
        for _ in range(rng.randint(1, 3))
    ]
    medications = [rng.choice(MEDICATIONS) for _ in range(rng.randint(1, 4))]
    ehr_data = {
        "patientId": f"P{index:05d}",
        "demographics": {
            "gender": rng.choice(["Male", "Female"]),
            "age": 2023 - int(dob[:4]),
        },
        "vitalSigns": {
            "bloodPressure": f"{rng.randint(100, 139)}/{rng.randint(60, 79)}",
            "heartRate": rng.randint(60, 89),
            "temperature": f"{rng.uniform(36.1, 37.1):.1f}",
        },
        "diagnoses": [entry.condition for entry in history],
        "medications": medications,
        "allergies": ["Penicillin"] if rng.random() > 0.7 else [],
        "labResults": [
            {"test": "Complete Blood Count", "date": _random_date(rng, 2023, 1), "result": "Normal"},
        ],
    }
    return PatientCreate(
        name=f"Patient {index}",
        dob=dob,
        medical_history=history,
        medications=medications,
        ehr_data=ehr_data,
    )


async def seed_demo_data(storage: Storage, settings: Settings, seed: int = 42) -> None:
    """Create the demo account and patients. Idempotent for the account."""
    if settings.database_url or storage.durable is not None:
        logger.info("Database configured, skipping demo data")
        return

    if not await storage.get_account_by_login(DEMO_USERNAME):
        hashed = await asyncio.to_thread(hash_password, DEMO_PASSWORD, settings.bcrypt_rounds)
        await storage.create_account(UserCreate(username=DEMO_USERNAME, password=hashed))

    if await storage.list_patients():
        return
    rng = random.Random(seed)
    for i in range(1, settings.demo_patient_count + 1):
        await storage.create_patient(generate_patient(rng, i))
    logger.info("Loaded %d demo patient records", settings.demo_patient_count)
