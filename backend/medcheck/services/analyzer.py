"""
Clinical text analysis: EHR extraction, drug-interaction detection and
treatment recommendations.

`BedrockAnalyzer` sends fixed prompts to AWS Bedrock (Claude via the Converse
API) and parses the JSON object in the reply. `MockAnalyzer` answers the same
questions deterministically from built-in tables, for development and tests.
`build_analyzer()` picks one from settings.
"""

import asyncio
import itertools
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import boto3
from botocore.config import Config
from pydantic import ValidationError

from medcheck.config import Settings
from medcheck.exceptions import AnalyzerError
from medcheck.schemas.drug_interaction import InteractionFinding, Recommendation
from medcheck.utils import extract_json_object

logger = logging.getLogger(__name__)

EHR_EXTRACTION_SYSTEM = """Extract structured medical information from the EHR text.
Include diagnoses, medications, and key dates in JSON format.
Return a single JSON object and nothing else."""

INTERACTION_SYSTEM = """Analyze potential drug interactions between the given medications.
Return in JSON format with fields: interactions (array of {drug1, drug2, risk, description}).
Use "high", "moderate" or "low" for risk. Return an empty array if there are none."""

RECOMMENDATION_SYSTEM = """Provide evidence-based treatment recommendations for the given
condition and current medications. Return in JSON format with fields:
recommendations (array), warnings (array), references (array)."""


class ClinicalTextAnalyzer(ABC):
    @abstractmethod
    async def extract_structured_data(self, text: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def detect_interactions(self, medications: list[str]) -> list[InteractionFinding]:
        ...

    @abstractmethod
    async def recommend_treatment(self, condition: str, medications: list[str]) -> Recommendation:
        ...


def _parse_findings(payload: dict) -> list[InteractionFinding]:
    interactions = payload.get("interactions", [])
    if not isinstance(interactions, list):
        raise AnalyzerError("Interaction response is not a list", {"payload": payload})
    try:
        return [InteractionFinding.model_validate(item) for item in interactions]
    except ValidationError as e:
        raise AnalyzerError("Malformed interaction finding in response", {"errors": e.errors()}) from e


def _parse_recommendation(payload: dict) -> Recommendation:
    try:
        return Recommendation.model_validate(payload)
    except ValidationError as e:
        raise AnalyzerError("Malformed recommendation response", {"errors": e.errors()}) from e


class BedrockAnalyzer(ClinicalTextAnalyzer):
    def __init__(self, settings: Settings, client=None):
        self.model_id = settings.aws_bedrock_model_id
        self.region = settings.aws_region
        self.settings = settings
        self._client = client

    @property
    def client(self):
        if self._client is None:
            # Generation is billable, so at most one retry
            config = Config(
                connect_timeout=self.settings.llm_timeout_seconds,
                read_timeout=self.settings.llm_timeout_seconds,
                retries={"max_attempts": self.settings.llm_max_retries + 1, "mode": "standard"},
            )
            self._client = boto3.client(
                "bedrock-runtime",
                region_name=self.region,
                aws_access_key_id=self.settings.aws_access_key_id or None,
                aws_secret_access_key=self.settings.aws_secret_access_key or None,
                config=config,
            )
        return self._client

    async def generate(self, prompt: str, system: str = "", temperature: float = 0.3) -> str:
        system_blocks = [{"text": system}] if system else []
        messages = [{"role": "user", "content": [{"text": prompt}]}]

        response = await asyncio.to_thread(
            self.client.converse,
            modelId=self.model_id,
            messages=messages,
            system=system_blocks,
            inferenceConfig={"temperature": temperature, "maxTokens": 4096},
        )
        return response["output"]["message"]["content"][0]["text"]

    async def generate_structured(self, prompt: str, system: str, action: str) -> dict:
        try:
            raw = await self.generate(prompt, system)
        except Exception as e:
            logger.error("Bedrock call failed while trying to %s: %s", action, e)
            raise AnalyzerError(f"Failed to {action}: {e}") from e
        try:
            return extract_json_object(raw)
        except ValueError as e:
            logger.error("Unparseable Bedrock reply while trying to %s: %r", action, raw[:200])
            raise AnalyzerError(f"Failed to {action}: {e}") from e

    async def extract_structured_data(self, text: str) -> dict[str, Any]:
        return await self.generate_structured(text, EHR_EXTRACTION_SYSTEM, "parse EHR data")

    async def detect_interactions(self, medications: list[str]) -> list[InteractionFinding]:
        payload = await self.generate_structured(
            f"Medications: {', '.join(medications)}",
            INTERACTION_SYSTEM,
            "check drug interactions",
        )
        return _parse_findings(payload)

    async def recommend_treatment(self, condition: str, medications: list[str]) -> Recommendation:
        payload = await self.generate_structured(
            f"Condition: {condition}\nCurrent medications: {', '.join(medications)}",
            RECOMMENDATION_SYSTEM,
            "get recommendations",
        )
        return _parse_recommendation(payload)


# (risk, description) keyed by unordered pair of normalized drug names
KNOWN_INTERACTIONS: dict[frozenset, tuple[str, str]] = {
    frozenset({"warfarin", "aspirin"}): (
        "high", "Additive anticoagulant and antiplatelet effect; major bleeding risk."),
    frozenset({"warfarin", "ibuprofen"}): (
        "high", "NSAIDs raise bleeding risk and can increase INR with warfarin."),
    frozenset({"sertraline", "tramadol"}): (
        "high", "Both raise serotonin levels; risk of serotonin syndrome and seizures."),
    frozenset({"sildenafil", "nitroglycerin"}): (
        "high", "Combined vasodilation can cause severe hypotension."),
    frozenset({"alprazolam", "oxycodone"}): (
        "high", "Benzodiazepine plus opioid; risk of respiratory depression."),
    frozenset({"simvastatin", "clarithromycin"}): (
        "high", "CYP3A4 inhibition raises statin levels; risk of myopathy and rhabdomyolysis."),
    frozenset({"lisinopril", "spironolactone"}): (
        "high", "ACE inhibitor with potassium-sparing diuretic; risk of hyperkalemia."),
    frozenset({"lisinopril", "ibuprofen"}): (
        "moderate", "NSAIDs blunt the antihypertensive effect and may impair renal function."),
    frozenset({"amlodipine", "simvastatin"}): (
        "moderate", "Amlodipine increases simvastatin exposure; limit simvastatin to 20 mg daily."),
    frozenset({"metformin", "alcohol"}): (
        "moderate", "Alcohol potentiates the effect of metformin on lactate metabolism."),
    frozenset({"levothyroxine", "omeprazole"}): (
        "low", "Reduced gastric acidity can lower levothyroxine absorption."),
    frozenset({"gabapentin", "oxycodone"}): (
        "moderate", "Additive CNS depression; monitor for sedation and respiratory depression."),
}

CONDITION_GUIDANCE: dict[str, dict[str, list[str]]] = {
    "hypertension": {
        "recommendations": [
            "Lifestyle modification: sodium restriction, weight loss and regular exercise.",
            "First-line agents: thiazide diuretic, ACE inhibitor, ARB or calcium channel blocker.",
        ],
        "references": ["2017 ACC/AHA Guideline for High Blood Pressure in Adults"],
    },
    "diabetes": {
        "recommendations": [
            "Metformin as first-line therapy unless contraindicated.",
            "Consider SGLT2 inhibitor or GLP-1 agonist with cardiovascular or renal disease.",
        ],
        "references": ["ADA Standards of Care in Diabetes"],
    },
    "asthma": {
        "recommendations": [
            "As-needed low-dose ICS-formoterol for mild asthma.",
            "Step up to daily ICS-LABA if symptoms persist.",
        ],
        "references": ["GINA Global Strategy for Asthma Management and Prevention"],
    },
    "depression": {
        "recommendations": [
            "SSRI as first-line pharmacotherapy, combined with psychotherapy where available.",
            "Reassess response after 4 to 6 weeks at a therapeutic dose.",
        ],
        "references": ["APA Practice Guideline for the Treatment of Major Depressive Disorder"],
    },
}

GENERIC_GUIDANCE = {
    "recommendations": ["Refer to current specialty guidelines and review the full medication list."],
    "references": [],
}

_LIST_FIELDS = {
    "diagnosis": "diagnoses",
    "diagnoses": "diagnoses",
    "medication": "medications",
    "medications": "medications",
    "allergy": "allergies",
    "allergies": "allergies",
}
_LINE_RE = re.compile(r"^\s*([A-Za-z][A-Za-z _-]*?)\s*:\s*(.+?)\s*$")


def normalize_drug_name(name: str) -> str:
    """'Lisinopril 10mg QD' -> 'lisinopril'"""
    parts = name.strip().lower().split()
    return parts[0] if parts else ""


class MockAnalyzer(ClinicalTextAnalyzer):
    async def extract_structured_data(self, text: str) -> dict[str, Any]:
        """Collect `Key: value` lines. Returns {} when nothing is recognized."""
        data: dict[str, Any] = {}
        for line in text.splitlines():
            match = _LINE_RE.match(line)
            if not match:
                continue
            key, value = match.group(1).strip().lower(), match.group(2)
            if key in _LIST_FIELDS:
                items = [v.strip() for v in re.split(r"[,;]", value) if v.strip()]
                data.setdefault(_LIST_FIELDS[key], []).extend(items)
            else:
                data.setdefault("fields", {})[key.replace(" ", "_")] = value
        return data

    async def detect_interactions(self, medications: list[str]) -> list[InteractionFinding]:
        findings = []
        for drug1, drug2 in itertools.combinations(medications, 2):
            pair = frozenset({normalize_drug_name(drug1), normalize_drug_name(drug2)})
            if pair in KNOWN_INTERACTIONS:
                risk, description = KNOWN_INTERACTIONS[pair]
                findings.append(InteractionFinding(drug1=drug1, drug2=drug2, risk=risk, description=description))
        return findings

    async def recommend_treatment(self, condition: str, medications: list[str]) -> Recommendation:
        guidance = GENERIC_GUIDANCE
        lowered = condition.lower()
        for keyword, entry in CONDITION_GUIDANCE.items():
            if keyword in lowered:
                guidance = entry
                break
        warnings = [
            f"{f.drug1} + {f.drug2} ({f.risk}): {f.description}"
            for f in await self.detect_interactions(medications)
        ]
        return Recommendation(
            recommendations=list(guidance["recommendations"]),
            warnings=warnings,
            references=list(guidance["references"]),
        )


def build_analyzer(settings: Settings) -> ClinicalTextAnalyzer:
    if settings.clinical_analyzer == "bedrock":
        logger.info("Using Bedrock clinical analyzer (model %s)", settings.aws_bedrock_model_id)
        return BedrockAnalyzer(settings)
    logger.info("Using mock clinical analyzer")
    return MockAnalyzer()
