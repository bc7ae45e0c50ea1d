import json

import pytest

from medcheck.config import Settings
from medcheck.exceptions import AnalyzerError
from medcheck.services.analyzer import BedrockAnalyzer, MockAnalyzer, build_analyzer, normalize_drug_name


class FakeBedrockClient:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.requests = []

    def converse(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return {"output": {"message": {"content": [{"text": self.reply}]}}}


def bedrock(settings, **client_kwargs):
    client = FakeBedrockClient(**client_kwargs)
    return BedrockAnalyzer(settings, client=client), client


async def test_bedrock_detect_interactions(settings):
    payload = {"interactions": [{"drug1": "Warfarin", "drug2": "Aspirin", "risk": "high", "description": "bleeding"}]}
    analyzer, client = bedrock(settings, reply=f"Here is the analysis:\n{json.dumps(payload)}\nDone.")

    findings = await analyzer.detect_interactions(["Warfarin", "Aspirin"])

    assert findings[0].drug1 == "Warfarin"
    assert findings[0].risk == "high"
    request = client.requests[0]
    assert request["messages"][0]["content"][0]["text"] == "Medications: Warfarin, Aspirin"
    assert "drug interactions" in request["system"][0]["text"]


async def test_bedrock_extract(settings):
    analyzer, _ = bedrock(settings, reply='{"diagnoses": ["Asthma"], "medications": []}')
    assert await analyzer.extract_structured_data("EHR text") == {"diagnoses": ["Asthma"], "medications": []}


async def test_bedrock_recommendations(settings):
    reply = json.dumps({"recommendations": ["ICS"], "warnings": [], "references": ["GINA"]})
    analyzer, _ = bedrock(settings, reply=reply)
    result = await analyzer.recommend_treatment("asthma", [])
    assert result.recommendations == ["ICS"]
    assert result.references == ["GINA"]


async def test_bedrock_non_json_reply(settings):
    analyzer, _ = bedrock(settings, reply="I cannot help with that.")
    with pytest.raises(AnalyzerError, match="Failed to parse EHR data"):
        await analyzer.extract_structured_data("EHR text")


async def test_bedrock_malformed_findings(settings):
    analyzer, _ = bedrock(settings, reply='{"interactions": [{"drug1": "A"}]}')
    with pytest.raises(AnalyzerError):
        await analyzer.detect_interactions(["A", "B"])


async def test_bedrock_transport_error(settings):
    analyzer, _ = bedrock(settings, error=ConnectionError("read timeout"))
    with pytest.raises(AnalyzerError, match="read timeout"):
        await analyzer.recommend_treatment("asthma", ["Albuterol"])


def test_bedrock_client_uses_configured_timeout(settings):
    settings.llm_timeout_seconds = 12.5
    client = BedrockAnalyzer(settings).client
    assert client.meta.config.read_timeout == 12.5
    assert client.meta.config.connect_timeout == 12.5


def test_build_analyzer_selects_by_setting(settings):
    assert isinstance(build_analyzer(settings), MockAnalyzer)
    settings.clinical_analyzer = "bedrock"
    assert isinstance(build_analyzer(settings), BedrockAnalyzer)


def test_normalize_drug_name():
    assert normalize_drug_name("  Lisinopril 10mg QD") == "lisinopril"
    assert normalize_drug_name("") == ""


async def test_mock_extract_ignores_free_text():
    assert await MockAnalyzer().extract_structured_data("Seen today. Doing well.") == {}


async def test_mock_interactions_are_order_independent():
    mock = MockAnalyzer()
    forward = await mock.detect_interactions(["Sertraline", "Tramadol"])
    backward = await mock.detect_interactions(["Tramadol", "Sertraline"])
    assert forward[0].risk == backward[0].risk == "high"
    assert await mock.detect_interactions(["Metformin", "Atorvastatin"]) == []


async def test_mock_recommendations_fallback_guidance():
    result = await MockAnalyzer().recommend_treatment("Rare condition", [])
    assert result.recommendations
    assert result.warnings == []
