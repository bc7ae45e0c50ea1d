import inspect

import pytest
from fastapi.testclient import TestClient

from medcheck.config import Settings
from medcheck.main import create_app
from medcheck.services.analyzer import ClinicalTextAnalyzer, MockAnalyzer
from medcheck.services.storage import Storage


class RecordingAnalyzer(ClinicalTextAnalyzer):
    """MockAnalyzer that remembers every call."""

    def __init__(self):
        self.inner = MockAnalyzer()
        self.calls = []

    async def extract_structured_data(self, text):
        self.calls.append(("extract_structured_data", text))
        return await self.inner.extract_structured_data(text)

    async def detect_interactions(self, medications):
        self.calls.append(("detect_interactions", list(medications)))
        return await self.inner.detect_interactions(medications)

    async def recommend_treatment(self, condition, medications):
        self.calls.append(("recommend_treatment", condition, list(medications)))
        return await self.inner.recommend_treatment(condition, medications)


class FlakyBackend:
    """Wraps a durable backend; while `down` is set every call fails like a dropped connection."""

    def __init__(self, inner):
        self.inner = inner
        self.down = False

    def __getattr__(self, name):
        attr = getattr(self.inner, name)
        if not inspect.iscoroutinefunction(attr):
            return attr

        async def call(*args, **kwargs):
            if self.down:
                raise ConnectionError(f"{name}: connection refused")
            return await attr(*args, **kwargs)
        return call

    async def dispose(self):
        await self.inner.dispose()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url=None,
        bcrypt_rounds=4,
        seed_demo_data=False,
        session_secret="test-secret",
        clinical_analyzer="mock",
        log_level="WARNING",
    )


@pytest.fixture
def storage():
    return Storage()


@pytest.fixture
def analyzer():
    return RecordingAnalyzer()


@pytest.fixture
def client(settings, storage, analyzer):
    app = create_app(settings, storage=storage, analyzer=analyzer)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_client(client):
    resp = client.post("/api/register", json={"username": "dr.smith", "password": "s3cret-pass"})
    assert resp.status_code == 201
    return client
