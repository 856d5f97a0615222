import copy
import os
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# In-memory DB and no external API keys for tests
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["DEEPGRAM_API_KEY"] = ""
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["AUTO_ANALYZE"] = "true"

from consultia.database import close_db, init_db
from consultia.main import app
from consultia.models.analysis import MedicalAnalysis
from consultia.services.llm import LLMClient
from consultia.services.registry import SessionRegistry

ANALYSIS_PAYLOAD = {
    "symptoms": [{"name": "cefalea", "severity": "moderado", "confidence": 0.9, "mentioned_by": "paciente"}],
    "diagnoses": [{"name": "Cefalea tensional", "probability": 0.6, "confidence": 0.7,
                   "supporting_symptoms": ["cefalea"], "risk_level": "bajo"}],
    "recommendations": [{"type": "seguimiento", "description": "Control en 1 semana",
                         "priority": "media", "reasoning": "Evolución"}],
    "red_flags": [],
    "follow_up": [],
    "alternative_treatments": [],
    "emergency_criteria": [],
    "suggested_questions": [{"id": "q1", "question": "¿Ha tenido fiebre?", "category": "descarte",
                             "priority": "alta", "reasoning": "Descartar infección"}],
    "summary": "Paciente con cefalea de tres días.",
    "confidence_level": 0.7,
    "requires_immediate_attention": False,
}


@pytest.fixture
def analysis_payload():
    return copy.deepcopy(ANALYSIS_PAYLOAD)


@pytest.fixture
def analysis(analysis_payload):
    return MedicalAnalysis.model_validate(analysis_payload)


@pytest.fixture
def fake_llm(analysis):
    """Engine double: ``generate_json`` returns the sample analysis."""
    llm = MagicMock(spec=LLMClient)
    llm.generate_json = AsyncMock(return_value=analysis)
    return llm


@pytest_asyncio.fixture
async def db():
    """Provide a fresh in-memory database for each test."""
    import consultia.database as db_mod

    await close_db()
    db_mod.DATABASE_PATH = ":memory:"

    await init_db()
    database = await db_mod.get_db()
    yield database
    await close_db()


@pytest.fixture
def registry():
    """Registry with no engine and no transcription credentials."""
    reg = SessionRegistry(llm=None, transcription_api_key="")
    app.state.registry = reg
    return reg


@pytest.fixture
def engine_registry(fake_llm):
    """Registry backed by the engine double."""
    reg = SessionRegistry(llm=fake_llm, transcription_api_key="")
    app.state.registry = reg
    return reg


@pytest.fixture
def client(db, registry):
    """Provide a synchronous TestClient for HTTP endpoint tests."""
    return TestClient(app)


@pytest.fixture
def engine_client(db, engine_registry):
    return TestClient(app)


@pytest_asyncio.fixture
async def async_client(db, registry):
    """Provide an async httpx client for async HTTP tests."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
