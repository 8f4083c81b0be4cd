# =============================================================================
# Integration Tests: HTTP API
# =============================================================================
#
# Exercises the FastAPI routers with TestClient. Every engine component is
# replaced through app.dependency_overrides; the lifespan (database start-up)
# is not entered, so no database or API keys are needed.
# =============================================================================

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from consensus_engine.agents.coordinator import PhaseCoordinator
from consensus_engine.api import deps
from consensus_engine.db.engine import get_async_session
from consensus_engine.errors import PermanentCallFailure
from consensus_engine.main import app
from consensus_engine.models.records import ROLE_ORDER, VALIDATION_UNAVAILABLE, Role
from consensus_engine.services.llm import LLMResponse, SamplingConfig
from consensus_engine.services.record_store import InMemoryRecordStore
from consensus_engine.services.remote_call import RemoteCallWrapper, RetryPolicy
from consensus_engine.services.retrieval import Retriever
from consensus_engine.services.vectorstore import SimilarityIndex

ANALYZE_BODY = {
    "context": "Budgeted Census: 113. Actual Census: 108. Agency Labor: $125,000.",
    "category": "Variance Analysis",
    "complexity": "higher-order",
    "use_retrieval": False,
}


class FakeEndpoint:
    def __init__(self, role: Role, fail: Exception | None = None) -> None:
        self.model = f"{role.value}-model"
        self.fail = fail

    async def generate(self, role, prompt, sampling):
        if self.fail is not None:
            raise self.fail
        return LLMResponse(f"{role.value} analysis", self.model, 1, 1)


class KeywordEmbedder:
    async def embed(self, texts):
        return [self._vector(t) for t in texts]

    async def embed_query(self, text):
        return self._vector(text)

    def _vector(self, text):
        lowered = text.lower()
        return [0.1, float(lowered.count("labor")), float(lowered.count("census"))]


async def _no_sleep(_delay):
    return None


def _coordinator(failing: dict[Role, Exception] | None = None) -> PhaseCoordinator:
    failing = failing or {}
    wrapper = RemoteCallWrapper(
        {role: FakeEndpoint(role, failing.get(role)) for role in Role},
        policy=RetryPolicy(max_attempts=1, attempt_timeout_s=None),
        sampling=SamplingConfig(temperature=0.0, seed=42),
        sleep=_no_sleep,
    )
    return PhaseCoordinator(wrapper)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def index():
    return SimilarityIndex()


@pytest.fixture
def client(store, index):
    retriever = Retriever(index, KeywordEmbedder())

    async def fake_session():
        session = MagicMock()
        session.flush = AsyncMock()
        session.commit = AsyncMock()
        yield session

    app.dependency_overrides[deps.get_coordinator] = lambda: _coordinator()
    app.dependency_overrides[deps.get_record_store] = lambda: store
    app.dependency_overrides[deps.get_retriever] = lambda: retriever
    app.dependency_overrides[deps.get_similarity_index] = lambda: index
    app.dependency_overrides[get_async_session] = fake_session
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAnalyze:
    def test_success_returns_and_persists_record(self, client, store):
        response = client.post("/analyze", json=ANALYZE_BODY)

        assert response.status_code == 200
        data = response.json()
        record = data["record"]
        assert [o["role"] for o in record["role_outputs"]] == [r.value for r in ROLE_ORDER]
        assert record["consensus_score"] == 1.0
        assert record["deterministic"] is True
        assert record["processing_order"] == [
            ["quantitative", "operational"], ["strategic"], ["validation"],
        ]
        assert data["record_id"] in store.records

    def test_phase1_failure_is_502_and_not_persisted(self, client, store):
        app.dependency_overrides[deps.get_coordinator] = lambda: _coordinator(
            {Role.OPERATIONAL: PermanentCallFailure("401 invalid key")}
        )

        response = client.post("/analyze", json=ANALYZE_BODY)

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["phase"] == 1
        assert detail["failed_roles"] == ["operational"]
        assert store.records == {}

    def test_phase2_failure_is_502(self, client, store):
        app.dependency_overrides[deps.get_coordinator] = lambda: _coordinator(
            {Role.STRATEGIC: PermanentCallFailure("400")}
        )
        response = client.post("/analyze", json=ANALYZE_BODY)
        assert response.status_code == 502
        assert response.json()["detail"]["phase"] == 2
        assert store.records == {}

    def test_degraded_validation_is_200(self, client):
        app.dependency_overrides[deps.get_coordinator] = lambda: _coordinator(
            {Role.VALIDATION: PermanentCallFailure("403")}
        )
        response = client.post("/analyze", json=ANALYZE_BODY)

        assert response.status_code == 200
        record = response.json()["record"]
        assert record["consensus_score"] == 0.75
        assert record["role_outputs"][3]["content"] == VALIDATION_UNAVAILABLE

    def test_configuration_error_is_503(self, client, monkeypatch):
        app.dependency_overrides.pop(deps.get_coordinator)

        def broken():
            raise ValueError("No API key configured")

        monkeypatch.setattr(deps, "_build_coordinator", broken)
        response = client.post("/analyze", json=ANALYZE_BODY)
        assert response.status_code == 503

    def test_empty_context_is_422(self, client):
        response = client.post("/analyze", json={**ANALYZE_BODY, "context": ""})
        assert response.status_code == 422

    def test_fetch_saved_analysis(self, client):
        record_id = client.post("/analyze", json=ANALYZE_BODY).json()["record_id"]

        response = client.get(f"/analyses/{record_id}")

        assert response.status_code == 200
        assert response.json()["record_id"] == record_id

    def test_fetch_unknown_analysis_is_404(self, client):
        assert client.get("/analyses/missing").status_code == 404


class TestIngestAndSearch:
    def test_ingest_then_search(self, client, index):
        response = client.post(
            "/ingest",
            json={"document_name": "labor-notes", "text": "Agency labor rose in October."},
        )
        assert response.status_code == 201
        assert response.json()["chunk_count"] == 1
        assert len(index) == 1

        response = client.post("/search", json={"query": "labor", "k": 5})
        assert response.status_code == 200
        results = response.json()["results"]
        assert len(results) == 1
        assert results[0]["document_name"] == "labor-notes"

    def test_search_empty_corpus_returns_empty_list(self, client):
        response = client.post("/search", json={"query": "labor"})
        assert response.status_code == 200
        assert response.json()["results"] == []

    def test_search_invalid_k_is_422(self, client):
        response = client.post("/search", json={"query": "labor", "k": 0})
        assert response.status_code == 422

    def test_ingest_blank_text_is_400(self, client):
        response = client.post("/ingest", json={"document_name": "blank", "text": "   "})
        assert response.status_code == 400


class TestHealth:
    def test_health_reports_index_size(self, client, index):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["indexed_chunks"] == len(index)
