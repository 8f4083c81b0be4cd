# =============================================================================
# Unit Tests: Record Stores
# =============================================================================
#
# SqlAlchemyRecordStore runs against in-memory SQLite (aiosqlite).
# =============================================================================

from __future__ import annotations

import asyncio

from consensus_engine.agents.assembler import assemble
from consensus_engine.db.engine import create_engine_for_url, init_models, make_session_factory
from consensus_engine.models.records import ROLE_ORDER, RetrievalSummary, Role
from consensus_engine.models.requests import AnalysisRequest
from consensus_engine.services.llm import SamplingConfig
from consensus_engine.services.record_store import InMemoryRecordStore, SqlAlchemyRecordStore
from consensus_engine.services.remote_call import RemoteCallResult


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _record(validation_ok: bool = True):
    results = {
        role: RemoteCallResult(role=role, model="m", content=f"{role.value} out", attempts=1)
        for role in ROLE_ORDER
    }
    if not validation_ok:
        results[Role.VALIDATION] = RemoteCallResult(
            role=Role.VALIDATION, model="m", error="503", attempts=3,
        )
    return assemble(
        [],
        results,
        RetrievalSummary(enabled=True, chunk_count=2, document_names=("a", "b")),
        request=AnalysisRequest(context="data", category="Variance Analysis"),
        sampling=SamplingConfig(temperature=0.0, seed=42),
        validation_script="print('ok')",
    )


class TestSqlAlchemyRecordStore:
    def test_save_and_load(self):
        async def scenario():
            engine = create_engine_for_url("sqlite+aiosqlite:///:memory:")
            await init_models(engine)
            store = SqlAlchemyRecordStore(make_session_factory(engine))

            record = _record(validation_ok=False)
            record_id = await store.save(record)
            loaded = await store.load(record_id)
            missing = await store.load("does-not-exist")
            await engine.dispose()
            return record, loaded, missing

        record, loaded, missing = _run(scenario())

        assert loaded == record
        assert loaded.consensus_score == 0.75
        assert loaded.retrieval.document_names == ("a", "b")
        assert missing is None


class TestInMemoryRecordStore:
    def test_save_and_load(self):
        store = InMemoryRecordStore()
        record = _record()
        record_id = _run(store.save(record))
        assert _run(store.load(record_id)) is record
        assert _run(store.load("nope")) is None
