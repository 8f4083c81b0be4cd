# =============================================================================
# Record Store: Persistence for Orchestration Records
# =============================================================================
#
# The coordinator only hands a record to a store after the run completed
# (fully or with degraded validation). A fatal run never reaches `save()`.
#
# ARCHITECTURE:
#   PersistenceStore (Protocol)
#   ├── SqlAlchemyRecordStore  - orchestration_records table, JSON payload
#   └── InMemoryRecordStore    - dict-backed, for tests and local runs
# =============================================================================

from __future__ import annotations

import logging
import uuid
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consensus_engine.db.models import OrchestrationRecordRow
from consensus_engine.models.records import OrchestrationRecord

logger = logging.getLogger(__name__)


class PersistenceStore(Protocol):
    async def save(self, record: OrchestrationRecord) -> str:
        """Persist `record` and return its id."""
        ...

    async def load(self, record_id: str) -> OrchestrationRecord | None:
        """Return the record with `record_id`, or None."""
        ...


class SqlAlchemyRecordStore:
    """Stores each record as one row; the full record lives in `payload`."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, record: OrchestrationRecord) -> str:
        record_id = uuid.uuid4().hex
        row = OrchestrationRecordRow(
            id=record_id,
            category=record.category,
            complexity=record.complexity,
            consensus_score=record.consensus_score,
            validation_degraded=record.validation_degraded,
            total_duration_ms=record.total_duration_ms,
            payload=record.model_dump(mode="json"),
            created_at=record.created_at,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()

        logger.info(
            "Persisted orchestration record %s (consensus=%.2f)",
            record_id, record.consensus_score,
        )
        return record_id

    async def load(self, record_id: str) -> OrchestrationRecord | None:
        async with self._session_factory() as session:
            row = await session.get(OrchestrationRecordRow, record_id)
        if row is None:
            return None
        return OrchestrationRecord.model_validate(row.payload)


class InMemoryRecordStore:
    def __init__(self) -> None:
        self.records: dict[str, OrchestrationRecord] = {}

    async def save(self, record: OrchestrationRecord) -> str:
        record_id = uuid.uuid4().hex
        self.records[record_id] = record
        logger.info("Stored orchestration record %s in memory", record_id)
        return record_id

    async def load(self, record_id: str) -> OrchestrationRecord | None:
        return self.records.get(record_id)
