# =============================================================================
# API Response Models: Pydantic V2 Schemas
# =============================================================================
#
# Shapes returned by the HTTP layer. Embedding vectors are never exposed.
# =============================================================================

from pydantic import BaseModel, Field

from consensus_engine.models.records import OrchestrationRecord


class HealthResponse(BaseModel):
    """Response for GET /health."""

    status: str = "ok"
    version: str
    service: str
    indexed_chunks: int = 0


class AnalyzeResponse(BaseModel):
    """Response for POST /analyze and GET /analyses/{record_id}."""

    record_id: str = Field(description="Id assigned by the record store")
    record: OrchestrationRecord


class IngestResponse(BaseModel):
    """Response for POST /ingest."""

    document_id: str
    document_name: str
    chunk_count: int


class SearchHit(BaseModel):
    """One ranked chunk returned by POST /search."""

    chunk_id: str
    document_id: str
    document_name: str
    ordinal: int
    content: str
    similarity_score: float = Field(
        description="Cosine similarity (-1..1, higher = more relevant)"
    )


class SearchResponse(BaseModel):
    """Response for POST /search."""

    query: str
    results: list[SearchHit]
