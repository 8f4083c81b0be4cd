# =============================================================================
# Request Models: Pydantic V2 Schemas
# =============================================================================
#
# `AnalysisRequest` is both the engine's immutable input and the body of
# POST /analyze. It is frozen: the coordinator reads it but never mutates it.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class AnalysisRequest(BaseModel):
    """
    Input for one orchestration run.

    Example:
        {
            "context": "ACTUAL VS BUDGET - October 2025 ...",
            "category": "Variance Analysis",
            "complexity": "higher-order",
            "facility_context": "120-bed skilled nursing facility ...",
            "use_retrieval": false
        }
    """

    context: str = Field(
        ...,
        min_length=1,
        max_length=200_000,
        description="Document-derived text the four roles analyse",
    )
    category: str = Field(
        default="General Analysis",
        max_length=200,
        description="Analysis category (e.g. 'Variance Analysis')",
    )
    complexity: str = Field(
        default="standard",
        max_length=100,
        description="Requested depth (e.g. 'standard', 'higher-order')",
    )
    facility_context: str | None = Field(
        default=None,
        max_length=20_000,
        description="Optional description of the facility the data belongs to",
    )
    use_retrieval: bool = Field(
        default=True,
        description="Prepend similar chunks from ingested documents to role payloads",
    )

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "examples": [
                {
                    "context": (
                        "Budgeted Census: 113 residents. Actual Census: 108 "
                        "residents. Total Revenue Budget: $2,800,000. Total "
                        "Revenue Actual: $2,570,000."
                    ),
                    "category": "Variance Analysis",
                    "complexity": "higher-order",
                    "facility_context": "120-bed skilled nursing facility.",
                    "use_retrieval": False,
                }
            ]
        },
    )


class IngestRequest(BaseModel):
    """Request body for POST /ingest: one plain-text document."""

    document_name: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Display name, reported in retrieval summaries",
    )
    text: str = Field(..., min_length=1, description="Full document text")


class SearchRequest(BaseModel):
    """Request body for POST /search."""

    query: str = Field(..., min_length=1, max_length=2000)
    k: int = Field(default=5, ge=1, le=100, description="Maximum results")
