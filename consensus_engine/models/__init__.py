# =============================================================================
# Models Package: Pydantic V2 Schemas
# =============================================================================
# Defines the request/response schemas for the API and the frozen record
# models produced by an orchestration run.
#   - requests.py: AnalysisRequest (engine input), ingest/search bodies
#   - responses.py: API response shapes
#   - records.py: Role, PhaseRecord, RoleOutput, OrchestrationRecord
#
# These are SEPARATE from the database models (consensus_engine/db/models.py).
# =============================================================================
