# =============================================================================
# Consensus Engine
# =============================================================================
# Coordinates four remote model endpoints (quantitative, operational,
# strategic, validation) through a fixed three-phase pipeline and assembles
# one auditable analysis record per run. A retrieval subsystem (chunking +
# cosine similarity search) supplies document context to the pipeline.
#
# Package structure:
#   consensus_engine/
#   ├── agents/     → phase coordinator (LangGraph), role prompts, result
#   │                  assembler, validation-script generator
#   ├── api/        → FastAPI route handlers (analyze, ingest, search)
#   ├── db/         → async SQLAlchemy engine, session and ORM models
#   ├── models/     → Pydantic V2 request/response/record schemas
#   ├── services/   → model endpoints, remote call wrapper, chunker,
#   │                  embedder, similarity index, retrieval, record store
#   ├── config.py   → pydantic-settings configuration
#   └── errors.py   → error taxonomy
# =============================================================================

__version__ = "0.1.0"
