# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
# Run with:
#   uvicorn consensus_engine.main:app --reload
#
# STARTUP:
#   1. Create missing tables (documents, chunks, orchestration_records)
#   2. Rebuild the in-memory similarity index from the chunks table
# SHUTDOWN:
#   Dispose of the database connection pool
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from consensus_engine.api import analyze, ingest
from consensus_engine.api.deps import get_retriever, get_similarity_index
from consensus_engine.config import settings
from consensus_engine.db.engine import dispose_engine, get_session_factory, init_models
from consensus_engine.models.responses import HealthResponse
from consensus_engine.services.vectorstore import SimilarityIndex

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Initialising database schema...")
    await init_models()

    logger.info("Loading indexed chunks...")
    async with get_session_factory()() as session:
        loaded = await get_retriever().load_from_db(session)
    logger.info("Similarity index ready with %d chunks", loaded)

    logger.info("%s %s ready", settings.app_name, settings.app_version)
    yield
    logger.info("Shutting down %s", settings.app_name)
    await dispose_engine()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Coordinates four independent models (quantitative, operational, "
        "strategic, validation) in fixed phases to produce one validated "
        "analysis, with similarity search over ingested documents."
    ),
    lifespan=lifespan,
)

app.include_router(analyze.router)
app.include_router(ingest.router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health(index: SimilarityIndex = Depends(get_similarity_index)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=settings.app_version,
        service=settings.app_name,
        indexed_chunks=len(index),
    )
