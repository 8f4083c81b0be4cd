# =============================================================================
# Dependencies: Lazily Built Engine Components for FastAPI
# =============================================================================
#
# Every component the routers need is built once, on first use, from
# Settings. Routers receive them through Depends(), so tests replace any of
# them with `app.dependency_overrides[get_coordinator] = lambda: fake`.
#
# DESIGN DECISION: Lazy singletons (not module-level instances).
# Building the role endpoints requires API keys; importing the app must not
# fail when they are missing. A missing key surfaces as a ValueError on the
# first request that needs it (mapped to 503 by the routers).
#
# BUILD ORDER:
#   get_similarity_index ─┐
#   get_embedder ─────────┴─▶ get_retriever ─┐
#   get_call_wrapper ────────────────────────┴─▶ get_coordinator
#   get_record_store
# =============================================================================

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import HTTPException

from consensus_engine.agents.coordinator import PhaseCoordinator, PhaseTimeouts
from consensus_engine.agents.validation_script import ValidationScriptGenerator
from consensus_engine.config import settings
from consensus_engine.db.engine import get_session_factory
from consensus_engine.services.embedder import OpenAIEmbedder
from consensus_engine.services.llm import SamplingConfig, build_role_endpoints
from consensus_engine.services.record_store import SqlAlchemyRecordStore
from consensus_engine.services.remote_call import RemoteCallWrapper, RetryPolicy
from consensus_engine.services.retrieval import ChunkingConfig, Retriever
from consensus_engine.services.vectorstore import SimilarityIndex

logger = logging.getLogger(__name__)


@lru_cache
def get_similarity_index() -> SimilarityIndex:
    return SimilarityIndex(dimensions=settings.embedding_dimensions)


@lru_cache
def get_embedder() -> OpenAIEmbedder:
    return OpenAIEmbedder.from_settings(settings)


@lru_cache
def get_retriever() -> Retriever:
    return Retriever(
        index=get_similarity_index(),
        embedder=get_embedder(),
        chunking=ChunkingConfig(
            max_len=settings.chunk_max_chars,
            overlap=settings.chunk_overlap_chars,
            boundary_window=settings.chunk_boundary_window,
        ),
    )


@lru_cache
def get_call_wrapper() -> RemoteCallWrapper:
    """Raises ValueError when a role has no usable API key."""
    return RemoteCallWrapper(
        endpoints=build_role_endpoints(settings),
        policy=RetryPolicy.from_settings(settings),
        sampling=SamplingConfig.from_settings(settings),
    )


@lru_cache
def _build_coordinator() -> PhaseCoordinator:
    wrapper = get_call_wrapper()
    script_generator = (
        ValidationScriptGenerator(wrapper) if settings.validation_script_enabled else None
    )
    logger.info("Building phase coordinator")
    return PhaseCoordinator(
        wrapper,
        retriever=get_retriever(),
        timeouts=PhaseTimeouts.from_settings(settings),
        script_generator=script_generator,
        retrieval_top_k=settings.retrieval_top_k,
        retrieval_min_score=settings.retrieval_min_score,
    )


def get_coordinator() -> PhaseCoordinator:
    """Coordinator dependency; configuration errors become HTTP 503."""
    try:
        return _build_coordinator()
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e


@lru_cache
def get_record_store() -> SqlAlchemyRecordStore:
    return SqlAlchemyRecordStore(get_session_factory())
