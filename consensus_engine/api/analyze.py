# =============================================================================
# Analyze API: Run the Four-Role Orchestration
# =============================================================================
#
# ENDPOINTS:
#   POST /analyze               - run all phases, persist, return the record
#   GET  /analyses/{record_id}  - fetch a persisted record
#
# ERROR MAPPING:
#   Phase1Incomplete / Phase2Incomplete → 502 (an upstream model failed);
#     nothing was persisted
#   ValueError (missing API key, bad provider id) → 503, raised by the
#     get_coordinator dependency
#   A degraded run (validation unavailable) is a 200 with consensus 0.75
#
# The endpoint only validates the request, maps errors and shapes the
# response; the coordinator does the work.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from consensus_engine.agents.coordinator import PhaseCoordinator
from consensus_engine.api.deps import get_coordinator, get_record_store
from consensus_engine.errors import OrchestrationFailed
from consensus_engine.models.requests import AnalysisRequest
from consensus_engine.models.responses import AnalyzeResponse
from consensus_engine.services.record_store import PersistenceStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Analysis"])


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    summary="Run a four-role analysis",
    description=(
        "Runs quantitative and operational analysis in parallel, then "
        "strategic synthesis, then independent validation. Returns the "
        "persisted record with all four outputs in fixed order."
    ),
)
async def analyze_endpoint(
    request: AnalysisRequest,
    coordinator: PhaseCoordinator = Depends(get_coordinator),
    store: PersistenceStore = Depends(get_record_store),
) -> AnalyzeResponse:
    logger.info(
        "Analyze request: category=%s, complexity=%s, context=%d chars",
        request.category, request.complexity, len(request.context),
    )

    try:
        record_id, record = await coordinator.run_and_save(request, store)
    except OrchestrationFailed as e:
        raise HTTPException(
            status_code=502,
            detail={
                "message": str(e),
                "phase": e.phase,
                "failed_roles": [role.value for role in e.failed_roles],
                "errors": e.errors,
            },
        ) from e

    return AnalyzeResponse(record_id=record_id, record=record)


@router.get(
    "/analyses/{record_id}",
    response_model=AnalyzeResponse,
    summary="Fetch a persisted analysis",
)
async def get_analysis(
    record_id: str,
    store: PersistenceStore = Depends(get_record_store),
) -> AnalyzeResponse:
    record = await store.load(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Analysis {record_id} not found")
    return AnalyzeResponse(record_id=record_id, record=record)
