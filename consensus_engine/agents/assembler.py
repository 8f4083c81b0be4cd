# =============================================================================
# Result Assembler: Phase Outcomes → OrchestrationRecord
# =============================================================================
#
# Pure function of its inputs: no I/O, no clock reads except the record's
# default `created_at`. Role outputs are placed by ROLE_ORDER, never by the
# order in which calls finished.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from consensus_engine.errors import ConsensusInvariantError
from consensus_engine.models.records import (
    PROCESSING_ORDER,
    ROLE_ORDER,
    VALIDATION_UNAVAILABLE,
    OrchestrationRecord,
    PhaseRecord,
    RetrievalSummary,
    Role,
    RoleOutput,
)
from consensus_engine.models.requests import AnalysisRequest
from consensus_engine.services.llm import SamplingConfig
from consensus_engine.services.remote_call import RemoteCallResult

logger = logging.getLogger(__name__)

# A completed run has both foundation roles and the strategic role; only
# validation may be missing.
ALLOWED_CONSENSUS = (0.75, 1.0)


def consensus_score(results: Mapping[Role, RemoteCallResult]) -> float:
    """Fraction of the four roles that succeeded."""
    succeeded = sum(1 for role in ROLE_ORDER if results[role].succeeded)
    return succeeded / len(ROLE_ORDER)


def _to_output(result: RemoteCallResult) -> RoleOutput:
    if result.succeeded:
        content = result.content or ""
    elif result.role is Role.VALIDATION:
        content = VALIDATION_UNAVAILABLE
    else:
        content = f"[{result.role.value} unavailable]"
    return RoleOutput(
        role=result.role,
        model=result.model,
        content=content,
        succeeded=result.succeeded,
        error=result.error,
        attempts=result.attempts,
        elapsed_ms=result.elapsed_ms,
    )


def assemble(
    phase_records: Iterable[PhaseRecord],
    role_results: Mapping[Role, RemoteCallResult],
    retrieval_summary: RetrievalSummary,
    *,
    request: AnalysisRequest,
    sampling: SamplingConfig,
    validation_script: str | None = None,
    warnings: Iterable[str] = (),
    state_trace: Iterable[str] = (),
) -> OrchestrationRecord:
    """
    Build the immutable record of a completed run.

    Raises:
        ValueError: `role_results` does not cover exactly the four roles, or
            a result is filed under the wrong role.
        ConsensusInvariantError: The consensus score is not 0.75 or 1.0.
    """
    if set(role_results) != set(ROLE_ORDER):
        missing = [r.value for r in ROLE_ORDER if r not in role_results]
        raise ValueError(f"role results must cover all four roles; missing {missing}")
    for role, result in role_results.items():
        if result.role is not role:
            raise ValueError(f"result for {result.role.value} filed under {role.value}")

    score = consensus_score(role_results)
    if score not in ALLOWED_CONSENSUS:
        raise ConsensusInvariantError(
            f"completed run has consensus {score:.2f}; succeeded roles: "
            f"{[r.value for r in ROLE_ORDER if role_results[r].succeeded]}"
        )

    records = tuple(sorted(phase_records, key=lambda p: p.phase))
    durations = {p.phase: p.duration_ms for p in records}

    outputs = tuple(_to_output(role_results[role]) for role in ROLE_ORDER)
    validation_degraded = not role_results[Role.VALIDATION].succeeded

    record = OrchestrationRecord(
        role_outputs=outputs,
        phase_records=records,
        phase1_duration_ms=durations.get(1, 0),
        phase2_duration_ms=durations.get(2, 0),
        phase3_duration_ms=durations.get(3, 0),
        total_duration_ms=sum(durations.values()),
        consensus_score=score,
        deterministic=True,
        structurally_deterministic=True,
        content_reproducible=sampling.reproducible,
        processing_order=PROCESSING_ORDER,
        retrieval=retrieval_summary,
        validation_script=validation_script,
        validation_degraded=validation_degraded,
        warnings=tuple(warnings),
        state_trace=tuple(state_trace),
        category=request.category,
        complexity=request.complexity,
    )

    logger.info(
        "Assembled record: consensus=%.2f, degraded=%s, total=%dms",
        score, validation_degraded, record.total_duration_ms,
    )
    return record
