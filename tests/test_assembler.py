# =============================================================================
# Unit Tests: Result Assembler
# =============================================================================

from __future__ import annotations

import pytest

from consensus_engine.agents.assembler import assemble, consensus_score
from consensus_engine.errors import ConsensusInvariantError
from consensus_engine.models.records import (
    ROLE_ORDER,
    VALIDATION_UNAVAILABLE,
    OrchestrationRecord,
    PhaseRecord,
    PhaseStatus,
    RetrievalSummary,
    Role,
)
from consensus_engine.models.requests import AnalysisRequest
from consensus_engine.services.llm import SamplingConfig
from consensus_engine.services.remote_call import RemoteCallResult

REQUEST = AnalysisRequest(context="data", category="Variance Analysis", complexity="standard")


def _ok(role: Role) -> RemoteCallResult:
    return RemoteCallResult(role=role, model="m", content=f"{role.value} out", attempts=1)


def _failed(role: Role) -> RemoteCallResult:
    return RemoteCallResult(role=role, model="m", error="boom", attempts=3)


def _phases(*durations: int) -> list[PhaseRecord]:
    names = {1: "foundation", 2: "synthesis", 3: "verification"}
    roles = {1: ROLE_ORDER[:2], 2: ROLE_ORDER[2:3], 3: ROLE_ORDER[3:]}
    return [
        PhaseRecord(phase=i, name=names[i], roles=roles[i],
                    status=PhaseStatus.ALL_SUCCEEDED, duration_ms=d)
        for i, d in enumerate(durations, 1)
    ]


def _assemble(results, **kwargs) -> OrchestrationRecord:
    return assemble(
        _phases(100, 50, 25),
        results,
        RetrievalSummary(),
        request=REQUEST,
        sampling=kwargs.pop("sampling", SamplingConfig(temperature=0.0, seed=42)),
        **kwargs,
    )


class TestAssemble:
    def test_outputs_follow_role_order_regardless_of_mapping_order(self):
        results = {role: _ok(role) for role in reversed(ROLE_ORDER)}
        record = _assemble(results)
        assert [o.role for o in record.role_outputs] == list(ROLE_ORDER)

    def test_durations(self):
        record = _assemble({role: _ok(role) for role in ROLE_ORDER})
        assert (record.phase1_duration_ms, record.phase2_duration_ms,
                record.phase3_duration_ms) == (100, 50, 25)
        assert record.total_duration_ms == 175

    def test_degraded_validation(self):
        results = {role: _ok(role) for role in ROLE_ORDER}
        results[Role.VALIDATION] = _failed(Role.VALIDATION)

        record = _assemble(results, warnings=["validation unavailable: boom"])

        assert record.consensus_score == 0.75
        assert record.validation_degraded
        assert record.output_for(Role.VALIDATION).content == VALIDATION_UNAVAILABLE
        assert record.warnings == ("validation unavailable: boom",)

    def test_missing_role_rejected(self):
        results = {role: _ok(role) for role in ROLE_ORDER[:3]}
        with pytest.raises(ValueError):
            _assemble(results)

    def test_misfiled_result_rejected(self):
        results = {role: _ok(role) for role in ROLE_ORDER}
        results[Role.STRATEGIC] = _ok(Role.OPERATIONAL)
        with pytest.raises(ValueError):
            _assemble(results)

    def test_unreachable_consensus_raises(self):
        results = {role: _ok(role) for role in ROLE_ORDER}
        results[Role.STRATEGIC] = _failed(Role.STRATEGIC)
        results[Role.VALIDATION] = _failed(Role.VALIDATION)
        with pytest.raises(ConsensusInvariantError):
            _assemble(results)

    def test_reproducibility_flag_follows_sampling(self):
        results = {role: _ok(role) for role in ROLE_ORDER}
        record = _assemble(results, sampling=SamplingConfig(temperature=0.3, seed=42))
        assert record.deterministic
        assert record.structurally_deterministic
        assert not record.content_reproducible

    def test_record_round_trips_through_json(self):
        record = _assemble({role: _ok(role) for role in ROLE_ORDER}, validation_script="print(1)")
        restored = OrchestrationRecord.model_validate(record.model_dump(mode="json"))
        assert restored == record


class TestConsensusScore:
    def test_counts_successes(self):
        results = {role: _ok(role) for role in ROLE_ORDER}
        assert consensus_score(results) == 1.0
        results[Role.VALIDATION] = _failed(Role.VALIDATION)
        assert consensus_score(results) == 0.75


class TestOrchestrationRecord:
    def test_wrong_role_order_rejected(self):
        record = _assemble({role: _ok(role) for role in ROLE_ORDER})
        swapped = (record.role_outputs[1], record.role_outputs[0], *record.role_outputs[2:])
        with pytest.raises(ValueError):
            OrchestrationRecord.model_validate(
                {**record.model_dump(), "role_outputs": swapped}
            )
