# =============================================================================
# Orchestration Records: Roles, Phases and the Persisted Artifact
# =============================================================================
#
# These models are the auditable output of one orchestration run. They are
# frozen: a PhaseRecord or RoleOutput is written once when its phase resolves
# and never mutated afterwards.
#
# ROLE ORDER (fixed, positional):
#   0 quantitative  ┐ Phase 1 (foundation, parallel)
#   1 operational   ┘
#   2 strategic       Phase 2 (synthesis)
#   3 validation      Phase 3 (verification, best-effort)
#
# `OrchestrationRecord.role_outputs` is typed as an exact 4-tuple and
# validated against ROLE_ORDER, so a missing slot cannot be constructed.
# =============================================================================

from __future__ import annotations

import enum
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Role(str, enum.Enum):
    """The four fixed analytical roles, one external model call each."""

    QUANTITATIVE = "quantitative"
    OPERATIONAL = "operational"
    STRATEGIC = "strategic"
    VALIDATION = "validation"


ROLE_ORDER: tuple[Role, Role, Role, Role] = (
    Role.QUANTITATIVE,
    Role.OPERATIONAL,
    Role.STRATEGIC,
    Role.VALIDATION,
)

# Phase number → roles dispatched in that phase (declaration order).
PHASE_ROLES: dict[int, tuple[Role, ...]] = {
    1: (Role.QUANTITATIVE, Role.OPERATIONAL),
    2: (Role.STRATEGIC,),
    3: (Role.VALIDATION,),
}

PHASE_NAMES: dict[int, str] = {
    1: "foundation",
    2: "synthesis",
    3: "verification",
}

PROCESSING_ORDER: tuple[tuple[Role, ...], ...] = tuple(
    PHASE_ROLES[phase] for phase in sorted(PHASE_ROLES)
)

# Content placed in the validation slot when Phase 3 degrades.
VALIDATION_UNAVAILABLE = "[validation unavailable]"


class PhaseStatus(str, enum.Enum):
    """Outcome of one phase once all of its calls have settled."""

    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


class PhaseRecord(BaseModel):
    """Timing and outcome of one phase."""

    model_config = ConfigDict(frozen=True)

    phase: int = Field(ge=1, le=3)
    name: str
    roles: tuple[Role, ...]
    status: PhaseStatus
    duration_ms: int = Field(ge=0)


class RoleOutput(BaseModel):
    """
    One positional slot of the record.

    A failed role keeps its slot: `succeeded=False`, `error` set, and
    `content` holding a failure marker (the validation sentinel for Phase 3).
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    model: str
    content: str
    succeeded: bool
    error: str | None = None
    attempts: int = Field(default=0, ge=0)
    elapsed_ms: int = Field(default=0, ge=0)


class RetrievalSummary(BaseModel):
    """What retrieval contributed to the run (the chunks themselves are not kept)."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    chunk_count: int = Field(default=0, ge=0)
    document_names: tuple[str, ...] = ()


class OrchestrationRecord(BaseModel):
    """
    The persisted artifact of one completed (or gracefully degraded) run.

    `deterministic` / `structurally_deterministic` are structural claims: the
    same roles ran in the same phases and appear at the same positions.
    `content_reproducible` is only true when every call was made at
    temperature 0 with a fixed seed, and even then it is best-effort on the
    provider side.
    """

    model_config = ConfigDict(frozen=True)

    role_outputs: tuple[RoleOutput, RoleOutput, RoleOutput, RoleOutput]
    phase_records: tuple[PhaseRecord, ...]

    phase1_duration_ms: int = Field(ge=0)
    phase2_duration_ms: int = Field(ge=0)
    phase3_duration_ms: int = Field(ge=0)
    total_duration_ms: int = Field(ge=0)

    consensus_score: float = Field(ge=0.0, le=1.0)
    deterministic: bool = True
    structurally_deterministic: bool = True
    content_reproducible: bool = False
    processing_order: tuple[tuple[Role, ...], ...] = PROCESSING_ORDER

    retrieval: RetrievalSummary = Field(default_factory=RetrievalSummary)
    validation_script: str | None = None
    validation_degraded: bool = False
    warnings: tuple[str, ...] = ()
    state_trace: tuple[str, ...] = ()

    category: str = ""
    complexity: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _roles_in_fixed_order(self) -> OrchestrationRecord:
        roles = tuple(output.role for output in self.role_outputs)
        if roles != ROLE_ORDER:
            raise ValueError(
                f"role_outputs must follow {[r.value for r in ROLE_ORDER]}, "
                f"got {[r.value for r in roles]}"
            )
        return self

    def output_for(self, role: Role) -> RoleOutput:
        """Return the slot for `role` (positional lookup)."""
        return self.role_outputs[ROLE_ORDER.index(role)]

    @property
    def succeeded_roles(self) -> list[Role]:
        return [o.role for o in self.role_outputs if o.succeeded]
