# =============================================================================
# Error Taxonomy
# =============================================================================
#
#   ConsensusEngineError
#   ├── CallFailure                 one attempt against a model endpoint
#   │   ├── TransientCallFailure    retryable: timeout, rate limit, 5xx
#   │   └── PermanentCallFailure    not retryable: auth, malformed request
#   ├── RemoteCallFailed            a role call gave up (retries exhausted
#   │                                 or permanent failure)
#   ├── OrchestrationFailed         run-fatal, nothing is persisted
#   │   ├── Phase1Incomplete
#   │   └── Phase2Incomplete
#   ├── ValidationDegraded          recorded on the record, never raised
#   ├── RetrievalError              retrieval is skipped, run continues
#   │   ├── EmptyCorpus
#   │   ├── InvalidArgument
#   │   └── EmbeddingFailed
#   └── ConsensusInvariantError     unreachable consensus value (defect)
# =============================================================================

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from consensus_engine.models.records import PhaseRecord, Role


class ConsensusEngineError(Exception):
    """Base class for all errors raised by the engine."""


# ---------------------------------------------------------------------------
# Remote Calls
# ---------------------------------------------------------------------------


class CallFailure(ConsensusEngineError):
    """A single attempt against a model endpoint failed."""

    transient: bool = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientCallFailure(CallFailure):
    """Timeout, rate limit or 5xx-equivalent. Safe to retry."""

    transient = True


class PermanentCallFailure(CallFailure):
    """Authentication failure or malformed request. Never retried."""


class RemoteCallFailed(ConsensusEngineError):
    """Raised by the remote call wrapper once a role call has given up."""

    def __init__(
        self,
        role: Role,
        last_error: BaseException,
        attempts: int,
        elapsed_ms: int = 0,
    ) -> None:
        super().__init__(
            f"{role.value} call failed after {attempts} attempt(s): {last_error}"
        )
        self.role = role
        self.last_error = last_error
        self.attempts = attempts
        self.elapsed_ms = elapsed_ms


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class OrchestrationFailed(ConsensusEngineError):
    """A mandatory phase failed. The run produces no record."""

    phase: int = 0

    def __init__(
        self,
        failed_roles: list[Role],
        errors: dict[str, str] | None = None,
        phase_record: PhaseRecord | None = None,
        state_trace: list[str] | None = None,
    ) -> None:
        self.failed_roles = list(failed_roles)
        self.errors = dict(errors or {})
        self.phase_record = phase_record
        self.state_trace = list(state_trace or [])
        roles = ", ".join(r.value for r in self.failed_roles)
        super().__init__(f"Phase {self.phase} incomplete: failed role(s): {roles}")


class Phase1Incomplete(OrchestrationFailed):
    """Quantitative or operational analysis failed (foundation phase)."""

    phase = 1


class Phase2Incomplete(OrchestrationFailed):
    """Strategic synthesis failed."""

    phase = 2


class ValidationDegraded(ConsensusEngineError):
    """
    The validation role failed and was replaced with a sentinel.

    Never raised: instances are stringified into `OrchestrationRecord.warnings`.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(f"validation unavailable: {reason}")
        self.reason = reason


class ConsensusInvariantError(ConsensusEngineError):
    """A completed run produced a consensus score outside {0.75, 1.0}."""


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class RetrievalError(ConsensusEngineError):
    """Base for retrieval failures. Orchestration treats these as 'no context'."""


class EmptyCorpus(RetrievalError):
    """The similarity index has no chunks registered."""


class InvalidArgument(RetrievalError, ValueError):
    """Bad k, query vector or chunk passed to the similarity index."""


class EmbeddingFailed(RetrievalError):
    """The embedding endpoint could not embed the query."""
