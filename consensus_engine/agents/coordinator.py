# =============================================================================
# Phase Coordinator: LangGraph Pipeline Over the Four Roles
# =============================================================================
#
# GRAPH TOPOLOGY:
#   START ──▶ retrieve ──▶ foundation ──▶ synthesis ──▶ verification
#         ──▶ validation_script ──▶ assemble ──▶ END
#
# PHASES:
#   1 foundation    quantitative + operational, concurrently, wait-for-all
#   2 synthesis     strategic, sees both Phase-1 outputs
#   3 verification  validation, sees all three outputs (best-effort)
#
# GATES:
#   Phase 1 or 2 incomplete → Phase1Incomplete / Phase2Incomplete raised out
#   of graph.ainvoke(). No record is assembled, nothing is persisted.
#   Phase 3 failure or timeout → sentinel output, consensus 0.75, run continues.
#
# STATE MACHINE (appended to `state_trace`, logged on every transition):
#   NOT_STARTED → PHASE1_RUNNING → PHASE1_GATE → PHASE2_RUNNING
#   → PHASE2_GATE → PHASE3_RUNNING → COMPLETED | FAILED
#
# DESIGN DECISION: asyncio.wait(ALL_COMPLETED), not gather or FIRST_COMPLETED.
# Phase 1 must observe both outcomes before gating; a fast success must not
# advance the run while the other role is still pending. Roles still pending
# at the phase deadline are cancelled and count as failed.
#
# DESIGN DECISION: Plain TypedDict state (not MessagesState).
# Nodes return partial updates; list fields (`phase_records`, `state_trace`,
# `warnings`) use an `operator.add` reducer so each node only appends.
#
# DESIGN DECISION: Graph compiled once per coordinator.
# Nodes are bound methods, so the compiled graph carries its collaborators
# (wrapper, retriever, script generator). The coordinator is a long-lived
# singleton in the API, so compilation happens once per process.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
import logging
import operator
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from consensus_engine.agents.assembler import assemble
from consensus_engine.agents.roles import (
    foundation_prompt,
    synthesis_prompt,
    verification_prompt,
)
from consensus_engine.agents.validation_script import ValidationScriptGenerator
from consensus_engine.errors import (
    Phase1Incomplete,
    Phase2Incomplete,
    RemoteCallFailed,
    RetrievalError,
    ValidationDegraded,
)
from consensus_engine.models.records import (
    PHASE_NAMES,
    PHASE_ROLES,
    ROLE_ORDER,
    OrchestrationRecord,
    PhaseRecord,
    PhaseStatus,
    RetrievalSummary,
    Role,
)
from consensus_engine.models.requests import AnalysisRequest
from consensus_engine.services.llm import RolePrompt
from consensus_engine.services.remote_call import RemoteCallResult, RemoteCallWrapper
from consensus_engine.services.retrieval import RetrievalResult, Retriever

if TYPE_CHECKING:
    from consensus_engine.config import Settings
    from consensus_engine.services.record_store import PersistenceStore

logger = logging.getLogger(__name__)

# Retrieval embeds the start of the context; long contexts exceed the
# embedding model's input limit.
RETRIEVAL_QUERY_CHARS = 2000

# Retrieval may use at most this share of the run ceiling, leaving the rest
# to the phases.
RETRIEVAL_RUN_SHARE = 0.25


class CoordinatorState(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    PHASE1_RUNNING = "PHASE1_RUNNING"
    PHASE1_GATE = "PHASE1_GATE"
    PHASE2_RUNNING = "PHASE2_RUNNING"
    PHASE2_GATE = "PHASE2_GATE"
    PHASE3_RUNNING = "PHASE3_RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class PhaseTimeouts:
    """Per-phase deadlines plus a ceiling on the whole run (seconds)."""

    phase1_s: float = 300.0
    phase2_s: float = 300.0
    phase3_s: float = 240.0
    run_s: float = 900.0
    retrieval_s: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> PhaseTimeouts:
        return cls(
            phase1_s=settings.phase1_timeout_s,
            phase2_s=settings.phase2_timeout_s,
            phase3_s=settings.phase3_timeout_s,
            run_s=settings.run_timeout_s,
            retrieval_s=settings.retrieval_timeout_s,
        )

    def budget(self, phase: int, elapsed_s: float) -> float:
        """Time allowed for `phase` given `elapsed_s` already spent in the run."""
        phase_limit = {1: self.phase1_s, 2: self.phase2_s, 3: self.phase3_s}[phase]
        return max(0.0, min(phase_limit, self.run_s - elapsed_s))

    def retrieval_budget(self, elapsed_s: float) -> float:
        """Time allowed for retrieval; never more than RETRIEVAL_RUN_SHARE of the run."""
        limit = min(self.retrieval_s, self.run_s * RETRIEVAL_RUN_SHARE)
        return max(0.0, min(limit, self.run_s - elapsed_s))


# ---------------------------------------------------------------------------
# Run State Schema
# ---------------------------------------------------------------------------


class RunState(TypedDict, total=False):
    """
    State that flows through the graph for one run.

    Uses total=False so nodes only need to return the keys they update.
    """

    # --- Input (set by caller) ---
    request: AnalysisRequest
    run_id: str
    started_at: float

    # --- Retrieval ---
    retrieval: RetrievalResult
    retrieval_summary: RetrievalSummary
    reference_context: str

    # --- Phases ---
    results: dict[Role, RemoteCallResult]
    phase_records: Annotated[list[PhaseRecord], operator.add]
    state_trace: Annotated[list[str], operator.add]
    warnings: Annotated[list[str], operator.add]
    script: str | None

    # --- Output ---
    record: OrchestrationRecord


class PhaseCoordinator:
    """
    Runs the three phases for one request and assembles the record.

    Usage:
        coordinator = PhaseCoordinator(wrapper, retriever=retriever,
                                       timeouts=PhaseTimeouts.from_settings(s))
        record = await coordinator.run_orchestration(request)
    """

    def __init__(
        self,
        wrapper: RemoteCallWrapper,
        retriever: Retriever | None = None,
        timeouts: PhaseTimeouts | None = None,
        script_generator: ValidationScriptGenerator | None = None,
        retrieval_top_k: int = 5,
        retrieval_min_score: float = 0.0,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.wrapper = wrapper
        self.retriever = retriever
        self.timeouts = timeouts or PhaseTimeouts()
        self.script_generator = script_generator
        self.retrieval_top_k = retrieval_top_k
        self.retrieval_min_score = retrieval_min_score
        self._clock = clock
        self.graph = self._build_graph()

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def run_orchestration(self, request: AnalysisRequest) -> OrchestrationRecord:
        """
        Run all phases and return the assembled record.

        Raises:
            Phase1Incomplete: Quantitative or operational failed.
            Phase2Incomplete: Strategic failed.
        """
        run_id = uuid.uuid4().hex[:8]
        initial_state: RunState = {
            "request": request,
            "run_id": run_id,
            "started_at": self._clock(),
            "results": {},
            "phase_records": [],
            "state_trace": [CoordinatorState.NOT_STARTED.value],
            "warnings": [],
        }

        logger.info(
            "[%s] Starting orchestration: category=%s, complexity=%s, retrieval=%s",
            run_id, request.category, request.complexity, request.use_retrieval,
        )

        final = await self.graph.ainvoke(initial_state)
        return final["record"]

    async def run_and_save(
        self,
        request: AnalysisRequest,
        store: PersistenceStore,
    ) -> tuple[str, OrchestrationRecord]:
        """Run, then persist. A fatal run raises before `store.save()` is reached."""
        record = await self.run_orchestration(request)
        record_id = await store.save(record)
        return record_id, record

    # -----------------------------------------------------------------------
    # Graph Assembly
    # -----------------------------------------------------------------------

    def _build_graph(self):
        builder = StateGraph(RunState)
        builder.add_node("retrieve", self._retrieve_node)
        builder.add_node("foundation", self._foundation_node)
        builder.add_node("synthesis", self._synthesis_node)
        builder.add_node("verification", self._verification_node)
        builder.add_node("validation_script", self._validation_script_node)
        builder.add_node("assemble", self._assemble_node)

        builder.add_edge(START, "retrieve")
        builder.add_edge("retrieve", "foundation")
        builder.add_edge("foundation", "synthesis")
        builder.add_edge("synthesis", "verification")
        builder.add_edge("verification", "validation_script")
        builder.add_edge("validation_script", "assemble")
        builder.add_edge("assemble", END)
        return builder.compile()

    # -----------------------------------------------------------------------
    # Node Functions
    # -----------------------------------------------------------------------

    async def _retrieve_node(self, state: RunState) -> dict:
        """Fetch reference chunks; any retrieval error or timeout means 'no context'."""
        request = state["request"]
        if not request.use_retrieval or self.retriever is None:
            return {
                "retrieval": RetrievalResult(),
                "retrieval_summary": RetrievalSummary(enabled=False),
                "reference_context": "",
            }

        query = f"{request.category}: {request.context}"[:RETRIEVAL_QUERY_CHARS]
        budget = self.timeouts.retrieval_budget(self._elapsed(state))
        try:
            result = await asyncio.wait_for(
                self.retriever.search(query, self.retrieval_top_k), timeout=budget,
            )
        except RetrievalError as exc:
            return self._skip_retrieval(state, f"{type(exc).__name__}: {exc}")
        except TimeoutError:
            return self._skip_retrieval(state, f"timed out after {budget:.1f}s")

        result = result.filtered(self.retrieval_min_score)
        logger.info("[%s] Retrieved %d reference chunks", state["run_id"], len(result))
        return {
            "retrieval": result,
            "retrieval_summary": result.summary(),
            "reference_context": result.format_context(),
        }

    async def _foundation_node(self, state: RunState) -> dict:
        request = state["request"]
        context = state.get("reference_context", "")
        prompts = {
            role: foundation_prompt(role, request, context) for role in PHASE_ROLES[1]
        }
        return await self._gated_phase(state, 1, prompts)

    async def _synthesis_node(self, state: RunState) -> dict:
        results = state["results"]
        prompt = synthesis_prompt(
            state["request"],
            quantitative=results[Role.QUANTITATIVE].content or "",
            operational=results[Role.OPERATIONAL].content or "",
            reference_context=state.get("reference_context", ""),
        )
        return await self._gated_phase(state, 2, {Role.STRATEGIC: prompt})

    async def _verification_node(self, state: RunState) -> dict:
        """Phase 3: never fatal. A failure becomes the validation sentinel."""
        run_id = state["run_id"]
        results = state["results"]
        trace = self._transition(
            run_id, CoordinatorState.PHASE2_GATE, CoordinatorState.PHASE3_RUNNING,
        )
        prompt = verification_prompt(
            state["request"],
            quantitative=results[Role.QUANTITATIVE].content or "",
            operational=results[Role.OPERATIONAL].content or "",
            strategic=results[Role.STRATEGIC].content or "",
            reference_context=state.get("reference_context", ""),
        )
        phase_results, phase_record = await self._run_phase(
            state, 3, {Role.VALIDATION: prompt},
        )

        warnings: list[str] = []
        validation = phase_results[Role.VALIDATION]
        if not validation.succeeded:
            degraded = ValidationDegraded(validation.error or "unknown error")
            logger.warning("[%s] %s", run_id, degraded)
            warnings.append(str(degraded))

        return {
            "results": {**results, **phase_results},
            "phase_records": [phase_record],
            "state_trace": trace,
            "warnings": warnings,
        }

    async def _validation_script_node(self, state: RunState) -> dict:
        """Optional cross-check script, bounded by what is left of the run budget."""
        if self.script_generator is None:
            return {"script": None}

        remaining = self.timeouts.run_s - self._elapsed(state)
        if remaining <= 0:
            logger.warning("[%s] No time left for the validation script", state["run_id"])
            return {"script": None, "warnings": ["validation script skipped: run timeout"]}

        results = state["results"]
        analysis_text = "\n\n".join(
            f"## {role.value.title()} analysis\n{results[role].content}"
            for role in ROLE_ORDER
            if results[role].succeeded
        )
        try:
            script = await asyncio.wait_for(
                self.script_generator.generate(analysis_text), timeout=remaining,
            )
        except TimeoutError:
            logger.warning("[%s] Validation script timed out", state["run_id"])
            return {"script": None, "warnings": ["validation script skipped: run timeout"]}
        return {"script": script}

    async def _assemble_node(self, state: RunState) -> dict:
        run_id = state["run_id"]
        trace = self._transition(
            run_id, CoordinatorState.PHASE3_RUNNING, CoordinatorState.COMPLETED,
        )
        record = assemble(
            state["phase_records"],
            state["results"],
            state["retrieval_summary"],
            request=state["request"],
            sampling=self.wrapper.sampling,
            validation_script=state.get("script"),
            warnings=state["warnings"],
            state_trace=[*state["state_trace"], *trace],
        )
        logger.info(
            "[%s] Orchestration complete: consensus=%.2f, total=%dms",
            run_id, record.consensus_score, record.total_duration_ms,
        )
        return {"record": record, "state_trace": trace}

    # -----------------------------------------------------------------------
    # Phase Execution
    # -----------------------------------------------------------------------

    async def _gated_phase(
        self,
        state: RunState,
        phase: int,
        prompts: Mapping[Role, RolePrompt],
    ) -> dict:
        """Run a mandatory phase and raise if any of its roles failed."""
        run_id = state["run_id"]
        running, gate = {
            1: (CoordinatorState.PHASE1_RUNNING, CoordinatorState.PHASE1_GATE),
            2: (CoordinatorState.PHASE2_RUNNING, CoordinatorState.PHASE2_GATE),
        }[phase]
        previous = CoordinatorState.NOT_STARTED if phase == 1 else CoordinatorState.PHASE1_GATE

        trace = self._transition(run_id, previous, running)
        phase_results, phase_record = await self._run_phase(state, phase, prompts)
        trace += self._transition(run_id, running, gate)

        failed = [role for role in PHASE_ROLES[phase] if not phase_results[role].succeeded]
        if failed:
            trace += self._transition(run_id, gate, CoordinatorState.FAILED)
            error_cls = Phase1Incomplete if phase == 1 else Phase2Incomplete
            exc = error_cls(
                failed,
                errors={role.value: phase_results[role].error or "" for role in failed},
                phase_record=phase_record,
                state_trace=[*state["state_trace"], *trace],
            )
            logger.error("[%s] %s", run_id, exc)
            raise exc

        return {
            "results": {**state["results"], **phase_results},
            "phase_records": [phase_record],
            "state_trace": trace,
        }

    async def _run_phase(
        self,
        state: RunState,
        phase: int,
        prompts: Mapping[Role, RolePrompt],
    ) -> tuple[dict[Role, RemoteCallResult], PhaseRecord]:
        """
        Dispatch every role of `phase` and wait for all of them (or the deadline).

        Returns results keyed by role in PHASE_ROLES order, whatever order the
        calls finished in.
        """
        run_id = state["run_id"]
        budget = self.timeouts.budget(phase, self._elapsed(state))
        started = self._clock()

        tasks = {
            role: asyncio.create_task(
                self._call(role, prompts[role]), name=f"{run_id}-{role.value}",
            )
            for role in PHASE_ROLES[phase]
        }
        try:
            _, pending = await asyncio.wait(
                tasks.values(), timeout=budget, return_when=asyncio.ALL_COMPLETED,
            )
        finally:
            # Also reached when this run itself is cancelled
            for task in tasks.values():
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)

        duration_ms = int((self._clock() - started) * 1000)
        results: dict[Role, RemoteCallResult] = {}
        for role, task in tasks.items():
            if task in pending:
                logger.warning(
                    "[%s] %s cancelled at the phase %d deadline (%.1fs)",
                    run_id, role.value, phase, budget,
                )
                results[role] = RemoteCallResult(
                    role=role,
                    model=self.wrapper.model_for(role),
                    error=f"phase {phase} timed out after {budget:.1f}s",
                    elapsed_ms=duration_ms,
                )
            else:
                results[role] = task.result()

        succeeded = sum(1 for r in results.values() if r.succeeded)
        if succeeded == len(results):
            status = PhaseStatus.ALL_SUCCEEDED
        elif succeeded:
            status = PhaseStatus.PARTIAL
        else:
            status = PhaseStatus.FAILED

        record = PhaseRecord(
            phase=phase,
            name=PHASE_NAMES[phase],
            roles=PHASE_ROLES[phase],
            status=status,
            duration_ms=duration_ms,
        )
        logger.info(
            "[%s] Phase %d (%s) %s in %dms",
            run_id, phase, PHASE_NAMES[phase], status.value, duration_ms,
        )
        return results, record

    async def _call(self, role: Role, prompt: RolePrompt) -> RemoteCallResult:
        try:
            return await self.wrapper.invoke(role, prompt)
        except RemoteCallFailed as exc:
            return RemoteCallResult.from_failure(exc, self.wrapper.model_for(role))

    # -----------------------------------------------------------------------
    # Internal Helpers
    # -----------------------------------------------------------------------

    def _elapsed(self, state: RunState) -> float:
        return self._clock() - state["started_at"]

    @staticmethod
    def _skip_retrieval(state: RunState, reason: str) -> dict:
        logger.warning("[%s] Retrieval skipped: %s", state["run_id"], reason)
        return {
            "retrieval": RetrievalResult(),
            "retrieval_summary": RetrievalSummary(enabled=True),
            "reference_context": "",
            "warnings": [f"retrieval skipped: {reason}"],
        }

    @staticmethod
    def _transition(
        run_id: str,
        previous: CoordinatorState,
        new: CoordinatorState,
    ) -> list[str]:
        logger.info("[%s] %s -> %s", run_id, previous.value, new.value)
        return [new.value]
