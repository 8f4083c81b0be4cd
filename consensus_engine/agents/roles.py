# =============================================================================
# Role Prompts: What Each Model Is Asked To Do
# =============================================================================
#
# Four fixed roles, each bound to a different provider:
#
#   quantitative  - numbers: variances, ratios, trends
#   operational   - drivers: staffing, process, volume, mix
#   strategic     - synthesis of both into prioritised recommendations
#   validation    - independent check of the three prior analyses
#
# DESIGN DECISION: Role-specific system prompts (same pattern as one prompt
# per capability). Each prompt:
# 1. Role definition
# 2. Grounding instruction (use the supplied data and context)
# 3. Output format guidance
#
# The builders below are pure: same request and prior outputs in, same
# payload out. The wording is not a contract; the structure is (which prior
# outputs each role sees).
# =============================================================================

from __future__ import annotations

from consensus_engine.models.records import Role
from consensus_engine.models.requests import AnalysisRequest
from consensus_engine.services.llm import RolePrompt

SYSTEM_PROMPTS: dict[Role, str] = {
    Role.QUANTITATIVE: (
        "You are a quantitative financial analyst. Analyse the numbers in "
        "the provided data.\n\n"
        "Rules:\n"
        "- Compute variances (absolute and percentage) against budget or prior period\n"
        "- Identify the largest drivers by dollar impact\n"
        "- Show your arithmetic for every derived figure\n"
        "- Be precise with financial figures; never round or estimate\n"
        "- Use ONLY figures present in the data or the reference context"
    ),
    Role.OPERATIONAL: (
        "You are an operations analyst. Explain the operational causes "
        "behind the results in the provided data.\n\n"
        "Rules:\n"
        "- Link each financial movement to an operational driver "
        "(staffing, volume, mix, process)\n"
        "- Distinguish one-off events from structural issues\n"
        "- Note any data needed to confirm a hypothesis\n"
        "- Keep the analysis concrete and tied to the data"
    ),
    Role.STRATEGIC: (
        "You are a strategic advisor. Two analysts have examined the same "
        "data: one quantitatively, one operationally.\n\n"
        "Rules:\n"
        "- Reconcile both analyses into one coherent narrative\n"
        "- Flag any point where they disagree and state which is better supported\n"
        "- Produce prioritised, actionable recommendations with expected impact\n"
        "- Organise the answer with clear headings and bullet points"
    ),
    Role.VALIDATION: (
        "You are an independent reviewer. Verify three prior analyses of the "
        "same data.\n\n"
        "Rules:\n"
        "- Re-check every figure against the source data\n"
        "- List each error or unsupported claim with a correction\n"
        "- Rate the overall reliability of the analysis (high / medium / low)\n"
        "- If everything checks out, say so explicitly"
    ),
}

VALIDATION_SCRIPT_SYSTEM = (
    "You write short, self-contained Python 3 scripts that re-compute the "
    "figures of a financial analysis.\n\n"
    "Rules:\n"
    "- Use only the standard library\n"
    "- Hard-code the input figures quoted in the analysis\n"
    "- Recompute every derived figure and assert it matches, with a tolerance\n"
    "- Print one line per check\n"
    "- Return ONLY the code, no explanation"
)


# ---------------------------------------------------------------------------
# Payload Builders
# ---------------------------------------------------------------------------


def _request_header(request: AnalysisRequest) -> str:
    lines = [
        f"Category: {request.category}",
        f"Complexity: {request.complexity}",
    ]
    if request.facility_context:
        lines.append(f"Facility context: {request.facility_context}")
    return "\n".join(lines)


def _with_reference(body: str, reference_context: str) -> str:
    if not reference_context:
        return body
    return f"{body}\n\nReference context (retrieved documents):\n\n{reference_context}"


def foundation_prompt(
    role: Role,
    request: AnalysisRequest,
    reference_context: str = "",
) -> RolePrompt:
    """Phase 1 payload: the request only. Quantitative and operational see the same data."""
    if role not in (Role.QUANTITATIVE, Role.OPERATIONAL):
        raise ValueError(f"{role.value} is not a foundation role")
    body = f"{_request_header(request)}\n\nData:\n{request.context}"
    return RolePrompt(system=SYSTEM_PROMPTS[role], user=_with_reference(body, reference_context))


def synthesis_prompt(
    request: AnalysisRequest,
    quantitative: str,
    operational: str,
    reference_context: str = "",
) -> RolePrompt:
    """Phase 2 payload: the request plus both foundation analyses."""
    body = (
        f"{_request_header(request)}\n\nData:\n{request.context}\n\n"
        f"Quantitative analysis:\n{quantitative}\n\n"
        f"Operational analysis:\n{operational}"
    )
    return RolePrompt(
        system=SYSTEM_PROMPTS[Role.STRATEGIC],
        user=_with_reference(body, reference_context),
    )


def verification_prompt(
    request: AnalysisRequest,
    quantitative: str,
    operational: str,
    strategic: str,
    reference_context: str = "",
) -> RolePrompt:
    """Phase 3 payload: the request plus all three prior analyses."""
    body = (
        f"{_request_header(request)}\n\nData:\n{request.context}\n\n"
        f"Quantitative analysis:\n{quantitative}\n\n"
        f"Operational analysis:\n{operational}\n\n"
        f"Strategic synthesis:\n{strategic}"
    )
    return RolePrompt(
        system=SYSTEM_PROMPTS[Role.VALIDATION],
        user=_with_reference(body, reference_context),
    )


def validation_script_prompt(analysis_text: str) -> RolePrompt:
    return RolePrompt(
        system=VALIDATION_SCRIPT_SYSTEM,
        user=f"Write the validation script for this analysis:\n\n{analysis_text}",
    )
