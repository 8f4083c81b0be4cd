# =============================================================================
# Validation-Script Generator
# =============================================================================
#
# After the phases complete, one more call asks a model for a small Python
# script that re-computes the figures of the analysis. The script is stored
# on the record for a human (or a sandbox outside this service) to run; the
# engine never executes it.
#
# Failure here is not an orchestration failure: any error yields None.
# =============================================================================

from __future__ import annotations

import logging
import re

from consensus_engine.agents.roles import validation_script_prompt
from consensus_engine.errors import RemoteCallFailed
from consensus_engine.models.records import Role
from consensus_engine.services.remote_call import RemoteCallWrapper

logger = logging.getLogger(__name__)

# ```python ... ``` (or a bare ``` fence), capturing the body
_FENCE_RE = re.compile(r"```[ \t]*(?:python|py)?[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or `text` stripped."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


class ValidationScriptGenerator:
    def __init__(self, wrapper: RemoteCallWrapper, role: Role = Role.QUANTITATIVE) -> None:
        self._wrapper = wrapper
        self.role = role

    async def generate(self, analysis_text: str) -> str | None:
        """Ask the bound role for a validation script; None when unavailable."""
        if not analysis_text.strip():
            return None

        try:
            result = await self._wrapper.invoke(
                self.role, validation_script_prompt(analysis_text),
            )
        except RemoteCallFailed as exc:
            logger.warning("Validation script not generated: %s", exc)
            return None

        script = strip_code_fences(result.content or "")
        if not script:
            logger.warning("Validation script response was empty")
            return None

        logger.info("Generated validation script (%d chars)", len(script))
        return script
