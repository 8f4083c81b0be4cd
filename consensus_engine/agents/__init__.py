# =============================================================================
# Agents Package: Phase-Gated Multi-Model Orchestration
# =============================================================================
#   - roles.py: Role prompts and payload builders
#   - coordinator.py: LangGraph pipeline (retrieve → foundation → synthesis
#     → verification → validation script → assemble)
#   - assembler.py: Builds the immutable OrchestrationRecord
#   - validation_script.py: Optional Python cross-check script generation
# =============================================================================
