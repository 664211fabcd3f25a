# =============================================================================
# agents/models/ - AI Response Schemas
# =============================================================================
# Pydantic models that define the contract between the rule assistant and the
# language model:
# - rule_responses.py: generation and refinement response shapes
# =============================================================================

from agents.models.rule_responses import (
    GeneratedRule,
    GenerationResponse,
    RefinementResponse,
)

__all__ = [
    "GeneratedRule",
    "GenerationResponse",
    "RefinementResponse",
]
