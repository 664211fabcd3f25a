# =============================================================================
# agents/prompts/ - System Prompts for the Rule Assistant
# =============================================================================
# - rule_prompts.py: rule generation and condition repair prompts
#
# Organized with XML tags for clear structure.
# =============================================================================

from agents.prompts.rule_prompts import (
    GENERATION_SYSTEM_PROMPT,
    REFINEMENT_SYSTEM_PROMPT,
    build_generation_prompt,
    build_refinement_prompt,
)

__all__ = [
    "GENERATION_SYSTEM_PROMPT",
    "REFINEMENT_SYSTEM_PROMPT",
    "build_generation_prompt",
    "build_refinement_prompt",
]
