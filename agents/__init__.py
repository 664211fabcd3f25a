# =============================================================================
# agents/ - AI Collaborator
# =============================================================================
# This package contains the AI side of the rule lifecycle:
# - rule_assistant.py: Generates rule candidates and repairs failing conditions
# - validation_parser.py: Parses numbered free-text validation lists
#
# Models:
# - models/rule_responses.py: Strict schemas for model answers
#
# Prompts:
# - prompts/rule_prompts.py: Generation and refinement prompts
# =============================================================================

from agents.rule_assistant import (
    AiClientConfig,
    RuleAssistant,
    RuleAssistantBase,
    parse_generation,
    parse_refinement,
)
from agents.validation_parser import ParsedValidations, parse_numbered_validations

__all__ = [
    # Assistant
    "AiClientConfig",
    "RuleAssistant",
    "RuleAssistantBase",
    "parse_generation",
    "parse_refinement",
    # Parser
    "ParsedValidations",
    "parse_numbered_validations",
]
