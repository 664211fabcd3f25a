# =============================================================================
# agents/models/rule_responses.py - AI Response Contracts
# =============================================================================
# Pydantic models for the JSON the rule assistant expects back from the model.
# Responses are untrusted text: anything that does not validate against these
# models is rejected as a MalformedAiResponseError, never patched up.
#
#   GenerationResponse   {"rules": [GeneratedRule, ...]}
#   RefinementResponse   {"success": true, "refinedCondition": ..., "confidence": 0-100}
#                        {"success": false, "errorMessage": ...}
# =============================================================================

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field, StrictBool, field_validator, model_validator

from core.models import RuleDimension, RuleSeverity
from core.models.rules import normalize_dimension

# Execution-style severities the model sometimes uses for candidates
_SEVERITY_FOR_CANDIDATE = {
    RuleSeverity.ERROR: RuleSeverity.HIGH,
    RuleSeverity.WARNING: RuleSeverity.MEDIUM,
    RuleSeverity.INFO: RuleSeverity.LOW,
}


class GeneratedRule(BaseModel):
    """One rule as proposed by the model."""

    model_config = {"populate_by_name": True}

    id: str | None = Field(default=None, description="Model-chosen identifier")
    name: str = Field(default="", description="Short rule name")
    description: str = Field(default="")
    dimension: RuleDimension
    column: str | None = None
    sql_condition: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("sqlCondition", "sql_condition"),
    )
    severity: RuleSeverity = Field(default=RuleSeverity.MEDIUM)
    expected_pass_rate: float = Field(
        default=95.0,
        ge=0.0,
        le=100.0,
        validation_alias=AliasChoices("expectedPassRate", "expected_pass_rate"),
    )

    @field_validator("dimension", mode="before")
    @classmethod
    def _normalize_dimension(cls, value: Any) -> Any:
        return normalize_dimension(value)

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def candidate_severity(self) -> RuleSeverity:
        return _SEVERITY_FOR_CANDIDATE.get(self.severity, self.severity)


class GenerationResponse(BaseModel):
    """Envelope of a rule generation response."""

    rules: list[GeneratedRule]


class RefinementResponse(BaseModel):
    """Answer of the repair collaborator for one failed condition."""

    success: StrictBool
    refined_condition: str | None = Field(
        default=None,
        validation_alias=AliasChoices("refinedCondition", "refined_condition"),
    )
    explanation: str = Field(default="")
    confidence: int | None = Field(default=None, ge=0, le=100)
    reason: str | None = Field(
        default=None,
        validation_alias=AliasChoices("errorMessage", "reason"),
    )

    @model_validator(mode="after")
    def _check_shape(self) -> "RefinementResponse":
        if self.success:
            if not self.refined_condition or not self.refined_condition.strip():
                raise ValueError("success=true requires a non-empty refinedCondition")
            self.refined_condition = self.refined_condition.strip().rstrip(";").strip()
        elif not self.reason:
            raise ValueError("success=false requires an errorMessage")
        return self
