# =============================================================================
# core/models/rules.py - Rule Candidate, Version & Execution Schemas
# =============================================================================
# Data-quality rules are boolean SQL predicates that hold for VALID rows.
#
#   RuleCandidate       proposed rule (AI, template or user), pending approval
#   CustomRuleVersion   approved rule, versioned per RuleKey
#   RuleExecutionResult outcome of running a rule against the data
#   RuleOutcome         terminal state of a candidate after validation/refinement
#
# Rule candidates are keyed by (schema, table[, column], name). Versioned rules
# are keyed by RuleKey (owner, profile, schema, table, rule_id) and exactly one
# version per key is the latest.
# =============================================================================

from __future__ import annotations

import unicodedata
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# Enums
# =============================================================================

class RuleDimension(str, Enum):
    """Canonical data-quality dimensions."""
    COMPLETENESS = "completeness"
    UNIQUENESS = "uniqueness"
    VALIDITY = "validity"
    CONSISTENCY = "consistency"
    ACCURACY = "accuracy"
    TIMELINESS = "timeliness"


# Portuguese labels used by the rule authors, after accent stripping
DIMENSION_ALIASES: dict[str, RuleDimension] = {
    "completude": RuleDimension.COMPLETENESS,
    "unicidade": RuleDimension.UNIQUENESS,
    "validade": RuleDimension.VALIDITY,
    "consistencia": RuleDimension.CONSISTENCY,
    "precisao": RuleDimension.ACCURACY,
    "acuracia": RuleDimension.ACCURACY,
    "tempestividade": RuleDimension.TIMELINESS,
    "pontualidade": RuleDimension.TIMELINESS,
}


class RuleSeverity(str, Enum):
    """
    Rule severity.

    Candidates use low/medium/high/critical; execution records may also carry
    error/warning/info.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


CANDIDATE_SEVERITIES = frozenset({
    RuleSeverity.LOW, RuleSeverity.MEDIUM, RuleSeverity.HIGH, RuleSeverity.CRITICAL,
})


class RuleSource(str, Enum):
    """Where a rule came from."""
    AI = "ai"
    CUSTOM = "custom"
    TEMPLATE = "template"


class RuleState(str, Enum):
    """Lifecycle state of one rule validation."""
    PROPOSED = "proposed"
    VALIDATING = "validating"
    REFINING = "refining"
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"


class ExecutionStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


def normalize_dimension(value: Any) -> Any:
    """Map Portuguese or mixed-case labels onto RuleDimension values."""
    if isinstance(value, str):
        folded = unicodedata.normalize("NFKD", value.strip().lower())
        folded = "".join(c for c in folded if not unicodedata.combining(c))
        return DIMENSION_ALIASES.get(folded, folded)
    return value


# =============================================================================
# Rule Candidate
# =============================================================================

class RuleCandidate(BaseModel):
    """A proposed boolean SQL predicate expressing a data-quality expectation."""

    id: str = Field(default_factory=lambda: uuid4().hex, description="Candidate identifier")
    name: str = Field(default="", description="Short rule name")
    dimension: RuleDimension = Field(..., description="Quality dimension the rule measures")
    schema_name: str = Field(..., min_length=1, description="Target schema")
    table_name: str = Field(..., min_length=1, description="Target table")
    column: str | None = Field(default=None, description="Target column, if column-level")
    condition: str = Field(..., min_length=1, description="SQL predicate true for VALID rows")
    description: str = Field(default="", description="What the rule checks")
    severity: RuleSeverity = Field(default=RuleSeverity.MEDIUM)
    expected_pass_rate: float = Field(default=95.0, ge=0.0, le=100.0)
    auto_generated: bool = Field(default=False)
    approved_by_user: bool = Field(default=False)
    source: RuleSource = Field(default=RuleSource.CUSTOM)

    @field_validator("dimension", mode="before")
    @classmethod
    def _normalize_dimension(cls, value: Any) -> Any:
        return normalize_dimension(value)

    @field_validator("severity")
    @classmethod
    def _candidate_severity(cls, value: RuleSeverity) -> RuleSeverity:
        if value not in CANDIDATE_SEVERITIES:
            raise ValueError(f"candidate severity must be low, medium, high or critical, got {value.value}")
        return value

    @field_validator("condition")
    @classmethod
    def _strip_condition(cls, value: str) -> str:
        stripped = value.strip().rstrip(";").strip()
        if not stripped:
            raise ValueError("condition must not be empty")
        return stripped

    @property
    def table_full_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


# =============================================================================
# Versioned Custom Rules
# =============================================================================

class RuleKey(BaseModel):
    """Identity of a versioned rule. Relations are explicit key fields."""

    model_config = {"frozen": True}

    owner_id: str = Field(..., min_length=1)
    profile_id: str = Field(..., min_length=1)
    schema_name: str = Field(..., min_length=1)
    table_name: str = Field(..., min_length=1)
    rule_id: str = Field(..., min_length=1, description="Stable user-facing rule key")

    def __str__(self) -> str:
        return (
            f"{self.owner_id}/{self.profile_id}/"
            f"{self.schema_name}.{self.table_name}/{self.rule_id}"
        )


class CustomRuleVersion(RuleCandidate):
    """One version of an approved, user-owned rule."""

    owner_id: str = Field(..., min_length=1)
    profile_id: str = Field(..., min_length=1)
    rule_id: str = Field(..., min_length=1)
    version: int = Field(default=1, ge=1, description="Monotonic, starting at 1")
    is_latest_version: bool = Field(default=True)
    change_reason: str = Field(default="")
    notes: str | None = Field(default=None)
    is_active: bool = Field(default=True, description="False once soft-deleted")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> RuleKey:
        return RuleKey(
            owner_id=self.owner_id,
            profile_id=self.profile_id,
            schema_name=self.schema_name,
            table_name=self.table_name,
            rule_id=self.rule_id,
        )


# =============================================================================
# Execution
# =============================================================================

class RuleExecutionResult(BaseModel):
    """Counts and status from running one rule against the data."""

    rule_candidate_id: str
    table: str = Field(..., description="Target table full name")
    condition: str
    total_records: int = Field(default=0, ge=0)
    valid_records: int = Field(default=0, ge=0)
    invalid_records: int = Field(default=0, ge=0)
    actual_pass_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    expected_pass_rate: float = Field(default=95.0, ge=0.0, le=100.0)
    status: ExecutionStatus
    severity: RuleSeverity = Field(default=RuleSeverity.MEDIUM)
    error_message: str | None = None
    execution_time_ms: int = Field(default=0, ge=0)
    is_sampled: bool = Field(default=False, description="True when counts come from a random sample")
    population_records: int | None = Field(
        default=None, ge=0, description="Full table size when sampled"
    )
    executed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_counts(self) -> "RuleExecutionResult":
        if self.valid_records + self.invalid_records != self.total_records:
            raise ValueError(
                f"valid ({self.valid_records}) + invalid ({self.invalid_records}) "
                f"must equal total ({self.total_records})"
            )
        return self


def compute_pass_rate(valid: int, total: int) -> float:
    """100 * valid / total, or 0 when there are no rows."""
    if total <= 0:
        return 0.0
    return round(100.0 * valid / total, 4)


# =============================================================================
# Refinement & Outcomes
# =============================================================================

class RefinementAttempt(BaseModel):
    """One round trip through the repair collaborator."""

    attempt: int = Field(..., ge=1)
    condition: str = Field(..., description="Condition that failed")
    error_message: str = Field(..., description="Error fed to the collaborator")
    refined_condition: str | None = None
    confidence: int | None = Field(default=None, ge=0, le=100)
    outcome: str = Field(..., description="What happened to the refined condition")


class RuleOutcome(BaseModel):
    """Terminal state of one candidate after validation and refinement."""

    candidate: RuleCandidate = Field(..., description="Candidate with its final condition")
    original_condition: str
    state: RuleState
    result: RuleExecutionResult | None = None
    attempts: list[RefinementAttempt] = Field(default_factory=list)
    needs_review: bool = Field(default=False, description="Surfaced for human review")
    failure: dict[str, Any] | None = Field(default=None, description="Error record, never a trace")

    @property
    def was_refined(self) -> bool:
        return self.candidate.condition != self.original_condition


class QualityAlert(BaseModel):
    """Warning derived from a batch of execution results."""

    type: str
    severity: RuleSeverity
    message: str
