# =============================================================================
# core/models/relations.py - Relationship Evidence & Merged Relations
# =============================================================================
# Evidence records are produced by the collectors in lib/evidence.py and
# consumed by the merger in lib/relationships.py:
#
#   DeclaredRelation     FK constraints from the catalog (confidence 1.0)
#   ImplicitRelation     naming-pattern or AI-semantic guesses
#   StatisticalRelation  value-overlap matches between sampled columns
#   JoinPattern          joins observed in query history
#
# RelevantRelation is the merged, ranked output. Table names are always full
# names ("schema.table").
# =============================================================================

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class DetectionMethod(str, Enum):
    """How an implicit relation was detected."""
    NAMING_PATTERN = "naming_pattern"
    STATISTICAL = "statistical"
    AI_SEMANTIC = "ai_semantic"


class RelationType(str, Enum):
    """Type tag of a merged relation."""
    DECLARED = "declared"
    IMPLICIT = "implicit"
    NAMING_PATTERN = "naming_pattern"
    STATISTICAL = "statistical"


# =============================================================================
# Evidence
# =============================================================================

class DeclaredRelation(BaseModel):
    """A foreign key constraint present in schema metadata."""

    source_table: str = Field(..., description="Referencing table (schema.table)")
    source_column: str = Field(..., description="Referencing column")
    target_table: str = Field(..., description="Referenced table (schema.table)")
    target_column: str = Field(..., description="Referenced column")
    constraint_name: str | None = Field(default=None, description="FK constraint name")

    @property
    def confidence(self) -> float:
        # Declared constraints are ground truth
        return 1.0


class ImplicitRelation(BaseModel):
    """A relation inferred from names, values or an AI suggestion."""

    source_table: str = Field(..., description="Referencing table (schema.table)")
    source_column: str = Field(..., description="Referencing column")
    target_table: str = Field(..., description="Referenced table (schema.table)")
    target_column: str = Field(..., description="Referenced column")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Detector confidence")
    detection_method: DetectionMethod = Field(..., description="Detector that produced it")
    evidence: str = Field(default="", description="Human-readable justification")


class StatisticalRelation(ImplicitRelation):
    """An implicit relation backed by value overlap between sampled columns."""

    detection_method: DetectionMethod = Field(
        default=DetectionMethod.STATISTICAL, description="Always statistical"
    )
    value_overlap_count: int = Field(default=0, ge=0, description="Shared distinct values")
    reference_sample_size: int = Field(default=0, ge=0, description="Distinct source values compared")
    overlap_percentage: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="min(1.0, overlap / OVERLAP_SCALE)",
    )


class JoinPattern(BaseModel):
    """An empirically observed join between two tables."""

    left_table: str = Field(..., description="Left table (schema.table)")
    right_table: str = Field(..., description="Right table (schema.table)")
    join_condition: str = Field(default="", description="ON clause as observed")
    join_type: str = Field(default="INNER", description="INNER, LEFT, ...")
    frequency_count: int = Field(default=1, ge=0, description="Times observed")
    frequency_score: float = Field(default=0.0, ge=0.0, le=1.0, description="Normalized frequency")
    last_used: datetime | None = Field(default=None, description="Most recent observation")


# =============================================================================
# Merge Output
# =============================================================================

class RelevantRelation(BaseModel):
    """A ranked, deduplicated relation produced by merging all evidence."""

    source_table: str = Field(..., description="Referencing table (schema.table)")
    source_column: str = Field(..., description="Referencing column")
    target_table: str = Field(..., description="Referenced table (schema.table)")
    target_column: str = Field(..., description="Referenced column")
    join_condition: str = Field(..., description="source.col = target.col")
    relation_type: RelationType = Field(..., description="Evidence type")
    importance_score: int = Field(..., ge=1, le=10, description="Ranking score")
    confidence_level: float = Field(..., ge=0.0, le=1.0, description="Best evidence confidence")
    validation_opportunities: list[str] = Field(
        default_factory=list, description="Checks this relation enables"
    )
    evidence: str = Field(default="", description="Justification carried from the evidence")

    def involves(self, table_full_name: str) -> bool:
        return table_full_name in (self.source_table, self.target_table)


class QualityRating(str, Enum):
    """Overall rating derived from relationship coverage."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


class DiscoveryMetrics(BaseModel):
    """Summary counts for one discovery run."""

    total_tables: int = Field(default=0, ge=0)
    total_columns: int = Field(default=0, ge=0)
    declared_relations: int = Field(default=0, ge=0)
    implicit_relations: int = Field(default=0, ge=0)
    statistical_relations: int = Field(default=0, ge=0)
    relationship_coverage: float = Field(default=0.0, ge=0.0, description="(declared+implicit)/tables")
    quality_rating: QualityRating = Field(default=QualityRating.CRITICAL)
