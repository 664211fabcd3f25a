# =============================================================================
# core/models/quality.py - Data-Quality Score Schema
# =============================================================================
# A table's 0-100 quality score is the sum of five capped components. Every
# component stays on the model so callers can show where points were lost.
# =============================================================================

from __future__ import annotations

from pydantic import BaseModel, Field, computed_field


class DataQualityScore(BaseModel):
    """Score breakdown for one table, produced by lib/quality_score.py."""

    table: str = Field(..., description="Table full name (schema.table)")

    primary_key_score: int = Field(default=0, ge=0, le=30, description="30 if a PK is declared")
    null_score: int = Field(default=0, ge=0, le=20, description="round((1 - avg null fraction) * 20)")
    statistics_score: int = Field(
        default=0, ge=0, le=20, description="round(columns with distinct stats / columns * 20)"
    )
    foreign_key_score: int = Field(default=0, ge=0, le=15, description="15 if any FK column")
    data_type_score: int = Field(
        default=0, ge=0, le=15, description="round(appropriately typed columns / columns * 15)"
    )

    total: int = Field(default=0, ge=0, le=100, description="Clamped sum of the components")
    relationship_count: int = Field(
        default=0, ge=0, description="Relevant relations touching the table (informational)"
    )
    summary: str = Field(default="", description="One-line explanation")
    tooltip: str = Field(default="", description="Multi-line breakdown for display")

    @computed_field
    @property
    def components_sum(self) -> int:
        return (
            self.primary_key_score
            + self.null_score
            + self.statistics_score
            + self.foreign_key_score
            + self.data_type_score
        )
