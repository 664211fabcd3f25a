# =============================================================================
# core/models/discovery.py - Discovery Run Report
# =============================================================================
# Output of one whole-database discovery run (core/services/discovery.py).
# Failures are isolated per table, column and collector and listed here
# instead of aborting the run.
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from core.models.metadata import ColumnMetadata, TableMetadata
from core.models.profile import ColumnProfile
from core.models.quality import DataQualityScore
from core.models.relations import DiscoveryMetrics, RelevantRelation


class RunFailure(BaseModel):
    """A failure isolated to one stage/target of the run."""

    stage: str = Field(..., description="columns, collector, profile, ...")
    target: str = Field(..., description="Table, column or collector name")
    error: dict[str, Any] = Field(..., description="Structured error record")


class TableReport(BaseModel):
    """Everything the run learned about one table."""

    table: TableMetadata
    columns: list[ColumnMetadata] = Field(default_factory=list)
    profiles: list[ColumnProfile] = Field(default_factory=list)
    score: DataQualityScore | None = None


class DiscoveryReport(BaseModel):
    """Result of profiling a database."""

    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    tables: list[TableReport] = Field(default_factory=list)
    relations: list[RelevantRelation] = Field(default_factory=list)
    dropped_evidence: int = Field(default=0, ge=0, description="Malformed evidence records skipped")
    metrics: DiscoveryMetrics = Field(default_factory=DiscoveryMetrics)
    failures: list[RunFailure] = Field(default_factory=list)

    def table_report(self, full_name: str) -> TableReport | None:
        for report in self.tables:
            if report.table.full_name == full_name:
                return report
        return None
