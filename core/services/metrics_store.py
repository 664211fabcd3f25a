# =============================================================================
# core/services/metrics_store.py - Append-only Metric Facts
# =============================================================================
# Each discovery run flattens its results into metric facts, one row per
# (schema, table[, column], metric_name, collected_at). Facts are only ever
# appended, which keeps quality history queryable over time.
#
# Table facts:  quality_score, primary_key_score, null_score, statistics_score,
#               foreign_key_score, data_type_score, relationship_count,
#               column_count
# Column facts: completeness_rate, cardinality_rate, null_count, unique_count,
#               anomaly_count, uniformity_score
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field

from core.models import ColumnProfile, DataQualityScore, TableMetadata
from lib.supabase_client import COLUMN_METRICS_TABLE, TABLE_METRICS_TABLE, SupabaseClient

logger = logging.getLogger(__name__)


class MetricFact(BaseModel):
    """One metric value for a table (column None) or a column."""

    schema_name: str
    table_name: str
    column_name: str | None = Field(default=None, description="None for table-level facts")
    metric_name: str
    metric_value: float | None
    collected_at: datetime

    @property
    def is_column_fact(self) -> bool:
        return self.column_name is not None


def build_metric_facts(
    table: TableMetadata,
    profiles: list[ColumnProfile],
    score: DataQualityScore,
    collected_at: datetime,
) -> list[MetricFact]:
    """Flatten one table's score and column profiles into metric facts."""

    def fact(metric_name: str, value: float | None, column: str | None = None) -> MetricFact:
        return MetricFact(
            schema_name=table.schema_name,
            table_name=table.name,
            column_name=column,
            metric_name=metric_name,
            metric_value=value,
            collected_at=collected_at,
        )

    facts = [
        fact("quality_score", score.total),
        fact("primary_key_score", score.primary_key_score),
        fact("null_score", score.null_score),
        fact("statistics_score", score.statistics_score),
        fact("foreign_key_score", score.foreign_key_score),
        fact("data_type_score", score.data_type_score),
        fact("relationship_count", score.relationship_count),
        fact("column_count", table.column_count),
    ]
    for profile in profiles:
        name = profile.column.name
        facts.extend([
            fact("completeness_rate", profile.completeness_rate, name),
            fact("cardinality_rate", profile.cardinality_rate, name),
            fact("null_count", profile.null_count, name),
            fact("unique_count", profile.unique_count, name),
            fact("anomaly_count", len(profile.anomalies), name),
            fact("uniformity_score", profile.insights.uniformity_score, name),
        ])
    return facts


class MetricsStore(ABC):
    """Append-only sink for metric facts."""

    @abstractmethod
    async def append(self, facts: list[MetricFact]) -> int:
        """Persist facts; returns how many were written."""


class InMemoryMetricsStore(MetricsStore):
    def __init__(self):
        self.facts: list[MetricFact] = []

    async def append(self, facts: list[MetricFact]) -> int:
        self.facts.extend(facts)
        return len(facts)

    def series(self, schema_name: str, table_name: str, metric_name: str, column_name: str | None = None):
        """Values of one metric over time, oldest first."""
        matching = [
            f for f in self.facts
            if f.schema_name == schema_name
            and f.table_name == table_name
            and f.column_name == column_name
            and f.metric_name == metric_name
        ]
        return [(f.collected_at, f.metric_value) for f in sorted(matching, key=lambda f: f.collected_at)]


class SupabaseMetricsStore(MetricsStore):
    """Writes table facts to table_metrics and column facts to column_metrics."""

    async def append(self, facts: list[MetricFact]) -> int:
        table_rows = [
            f.model_dump(mode="json", exclude={"column_name"}) for f in facts if not f.is_column_fact
        ]
        column_rows = [f.model_dump(mode="json") for f in facts if f.is_column_fact]

        written = await asyncio.to_thread(SupabaseClient.insert_rows, TABLE_METRICS_TABLE, table_rows)
        written += await asyncio.to_thread(SupabaseClient.insert_rows, COLUMN_METRICS_TABLE, column_rows)
        logger.info(f"Appended {written} metric facts")
        return written
