# =============================================================================
# core/services/discovery.py - Whole-database Discovery Run
# =============================================================================
# Orchestrates one profiling pass over a database:
#
#   1. list tables
#   2. read columns per table (a failing table is reported and skipped)
#   3. sample rows once per table (cached for collectors and profiler)
#   4. run the three evidence collectors concurrently as a barrier
#   5. merge evidence into ranked relations
#   6. enrich columns with whole-table aggregates
#   7. profile columns of all tables in one bounded pool (CPU work in worker threads)
#   8. score each table, compute run metrics, append metric facts
#
# Failures are isolated per table, column and collector and collected as
# RunFailure records; only a failure to list tables aborts the run.
#
# Usage:
#   reader = SqlAlchemyMetadataReader.from_url()
#   report = await DiscoveryRun(reader).run()
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from app.config import settings
from app.exceptions import DQScopeException
from core.models import (
    ColumnAggregates,
    ColumnMetadata,
    ColumnProfile,
    DeclaredRelation,
    DiscoveryMetrics,
    DiscoveryReport,
    ImplicitRelation,
    JoinPattern,
    QualityRating,
    RunFailure,
    StatisticalRelation,
    TableMetadata,
    TableReport,
)
from core.services.metrics_store import MetricsStore, build_metric_facts
from lib.evidence import collect_declared, collect_naming_patterns, collect_statistical
from lib.metadata_reader import MetadataReader
from lib.profiler import ColumnProfiler
from lib.quality_score import score_table
from lib.relationships import merge_relations
from lib.supabase_client import SupabaseClientError

logger = logging.getLogger(__name__)

# Coverage thresholds, highest first
RATING_THRESHOLDS: tuple[tuple[float, QualityRating], ...] = (
    (0.8, QualityRating.EXCELLENT),
    (0.6, QualityRating.GOOD),
    (0.4, QualityRating.FAIR),
    (0.2, QualityRating.POOR),
)


def _error_record(error: BaseException) -> dict[str, Any]:
    if isinstance(error, DQScopeException):
        return error.to_dict()
    return {"detail": str(error), "code": type(error).__name__, "suggestion": None, "details": {}}


def rate_coverage(coverage: float) -> QualityRating:
    for threshold, rating in RATING_THRESHOLDS:
        if coverage >= threshold:
            return rating
    return QualityRating.CRITICAL


def compute_metrics(
    tables: Sequence[TableMetadata],
    columns_by_table: dict[str, list[ColumnMetadata]],
    declared: Sequence[DeclaredRelation],
    implicit: Sequence[ImplicitRelation],
    statistical: Sequence[StatisticalRelation],
) -> DiscoveryMetrics:
    """Summary counts, relationship coverage and rating for a run."""
    total_tables = len(tables)
    coverage = (len(declared) + len(implicit)) / total_tables if total_tables else 0.0
    return DiscoveryMetrics(
        total_tables=total_tables,
        total_columns=sum(len(cols) for cols in columns_by_table.values()),
        declared_relations=len(declared),
        implicit_relations=len(implicit),
        statistical_relations=len(statistical),
        relationship_coverage=round(coverage, 4),
        quality_rating=rate_coverage(coverage),
    )


class DiscoveryRun:
    """
    One discovery pass over the database behind a MetadataReader.

    Args:
        reader: Metadata/sample source
        profiler: Column profiler (default: settings-driven ColumnProfiler)
        concurrency: Max columns profiled at once (default: PROFILE_CONCURRENCY)
        sample_rows: Rows sampled per table (default: PROFILE_SAMPLE_ROWS)
        joins: Observed join patterns, used for relation importance
        metrics_store: Where metric facts are appended (optional)
    """

    def __init__(
        self,
        reader: MetadataReader,
        profiler: ColumnProfiler | None = None,
        concurrency: int | None = None,
        sample_rows: int | None = None,
        joins: Sequence[JoinPattern] = (),
        metrics_store: MetricsStore | None = None,
    ):
        self.reader = reader
        self.profiler = profiler or ColumnProfiler()
        self.concurrency = concurrency or settings.PROFILE_CONCURRENCY
        self.sample_rows = sample_rows or settings.PROFILE_SAMPLE_ROWS
        self.joins = list(joins)
        self.metrics_store = metrics_store
        self._samples: dict[str, list[dict[str, Any]]] = {}

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def run(self) -> DiscoveryReport:
        report = DiscoveryReport()
        semaphore = asyncio.Semaphore(self.concurrency)

        tables = await self.reader.list_tables()
        logger.info(f"Discovery started on {len(tables)} tables (concurrency {self.concurrency})")

        columns_by_table = await self._read_columns(tables, report)
        readable = [t for t in tables if t.full_name in columns_by_table]
        await self._read_samples(readable, report)

        declared, implicit, statistical = await self._collect_evidence(readable, columns_by_table, report)
        merged = merge_relations(declared, implicit, statistical, self.joins)
        report.relations = merged.relations
        report.dropped_evidence = merged.dropped_count

        # Tables share the one semaphore, so the pool bounds columns across tables
        report.tables = list(await asyncio.gather(
            *(self._table_report(t, columns_by_table.get(t.full_name), semaphore, report) for t in tables)
        ))

        report.metrics = compute_metrics(tables, columns_by_table, declared, implicit, statistical)
        report.finished_at = datetime.now(timezone.utc)
        await self._store_metrics(report)

        logger.info(
            f"Discovery finished: {len(report.relations)} relations, "
            f"coverage {report.metrics.relationship_coverage:.2f} ({report.metrics.quality_rating.value}), "
            f"{len(report.failures)} failures"
        )
        return report

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def _read_columns(
        self, tables: Sequence[TableMetadata], report: DiscoveryReport
    ) -> dict[str, list[ColumnMetadata]]:
        results = await asyncio.gather(
            *(self.reader.list_columns(t) for t in tables), return_exceptions=True
        )
        columns_by_table: dict[str, list[ColumnMetadata]] = {}
        for table, result in zip(tables, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"Skipping table {table.full_name}: {result}")
                report.failures.append(RunFailure(stage="columns", target=table.full_name, error=_error_record(result)))
                continue
            columns_by_table[table.full_name] = result
        return columns_by_table

    async def _read_samples(self, tables: Sequence[TableMetadata], report: DiscoveryReport) -> None:
        pending = [t for t in tables if t.full_name not in self._samples]
        results = await asyncio.gather(
            *(self.reader.sample_rows(t, self.sample_rows) for t in pending), return_exceptions=True
        )
        for table, result in zip(pending, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"Could not sample {table.full_name}: {result}")
                report.failures.append(RunFailure(stage="sample", target=table.full_name, error=_error_record(result)))
                self._samples[table.full_name] = []
                continue
            self._samples[table.full_name] = result

    def _column_samples(self) -> dict[str, dict[str, list[Any]]]:
        by_table: dict[str, dict[str, list[Any]]] = {}
        for full_name, rows in self._samples.items():
            columns: dict[str, list[Any]] = {}
            for row in rows:
                for name, value in row.items():
                    columns.setdefault(name, []).append(value)
            by_table[full_name] = columns
        return by_table

    async def _collect_evidence(
        self,
        tables: Sequence[TableMetadata],
        columns_by_table: dict[str, list[ColumnMetadata]],
        report: DiscoveryReport,
    ) -> tuple[list[DeclaredRelation], list[ImplicitRelation], list[StatisticalRelation]]:
        names = ("declared", "naming_pattern", "statistical")
        results = await asyncio.gather(
            asyncio.to_thread(collect_declared, tables, columns_by_table),
            asyncio.to_thread(collect_naming_patterns, tables, columns_by_table),
            asyncio.to_thread(collect_statistical, tables, columns_by_table, self._column_samples()),
            return_exceptions=True,
        )

        collected: list[list[Any]] = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(f"Evidence collector {name} failed: {result}")
                report.failures.append(RunFailure(stage="collector", target=name, error=_error_record(result)))
                collected.append([])
                continue
            collected.append(result)

        declared, implicit, statistical = collected
        logger.info(
            f"Evidence: {len(declared)} declared, {len(implicit)} naming-pattern, "
            f"{len(statistical)} statistical"
        )
        return declared, implicit, statistical

    async def _table_report(
        self,
        table: TableMetadata,
        columns: list[ColumnMetadata] | None,
        semaphore: asyncio.Semaphore,
        report: DiscoveryReport,
    ) -> TableReport:
        if columns is None:
            return TableReport(table=table)
        column_stats = await self._enrich_columns(table, columns, semaphore, report)
        profiles = await self._profile_table(table, column_stats, semaphore, report)
        return TableReport(
            table=table,
            columns=[column for column, _ in column_stats],
            profiles=profiles,
            score=score_table(table, profiles, report.relations),
        )

    async def _enrich_columns(
        self,
        table: TableMetadata,
        columns: list[ColumnMetadata],
        semaphore: asyncio.Semaphore,
        report: DiscoveryReport,
    ) -> list[tuple[ColumnMetadata, ColumnAggregates | None]]:
        async def enrich(column: ColumnMetadata) -> tuple[ColumnMetadata, ColumnAggregates | None]:
            async with semaphore:
                try:
                    aggregates = await self.reader.column_aggregates(table, column)
                except DQScopeException as e:
                    logger.warning(f"No aggregates for {table.full_name}.{column.name}: {e}")
                    report.failures.append(RunFailure(
                        stage="aggregates", target=f"{table.full_name}.{column.name}", error=e.to_dict()
                    ))
                    return column, None
            return column.model_copy(update={
                "distinct_count": aggregates.distinct_count,
                "null_fraction": aggregates.null_fraction,
            }), aggregates

        return list(await asyncio.gather(*(enrich(c) for c in columns)))

    async def _profile_table(
        self,
        table: TableMetadata,
        columns: list[tuple[ColumnMetadata, ColumnAggregates | None]],
        semaphore: asyncio.Semaphore,
        report: DiscoveryReport,
    ) -> list[ColumnProfile]:
        rows = self._samples.get(table.full_name, [])
        key = next((c.name for c, _ in columns if c.is_primary_key), None)
        row_ids = [row.get(key) for row in rows] if key else None

        async def profile(column: ColumnMetadata, aggregates: ColumnAggregates | None) -> ColumnProfile | None:
            values = [row.get(column.name) for row in rows]
            async with semaphore:
                try:
                    return await asyncio.to_thread(self.profiler.profile, column, values, aggregates, row_ids)
                except Exception as e:
                    logger.warning(f"Profiling failed for {table.full_name}.{column.name}: {e}")
                    report.failures.append(RunFailure(
                        stage="profile", target=f"{table.full_name}.{column.name}", error=_error_record(e)
                    ))
                    return None

        profiles = await asyncio.gather(*(profile(c, a) for c, a in columns))
        return [p for p in profiles if p is not None]

    async def _store_metrics(self, report: DiscoveryReport) -> None:
        if self.metrics_store is None:
            return
        collected_at = report.finished_at or datetime.now(timezone.utc)
        facts = []
        for table_report in report.tables:
            if table_report.score is None:
                continue
            facts.extend(build_metric_facts(
                table_report.table, table_report.profiles, table_report.score, collected_at
            ))
        try:
            await self.metrics_store.append(facts)
        except SupabaseClientError as e:
            logger.warning(f"Could not store metric facts: {e}")
            report.failures.append(RunFailure(
                stage="metrics",
                target="metrics_store",
                error={"detail": e.message, "code": e.code, "suggestion": e.suggestion, "details": e.details},
            ))
