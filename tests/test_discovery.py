# =============================================================================
# tests/test_discovery.py - Discovery Run Tests
# =============================================================================
# This module contains tests for:
# - Coverage rating and run metrics
# - A full run over an in-memory reader (relations, profiles, scores)
# - Failure isolation per table, collector and metrics sink
# - A full run over SQLite through SqlAlchemyMetadataReader
# =============================================================================

import asyncio
from datetime import datetime

import pytest

from app.exceptions import ConnectivityError, SchemaNotFoundError
from core.models import (
    ColumnAggregates,
    ColumnMetadata,
    DeclaredRelation,
    ImplicitRelation,
    QualityRating,
    TableMetadata,
)
from core.models.relations import DetectionMethod, RelationType
from core.services import DiscoveryRun, InMemoryMetricsStore, compute_metrics, rate_coverage
from core.services.metrics_store import MetricsStore
from lib.metadata_reader import MetadataReader, SqlAlchemyMetadataReader
from lib.supabase_client import SupabaseClientError


# =============================================================================
# Fake Reader
# =============================================================================

class FakeReader(MetadataReader):
    """MetadataReader over Python lists; tables named in `broken` cannot be read."""

    def __init__(self, tables, columns, rows, broken=(), fail_listing=False):
        self.tables = tables
        self.columns = columns
        self.rows = rows
        self.broken = set(broken)
        self.fail_listing = fail_listing

    async def list_tables(self):
        if self.fail_listing:
            raise ConnectivityError("could not connect to server")
        return list(self.tables)

    async def list_columns(self, table):
        if table.full_name in self.broken:
            raise SchemaNotFoundError(table.full_name, reason="permission denied")
        return list(self.columns[table.full_name])

    async def sample_rows(self, table, limit):
        return self.rows.get(table.full_name, [])[:limit]

    async def column_aggregates(self, table, column):
        values = [row.get(column.name) for row in self.rows.get(table.full_name, [])]
        present = [v for v in values if v is not None]
        return ColumnAggregates(
            total_count=len(values),
            null_count=len(values) - len(present),
            distinct_count=len(set(present)),
            min_value=min(present) if present else None,
            max_value=max(present) if present else None,
        )


@pytest.fixture
def fake_reader(customers_table, orders_table, customer_columns, order_columns):
    audit = TableMetadata(schema_name="public", name="audit_log")
    return FakeReader(
        tables=[customers_table, orders_table, audit],
        columns={
            "public.customers": customer_columns,
            "public.orders": order_columns,
        },
        rows={
            "public.customers": [
                {"id": i, "email": f"user{i}@example.com", "name": f"User {i}"} for i in range(1, 21)
            ],
            "public.orders": [
                {
                    "id": 100 + i,
                    "customer_id": (i % 20) + 1,
                    "amount": 10.0 + i,
                    "created_at": datetime(2024, 1, 1 + (i % 28)),
                }
                for i in range(40)
            ],
        },
        broken={"public.audit_log"},
    )


# =============================================================================
# Metrics
# =============================================================================

class TestRateCoverage:
    @pytest.mark.parametrize(
        "coverage,rating",
        [
            (1.5, QualityRating.EXCELLENT),
            (0.8, QualityRating.EXCELLENT),
            (0.79, QualityRating.GOOD),
            (0.6, QualityRating.GOOD),
            (0.4, QualityRating.FAIR),
            (0.2, QualityRating.POOR),
            (0.19, QualityRating.CRITICAL),
            (0.0, QualityRating.CRITICAL),
        ],
    )
    def test_thresholds(self, coverage, rating):
        assert rate_coverage(coverage) == rating


class TestComputeMetrics:
    def test_counts_and_coverage(self, customers_table, orders_table, customer_columns, order_columns):
        declared = [DeclaredRelation(
            source_table="public.orders", source_column="customer_id",
            target_table="public.customers", target_column="id",
        )]
        implicit = [ImplicitRelation(
            source_table="public.orders", source_column="seller_id",
            target_table="public.sellers", target_column="id",
            confidence=0.7, detection_method=DetectionMethod.NAMING_PATTERN,
        )]

        metrics = compute_metrics(
            [customers_table, orders_table],
            {"public.customers": customer_columns, "public.orders": order_columns},
            declared, implicit, [],
        )

        assert metrics.total_tables == 2
        assert metrics.total_columns == 7
        assert metrics.relationship_coverage == 1.0
        assert metrics.quality_rating == QualityRating.EXCELLENT

    def test_no_tables(self):
        metrics = compute_metrics([], {}, [], [], [])

        assert metrics.relationship_coverage == 0.0
        assert metrics.quality_rating == QualityRating.CRITICAL


# =============================================================================
# Discovery Run
# =============================================================================

class TestDiscoveryRun:
    """Test a full run over the fake reader."""

    def test_full_run(self, fake_reader):
        report = asyncio.run(DiscoveryRun(fake_reader, concurrency=2).run())

        declared = [
            r for r in report.relations
            if r.source_table == "public.orders"
            and r.source_column == "customer_id"
            and r.relation_type == RelationType.DECLARED
        ]
        assert len(declared) == 1
        assert declared[0].target_table == "public.customers"

        customers = report.table_report("public.customers")
        assert customers.score is not None
        assert {p.column.name for p in customers.profiles} == {"id", "email", "name"}
        assert all(c.distinct_count == 20 for c in customers.columns)

        assert report.metrics.total_tables == 3
        assert report.metrics.total_columns == 7
        assert report.metrics.declared_relations == 1
        assert report.finished_at is not None

    def test_unreadable_table_isolated(self, fake_reader):
        report = asyncio.run(DiscoveryRun(fake_reader).run())

        audit = report.table_report("public.audit_log")
        assert audit is not None
        assert audit.score is None
        assert audit.profiles == []

        failure = next(f for f in report.failures if f.target == "public.audit_log")
        assert failure.stage == "columns"
        assert failure.error["code"] == "SCHEMA_NOT_FOUND"
        assert report.table_report("public.orders").score is not None

    def test_collector_failure_isolated(self, fake_reader, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("sample comparison failed")

        monkeypatch.setattr("core.services.discovery.collect_statistical", explode)

        report = asyncio.run(DiscoveryRun(fake_reader).run())

        failure = next(f for f in report.failures if f.stage == "collector")
        assert failure.target == "statistical"
        assert failure.error["code"] == "RuntimeError"
        assert report.metrics.statistical_relations == 0
        assert report.metrics.declared_relations == 1

    def test_profile_failure_isolated(self, fake_reader, monkeypatch):
        run = DiscoveryRun(fake_reader)
        original = run.profiler.profile

        def profile(column, values, aggregates=None, row_ids=None):
            if column.name == "email":
                raise ValueError("bad values")
            return original(column, values, aggregates, row_ids)

        monkeypatch.setattr(run.profiler, "profile", profile)

        report = asyncio.run(run.run())

        customers = report.table_report("public.customers")
        assert {p.column.name for p in customers.profiles} == {"id", "name"}
        assert any(f.stage == "profile" and f.target == "public.customers.email" for f in report.failures)

    def test_listing_failure_aborts(self, fake_reader):
        fake_reader.fail_listing = True

        with pytest.raises(ConnectivityError):
            asyncio.run(DiscoveryRun(fake_reader).run())


class CountingReader(FakeReader):
    """FakeReader whose aggregate queries take a while and count overlap."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.active = 0
        self.peak = 0

    async def column_aggregates(self, table, column):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.02)
            return await super().column_aggregates(table, column)
        finally:
            self.active -= 1


class TestConcurrency:
    """Test that the profiling pool spans tables, not just one table's columns."""

    def _reader(self, table_count):
        tables = [TableMetadata(schema_name="public", name=f"t{i}") for i in range(table_count)]
        return CountingReader(
            tables=tables,
            columns={t.full_name: [ColumnMetadata(name="value", data_type="integer")] for t in tables},
            rows={t.full_name: [{"value": n} for n in range(5)] for t in tables},
        )

    def test_tables_processed_in_parallel(self):
        reader = self._reader(4)

        report = asyncio.run(DiscoveryRun(reader, concurrency=8).run())

        assert reader.peak == 4
        assert [t.table.name for t in report.tables] == ["t0", "t1", "t2", "t3"]
        assert all(t.score is not None for t in report.tables)

    def test_pool_bound_holds_across_tables(self):
        reader = self._reader(6)

        asyncio.run(DiscoveryRun(reader, concurrency=2).run())

        assert reader.peak == 2


class TestMetricFacts:
    """Test that scored tables are appended to the metrics store."""

    def test_facts_appended(self, fake_reader):
        store = InMemoryMetricsStore()

        report = asyncio.run(DiscoveryRun(fake_reader, metrics_store=store).run())

        profiled = sum(len(t.profiles) for t in report.tables if t.score is not None)
        assert len(store.facts) == 2 * 8 + 6 * profiled

        series = store.series("public", "customers", "quality_score")
        assert len(series) == 1
        assert series[0][1] == report.table_report("public.customers").score.total

        email_completeness = store.series("public", "customers", "completeness_rate", "email")
        assert email_completeness[0][1] == 1.0

    def test_store_failure_recorded(self, fake_reader):
        class UnavailableStore(MetricsStore):
            async def append(self, facts):
                raise SupabaseClientError(message="insert failed", code="INSERT_FAILED")

        report = asyncio.run(DiscoveryRun(fake_reader, metrics_store=UnavailableStore()).run())

        failure = next(f for f in report.failures if f.stage == "metrics")
        assert failure.error["code"] == "INSERT_FAILED"
        assert report.metrics.total_tables == 3


class TestSqliteDiscovery:
    def test_run_against_sqlite(self, sqlite_engine):
        reader = SqlAlchemyMetadataReader(sqlite_engine, schemas=["main"], timeout=5)

        report = asyncio.run(DiscoveryRun(reader, concurrency=2).run())

        assert any(
            r.source_table == "main.orders"
            and r.source_column == "customer_id"
            and r.target_table == "main.customers"
            for r in report.relations
        )
        orders = report.table_report("main.orders")
        assert orders.score is not None
        assert 0 <= orders.score.total <= 100
