# =============================================================================
# tests/test_evidence.py - Relationship Evidence Collector Tests
# =============================================================================
# Tests for lib/evidence.py:
# - Declared FKs read from column metadata
# - Naming patterns (customer_id -> customers.id, id_cliente -> cliente.id)
# - Statistical overlap and the overlap_percentage scale
#
# Run with: pytest tests/test_evidence.py -v
# =============================================================================

import pytest

from core.models import ColumnMetadata, DetectionMethod, TableMetadata
from lib.evidence import (
    collect_declared,
    collect_naming_patterns,
    collect_statistical,
    overlap_percentage,
    type_family,
)


def _table(name, schema="public"):
    return TableMetadata(schema_name=schema, name=name, has_primary_key=True)


def _pk(name="id", data_type="integer"):
    return ColumnMetadata(name=name, data_type=data_type, is_nullable=False, ordinal_position=1, is_primary_key=True)


# =============================================================================
# Declared
# =============================================================================

class TestCollectDeclared:
    """Test FK extraction."""

    def test_declared_foreign_key(self, customers_table, orders_table, customer_columns, order_columns):
        relations = collect_declared(
            [customers_table, orders_table],
            {customers_table.full_name: customer_columns, orders_table.full_name: order_columns},
        )

        assert len(relations) == 1
        relation = relations[0]
        assert relation.source_table == "public.orders"
        assert relation.source_column == "customer_id"
        assert relation.target_table == "public.customers"
        assert relation.target_column == "id"
        assert relation.constraint_name == "orders_customer_id_fkey"
        assert relation.confidence == 1.0

    def test_unqualified_target_uses_source_schema(self):
        table = _table("orders", schema="sales")
        columns = [
            _pk(),
            ColumnMetadata(
                name="client_id", data_type="integer", is_foreign_key=True,
                foreign_table="clients", foreign_column="id",
            ),
        ]

        relations = collect_declared([table], {table.full_name: columns})

        assert relations[0].target_table == "sales.clients"


# =============================================================================
# Naming Patterns
# =============================================================================

class TestCollectNamingPatterns:
    """Test name-based relationship guesses."""

    def _run(self, tables_with_columns, confidence=None):
        tables = [t for t, _ in tables_with_columns]
        columns = {t.full_name: cols for t, cols in tables_with_columns}
        return collect_naming_patterns(tables, columns, confidence=confidence)

    def test_plural_target(self):
        relations = self._run([
            (_table("customers"), [_pk()]),
            (_table("orders"), [_pk(), ColumnMetadata(name="customer_id", data_type="integer")]),
        ], confidence=0.8)

        assert len(relations) == 1
        relation = relations[0]
        assert relation.source_table == "public.orders"
        assert relation.target_table == "public.customers"
        assert relation.target_column == "id"
        assert relation.confidence == 0.8
        assert relation.detection_method == DetectionMethod.NAMING_PATTERN
        assert relation.evidence == "Naming pattern: customer_id -> customers.id"

    def test_id_prefix_and_ies_plural(self):
        relations = self._run([
            (_table("categories"), [_pk()]),
            (_table("products"), [_pk(), ColumnMetadata(name="id_category", data_type="integer")]),
        ])

        assert [(r.source_column, r.target_table) for r in relations] == [("id_category", "public.categories")]

    def test_s_prefixed_table(self):
        relations = self._run([
            (_table("s_cliente"), [_pk("cliente_id")]),
            (_table("pedido"), [_pk(), ColumnMetadata(name="cliente_id", data_type="integer")]),
        ])

        assert relations[0].target_table == "public.s_cliente"
        assert relations[0].target_column == "cliente_id"

    def test_declared_fk_columns_skipped(self, customers_table, orders_table, customer_columns, order_columns):
        relations = collect_naming_patterns(
            [customers_table, orders_table],
            {customers_table.full_name: customer_columns, orders_table.full_name: order_columns},
        )
        assert relations == []

    def test_no_matching_table(self):
        relations = self._run([
            (_table("orders"), [_pk(), ColumnMetadata(name="warehouse_id", data_type="integer")]),
        ])
        assert relations == []

    def test_same_schema_preferred(self):
        relations = self._run([
            (_table("customers", schema="archive"), [_pk()]),
            (_table("customers", schema="sales"), [_pk()]),
            (_table("orders", schema="sales"), [_pk(), ColumnMetadata(name="customer_id", data_type="integer")]),
        ])

        assert relations[0].target_table == "sales.customers"


# =============================================================================
# Statistical
# =============================================================================

class TestOverlapPercentage:
    """Test the fixed-scale overlap percentage."""

    def test_capped_at_one(self):
        # 980 of 1000 sampled values overlap: far above the scale
        assert overlap_percentage(980, scale=100) == 1.0

    def test_below_scale(self):
        assert overlap_percentage(42, scale=100) == 0.42

    def test_zero(self):
        assert overlap_percentage(0) == 0.0


class TestTypeFamily:
    @pytest.mark.parametrize(
        "data_type,family",
        [("bigint", "integer"), ("numeric(10,0)", "integer"), ("varchar(20)", "text"), ("uuid", "uuid")],
    )
    def test_families(self, data_type, family):
        assert type_family(data_type) == family


class TestCollectStatistical:
    """Test value-overlap detection."""

    def _setup(self, order_customer_ids, customer_ids):
        customers = _table("customers")
        orders = _table("orders")
        columns = {
            customers.full_name: [_pk()],
            orders.full_name: [_pk(), ColumnMetadata(name="buyer_id", data_type="integer", ordinal_position=2)],
        }
        samples = {
            customers.full_name: {"id": customer_ids},
            orders.full_name: {"id": list(range(5000, 5000 + len(order_customer_ids))), "buyer_id": order_customer_ids},
        }
        return [customers, orders], columns, samples

    def test_high_overlap_detected(self):
        tables, columns, samples = self._setup(
            order_customer_ids=list(range(1, 1001)),
            customer_ids=list(range(1, 981)),
        )

        relations = collect_statistical(tables, columns, samples, sample_size=1000, min_match_rate=0.8, scale=100)

        assert len(relations) == 1
        relation = relations[0]
        assert relation.source_table == "public.orders"
        assert relation.source_column == "buyer_id"
        assert relation.target_table == "public.customers"
        assert relation.target_column == "id"
        assert relation.value_overlap_count == 980
        assert relation.reference_sample_size == 1000
        assert relation.confidence == 0.98
        assert relation.overlap_percentage == 1.0
        assert relation.detection_method == DetectionMethod.STATISTICAL

    def test_low_overlap_ignored(self):
        tables, columns, samples = self._setup(
            order_customer_ids=list(range(1, 101)),
            customer_ids=list(range(1, 11)),
        )

        relations = collect_statistical(tables, columns, samples, sample_size=1000, min_match_rate=0.8)

        assert relations == []

    def test_single_distinct_value_ignored(self):
        tables, columns, samples = self._setup(order_customer_ids=[1, 1, 1, 1], customer_ids=[1, 2, 3])

        assert collect_statistical(tables, columns, samples, min_match_rate=0.5) == []

    def test_incompatible_types_ignored(self):
        tables, columns, samples = self._setup(order_customer_ids=[1, 2, 3], customer_ids=[1, 2, 3])
        columns["public.customers"] = [_pk(data_type="uuid")]

        assert collect_statistical(tables, columns, samples, min_match_rate=0.5) == []

    def test_floats_and_nulls_normalised(self):
        tables, columns, samples = self._setup(
            order_customer_ids=[1.0, 2.0, None, 3.0],
            customer_ids=[1, 2, 3],
        )

        relations = collect_statistical(tables, columns, samples, min_match_rate=0.8)

        assert len(relations) == 1
        assert relations[0].value_overlap_count == 3
        assert relations[0].confidence == 1.0
