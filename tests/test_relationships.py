# =============================================================================
# tests/test_relationships.py - Relationship Merger Tests
# =============================================================================
# Tests for lib/relationships.py:
# - Importance score arithmetic and clamping
# - Deduplication per (type, unordered table pair)
# - Deterministic ordering regardless of input order
# - Malformed evidence is counted and skipped
#
# Run with: pytest tests/test_relationships.py -v
# =============================================================================

import random

import pytest

from core.models import (
    DeclaredRelation,
    DetectionMethod,
    ImplicitRelation,
    JoinPattern,
    RelationType,
    StatisticalRelation,
)
from lib.relationships import (
    VALIDATION_OPPORTUNITIES,
    importance_score,
    merge,
    merge_relations,
    relations_for_table,
    table_pair,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def declared():
    return [
        DeclaredRelation(
            source_table="public.orders",
            source_column="customer_id",
            target_table="public.customers",
            target_column="id",
            constraint_name="orders_customer_id_fkey",
        ),
    ]


@pytest.fixture
def implicit():
    return [
        ImplicitRelation(
            source_table="public.order_items",
            source_column="product_id",
            target_table="public.products",
            target_column="id",
            confidence=0.8,
            detection_method=DetectionMethod.NAMING_PATTERN,
            evidence="Naming pattern: product_id -> products.id",
        ),
        ImplicitRelation(
            source_table="public.invoices",
            source_column="client_ref",
            target_table="public.customers",
            target_column="id",
            confidence=0.6,
            detection_method=DetectionMethod.AI_SEMANTIC,
            evidence="client_ref reads like a customer reference",
        ),
    ]


@pytest.fixture
def statistical():
    return [
        StatisticalRelation(
            source_table="public.orders",
            source_column="customer_id",
            target_table="public.customers",
            target_column="id",
            confidence=0.98,
            value_overlap_count=98,
            reference_sample_size=100,
            overlap_percentage=0.98,
        ),
        StatisticalRelation(
            source_table="public.shipments",
            source_column="order_id",
            target_table="public.orders",
            target_column="id",
            confidence=0.85,
            value_overlap_count=85,
            reference_sample_size=100,
            overlap_percentage=0.85,
        ),
    ]


# =============================================================================
# Importance Score
# =============================================================================

class TestImportanceScore:
    """Test the importance formula."""

    def test_base_score(self):
        assert importance_score(RelationType.IMPLICIT, 0.5, 0) == 5

    def test_declared_high_confidence(self):
        assert importance_score(RelationType.DECLARED, 1.0, 0) == 10

    def test_join_bonus_capped_at_two(self):
        assert importance_score(RelationType.STATISTICAL, 0.5, 1) == 6
        assert importance_score(RelationType.STATISTICAL, 0.5, 7) == 7

    def test_clamped_to_ten(self):
        assert importance_score(RelationType.DECLARED, 1.0, 5) == 10

    def test_confidence_threshold_inclusive(self):
        assert importance_score(RelationType.NAMING_PATTERN, 0.8, 0) == 7
        assert importance_score(RelationType.NAMING_PATTERN, 0.79, 0) == 5


class TestTablePair:
    def test_unordered(self):
        assert table_pair("b.x", "a.y") == table_pair("a.y", "b.x") == ("a.y", "b.x")


# =============================================================================
# Merge
# =============================================================================

class TestMergeRelations:
    """Test merging evidence into ranked relations."""

    def test_declared_relation_fields(self, declared):
        relations = merge(declared=declared)

        assert len(relations) == 1
        relation = relations[0]
        assert relation.relation_type == RelationType.DECLARED
        assert relation.confidence_level == 1.0
        assert relation.importance_score == 10
        assert relation.join_condition == "public.orders.customer_id = public.customers.id"
        assert relation.evidence == "Foreign key orders_customer_id_fkey"
        assert relation.validation_opportunities == list(VALIDATION_OPPORTUNITIES[RelationType.DECLARED])

    def test_different_types_for_same_pair_are_kept(self, declared, statistical):
        relations = merge(declared=declared, statistical=statistical[:1])

        types = {r.relation_type for r in relations}
        assert types == {RelationType.DECLARED, RelationType.STATISTICAL}

    def test_same_type_same_pair_keeps_highest_confidence(self):
        weaker = StatisticalRelation(
            source_table="public.customers",
            source_column="id",
            target_table="public.orders",
            target_column="customer_id",
            confidence=0.81,
            value_overlap_count=81,
        )
        stronger = StatisticalRelation(
            source_table="public.orders",
            source_column="customer_id",
            target_table="public.customers",
            target_column="id",
            confidence=0.95,
            value_overlap_count=95,
        )

        relations = merge(statistical=[weaker, stronger])

        assert len(relations) == 1
        assert relations[0].confidence_level == 0.95
        assert relations[0].source_table == "public.orders"

    def test_implicit_types_follow_detection_method(self, implicit):
        relations = merge(implicit=implicit)
        by_source = {r.source_table: r.relation_type for r in relations}

        assert by_source["public.order_items"] == RelationType.NAMING_PATTERN
        assert by_source["public.invoices"] == RelationType.IMPLICIT

    def test_join_patterns_raise_importance(self, implicit):
        joins = [
            JoinPattern(left_table="public.products", right_table="public.order_items"),
            JoinPattern(left_table="public.order_items", right_table="public.products"),
        ]

        without = merge(implicit=implicit[:1])[0]
        with_joins = merge(implicit=implicit[:1], joins=joins)[0]

        assert with_joins.importance_score == without.importance_score + 2

    def test_ordering(self, declared, implicit, statistical):
        relations = merge(declared=declared, implicit=implicit, statistical=statistical)

        keys = [(-r.importance_score, -r.confidence_level) for r in relations]
        assert keys == sorted(keys)
        assert relations[0].relation_type == RelationType.DECLARED
        assert relations[-1].source_table == "public.invoices"

    def test_output_independent_of_input_order(self, declared, implicit, statistical):
        expected = merge_relations(declared, implicit, statistical).model_dump_json()

        rng = random.Random(7)
        for _ in range(5):
            shuffled_implicit = implicit[:]
            shuffled_statistical = statistical[:]
            rng.shuffle(shuffled_implicit)
            rng.shuffle(shuffled_statistical)
            actual = merge_relations(declared, shuffled_implicit, shuffled_statistical).model_dump_json()
            assert actual == expected

    def test_malformed_evidence_dropped(self, declared):
        broken = ImplicitRelation(
            source_table="public.orders",
            source_column="",
            target_table="public.customers",
            target_column="id",
            confidence=0.9,
            detection_method=DetectionMethod.NAMING_PATTERN,
        )
        broken_join = JoinPattern(left_table="", right_table="public.customers")

        result = merge_relations(declared=declared, implicit=[broken], joins=[broken_join])

        assert result.dropped_count == 2
        assert len(result.relations) == 1

    def test_empty_input(self):
        result = merge_relations()
        assert result.relations == []
        assert result.dropped_count == 0


class TestRelationsForTable:
    def test_filters_by_either_side(self, declared, statistical):
        relations = merge(declared=declared, statistical=statistical)

        touching = relations_for_table(relations, "public.orders")

        assert len(touching) == 3
        assert relations_for_table(relations, "public.nothing") == []
