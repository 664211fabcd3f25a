# =============================================================================
# lib/evidence.py - Relationship Evidence Collectors
# =============================================================================
# Three independent producers of relationship evidence:
#
#   collect_declared         FK constraints from column metadata
#   collect_naming_patterns  customer_id -> customers.id, id_customer -> customer.id
#   collect_statistical      value overlap between sampled key columns
#
# Collectors are pure functions over metadata and samples; fetching those is
# the discovery run's job (core/services/discovery.py). Their outputs feed
# lib/relationships.merge_relations.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from app.config import settings
from core.models import (
    ColumnClassification,
    ColumnMetadata,
    DeclaredRelation,
    DetectionMethod,
    ImplicitRelation,
    StatisticalRelation,
    TableMetadata,
    classify_column,
)
from core.models.metadata import name_tokens

# Set up logging for this module
logger = logging.getLogger(__name__)

ColumnsByTable = Mapping[str, Sequence[ColumnMetadata]]
SamplesByTable = Mapping[str, Mapping[str, Sequence[Any]]]

# Fewer distinct values than this cannot support an overlap claim
MIN_DISTINCT_VALUES = 2


# =============================================================================
# Shared Helpers
# =============================================================================

def type_family(data_type: str) -> str:
    """Coarse type family used to decide whether two columns can be compared."""
    lowered = data_type.lower()
    if "uuid" in lowered:
        return "uuid"
    if any(t in lowered for t in ("int", "numeric", "decimal", "serial")):
        return "integer"
    if any(t in lowered for t in ("char", "text", "string")):
        return "text"
    return lowered


def _key_column(columns: Sequence[ColumnMetadata]) -> ColumnMetadata | None:
    """Single-column primary key, else a column literally named `id`."""
    pks = [c for c in columns if c.is_primary_key]
    if len(pks) == 1:
        return pks[0]
    for column in columns:
        if column.name.lower() == "id":
            return column
    return None


def _qualify(table_name: str, default_schema: str) -> str:
    return table_name if "." in table_name else f"{default_schema}.{table_name}"


def _normalize_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float):
        if value != value:  # NaN
            return None
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


# =============================================================================
# Declared Foreign Keys
# =============================================================================

def collect_declared(tables: Sequence[TableMetadata], columns_by_table: ColumnsByTable) -> list[DeclaredRelation]:
    """Read declared foreign keys from column metadata."""
    relations = []
    for table in tables:
        for column in columns_by_table.get(table.full_name, []):
            if not (column.is_foreign_key and column.foreign_table and column.foreign_column):
                continue
            relations.append(DeclaredRelation(
                source_table=table.full_name,
                source_column=column.name,
                target_table=_qualify(column.foreign_table, table.schema_name),
                target_column=column.foreign_column,
                constraint_name=column.fk_constraint_name,
            ))
    logger.debug(f"Declared FK collector found {len(relations)} relations")
    return relations


# =============================================================================
# Naming Patterns
# =============================================================================

def _candidate_table_names(base: str) -> list[str]:
    names = [base, f"{base}s", f"{base}es", f"s_{base}"]
    if base.endswith("y"):
        names.append(f"{base[:-1]}ies")
    return names


def collect_naming_patterns(
    tables: Sequence[TableMetadata],
    columns_by_table: ColumnsByTable,
    confidence: float | None = None,
) -> list[ImplicitRelation]:
    """
    Match `<table>_id` / `id_<table>` style columns to the table they name.

    Singular/plural forms and an `s_` table prefix are tried. Columns that
    already carry a declared FK are skipped.

    Example:
        orders.customer_id -> customers.id
    """
    confidence = settings.NAMING_PATTERN_CONFIDENCE if confidence is None else confidence

    by_name: dict[str, list[TableMetadata]] = {}
    for table in tables:
        by_name.setdefault(table.name.lower(), []).append(table)

    relations = []
    for table in tables:
        for column in columns_by_table.get(table.full_name, []):
            if column.is_foreign_key:
                continue
            tokens = name_tokens(column.name)
            if len(tokens) < 2:
                continue
            if tokens[-1] == "id":
                base = "_".join(tokens[:-1])
            elif tokens[0] == "id":
                base = "_".join(tokens[1:])
            else:
                continue

            target = None
            for name in _candidate_table_names(base):
                matches = by_name.get(name, [])
                # Same schema first
                matches = sorted(matches, key=lambda t: (t.schema_name != table.schema_name, t.full_name))
                if matches:
                    target = matches[0]
                    break
            if target is None:
                continue

            key = _key_column(columns_by_table.get(target.full_name, []))
            if key is None:
                continue
            if target.full_name == table.full_name and key.name == column.name:
                continue

            relations.append(ImplicitRelation(
                source_table=table.full_name,
                source_column=column.name,
                target_table=target.full_name,
                target_column=key.name,
                confidence=confidence,
                detection_method=DetectionMethod.NAMING_PATTERN,
                evidence=f"Naming pattern: {column.name} -> {target.name}.{key.name}",
            ))

    logger.debug(f"Naming-pattern collector found {len(relations)} relations")
    return relations


# =============================================================================
# Statistical Overlap
# =============================================================================

def overlap_percentage(overlap_count: int, scale: float | None = None) -> float:
    """
    Scale an overlap count into [0, 1]: min(1.0, overlap / scale).

    The scale constant (default 100) does not depend on the sample size and
    is kept configurable until it is calibrated against real data.
    """
    scale = settings.OVERLAP_SCALE if scale is None else scale
    if overlap_count <= 0:
        return 0.0
    return min(1.0, overlap_count / scale)


def _distinct_sample(values: Sequence[Any], limit: int) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        normalized = _normalize_value(value)
        if normalized is None or normalized == "":
            continue
        seen.setdefault(normalized, None)
        if len(seen) >= limit:
            break
    return list(seen)


def collect_statistical(
    tables: Sequence[TableMetadata],
    columns_by_table: ColumnsByTable,
    samples: SamplesByTable,
    sample_size: int | None = None,
    min_match_rate: float | None = None,
    scale: float | None = None,
) -> list[StatisticalRelation]:
    """
    Detect inclusion relations by comparing sampled values.

    Source columns are identifier-like columns; targets are the key column of
    every other table with a compatible type family. A relation is emitted when
    the share of distinct source values found in the target reaches
    `min_match_rate`.

    Args:
        tables: Tables in the run
        columns_by_table: Column metadata keyed by table full name
        samples: Sampled values keyed by table full name, then column name
        sample_size: Distinct values compared per side
        min_match_rate: Minimum confidence to emit a relation
        scale: Divisor for overlap_percentage

    Returns:
        List of StatisticalRelation, confidence = matched / distinct source values
    """
    sample_size = settings.STATISTICAL_SAMPLE_SIZE if sample_size is None else sample_size
    min_match_rate = settings.STATISTICAL_MIN_MATCH_RATE if min_match_rate is None else min_match_rate

    targets = []
    for table in tables:
        key = _key_column(columns_by_table.get(table.full_name, []))
        values = samples.get(table.full_name, {}).get(key.name) if key else None
        if key is None or not values:
            continue
        targets.append((table, key, set(_distinct_sample(values, sample_size))))

    relations = []
    for table in tables:
        table_samples = samples.get(table.full_name, {})
        columns = columns_by_table.get(table.full_name, [])
        own_key = _key_column(columns)
        for column in columns:
            if classify_column(column) != ColumnClassification.IDENTIFIER:
                continue
            # A table's own key overlaps every other surrogate key
            if own_key is not None and column.name == own_key.name:
                continue
            source_values = _distinct_sample(table_samples.get(column.name, []), sample_size)
            if len(source_values) < MIN_DISTINCT_VALUES:
                continue
            family = type_family(column.data_type)

            for target_table, key, target_values in targets:
                if target_table.full_name == table.full_name:
                    continue
                if type_family(key.data_type) != family:
                    continue
                overlap = sum(1 for v in source_values if v in target_values)
                if overlap == 0:
                    continue
                match_rate = overlap / len(source_values)
                if match_rate < min_match_rate:
                    continue
                relations.append(StatisticalRelation(
                    source_table=table.full_name,
                    source_column=column.name,
                    target_table=target_table.full_name,
                    target_column=key.name,
                    confidence=round(match_rate, 4),
                    evidence=(
                        f"Value overlap: {overlap}/{len(source_values)} sampled values of "
                        f"{table.name}.{column.name} found in {target_table.name}.{key.name}"
                    ),
                    value_overlap_count=overlap,
                    reference_sample_size=len(source_values),
                    overlap_percentage=overlap_percentage(overlap, scale),
                ))

    logger.debug(f"Statistical collector found {len(relations)} relations")
    return relations
