# =============================================================================
# lib/quality_score.py - Data-Quality Scorer
# =============================================================================
# Converts a table's metadata and column profiles into a 0-100 score made of
# five capped components:
#
#   primary key   0 or 30    a PK is declared
#   nulls         0..20      round((1 - avg null fraction) * 20)
#   statistics    0..20      round(columns with distinct stats / columns * 20)
#   foreign keys  0 or 15    at least one FK column
#   data types    0..15      round(appropriately typed columns / columns * 15)
#
# The scorer is a pure function: identical inputs give an identical breakdown.
# =============================================================================

from __future__ import annotations

from collections.abc import Sequence

from core.models import ColumnMetadata, ColumnProfile, DataQualityScore, RelevantRelation, TableMetadata
from core.models.metadata import is_identifier_name, name_tokens

PRIMARY_KEY_POINTS = 30
NULL_POINTS = 20
STATISTICS_POINTS = 20
FOREIGN_KEY_POINTS = 15
DATA_TYPE_POINTS = 15


def is_appropriate_type(column: ColumnMetadata) -> bool:
    """
    Check whether a column's declared type fits its name.

    - id columns should be integers or uuids
    - date/data columns should be dates or timestamps
    - email columns should be varchar or text
    Everything else is considered appropriate.
    """
    data_type = column.data_type.lower()
    tokens = name_tokens(column.name)

    if is_identifier_name(column.name):
        return "int" in data_type or "uuid" in data_type or "serial" in data_type
    if any(t.startswith("date") or t == "data" for t in tokens):
        return "timestamp" in data_type or "date" in data_type
    if "email" in column.name.lower():
        return "char" in data_type or "text" in data_type
    return True


def score_table(
    table: TableMetadata,
    columns: Sequence[ColumnProfile],
    relevant_relations: Sequence[RelevantRelation] = (),
) -> DataQualityScore:
    """
    Score one table.

    Args:
        table: Table metadata (primary key flag)
        columns: Profiles of the table's columns; their metadata carries null
                 fraction, distinct count and FK flags
        relevant_relations: Merged relations; those touching the table are
                            counted for information only

    Returns:
        DataQualityScore with every component populated
    """
    relationship_count = sum(1 for r in relevant_relations if r.involves(table.full_name))

    if not columns:
        return DataQualityScore(
            table=table.full_name,
            relationship_count=relationship_count,
            summary="No columns to score",
            tooltip="No columns were profiled for this table.",
        )

    metas = [profile.column for profile in columns]
    total = len(metas)

    avg_null_fraction = sum(c.null_fraction for c in metas) / total
    with_stats = sum(1 for c in metas if c.distinct_count > 0)
    appropriate = sum(1 for c in metas if is_appropriate_type(c))
    fk_columns = sum(1 for c in metas if c.is_foreign_key)

    primary_key_score = PRIMARY_KEY_POINTS if table.has_primary_key else 0
    null_score = round((1.0 - avg_null_fraction) * NULL_POINTS)
    statistics_score = round(with_stats / total * STATISTICS_POINTS)
    foreign_key_score = FOREIGN_KEY_POINTS if fk_columns > 0 else 0
    data_type_score = round(appropriate / total * DATA_TYPE_POINTS)

    raw_total = primary_key_score + null_score + statistics_score + foreign_key_score + data_type_score
    clamped = max(0, min(100, raw_total))

    summary = (
        f"PK: {primary_key_score}/{PRIMARY_KEY_POINTS}, Nulls: {null_score}/{NULL_POINTS}, "
        f"Stats: {statistics_score}/{STATISTICS_POINTS}, FK: {foreign_key_score}/{FOREIGN_KEY_POINTS}, "
        f"Types: {data_type_score}/{DATA_TYPE_POINTS}"
    )
    tooltip = "\n".join([
        f"Quality score {clamped}/100 for {table.full_name}",
        f"Primary key: {primary_key_score} ({'declared' if table.has_primary_key else 'missing'})",
        f"Null values: {null_score} (average null fraction {avg_null_fraction:.1%})",
        f"Statistics: {statistics_score} ({with_stats}/{total} columns with distinct values)",
        f"Foreign keys: {foreign_key_score} ({fk_columns} FK columns)",
        f"Data types: {data_type_score} ({appropriate}/{total} appropriately typed)",
    ])

    return DataQualityScore(
        table=table.full_name,
        primary_key_score=primary_key_score,
        null_score=null_score,
        statistics_score=statistics_score,
        foreign_key_score=foreign_key_score,
        data_type_score=data_type_score,
        total=clamped,
        relationship_count=relationship_count,
        summary=summary,
        tooltip=tooltip,
    )
