# =============================================================================
# lib/relationships.py - Relationship Merger
# =============================================================================
# Merges relationship evidence from every collector into one ranked,
# deduplicated list of RelevantRelation records.
#
# Rules:
#   - Evidence is grouped by unordered table pair. Different evidence types for
#     the same pair stay separate (a declared FK and its statistical echo are
#     both kept, tagged by type).
#   - Duplicates of the same type for the same pair collapse to the record with
#     the highest confidence.
#   - importance = 5, +3 declared, +2 if confidence >= 0.8,
#     +1 per join pattern on the pair (at most +2), clamped to [1, 10]
#   - Ordering: importance desc, confidence desc, (source_table, target_table)
#
# This module is pure: no I/O, no randomness. Malformed evidence is dropped
# with a warning and never aborts the merge.
# =============================================================================

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, NamedTuple

from pydantic import BaseModel, Field

from core.models import (
    DeclaredRelation,
    DetectionMethod,
    ImplicitRelation,
    JoinPattern,
    RelationType,
    RelevantRelation,
    StatisticalRelation,
)

# Set up logging for this module
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

BASE_IMPORTANCE = 5
DECLARED_BONUS = 3
HIGH_CONFIDENCE_BONUS = 2
HIGH_CONFIDENCE_THRESHOLD = 0.8
JOIN_PATTERN_BONUS_CAP = 2
MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 10

VALIDATION_OPPORTUNITIES: dict[RelationType, tuple[str, ...]] = {
    RelationType.DECLARED: (
        "referential_integrity",
        "orphaned_records",
        "cascade_consistency",
    ),
    RelationType.IMPLICIT: (
        "data_consistency",
        "logical_integrity",
    ),
    RelationType.NAMING_PATTERN: (
        "referential_integrity_candidate",
        "data_consistency",
    ),
    RelationType.STATISTICAL: (
        "inclusion_dependency",
        "value_overlap_drift",
    ),
}

_METHOD_TO_TYPE = {
    DetectionMethod.NAMING_PATTERN: RelationType.NAMING_PATTERN,
    DetectionMethod.STATISTICAL: RelationType.STATISTICAL,
    DetectionMethod.AI_SEMANTIC: RelationType.IMPLICIT,
}


# =============================================================================
# Types
# =============================================================================

class _Candidate(NamedTuple):
    relation_type: RelationType
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    confidence: float
    evidence: str

    @property
    def pair(self) -> tuple[str, str]:
        return table_pair(self.source_table, self.target_table)

    def rank_key(self) -> tuple:
        # Highest confidence wins; column pair breaks ties deterministically
        return (
            -self.confidence,
            self.source_table,
            self.source_column,
            self.target_table,
            self.target_column,
            self.evidence,
        )


class MergeResult(BaseModel):
    """Merged relations plus the number of evidence records that were dropped."""

    relations: list[RelevantRelation] = Field(default_factory=list)
    dropped_count: int = Field(default=0, ge=0)


# =============================================================================
# Helpers
# =============================================================================

def table_pair(a: str, b: str) -> tuple[str, str]:
    """Unordered table pair as a sorted tuple."""
    return (a, b) if a <= b else (b, a)


def importance_score(relation_type: RelationType, confidence: float, join_matches: int) -> int:
    """Deterministic importance for a merged relation, clamped to [1, 10]."""
    score = BASE_IMPORTANCE
    if relation_type == RelationType.DECLARED:
        score += DECLARED_BONUS
    if confidence >= HIGH_CONFIDENCE_THRESHOLD:
        score += HIGH_CONFIDENCE_BONUS
    score += min(JOIN_PATTERN_BONUS_CAP, max(0, join_matches))
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, score))


def _missing(*names: str | None) -> bool:
    return any(name is None or not str(name).strip() for name in names)


def _to_candidates(
    declared: Iterable[DeclaredRelation],
    implicit: Iterable[ImplicitRelation],
    statistical: Iterable[StatisticalRelation],
) -> tuple[list[_Candidate], int]:
    candidates: list[_Candidate] = []
    dropped = 0

    def accept(record, relation_type: RelationType, confidence: float, evidence: str) -> None:
        nonlocal dropped
        if _missing(record.source_table, record.target_table, record.source_column, record.target_column):
            dropped += 1
            logger.warning(
                f"Dropping malformed {relation_type.value} evidence: "
                f"{record.source_table!r}.{record.source_column!r} -> "
                f"{record.target_table!r}.{record.target_column!r}"
            )
            return
        candidates.append(_Candidate(
            relation_type=relation_type,
            source_table=record.source_table,
            source_column=record.source_column,
            target_table=record.target_table,
            target_column=record.target_column,
            confidence=confidence,
            evidence=evidence,
        ))

    for record in declared:
        evidence = f"Foreign key {record.constraint_name}" if record.constraint_name else "Foreign key"
        accept(record, RelationType.DECLARED, record.confidence, evidence)

    for record in implicit:
        accept(record, _METHOD_TO_TYPE[record.detection_method], record.confidence, record.evidence)

    for record in statistical:
        evidence = record.evidence or (
            f"{record.value_overlap_count} shared values "
            f"(overlap {record.overlap_percentage:.2f})"
        )
        accept(record, RelationType.STATISTICAL, record.confidence, evidence)

    return candidates, dropped


def _count_joins(joins: Iterable[JoinPattern]) -> tuple[Counter, int]:
    counts: Counter = Counter()
    dropped = 0
    for join in joins:
        if _missing(join.left_table, join.right_table):
            dropped += 1
            logger.warning(f"Dropping malformed join pattern: {join.join_condition!r}")
            continue
        counts[table_pair(join.left_table, join.right_table)] += 1
    return counts, dropped


# =============================================================================
# Merge
# =============================================================================

def merge_relations(
    declared: Iterable[DeclaredRelation] = (),
    implicit: Iterable[ImplicitRelation] = (),
    statistical: Iterable[StatisticalRelation] = (),
    joins: Iterable[JoinPattern] = (),
) -> MergeResult:
    """
    Merge all relationship evidence into ranked RelevantRelation records.

    Args:
        declared: FK constraints from the catalog
        implicit: Naming-pattern / AI-semantic relations
        statistical: Value-overlap relations
        joins: Observed join patterns (used only for importance)

    Returns:
        MergeResult with the ordered relations and the dropped-evidence count
    """
    candidates, dropped = _to_candidates(declared, implicit, statistical)
    join_counts, dropped_joins = _count_joins(joins)

    best: dict[tuple[RelationType, tuple[str, str]], _Candidate] = {}
    for candidate in candidates:
        key = (candidate.relation_type, candidate.pair)
        current = best.get(key)
        if current is None or candidate.rank_key() < current.rank_key():
            best[key] = candidate

    relations = []
    for candidate in best.values():
        relations.append(RelevantRelation(
            source_table=candidate.source_table,
            source_column=candidate.source_column,
            target_table=candidate.target_table,
            target_column=candidate.target_column,
            join_condition=(
                f"{candidate.source_table}.{candidate.source_column} = "
                f"{candidate.target_table}.{candidate.target_column}"
            ),
            relation_type=candidate.relation_type,
            importance_score=importance_score(
                candidate.relation_type, candidate.confidence, join_counts[candidate.pair]
            ),
            confidence_level=candidate.confidence,
            validation_opportunities=list(VALIDATION_OPPORTUNITIES[candidate.relation_type]),
            evidence=candidate.evidence,
        ))

    relations.sort(key=lambda r: (
        -r.importance_score,
        -r.confidence_level,
        r.source_table,
        r.target_table,
        r.relation_type.value,
        r.join_condition,
    ))

    total_dropped = dropped + dropped_joins
    if total_dropped:
        logger.warning(f"Merge dropped {total_dropped} malformed evidence record(s)")
    logger.debug(f"Merged {len(candidates)} evidence records into {len(relations)} relations")

    return MergeResult(relations=relations, dropped_count=total_dropped)


def merge(
    declared: Iterable[DeclaredRelation] = (),
    implicit: Iterable[ImplicitRelation] = (),
    statistical: Iterable[StatisticalRelation] = (),
    joins: Iterable[JoinPattern] = (),
) -> list[RelevantRelation]:
    """Merge evidence and return only the ranked relations."""
    return merge_relations(declared, implicit, statistical, joins).relations


def relations_for_table(relations: Iterable[RelevantRelation], table_full_name: str) -> list[RelevantRelation]:
    """Relations whose source or target is the given table."""
    return [r for r in relations if r.involves(table_full_name)]
