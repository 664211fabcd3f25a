# =============================================================================
# core/models/ - Pydantic Data Models
# =============================================================================
# This package contains Pydantic schemas for data validation:
# - metadata.py: Table/column metadata and derived column classification
# - relations.py: Relationship evidence and merged relations
# - profile.py: Column profiles (tagged-union deep stats, anomalies)
# - quality.py: Data-quality score breakdown
# - rules.py: Rule candidates, versions, execution results
# - discovery.py: Whole-database discovery report
#
# These models define the "contract" between components.
# =============================================================================

# -----------------------------------------------------------------------------
# Metadata Models
# -----------------------------------------------------------------------------
from .metadata import (
    ColumnAggregates,
    ColumnClassification,
    ColumnMetadata,
    TableMetadata,
    TableType,
    classify_column,
)

# -----------------------------------------------------------------------------
# Relationship Models
# -----------------------------------------------------------------------------
from .relations import (
    DeclaredRelation,
    DetectionMethod,
    DiscoveryMetrics,
    ImplicitRelation,
    JoinPattern,
    QualityRating,
    RelationType,
    RelevantRelation,
    StatisticalRelation,
)

# -----------------------------------------------------------------------------
# Profile Models
# -----------------------------------------------------------------------------
from .profile import (
    AnomalyType,
    BooleanStats,
    ColumnProfile,
    DataQualityAnomaly,
    DateGap,
    DateStats,
    DistributionInsights,
    HistogramBucket,
    NumericStats,
    TextStats,
    TimelineBucket,
    TopValue,
)

# -----------------------------------------------------------------------------
# Quality Models
# -----------------------------------------------------------------------------
from .quality import DataQualityScore

# -----------------------------------------------------------------------------
# Rule Models
# -----------------------------------------------------------------------------
from .rules import (
    CustomRuleVersion,
    ExecutionStatus,
    QualityAlert,
    RefinementAttempt,
    RuleCandidate,
    RuleDimension,
    RuleExecutionResult,
    RuleKey,
    RuleOutcome,
    RuleSeverity,
    RuleSource,
    RuleState,
    compute_pass_rate,
)

# -----------------------------------------------------------------------------
# Discovery Models
# -----------------------------------------------------------------------------
from .discovery import DiscoveryReport, RunFailure, TableReport

__all__ = [
    # Metadata
    "ColumnAggregates",
    "ColumnClassification",
    "ColumnMetadata",
    "TableMetadata",
    "TableType",
    "classify_column",
    # Relations
    "DeclaredRelation",
    "DetectionMethod",
    "DiscoveryMetrics",
    "ImplicitRelation",
    "JoinPattern",
    "QualityRating",
    "RelationType",
    "RelevantRelation",
    "StatisticalRelation",
    # Profile
    "AnomalyType",
    "BooleanStats",
    "ColumnProfile",
    "DataQualityAnomaly",
    "DateGap",
    "DateStats",
    "DistributionInsights",
    "HistogramBucket",
    "NumericStats",
    "TextStats",
    "TimelineBucket",
    "TopValue",
    # Quality
    "DataQualityScore",
    # Rules
    "CustomRuleVersion",
    "ExecutionStatus",
    "QualityAlert",
    "RefinementAttempt",
    "RuleCandidate",
    "RuleDimension",
    "RuleExecutionResult",
    "RuleKey",
    "RuleOutcome",
    "RuleSeverity",
    "RuleSource",
    "RuleState",
    "compute_pass_rate",
    # Discovery
    "DiscoveryReport",
    "RunFailure",
    "TableReport",
]
