# =============================================================================
# core/models/profile.py - Column Profile Schemas
# =============================================================================
# These models define the statistical profile of a single column, produced by
# the ColumnProfiler (lib/profiler.py).
#
# The deep statistics are a tagged union keyed by `kind`: exactly one of
# NumericStats, DateStats, TextStats or BooleanStats is attached, depending on
# the column's classification, or none for identifiers, json, uuid and
# unsupported types.
# =============================================================================

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, computed_field

from core.models.metadata import ColumnClassification, ColumnMetadata


# =============================================================================
# Enums
# =============================================================================

class AnomalyType(str, Enum):
    """Types of anomaly raised by the layered anomaly checks."""
    SUSPICIOUS_FREQUENCY = "suspicious_frequency"
    PATTERN_VIOLATION = "pattern_violation"
    OUTLIER = "outlier"


# =============================================================================
# Shared Building Blocks
# =============================================================================

class HistogramBucket(BaseModel):
    """One equal-width bucket of a numeric histogram."""
    lower: float = Field(..., description="Inclusive lower bound")
    upper: float = Field(..., description="Upper bound (inclusive for the last bucket)")
    count: int = Field(..., ge=0)


class TopValue(BaseModel):
    """A frequent value and its share of non-null sampled values."""
    value: Any = Field(..., description="The value as sampled")
    count: int = Field(..., ge=0)
    percentage: float = Field(..., ge=0.0, le=100.0)


class DateGap(BaseModel):
    """A stretch of calendar days with no rows."""
    start: date = Field(..., description="Last active date before the gap")
    end: date = Field(..., description="First active date after the gap")
    gap_days: int = Field(..., ge=0, description="Empty days between start and end")


class TimelineBucket(BaseModel):
    """Row count for one calendar month."""
    period: str = Field(..., description="YYYY-MM")
    label: str = Field(..., description="e.g. 'Jan 2024'")
    count: int = Field(..., ge=0)
    percentage: float = Field(..., ge=0.0, le=100.0)


# =============================================================================
# Deep Statistics (tagged union)
# =============================================================================

class NumericStats(BaseModel):
    """Distribution of a numeric column."""

    kind: Literal["numeric"] = "numeric"
    min: float
    max: float
    mean: float
    median: float
    stddev: float = Field(..., ge=0.0, description="Population standard deviation")
    p25: float
    p75: float
    p90: float
    p95: float
    histogram: list[HistogramBucket] = Field(default_factory=list)
    outlier_count: int = Field(default=0, ge=0, description="Values with |x - mean| > 3 * stddev")
    outlier_samples: list[float] = Field(default_factory=list)


class DateStats(BaseModel):
    """Distribution of a temporal column."""

    kind: Literal["date"] = "date"
    min: datetime
    max: datetime
    day_of_week_distribution: dict[str, int] = Field(default_factory=dict)
    month_distribution: dict[str, int] = Field(default_factory=dict)
    hour_distribution: dict[int, int] = Field(default_factory=dict)
    gaps: list[DateGap] = Field(default_factory=list)
    total_gap_days: int = Field(default=0, ge=0)
    timeline: list[TimelineBucket] = Field(default_factory=list)


class TextStats(BaseModel):
    """Length distribution of a text column."""

    kind: Literal["text"] = "text"
    min_length: int = Field(..., ge=0)
    max_length: int = Field(..., ge=0)
    avg_length: float = Field(..., ge=0.0)


class BooleanStats(BaseModel):
    """True/false/null balance of a boolean column."""

    kind: Literal["boolean"] = "boolean"
    true_count: int = Field(..., ge=0)
    false_count: int = Field(..., ge=0)
    null_count: int = Field(..., ge=0)
    true_percentage: float = Field(..., ge=0.0, le=100.0)
    false_percentage: float = Field(..., ge=0.0, le=100.0)
    null_percentage: float = Field(..., ge=0.0, le=100.0)

    @computed_field
    @property
    def is_balanced(self) -> bool:
        """Balanced when true and false shares differ by at most 20 points."""
        return abs(self.true_percentage - self.false_percentage) <= 20


ColumnStats = Annotated[
    Union[NumericStats, DateStats, TextStats, BooleanStats],
    Field(discriminator="kind"),
]


# =============================================================================
# Anomalies & Insights
# =============================================================================

class DataQualityAnomaly(BaseModel):
    """A suspicious observation about a column's values."""

    type: AnomalyType
    description: str
    value: Any = Field(default=None, description="Offending value (or an example)")
    count: int = Field(default=0, ge=0, description="Rows affected in the sample")
    severity: float = Field(..., ge=0.0, le=1.0)
    sample_rows: list[str] = Field(
        default_factory=list, description="Identifiers of affected rows (bounded)"
    )


class DistributionInsights(BaseModel):
    """Flags from the anomaly layers plus a recommended next step."""

    has_suspicious_frequency: bool = False
    has_pattern_violations: bool = False
    has_outliers: bool = False
    uniformity_score: float = Field(default=1.0, ge=0.0, le=1.0)
    recommended_action: str = "no action required"


# =============================================================================
# Column Profile
# =============================================================================

class ColumnProfile(BaseModel):
    """
    Full statistical profile of one column.

    Completeness and cardinality are always populated. `stats` is None when the
    column type does not support deep statistics.
    """

    column: ColumnMetadata
    classification: ColumnClassification

    # Completeness
    total_count: int = Field(..., ge=0)
    null_count: int = Field(default=0, ge=0)
    empty_count: int = Field(default=0, ge=0, description="Blank strings")
    completeness_rate: float = Field(..., ge=0.0, le=1.0)

    # Cardinality
    unique_count: int = Field(default=0, ge=0)
    cardinality_rate: float = Field(default=0.0, ge=0.0, le=1.0, description="unique / total")

    stats: ColumnStats | None = None
    top_values: list[TopValue] = Field(default_factory=list)
    anomalies: list[DataQualityAnomaly] = Field(default_factory=list)
    insights: DistributionInsights = Field(default_factory=DistributionInsights)
    recommendations: list[str] = Field(default_factory=list)
