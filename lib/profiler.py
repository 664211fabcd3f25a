# =============================================================================
# lib/profiler.py - Statistical Column Profiler
# =============================================================================
# This module turns a column's sampled values (plus optional whole-table
# aggregates) into a ColumnProfile:
#
#   - Completeness and cardinality (always populated)
#   - Deep statistics chosen by classification:
#       numeric  -> NumericStats  (percentiles, histogram, 3-sigma outliers)
#       temporal -> DateStats     (weekday/month/hour, gaps, monthly timeline)
#       text     -> TextStats     (length distribution)
#       boolean  -> BooleanStats  (true/false balance)
#   - Layered anomaly checks: suspicious frequency, pattern violation, outliers
#   - Distribution insights and a recommended next step
#
# Profiling a column never raises: if deep statistics cannot be computed the
# profile degrades to completeness/cardinality only and a warning is logged.
#
# Usage:
#   profiler = ColumnProfiler()
#   profile = profiler.profile(column_meta, sample_values, aggregates)
# =============================================================================

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

import numpy as np
import pandas as pd

from app.config import settings
from core.models import (
    AnomalyType,
    BooleanStats,
    ColumnAggregates,
    ColumnClassification,
    ColumnMetadata,
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
    classify_column,
)
from lib.patterns import CLASSIFICATION_PATTERNS, detect_pattern, matches_classification

# Set up logging for this module
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

OUTLIER_SIGMAS = 3.0
MAX_TIMELINE_BUCKETS = 50

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

TRUE_VALUES = {"true", "t", "yes", "y", "1", "sim", "s"}
FALSE_VALUES = {"false", "f", "no", "n", "0", "nao", "não"}

# Decision table for DistributionInsights.recommended_action (first match wins)
ACTION_TIGHTEN_VALIDITY = "tighten validity rule"
ACTION_REVIEW_OUTLIERS = "review outlier thresholds"
ACTION_INVESTIGATE_FREQUENCY = "investigate high-frequency values"
ACTION_ADD_COMPLETENESS = "add completeness rule"
ACTION_NONE = "no action required"


# =============================================================================
# Small Helpers
# =============================================================================

def _is_null(value: Any) -> bool:
    if value is None or value is pd.NaT or value is pd.NA:
        return True
    return isinstance(value, float) and math.isnan(value)


def _to_numeric(values: pd.Series) -> pd.Series:
    """Coerce sampled values to floats; Decimals from the driver included."""
    converted = values.map(lambda v: float(v) if isinstance(v, Decimal) else v)
    return pd.to_numeric(converted, errors="coerce")


def _value_key(value: Any) -> Any:
    """Hashable key for a sampled value (json/array values become their repr)."""
    try:
        hash(value)
        return value
    except TypeError:
        return repr(value)


def _safe_value(value: Any) -> Any:
    """Convert numpy/pandas scalars to plain Python for serialization."""
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


def is_outlier(value: float, mean: float, stddev: float) -> bool:
    """3-sigma rule: a value is an outlier iff |x - mean| > 3 * stddev."""
    return abs(value - mean) > OUTLIER_SIGMAS * stddev


def uniformity_score(bucket_counts: Sequence[int]) -> float:
    """
    1 - (stddev of bucket counts / mean bucket count), clamped to [0, 1].

    Empty input or an all-zero distribution is treated as perfectly uniform.
    """
    if len(bucket_counts) == 0:
        return 1.0
    counts = np.asarray(bucket_counts, dtype=float)
    mean = counts.mean()
    if mean <= 0:
        return 1.0
    score = 1.0 - counts.std(ddof=0) / mean
    return round(float(min(1.0, max(0.0, score))), 4)


def recommend_action(
    has_pattern_violations: bool,
    has_outliers: bool,
    has_suspicious_frequency: bool,
    completeness_rate: float,
) -> str:
    """Pick the recommended action from the anomaly flags."""
    if has_pattern_violations:
        return ACTION_TIGHTEN_VALIDITY
    if has_outliers:
        return ACTION_REVIEW_OUTLIERS
    if has_suspicious_frequency:
        return ACTION_INVESTIGATE_FREQUENCY
    if completeness_rate < 0.8:
        return ACTION_ADD_COMPLETENESS
    return ACTION_NONE


def boolean_stats(true_count: int, false_count: int, null_count: int) -> BooleanStats:
    """Build BooleanStats from raw counts; percentages are rounded to 2 decimals."""
    total = true_count + false_count + null_count

    def pct(count: int) -> float:
        return round(100.0 * count / total, 2) if total else 0.0

    return BooleanStats(
        true_count=true_count,
        false_count=false_count,
        null_count=null_count,
        true_percentage=pct(true_count),
        false_percentage=pct(false_count),
        null_percentage=pct(null_count),
    )


# =============================================================================
# Deep Statistics
# =============================================================================

def compute_numeric_stats(
    values: pd.Series,
    bucket_count: int,
    outlier_sample_limit: int,
) -> NumericStats | None:
    """
    Compute numeric statistics over non-null values.

    Standard deviation is the population stddev and percentiles use linear
    interpolation between order statistics. Returns None when no value is
    numeric.
    """
    numeric = _to_numeric(values).dropna()
    if numeric.empty:
        return None

    arr = numeric.to_numpy(dtype=float)
    mean = float(arr.mean())
    std = float(arr.std(ddof=0))
    p25, p50, p75, p90, p95 = (float(p) for p in np.percentile(arr, [25, 50, 75, 90, 95]))

    # np.histogram makes the last bucket inclusive of the max
    counts, edges = np.histogram(arr, bins=bucket_count, range=(float(arr.min()), float(arr.max())))
    histogram = [
        HistogramBucket(lower=float(edges[i]), upper=float(edges[i + 1]), count=int(counts[i]))
        for i in range(len(counts))
    ]

    distance = np.abs(arr - mean)
    outlier_mask = distance > OUTLIER_SIGMAS * std
    outliers = arr[outlier_mask]
    # Most extreme first
    ordered = outliers[np.argsort(-np.abs(outliers - mean), kind="stable")]
    samples: list[float] = []
    for value in ordered:
        if len(samples) >= outlier_sample_limit:
            break
        if float(value) not in samples:
            samples.append(float(value))

    return NumericStats(
        min=float(arr.min()),
        max=float(arr.max()),
        mean=round(mean, 6),
        median=p50,
        stddev=round(std, 6),
        p25=p25,
        p75=p75,
        p90=p90,
        p95=p95,
        histogram=histogram,
        outlier_count=int(outlier_mask.sum()),
        outlier_samples=samples,
    )


def compute_date_stats(values: pd.Series, gap_threshold_days: int) -> DateStats | None:
    """
    Compute temporal statistics: distributions, activity gaps and a monthly timeline.

    A gap is recorded between two consecutive active dates when the number of
    empty days between them exceeds `gap_threshold_days`.
    """
    parsed = pd.to_datetime(
        pd.Series(list(values), dtype=object), errors="coerce", utc=True, format="mixed"
    ).dropna()
    if parsed.empty:
        return None
    parsed = parsed.dt.tz_convert(None)

    day_counts = parsed.dt.day_name().value_counts()
    month_counts = parsed.dt.month_name().value_counts()
    hour_counts = parsed.dt.hour.value_counts().sort_index()

    active_days = sorted(set(parsed.dt.normalize()))
    gaps: list[DateGap] = []
    for previous, current in zip(active_days, active_days[1:]):
        empty_days = (current - previous).days - 1
        if empty_days > gap_threshold_days:
            gaps.append(DateGap(start=previous.date(), end=current.date(), gap_days=empty_days))

    months = parsed.dt.to_period("M").value_counts().sort_index()
    months = months.iloc[-MAX_TIMELINE_BUCKETS:]
    total = len(parsed)
    timeline = [
        TimelineBucket(
            period=str(period),
            label=period.strftime("%b %Y"),
            count=int(count),
            percentage=round(100.0 * count / total, 2),
        )
        for period, count in months.items()
    ]

    return DateStats(
        min=parsed.min().to_pydatetime(),
        max=parsed.max().to_pydatetime(),
        day_of_week_distribution={day: int(day_counts.get(day, 0)) for day in DAY_NAMES},
        month_distribution={month: int(month_counts.get(month, 0)) for month in MONTH_NAMES},
        hour_distribution={int(hour): int(count) for hour, count in hour_counts.items()},
        gaps=gaps,
        total_gap_days=sum(g.gap_days for g in gaps),
        timeline=timeline,
    )


def compute_text_stats(values: pd.Series) -> TextStats | None:
    """Length statistics over non-empty values."""
    if values.empty:
        return None
    lengths = values.map(lambda v: len(str(v)))
    return TextStats(
        min_length=int(lengths.min()),
        max_length=int(lengths.max()),
        avg_length=round(float(lengths.mean()), 2),
    )


def compute_boolean_stats(values: pd.Series, missing: int) -> BooleanStats:
    """Count true/false values; unrecognized values count as null."""
    true_count = 0
    false_count = 0
    unknown = 0
    for value in values:
        if isinstance(value, (bool, np.bool_)):
            true_count += bool(value)
            false_count += not bool(value)
            continue
        text = str(value).strip().lower()
        if text in TRUE_VALUES:
            true_count += 1
        elif text in FALSE_VALUES:
            false_count += 1
        else:
            unknown += 1
    return boolean_stats(true_count, false_count, missing + unknown)


# =============================================================================
# Column Profiler
# =============================================================================

class ColumnProfiler:
    """
    Profiles one column at a time from sampled values.

    Thresholds default to application settings and can be overridden per
    instance. The profiler holds no per-column state, so one instance can be
    shared by concurrent profiling tasks.

    Example:
        profiler = ColumnProfiler(histogram_buckets=10)
        profile = profiler.profile(column, [1, 2, 3, None])
        profile.stats.kind  # "numeric"
    """

    def __init__(
        self,
        top_values_limit: int | None = None,
        histogram_buckets: int | None = None,
        outlier_sample_limit: int | None = None,
        suspicious_frequency_multiple: float | None = None,
        pattern_match_threshold: float | None = None,
        date_gap_threshold_days: int | None = None,
        anomaly_row_sample_limit: int | None = None,
    ):
        def pick(value, default):
            return default if value is None else value

        self.top_values_limit = pick(top_values_limit, settings.TOP_VALUES_LIMIT)
        self.histogram_buckets = pick(histogram_buckets, settings.HISTOGRAM_BUCKETS)
        self.outlier_sample_limit = pick(outlier_sample_limit, settings.OUTLIER_SAMPLE_LIMIT)
        self.suspicious_frequency_multiple = pick(
            suspicious_frequency_multiple, settings.SUSPICIOUS_FREQUENCY_MULTIPLE
        )
        self.pattern_match_threshold = pick(pattern_match_threshold, settings.PATTERN_MATCH_THRESHOLD)
        self.date_gap_threshold_days = pick(date_gap_threshold_days, settings.DATE_GAP_THRESHOLD_DAYS)
        self.anomaly_row_sample_limit = pick(
            anomaly_row_sample_limit, settings.ANOMALY_ROW_SAMPLE_LIMIT
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def profile(
        self,
        column: ColumnMetadata,
        sample_values: Sequence[Any],
        aggregates: ColumnAggregates | None = None,
        row_ids: Sequence[str] | None = None,
    ) -> ColumnProfile:
        """
        Build the profile for one column.

        Args:
            column: Column metadata (drives classification)
            sample_values: Sampled values, NULLs as None
            aggregates: Whole-table counts; when given they override sample counts
            row_ids: Identifier per sampled value, used in anomaly samples
                     (defaults to the row's position in the sample)

        Returns:
            ColumnProfile, never raises for bad data
        """
        classification = classify_column(column)
        values = list(sample_values)
        ids = [str(r) for r in row_ids] if row_ids is not None else [str(i) for i in range(len(values))]
        if len(ids) != len(values):
            logger.warning(
                f"Row id count ({len(ids)}) does not match sample size ({len(values)}) "
                f"for column {column.name}; using positions"
            )
            ids = [str(i) for i in range(len(values))]

        frame = pd.DataFrame({"value": pd.Series(values, dtype=object), "row_id": ids})
        null_mask = frame["value"].map(_is_null).astype(bool)
        blank_mask = frame["value"].map(lambda v: isinstance(v, str) and not v.strip()).astype(bool)
        present = frame[~null_mask & ~blank_mask]
        keys = present["value"].map(_value_key)

        sample_null = int(null_mask.sum())
        sample_blank = int(blank_mask.sum())

        # ---------------------------------------------------------------------
        # Completeness & cardinality
        # ---------------------------------------------------------------------
        if aggregates is not None:
            total = aggregates.total_count
            null_count = min(aggregates.null_count, total)
            blank_count = (
                round(sample_blank * total / len(values)) if values else 0
            )
            blank_count = min(blank_count, total - null_count)
            unique_count = aggregates.distinct_count
        else:
            total = len(values)
            null_count = sample_null
            blank_count = sample_blank
            unique_count = int(keys.nunique())

        completeness_rate = (total - null_count - blank_count) / total if total else 0.0
        cardinality_rate = min(1.0, unique_count / total) if total else 0.0

        profile = ColumnProfile(
            column=column,
            classification=classification,
            total_count=total,
            null_count=null_count,
            empty_count=blank_count,
            completeness_rate=round(completeness_rate, 6),
            unique_count=unique_count,
            cardinality_rate=round(cardinality_rate, 6),
        )

        try:
            counts = keys.value_counts(sort=False)
            profile.top_values = self._top_values(present["value"], keys, counts)
            profile.stats = self._deep_stats(
                classification, present["value"], sample_null + sample_blank
            )
            profile.anomalies = self._detect_anomalies(
                classification, present, keys, counts, profile.stats
            )
            profile.insights = self._insights(profile, counts)
            profile.recommendations = self._recommendations(profile, present["value"])
        except Exception as e:
            logger.warning(f"Deep profiling failed for column {column.name} ({column.data_type}): {e}")
            profile.stats = None
            profile.anomalies = []
            profile.insights = DistributionInsights(
                recommended_action=recommend_action(False, False, False, profile.completeness_rate)
            )

        return profile

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _top_values(self, values: pd.Series, keys: pd.Series, counts: pd.Series) -> list[TopValue]:
        if counts.empty:
            return []
        n = len(values)
        # Original value per key, so json values keep their shape
        originals = dict(zip(keys, values))
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))
        return [
            TopValue(
                value=_safe_value(originals.get(key, key)),
                count=int(count),
                percentage=round(100.0 * count / n, 2),
            )
            for key, count in ranked[: self.top_values_limit]
        ]

    def _deep_stats(
        self,
        classification: ColumnClassification,
        values: pd.Series,
        missing: int,
    ):
        if classification == ColumnClassification.NUMERIC:
            return compute_numeric_stats(values, self.histogram_buckets, self.outlier_sample_limit)
        if classification == ColumnClassification.TEMPORAL:
            return compute_date_stats(values, self.date_gap_threshold_days)
        if classification.is_text:
            return compute_text_stats(values)
        if classification == ColumnClassification.BOOLEAN:
            return compute_boolean_stats(values, missing)
        return None

    def _detect_anomalies(
        self,
        classification: ColumnClassification,
        present: pd.DataFrame,
        keys: pd.Series,
        counts: pd.Series,
        stats,
    ) -> list[DataQualityAnomaly]:
        anomalies: list[DataQualityAnomaly] = []
        n = len(present)
        if n == 0:
            return anomalies
        limit = self.anomaly_row_sample_limit

        # (a) Suspicious frequency
        distinct = len(counts)
        if distinct > 1:
            expected = n / distinct
            threshold = self.suspicious_frequency_multiple * expected
            ranked = sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))
            for key, count in ranked:
                if count <= threshold:
                    break
                rows = present.loc[keys == key, "row_id"].head(limit).tolist()
                anomalies.append(DataQualityAnomaly(
                    type=AnomalyType.SUSPICIOUS_FREQUENCY,
                    description=(
                        f"Value occurs {count} times, over "
                        f"{self.suspicious_frequency_multiple:g}x the expected {expected:.1f}"
                    ),
                    value=_safe_value(key),
                    count=int(count),
                    severity=round(min(1.0, count / n), 4),
                    sample_rows=rows,
                ))

        # (b) Pattern violation
        if classification in CLASSIFICATION_PATTERNS:
            matched = present["value"].map(
                lambda v: matches_classification(v, classification)
            ).astype(bool)
            match_rate = float(matched.mean())
            if match_rate < self.pattern_match_threshold:
                violating = present[~matched]
                anomalies.append(DataQualityAnomaly(
                    type=AnomalyType.PATTERN_VIOLATION,
                    description=(
                        f"Only {match_rate:.1%} of values match the expected "
                        f"{classification.value} format"
                    ),
                    value=_safe_value(violating["value"].iloc[0]),
                    count=len(violating),
                    severity=round(1.0 - match_rate, 4),
                    sample_rows=violating["row_id"].head(limit).tolist(),
                ))

        # (c) Outliers
        if isinstance(stats, NumericStats) and stats.outlier_count > 0:
            numeric = _to_numeric(present["value"])
            mask = numeric.map(
                lambda x: pd.notna(x) and is_outlier(float(x), stats.mean, stats.stddev)
            ).astype(bool)
            anomalies.append(DataQualityAnomaly(
                type=AnomalyType.OUTLIER,
                description=(
                    f"{stats.outlier_count} values lie beyond {OUTLIER_SIGMAS:g} standard "
                    f"deviations of the mean ({stats.mean:g})"
                ),
                value=stats.outlier_samples[0] if stats.outlier_samples else None,
                count=stats.outlier_count,
                severity=round(min(1.0, stats.outlier_count / n), 4),
                sample_rows=present.loc[mask, "row_id"].head(limit).tolist(),
            ))

        return anomalies

    def _insights(self, profile: ColumnProfile, counts: pd.Series) -> DistributionInsights:
        types = {a.type for a in profile.anomalies}
        stats = profile.stats
        if isinstance(stats, NumericStats):
            buckets = [b.count for b in stats.histogram]
        elif isinstance(stats, DateStats):
            buckets = [b.count for b in stats.timeline]
        else:
            buckets = [int(c) for c in counts.tolist()]

        flags = {
            "has_suspicious_frequency": AnomalyType.SUSPICIOUS_FREQUENCY in types,
            "has_pattern_violations": AnomalyType.PATTERN_VIOLATION in types,
            "has_outliers": AnomalyType.OUTLIER in types,
        }
        return DistributionInsights(
            **flags,
            uniformity_score=uniformity_score(buckets),
            recommended_action=recommend_action(
                flags["has_pattern_violations"],
                flags["has_outliers"],
                flags["has_suspicious_frequency"],
                profile.completeness_rate,
            ),
        )

    def _recommendations(self, profile: ColumnProfile, values: pd.Series) -> list[str]:
        """Human-readable suggestions tailored to the column's classification."""
        recs: list[str] = []
        column = profile.column
        classification = profile.classification
        stats = profile.stats

        missing_pct = round((1.0 - profile.completeness_rate) * 100, 1)
        if profile.total_count and missing_pct > 5:
            recs.append(f"{missing_pct}% of values are missing; consider a completeness rule")

        if classification == ColumnClassification.IDENTIFIER:
            if profile.null_count:
                recs.append("Identifier column contains NULLs; add a NOT NULL rule")
            if column.is_primary_key and profile.cardinality_rate < 1.0 and profile.total_count:
                recs.append("Primary key values repeat; check uniqueness")
        elif classification == ColumnClassification.EMAIL:
            recs.append("Validate email format with a regex rule")
        elif classification == ColumnClassification.DOCUMENT:
            recs.append("Validate CPF/CNPJ format and check digits")
        elif classification == ColumnClassification.PHONE:
            recs.append("Standardize phone number format")
        elif classification == ColumnClassification.POSTAL_CODE:
            recs.append("Validate postal code format")
        elif isinstance(stats, NumericStats):
            if stats.outlier_count:
                recs.append(f"Review {stats.outlier_count} values beyond 3 standard deviations")
            if stats.min < 0:
                recs.append("Negative values present; confirm they are expected")
        elif isinstance(stats, DateStats):
            if stats.gaps:
                recs.append(
                    f"Investigate {len(stats.gaps)} gaps in activity ({stats.total_gap_days} days)"
                )
            recs.append("Check for dates in the future")
        elif isinstance(stats, BooleanStats) and not stats.is_balanced:
            recs.append("True/false values are unbalanced; confirm the default value")
        elif classification == ColumnClassification.TEXT and not values.empty:
            detected = values.head(20).map(detect_pattern).dropna()
            if not detected.empty and len(detected) == min(20, len(values)):
                recs.append(f"Values look like {detected.mode().iloc[0]}; add a format rule")

        return recs
