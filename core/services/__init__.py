# =============================================================================
# core/services/__init__.py - Service Layer Exports
# =============================================================================

from .rule_store import InMemoryRuleStore, RuleStore, SupabaseRuleStore
from .metrics_store import (
    InMemoryMetricsStore,
    MetricFact,
    MetricsStore,
    SupabaseMetricsStore,
    build_metric_facts,
)
from .rule_templates import RULE_TEMPLATES, RuleTemplate, suggest_templates
from .rule_lifecycle import RuleLifecycleManager, detect_quality_alerts
from .discovery import DiscoveryRun, compute_metrics, rate_coverage

__all__ = [
    "RuleStore",
    "InMemoryRuleStore",
    "SupabaseRuleStore",
    "MetricFact",
    "MetricsStore",
    "InMemoryMetricsStore",
    "SupabaseMetricsStore",
    "build_metric_facts",
    "RULE_TEMPLATES",
    "RuleTemplate",
    "suggest_templates",
    "RuleLifecycleManager",
    "detect_quality_alerts",
    "DiscoveryRun",
    "compute_metrics",
    "rate_coverage",
]
