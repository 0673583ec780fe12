"""Experimentation engine: sticky A/B assignment, metrics, significance and feature flags."""

from .schema import (
    AggregationType,
    Assignment,
    AudienceFilter,
    Experiment,
    ExperimentResult,
    ExperimentStatus,
    FeatureFlag,
    MetricConfig,
    MetricEvent,
    MetricResult,
    MetricType,
    RunnerOptions,
    TrafficAllocation,
    TrafficAllocationType,
    Variant,
    VariantResult,
)
from .bucketing import bucket, fraction
from .assignment import AssignmentTable, select_variant, should_allocate_traffic
from .metric_ledger import MetricLedger
from .feature_flags import FeatureFlagStore
from .manager import ExperimentManager
from .runner import ExperimentRunner

__all__ = [
    "AggregationType",
    "Assignment",
    "AudienceFilter",
    "Experiment",
    "ExperimentResult",
    "ExperimentStatus",
    "FeatureFlag",
    "MetricConfig",
    "MetricEvent",
    "MetricResult",
    "MetricType",
    "RunnerOptions",
    "TrafficAllocation",
    "TrafficAllocationType",
    "Variant",
    "VariantResult",
    "bucket",
    "fraction",
    "AssignmentTable",
    "select_variant",
    "should_allocate_traffic",
    "MetricLedger",
    "FeatureFlagStore",
    "ExperimentManager",
    "ExperimentRunner",
]
