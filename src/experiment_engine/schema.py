"""
Experiment data models for the experimentation engine.

Dataclass schemas for experiment definitions, assignments, metric events,
feature flags and derived results.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExperimentStatus(str, Enum):
    """Experiment lifecycle state."""
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class TrafficAllocationType(str, Enum):
    """How users are admitted into an experiment."""
    PERCENTAGE = "percentage"
    HASH = "hash"
    USER_ID = "user_id"


class MetricType(str, Enum):
    """Semantic type of a metric."""
    CONVERSION = "conversion"  # value > 0 means converted
    COUNT = "count"
    SUM = "sum"
    AVERAGE = "average"
    DURATION = "duration"


class AggregationType(str, Enum):
    """Aggregation function declared for a metric."""
    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    MIN = "min"
    MAX = "max"


@dataclass
class Variant:
    """One arm of an experiment."""
    id: str
    name: str
    description: str = ""
    weight: float = 1.0
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrafficAllocation:
    """Share of eligible users included in the experiment."""
    type: TrafficAllocationType = TrafficAllocationType.PERCENTAGE
    percentage: float = 100.0  # 0-100


@dataclass
class MetricConfig:
    """Definition of a metric collected by an experiment."""
    name: str
    type: MetricType = MetricType.COUNT
    event_name: str = ""
    aggregation: AggregationType = AggregationType.SUM


@dataclass
class AudienceFilter:
    """Targeting rules shared by experiments and feature flags."""
    user_ids: Optional[List[str]] = None
    user_segments: Optional[List[str]] = None
    user_attributes: Optional[Dict[str, Any]] = None

    def matches(
        self,
        user_id: str,
        segments: Optional[List[str]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Check whether a user belongs to the audience.

        Segment and attribute rules are only evaluated when the caller supplies
        that context; the engine has no user service to look them up.
        """
        if self.user_ids is not None and user_id not in self.user_ids:
            return False
        if self.user_segments and segments is not None:
            if not set(self.user_segments) & set(segments):
                return False
        if self.user_attributes and attributes is not None:
            for key, expected in self.user_attributes.items():
                if key not in attributes or attributes[key] != expected:
                    return False
        return True


@dataclass
class Experiment:
    """An A/B experiment definition and its lifecycle state."""
    id: str
    name: str
    description: str = ""
    status: ExperimentStatus = ExperimentStatus.DRAFT
    variants: List[Variant] = field(default_factory=list)
    traffic_allocation: TrafficAllocation = field(default_factory=TrafficAllocation)
    metrics: List[MetricConfig] = field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    target_audience: Optional[AudienceFilter] = None

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None

    @property
    def conversion_metric(self) -> Optional[MetricConfig]:
        """First conversion-typed metric, used for significance testing."""
        for metric in self.metrics:
            if metric.type == MetricType.CONVERSION:
                return metric
        return None


@dataclass
class Assignment:
    """Sticky variant assignment for a single user."""
    experiment_id: str
    user_id: str
    variant_id: str
    assigned_at: datetime = field(default_factory=utcnow)


@dataclass
class MetricEvent:
    """A single recorded metric value. Never mutated after append."""
    experiment_id: str
    metric_name: str
    user_id: str
    variant_id: str
    value: float
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class MetricResult:
    """Aggregates of one metric over one variant."""
    total: float = 0.0
    count: int = 0
    average: float = 0.0
    min: float = 0.0
    max: float = 0.0
    aggregation: AggregationType = AggregationType.SUM

    @property
    def value(self) -> float:
        """Figure selected by the metric's declared aggregation."""
        return {
            AggregationType.SUM: self.total,
            AggregationType.AVG: self.average,
            AggregationType.COUNT: float(self.count),
            AggregationType.MIN: self.min,
            AggregationType.MAX: self.max,
        }[self.aggregation]


@dataclass
class VariantResult:
    """Per-variant statistics."""
    variant_id: str
    participants: int
    metrics: Dict[str, MetricResult] = field(default_factory=dict)
    conversion_rate: Optional[float] = None
    improvement: Optional[float] = None  # relative lift vs control
    confidence_interval: Optional[Tuple[float, float]] = None


@dataclass
class ExperimentResult:
    """Complete experiment result. Recomputed on every request."""
    experiment_id: str
    variant_results: List[VariantResult] = field(default_factory=list)
    winner: Optional[str] = None
    confidence: float = 0.0
    is_significant: bool = False
    sample_size: int = 0
    duration: float = 0.0  # seconds
    z_score: float = 0.0
    srm_passed: bool = True
    srm_p_value: Optional[float] = None
    computed_at: datetime = field(default_factory=utcnow)

    def get_variant_result(self, variant_id: str) -> Optional[VariantResult]:
        for vr in self.variant_results:
            if vr.variant_id == variant_id:
                return vr
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "experiment_id": self.experiment_id,
            "winner": self.winner,
            "confidence": self.confidence,
            "is_significant": self.is_significant,
            "sample_size": self.sample_size,
            "duration": self.duration,
            "z_score": self.z_score,
            "srm_passed": self.srm_passed,
            "srm_p_value": self.srm_p_value,
            "computed_at": self.computed_at.isoformat(),
            "variant_results": [
                {
                    "variant_id": vr.variant_id,
                    "participants": vr.participants,
                    "conversion_rate": vr.conversion_rate,
                    "improvement": vr.improvement,
                    "confidence_interval": (
                        list(vr.confidence_interval) if vr.confidence_interval else None
                    ),
                    "metrics": {
                        name: {
                            "total": m.total,
                            "count": m.count,
                            "average": m.average,
                            "min": m.min,
                            "max": m.max,
                            "aggregation": m.aggregation.value,
                            "value": m.value,
                        }
                        for name, m in vr.metrics.items()
                    },
                }
                for vr in self.variant_results
            ],
        }


@dataclass
class FeatureFlag:
    """Boolean rollout flag, optionally linked to an experiment variant config."""
    key: str
    description: str = ""
    enabled: bool = False
    targeting: Optional[AudienceFilter] = None
    rollout_percentage: float = 0.0  # 0-100
    experiment_id: Optional[str] = None
    config_key: Optional[str] = None


@dataclass
class RunnerOptions:
    """Stop criteria for the experiment runner."""
    min_sample_size: int = 100
    min_duration: float = 7 * 24 * 60 * 60  # seconds
    confidence_threshold: float = 0.95
    auto_stop: bool = True
    planned_sample_size: Optional[int] = None  # powered size; stops below it are logged
