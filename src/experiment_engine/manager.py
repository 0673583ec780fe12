"""
Experiment manager: the service object owning all experimentation state.

Holds the experiment registry, sticky assignments, the metric ledger and the
feature-flag store. Not-found and ineligible conditions resolve to None/False
so experimentation never breaks the caller's code path.
"""

import dataclasses
import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .assignment import DEFAULT_LOCK_STRIPES, AssignmentTable, select_variant, should_allocate_traffic
from .feature_flags import FeatureFlagStore
from .metric_ledger import MetricLedger, aggregate_metric, conversion_counts
from .schema import (
    AudienceFilter,
    Experiment,
    ExperimentResult,
    ExperimentStatus,
    FeatureFlag,
    MetricConfig,
    MetricEvent,
    TrafficAllocation,
    Variant,
    VariantResult,
    utcnow,
)
from .stats import (
    calculate_significance,
    check_srm,
    rate_confidence_interval,
    sample_size_proportion,
)

logger = logging.getLogger(__name__)


def _generate_id() -> str:
    return f"exp_{uuid.uuid4().hex[:12]}"


def _validate_definition(
    variants: List[Variant],
    traffic_allocation: TrafficAllocation,
    metrics: List[MetricConfig],
) -> None:
    if not variants:
        raise ValueError("An experiment needs at least one variant")
    if any(v.weight < 0 for v in variants):
        raise ValueError("Variant weights must be non-negative")
    if sum(v.weight for v in variants) <= 0:
        raise ValueError("Sum of variant weights must be positive")
    variant_ids = [v.id for v in variants]
    if len(set(variant_ids)) != len(variant_ids):
        raise ValueError(f"Duplicate variant ids: {variant_ids}")
    metric_names = [m.name for m in metrics]
    if len(set(metric_names)) != len(metric_names):
        raise ValueError(f"Duplicate metric names: {metric_names}")
    _validate_percentage(traffic_allocation.percentage)


def _validate_percentage(percentage: float) -> None:
    if not 0 <= percentage <= 100:
        raise ValueError(f"Traffic percentage must be in [0, 100], got {percentage}")


class ExperimentManager:
    """
    In-process experimentation service.

    Construct once and share; every method is safe to call from multiple
    threads.

    Args:
        clock: Returns the current timezone-aware datetime
        lock_stripes: Number of locks guarding first-time assignment
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        lock_stripes: int = DEFAULT_LOCK_STRIPES,
    ):
        self._clock = clock
        self._experiments: Dict[str, Experiment] = {}
        self._lock = threading.RLock()
        self.assignments = AssignmentTable(lock_stripes=lock_stripes)
        self.ledger = MetricLedger()
        self.flags = FeatureFlagStore()

    # ------------------------------------------------------------------
    # Experiment store
    # ------------------------------------------------------------------

    def create_experiment(
        self,
        name: str,
        description: str = "",
        variants: Optional[List[Variant]] = None,
        traffic_allocation: Optional[TrafficAllocation] = None,
        metrics: Optional[List[MetricConfig]] = None,
        target_audience: Optional[AudienceFilter] = None,
        experiment_id: Optional[str] = None,
    ) -> Experiment:
        """
        Register a new experiment in draft status.

        ``experiment_id`` is generated unless given; a fixed id makes variant
        draws reproducible across manager instances.

        Raises:
            ValueError: if the definition is invalid or the id is taken
        """
        variants = list(variants or [])
        traffic_allocation = dataclasses.replace(traffic_allocation or TrafficAllocation())
        metrics = list(metrics or [])
        _validate_definition(variants, traffic_allocation, metrics)

        experiment = Experiment(
            id=experiment_id or _generate_id(),
            name=name,
            description=description,
            status=ExperimentStatus.DRAFT,
            variants=variants,
            traffic_allocation=traffic_allocation,
            metrics=metrics,
            target_audience=target_audience,
        )
        with self._lock:
            if experiment.id in self._experiments:
                raise ValueError(f"Experiment {experiment.id} already exists")
            self._experiments[experiment.id] = experiment
        logger.info(
            f"Created experiment {experiment.id} ({name}) with "
            f"{len(variants)} variants, {len(metrics)} metrics"
        )
        return experiment

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        with self._lock:
            return self._experiments.get(experiment_id)

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        with self._lock:
            experiments = list(self._experiments.values())
        if status is None:
            return experiments
        return [e for e in experiments if e.status == status]

    def _transition(
        self,
        experiment_id: str,
        allowed_from: tuple,
        to: ExperimentStatus,
        action: str,
    ) -> bool:
        with self._lock:
            experiment = self._experiments.get(experiment_id)
            if experiment is None:
                logger.warning(f"Cannot {action} unknown experiment {experiment_id}")
                return False
            if experiment.status not in allowed_from:
                logger.warning(
                    f"Cannot {action} experiment {experiment_id} in status "
                    f"{experiment.status.value}"
                )
                return False

            experiment.status = to
            if to == ExperimentStatus.RUNNING and experiment.start_date is None:
                experiment.start_date = self._clock()
            elif to == ExperimentStatus.COMPLETED:
                experiment.end_date = self._clock()
        logger.info(f"Experiment {experiment_id} -> {to.value}")
        return True

    def start_experiment(self, experiment_id: str) -> bool:
        """Start a draft experiment. False if unknown or not in draft."""
        return self._transition(
            experiment_id, (ExperimentStatus.DRAFT,), ExperimentStatus.RUNNING, "start"
        )

    def stop_experiment(self, experiment_id: str) -> bool:
        """Complete a running or paused experiment. False if unknown, draft or already completed."""
        return self._transition(
            experiment_id,
            (ExperimentStatus.RUNNING, ExperimentStatus.PAUSED),
            ExperimentStatus.COMPLETED,
            "stop",
        )

    def pause_experiment(self, experiment_id: str) -> bool:
        return self._transition(
            experiment_id, (ExperimentStatus.RUNNING,), ExperimentStatus.PAUSED, "pause"
        )

    def resume_experiment(self, experiment_id: str) -> bool:
        return self._transition(
            experiment_id, (ExperimentStatus.PAUSED,), ExperimentStatus.RUNNING, "resume"
        )

    def update_traffic_allocation(self, experiment_id: str, percentage: float) -> bool:
        """Change the traffic percentage. Existing assignments are kept."""
        _validate_percentage(percentage)
        with self._lock:
            experiment = self._experiments.get(experiment_id)
            if experiment is None or experiment.status == ExperimentStatus.COMPLETED:
                return False
            experiment.traffic_allocation.percentage = percentage
        logger.info(f"Experiment {experiment_id} traffic -> {percentage}%")
        return True

    def update_audience(self, experiment_id: str, audience: Optional[AudienceFilter]) -> bool:
        with self._lock:
            experiment = self._experiments.get(experiment_id)
            if experiment is None or experiment.status == ExperimentStatus.COMPLETED:
                return False
            experiment.target_audience = audience
        return True

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def get_variant(
        self,
        experiment_id: str,
        user_id: str,
        segments: Optional[List[str]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Optional[Variant]:
        """
        Resolve the user's variant, assigning one on first eligible call.

        Returns None when the experiment is unknown or not running, the user
        is outside the audience, or traffic allocation excludes them. None
        never records an assignment.
        """
        experiment = self.get_experiment(experiment_id)
        if experiment is None or experiment.status != ExperimentStatus.RUNNING:
            return None

        if experiment.target_audience is not None and not experiment.target_audience.matches(
            user_id, segments, attributes
        ):
            return None

        def decide() -> Optional[str]:
            if not should_allocate_traffic(experiment.traffic_allocation, user_id):
                return None
            variant = select_variant(experiment.variants, experiment.id, user_id)
            return variant.id if variant else None

        variant_id, _ = self.assignments.get_or_assign(experiment_id, user_id, decide)
        if variant_id is None:
            return None
        return experiment.get_variant(variant_id)

    def get_assignment(self, experiment_id: str, user_id: str) -> Optional[str]:
        assignment = self.assignments.get(experiment_id, user_id)
        return assignment.variant_id if assignment else None

    # ------------------------------------------------------------------
    # Metrics and results
    # ------------------------------------------------------------------

    def track_metric(
        self,
        experiment_id: str,
        user_id: str,
        metric_name: str,
        value: float,
    ) -> None:
        """Record a metric value for an assigned user of a running experiment."""
        experiment = self.get_experiment(experiment_id)
        if experiment is None or experiment.status != ExperimentStatus.RUNNING:
            return

        assignment = self.assignments.get(experiment_id, user_id)
        if assignment is None:
            logger.debug(f"Dropping {metric_name} for unassigned user {user_id} in {experiment_id}")
            return

        self.ledger.append(MetricEvent(
            experiment_id=experiment_id,
            metric_name=metric_name,
            user_id=user_id,
            variant_id=assignment.variant_id,
            value=value,
            timestamp=self._clock(),
        ))

    def _duration(self, experiment: Experiment) -> float:
        if experiment.start_date is None:
            return 0.0
        end = experiment.end_date or self._clock()
        return max((end - experiment.start_date).total_seconds(), 0.0)

    def get_results(self, experiment_id: str) -> Optional[ExperimentResult]:
        """
        Aggregate assignments and metric events into an ExperimentResult.

        Recomputed from scratch on every call.
        """
        experiment = self.get_experiment(experiment_id)
        if experiment is None:
            return None

        variant_ids = [v.id for v in experiment.variants]
        counts = self.assignments.participant_counts(experiment_id)
        events = self.ledger.snapshot(experiment_id)

        per_metric = {
            metric.name: aggregate_metric(events, metric, variant_ids)
            for metric in experiment.metrics
        }

        conversion_metric = experiment.conversion_metric
        conversions = conversion_counts(events, conversion_metric.name) if conversion_metric else {}

        variant_results = []
        for vid in variant_ids:
            participants = counts.get(vid, 0)
            vr = VariantResult(
                variant_id=vid,
                participants=participants,
                metrics={name: results[vid] for name, results in per_metric.items()},
            )
            if conversion_metric is not None and participants > 0:
                vr.conversion_rate = conversions.get(vid, 0) / participants
                vr.confidence_interval = rate_confidence_interval(vr.conversion_rate, participants)
            variant_results.append(vr)

        control_rate = variant_results[0].conversion_rate if variant_results else None
        for vr in variant_results[1:]:
            if vr.conversion_rate is not None and control_rate:
                vr.improvement = (vr.conversion_rate - control_rate) / control_rate

        significance = calculate_significance(variant_results)
        srm_passed, _, srm_p = check_srm(
            [vr.participants for vr in variant_results],
            [v.weight for v in experiment.variants],
        )
        if not srm_passed:
            logger.warning(f"SRM detected in {experiment_id} (p={srm_p:.4f})")

        result = ExperimentResult(
            experiment_id=experiment_id,
            variant_results=variant_results,
            winner=significance.winner,
            confidence=significance.confidence,
            is_significant=significance.is_significant,
            sample_size=sum(vr.participants for vr in variant_results),
            duration=self._duration(experiment),
            z_score=significance.z_score,
            srm_passed=srm_passed,
            srm_p_value=srm_p,
            computed_at=self._clock(),
        )
        logger.debug(
            f"Results for {experiment_id}: n={result.sample_size}, "
            f"confidence={result.confidence:.3f}, winner={result.winner}"
        )
        return result

    def plan_sample_size(
        self,
        baseline: float,
        mde_relative: float,
        alpha: float = 0.05,
        power: float = 0.8,
        allocation: float = 0.5,
    ) -> int:
        """Total participants needed to detect a relative uplift; feeds RunnerOptions.min_sample_size."""
        return sample_size_proportion(baseline, mde_relative, alpha, power, allocation)

    # ------------------------------------------------------------------
    # Feature flags
    # ------------------------------------------------------------------

    def create_feature_flag(
        self,
        key: str,
        description: str = "",
        rollout_percentage: float = 0.0,
        targeting: Optional[AudienceFilter] = None,
        experiment_id: Optional[str] = None,
        config_key: Optional[str] = None,
    ) -> FeatureFlag:
        """
        Create a disabled feature flag.

        ``experiment_id``/``config_key`` link the flag to an experiment's
        variant config explicitly; without them the link is discovered by scan.
        """
        return self.flags.create(
            key,
            description=description,
            rollout_percentage=rollout_percentage,
            targeting=targeting,
            experiment_id=experiment_id,
            config_key=config_key,
        )

    def get_flag(self, key: str) -> Optional[FeatureFlag]:
        return self.flags.get(key)

    def list_flags(self) -> List[FeatureFlag]:
        return self.flags.list()

    def enable_feature_flag(self, key: str) -> bool:
        return self.flags.set_enabled(key, True)

    def disable_feature_flag(self, key: str) -> bool:
        return self.flags.set_enabled(key, False)

    def is_feature_enabled(
        self,
        key: str,
        user_id: Optional[str] = None,
        segments: Optional[List[str]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return self.flags.is_enabled(key, user_id, segments, attributes)

    def find_experiment_by_flag(self, flag_key: str) -> Optional[Experiment]:
        """First experiment (in creation order) whose variant config contains the key."""
        for experiment in self.list_experiments():
            for variant in experiment.variants:
                if flag_key in variant.config:
                    return experiment
        return None

    def get_feature_flag(
        self,
        key: str,
        default_value: Any,
        user_id: Optional[str] = None,
        segments: Optional[List[str]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Resolve a flag's value for a user.

        Returns ``default_value`` unless the flag is enabled for the user and
        the user's variant in the linked experiment defines a value.
        """
        if not self.is_feature_enabled(key, user_id, segments, attributes):
            return default_value
        if user_id is None:
            return default_value

        flag = self.flags.get(key)
        config_key = key
        if flag is not None and flag.experiment_id is not None:
            experiment = self.get_experiment(flag.experiment_id)
            config_key = flag.config_key or key
        else:
            experiment = self.find_experiment_by_flag(key)
        if experiment is None:
            return default_value

        variant = self.get_variant(experiment.id, user_id, segments, attributes)
        if variant is None:
            return default_value
        value = variant.config.get(config_key)
        return default_value if value is None else value
