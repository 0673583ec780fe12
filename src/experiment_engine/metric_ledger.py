"""
Append-only, in-memory ledger of experiment metric events.

Events are keyed by (experiment_id, metric_name). Reads copy the events under
the ledger lock into a pandas DataFrame, so aggregation works on a stable
snapshot while appends continue.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .schema import MetricConfig, MetricEvent, MetricResult

logger = logging.getLogger(__name__)

EVENT_COLUMNS = ["experiment_id", "metric_name", "user_id", "variant_id", "value", "timestamp"]


def _event_to_row(evt: MetricEvent) -> dict:
    return {
        "experiment_id": evt.experiment_id,
        "metric_name": evt.metric_name,
        "user_id": evt.user_id,
        "variant_id": evt.variant_id,
        "value": float(evt.value),
        "timestamp": evt.timestamp,
    }


class MetricLedger:
    """Thread-safe append-only collection of MetricEvents."""

    def __init__(self):
        self._events: Dict[Tuple[str, str], List[MetricEvent]] = {}
        self._lock = threading.Lock()

    def append(self, event: MetricEvent) -> None:
        key = (event.experiment_id, event.metric_name)
        with self._lock:
            self._events.setdefault(key, []).append(event)

    def snapshot(
        self,
        experiment_id: str,
        metric_name: Optional[str] = None,
    ) -> pd.DataFrame:
        """
        Read events for an experiment, optionally filtered by metric.

        Args:
            experiment_id: Experiment identifier
            metric_name: Optional filter by metric name

        Returns:
            DataFrame with one row per event
        """
        with self._lock:
            events = [
                evt
                for (exp_id, name), bucket_events in self._events.items()
                if exp_id == experiment_id and (metric_name is None or name == metric_name)
                for evt in bucket_events
            ]

        logger.debug(f"Snapshot of {experiment_id}: {len(events)} events")
        if not events:
            return pd.DataFrame(columns=EVENT_COLUMNS)

        return pd.DataFrame([_event_to_row(e) for e in events], columns=EVENT_COLUMNS)


def aggregate_metric(
    events: pd.DataFrame,
    metric: MetricConfig,
    variant_ids: Iterable[str],
) -> Dict[str, MetricResult]:
    """
    Aggregate one metric per variant.

    Args:
        events: Event snapshot as returned by MetricLedger.snapshot
        metric: Metric definition (selects rows and the declared aggregation)
        variant_ids: Variants to report; those without events get zeros

    Returns:
        Dict mapping variant_id -> MetricResult
    """
    results = {vid: MetricResult(aggregation=metric.aggregation) for vid in variant_ids}
    if events.empty:
        return results

    sub = events[events["metric_name"] == metric.name]
    if sub.empty:
        return results

    grouped = sub.groupby("variant_id")["value"].agg(["sum", "count", "mean", "min", "max"])
    for vid in results:
        if vid not in grouped.index:
            continue
        row = grouped.loc[vid]
        results[vid] = MetricResult(
            total=float(row["sum"]),
            count=int(row["count"]),
            average=float(row["mean"]),
            min=float(row["min"]),
            max=float(row["max"]),
            aggregation=metric.aggregation,
        )
    return results


def conversion_counts(events: pd.DataFrame, metric_name: str) -> Dict[str, int]:
    """Events per variant with a positive value for the metric."""
    if events.empty:
        return {}
    sub = events[(events["metric_name"] == metric_name) & (events["value"] > 0)]
    if sub.empty:
        return {}
    return {str(k): int(v) for k, v in sub.groupby("variant_id").size().items()}
