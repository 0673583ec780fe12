"""
Traffic simulator for experiments.

Sends synthetic users through get_variant and reports conversions (and an
optional continuous value) drawn from per-variant true rates. Used by the demo
script and end-to-end tests to exercise the engine with realistic traffic.
"""

import logging
from typing import Dict, List, Optional

import numpy as np

from .manager import ExperimentManager

logger = logging.getLogger(__name__)

SIMULATOR_SEED = 42


def run_simulation(
    manager: ExperimentManager,
    experiment_id: str,
    conversion_rates: Dict[str, float],
    n_users: int = 1000,
    conversion_metric: str = "converted",
    value_metric: Optional[str] = None,
    value_mean: float = 50.0,
    value_std: float = 10.0,
    user_prefix: str = "sim_user",
    random_seed: int = SIMULATOR_SEED,
) -> Dict:
    """
    Simulate traffic for a running experiment.

    Args:
        manager: Manager owning the experiment
        experiment_id: Experiment identifier
        conversion_rates: True conversion rate per variant id
        n_users: Number of synthetic users
        conversion_metric: Metric name receiving 1.0 per conversion
        value_metric: Optional metric receiving a value per converting user
        value_mean: Mean of the simulated value
        value_std: Standard deviation of the simulated value
        user_prefix: Prefix for generated user ids
        random_seed: Random seed for reproducibility

    Returns:
        Dict with n_users, n_assigned, per-variant assigned/converted counts
    """
    rng = np.random.default_rng(random_seed)

    assigned: Dict[str, int] = {}
    converted: Dict[str, int] = {}
    excluded: List[str] = []

    for i in range(n_users):
        uid = f"{user_prefix}_{i}"
        variant = manager.get_variant(experiment_id, uid)
        if variant is None:
            excluded.append(uid)
            continue

        assigned[variant.id] = assigned.get(variant.id, 0) + 1
        rate = float(np.clip(conversion_rates.get(variant.id, 0.0), 0, 1))
        if rng.random() < rate:
            converted[variant.id] = converted.get(variant.id, 0) + 1
            manager.track_metric(experiment_id, uid, conversion_metric, 1.0)
            if value_metric:
                value = max(float(rng.normal(value_mean, value_std)), 0.0)
                manager.track_metric(experiment_id, uid, value_metric, value)

    summary = {
        "experiment_id": experiment_id,
        "n_users": n_users,
        "n_assigned": sum(assigned.values()),
        "n_excluded": len(excluded),
        "assigned": assigned,
        "converted": converted,
        "random_seed": random_seed,
    }
    logger.info(f"Simulation complete: {summary}")
    return summary
