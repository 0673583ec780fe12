#!/usr/bin/env python3
"""
Run full experiment demo: create -> simulate traffic -> monitor -> report.

Prints the concluding ExperimentResult as JSON.
"""

import concurrent.futures
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))


def main():
    from experiment_engine import (
        AggregationType,
        ExperimentManager,
        ExperimentRunner,
        MetricConfig,
        MetricType,
        RunnerOptions,
        TrafficAllocation,
        Variant,
    )
    from experiment_engine.simulate import run_simulation

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    manager = ExperimentManager()
    experiment = manager.create_experiment(
        name="Onboarding copy",
        description="Short vs long onboarding prompt",
        variants=[
            Variant(id="control", name="Long prompt", weight=1, config={"prompt_style": "long"}),
            Variant(id="short", name="Short prompt", weight=1, config={"prompt_style": "short"}),
        ],
        traffic_allocation=TrafficAllocation(percentage=80),
        metrics=[
            MetricConfig(name="converted", type=MetricType.CONVERSION,
                         event_name="signup", aggregation=AggregationType.COUNT),
            MetricConfig(name="revenue", type=MetricType.SUM,
                         event_name="purchase", aggregation=AggregationType.SUM),
        ],
    )
    manager.create_feature_flag(
        "prompt_style", "Exposes the onboarding prompt variant", rollout_percentage=100,
        experiment_id=experiment.id,
    )
    manager.enable_feature_flag("prompt_style")

    planned = manager.plan_sample_size(baseline=0.10, mde_relative=0.5)
    print(f"1. Planned sample size: {planned}")

    manager.start_experiment(experiment.id)
    print("2. Simulating traffic...")
    summary = run_simulation(
        manager,
        experiment.id,
        conversion_rates={"control": 0.10, "short": 0.15},
        n_users=max(planned * 2, 2000),
        value_metric="revenue",
    )
    print(f"   assigned={summary['assigned']} converted={summary['converted']}")
    print(f"   flag for sim_user_0: {manager.get_feature_flag('prompt_style', 'long', 'sim_user_0')}")

    print("3. Monitoring...")
    runner = ExperimentRunner(manager, poll_interval=0.1)
    future = runner.run_in_background(
        experiment.id,
        RunnerOptions(min_sample_size=planned // 2, min_duration=0, confidence_threshold=0.95,
                      planned_sample_size=planned),
    )
    try:
        result = future.result(timeout=5)
    except concurrent.futures.TimeoutError:
        print("   no conclusion yet; reporting current results")
        result = manager.get_results(experiment.id)
    runner.shutdown()

    print("4. Result:")
    print(json.dumps(result.to_dict(), indent=2))


if __name__ == "__main__":
    main()
