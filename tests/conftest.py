"""Pytest configuration - add src to path and shared fixtures."""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))

from experiment_engine.manager import ExperimentManager  # noqa: E402
from experiment_engine.schema import (  # noqa: E402
    AggregationType,
    MetricConfig,
    MetricType,
    TrafficAllocation,
    Variant,
)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(clock):
    return ExperimentManager(clock=clock)


@pytest.fixture
def ab_experiment(manager):
    """Running 50/50 experiment with a conversion and a revenue metric."""
    exp = manager.create_experiment(
        name="Checkout button",
        description="Green vs blue",
        variants=[
            Variant(id="A", name="Control", weight=1, config={"button_color": "blue"}),
            Variant(id="B", name="Treatment", weight=1, config={"button_color": "green"}),
        ],
        traffic_allocation=TrafficAllocation(percentage=100),
        metrics=[
            MetricConfig(name="clicked", type=MetricType.CONVERSION, event_name="click",
                         aggregation=AggregationType.COUNT),
            MetricConfig(name="revenue", type=MetricType.SUM, event_name="purchase",
                         aggregation=AggregationType.SUM),
        ],
    )
    manager.start_experiment(exp.id)
    return exp
