"""Tests for sample size planning and early-stop warnings."""
import pytest

from experiment_engine.stats.power import sample_size_proportion
from experiment_engine.stats.sequential import early_stop_warning


def test_sample_size_shrinks_with_larger_effect():
    small = sample_size_proportion(0.10, 0.10)
    large = sample_size_proportion(0.10, 0.50)
    assert small > large > 0


def test_sample_size_grows_with_power():
    assert sample_size_proportion(0.10, 0.20, power=0.9) > sample_size_proportion(0.10, 0.20, power=0.8)


def test_sample_size_rejects_zero_effect():
    with pytest.raises(ValueError):
        sample_size_proportion(0.10, 0.0)
    with pytest.raises(ValueError):
        sample_size_proportion(0.10, 0.2, allocation=1.0)


def test_manager_plan_sample_size(manager):
    assert manager.plan_sample_size(0.10, 0.20) == sample_size_proportion(0.10, 0.20)


def test_early_stop_warning():
    """Only stops short of the planned size warn; repeated looks are named."""
    assert early_stop_warning(None, 10, 5) is None
    assert early_stop_warning(1000, 1000, 5) is None
    assert early_stop_warning(1000, 1200, 1) is None

    msg = early_stop_warning(1000, 400, 1)
    assert "40% of the planned 1000" in msg
    assert "looks" not in msg

    msg = early_stop_warning(1000, 400, 6)
    assert "after 6 looks" in msg
