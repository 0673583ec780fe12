"""Tests for experiment creation and lifecycle transitions."""
import pytest

from experiment_engine.schema import (
    ExperimentStatus,
    MetricConfig,
    TrafficAllocation,
    Variant,
)


def _variants():
    return [Variant(id="A", name="A"), Variant(id="B", name="B")]


def test_create_forces_draft(manager):
    exp = manager.create_experiment(name="X", variants=_variants())
    assert exp.status == ExperimentStatus.DRAFT
    assert exp.id.startswith("exp_")
    assert manager.get_experiment(exp.id) is exp


@pytest.mark.parametrize("kwargs", [
    {"variants": []},
    {"variants": [Variant(id="A", name="A", weight=0)]},
    {"variants": [Variant(id="A", name="A", weight=-1), Variant(id="B", name="B", weight=2)]},
    {"variants": [Variant(id="A", name="A"), Variant(id="A", name="A2")]},
    {"variants": _variants(), "traffic_allocation": TrafficAllocation(percentage=101)},
    {"variants": _variants(), "metrics": [MetricConfig(name="m"), MetricConfig(name="m")]},
])
def test_create_rejects_invalid_definitions(manager, kwargs):
    with pytest.raises(ValueError):
        manager.create_experiment(name="Bad", **kwargs)


def test_create_duplicate_id(manager):
    manager.create_experiment(name="X", variants=_variants(), experiment_id="same")
    with pytest.raises(ValueError):
        manager.create_experiment(name="Y", variants=_variants(), experiment_id="same")


def test_start_and_stop(manager, clock):
    exp = manager.create_experiment(name="X", variants=_variants())
    assert manager.start_experiment(exp.id)
    assert exp.status == ExperimentStatus.RUNNING
    assert exp.start_date == clock.now

    clock.advance(60)
    assert manager.stop_experiment(exp.id)
    assert exp.status == ExperimentStatus.COMPLETED
    assert exp.end_date == clock.now


def test_double_start_and_terminal_stop(manager):
    exp = manager.create_experiment(name="X", variants=_variants())
    assert not manager.stop_experiment(exp.id)
    assert manager.start_experiment(exp.id)
    assert not manager.start_experiment(exp.id)
    assert manager.stop_experiment(exp.id)
    assert not manager.stop_experiment(exp.id)
    assert not manager.start_experiment(exp.id)
    assert exp.status == ExperimentStatus.COMPLETED


def test_unknown_ids(manager):
    assert not manager.start_experiment("missing")
    assert not manager.stop_experiment("missing")
    assert not manager.pause_experiment("missing")
    assert not manager.resume_experiment("missing")
    assert not manager.update_traffic_allocation("missing", 50)


def test_pause_and_resume(manager, ab_experiment, clock):
    eid = ab_experiment.id
    assigned = manager.get_variant(eid, "u1")
    started = ab_experiment.start_date

    assert manager.pause_experiment(eid)
    assert manager.get_variant(eid, "u1") is None
    assert not manager.pause_experiment(eid)

    clock.advance(30)
    assert manager.resume_experiment(eid)
    assert ab_experiment.start_date == started
    assert manager.get_variant(eid, "u1") is assigned

    assert manager.pause_experiment(eid)
    assert manager.stop_experiment(eid)
    assert not manager.resume_experiment(eid)


def test_completed_is_immutable(manager, ab_experiment):
    manager.stop_experiment(ab_experiment.id)
    assert not manager.update_traffic_allocation(ab_experiment.id, 10)
    assert not manager.update_audience(ab_experiment.id, None)
    assert manager.get_variant(ab_experiment.id, "u1") is None


def test_list_experiments(manager, ab_experiment):
    draft = manager.create_experiment(name="Draft", variants=_variants())
    assert {e.id for e in manager.list_experiments()} == {ab_experiment.id, draft.id}
    assert manager.list_experiments(ExperimentStatus.DRAFT) == [draft]
    assert manager.list_experiments(ExperimentStatus.RUNNING) == [ab_experiment]


def test_stop_keeps_assignments_and_metrics(manager, ab_experiment):
    manager.get_variant(ab_experiment.id, "u1")
    manager.track_metric(ab_experiment.id, "u1", "revenue", 5)
    manager.stop_experiment(ab_experiment.id)
    results = manager.get_results(ab_experiment.id)
    assert results.sample_size == 1
    assert sum(vr.metrics["revenue"].total for vr in results.variant_results) == 5
