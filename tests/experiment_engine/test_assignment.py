"""Tests for deterministic assignment and sticky variant resolution."""
import threading

import pytest

from experiment_engine.assignment import (
    AssignmentTable,
    select_variant,
    should_allocate_traffic,
)
from experiment_engine.manager import ExperimentManager
from experiment_engine.schema import (
    AudienceFilter,
    TrafficAllocation,
    TrafficAllocationType,
    Variant,
)


def _variants(*weights):
    return [Variant(id=f"v{i}", name=f"V{i}", weight=w) for i, w in enumerate(weights)]


def test_select_variant_deterministic():
    """Same experiment + user always gets same variant."""
    variants = _variants(1, 1)
    v1 = select_variant(variants, "exp_1", "cust_001")
    v2 = select_variant(variants, "exp_1", "cust_001")
    assert v1 is v2


def test_select_variant_zero_weight_never_chosen():
    """A zero-weight variant behind a full-weight one is unreachable."""
    variants = _variants(1, 0)
    for i in range(200):
        assert select_variant(variants, "exp", f"u{i}").id == "v0"


def test_select_variant_leading_zero_weight_never_chosen():
    """Users whose draw is exactly 0 still skip a leading zero-weight variant."""
    variants = _variants(0, 1)
    for i in range(2000):
        assert select_variant(variants, "exp", f"u{i}").id == "v1"


def test_zero_weight_arm_gets_no_participants(manager):
    exp = manager.create_experiment(
        name="Kill switch",
        variants=[Variant(id="off", name="Off", weight=0), Variant(id="on", name="On", weight=1)],
        experiment_id="exp_z",
    )
    manager.start_experiment(exp.id)
    for i in range(2000):
        assert manager.get_variant(exp.id, f"user-{i}").id == "on"

    result = manager.get_results(exp.id)
    assert result.get_variant_result("off").participants == 0
    assert result.srm_passed


def test_select_variant_empty():
    assert select_variant([], "exp", "u1") is None


def test_traffic_allocation_bounds():
    """At 0% nobody is included, at 100% everybody."""
    zero = TrafficAllocation(percentage=0)
    full = TrafficAllocation(percentage=100)
    for i in range(200):
        assert not should_allocate_traffic(zero, f"u{i}")
        assert should_allocate_traffic(full, f"u{i}")


def test_non_percentage_allocation_includes_everyone():
    alloc = TrafficAllocation(type=TrafficAllocationType.HASH, percentage=0)
    assert should_allocate_traffic(alloc, "anyone")


def test_weight_proportionality(manager):
    """70/30 weights yield roughly a 70/30 split over 10,000 users."""
    exp = manager.create_experiment(
        name="Split",
        variants=[Variant(id="A", name="A", weight=70), Variant(id="B", name="B", weight=30)],
        experiment_id="exp_split",
    )
    manager.start_experiment(exp.id)
    for i in range(10000):
        manager.get_variant(exp.id, f"user-{i}")
    counts = manager.assignments.participant_counts(exp.id)
    assert sum(counts.values()) == 10000
    assert 0.65 <= counts["A"] / 10000 <= 0.75


def test_assignment_table_sticky():
    """decide() only runs for the first call."""
    table = AssignmentTable()
    calls = []

    def decide():
        calls.append(1)
        return "v1"

    assert table.get_or_assign("e", "u", decide) == ("v1", True)
    assert table.get_or_assign("e", "u", lambda: "v2") == ("v1", False)
    assert len(calls) == 1
    assert table.participant_counts("e") == {"v1": 1}


def test_assignment_table_excluded_records_nothing():
    table = AssignmentTable()
    assert table.get_or_assign("e", "u", lambda: None) == (None, False)
    assert table.get("e", "u") is None


def test_assignment_table_rejects_zero_stripes():
    with pytest.raises(ValueError):
        AssignmentTable(lock_stripes=0)


def test_get_variant_sticky_after_traffic_reduction(manager, ab_experiment):
    """An assigned user keeps their variant after traffic drops to 0%."""
    first = manager.get_variant(ab_experiment.id, "u1")
    assert first is not None
    manager.update_traffic_allocation(ab_experiment.id, 0)
    assert manager.get_variant(ab_experiment.id, "u1") is first
    assert manager.get_variant(ab_experiment.id, "u2") is None


def test_excluded_user_can_join_after_traffic_increase(manager, ab_experiment):
    manager.update_traffic_allocation(ab_experiment.id, 0)
    assert manager.get_variant(ab_experiment.id, "late") is None
    assert manager.get_assignment(ab_experiment.id, "late") is None
    manager.update_traffic_allocation(ab_experiment.id, 100)
    assert manager.get_variant(ab_experiment.id, "late") is not None


def test_audience_mismatch_not_recorded(manager, ab_experiment):
    """Filtered users get no variant and no assignment; widening the audience admits them."""
    manager.update_audience(ab_experiment.id, AudienceFilter(user_ids=["u1"]))
    assert manager.get_variant(ab_experiment.id, "u2") is None
    assert manager.get_assignment(ab_experiment.id, "u2") is None
    assert manager.get_variant(ab_experiment.id, "u1") is not None
    manager.update_audience(ab_experiment.id, None)
    assert manager.get_variant(ab_experiment.id, "u2") is not None


def test_audience_segments_and_attributes(manager, ab_experiment):
    manager.update_audience(
        ab_experiment.id,
        AudienceFilter(user_segments=["beta"], user_attributes={"plan": "pro"}),
    )
    eid = ab_experiment.id
    assert manager.get_variant(eid, "s1", segments=["alpha"]) is None
    assert manager.get_variant(eid, "s2", attributes={"plan": "free"}) is None
    assert manager.get_variant(eid, "s3", segments=["beta"], attributes={"plan": "pro"}) is not None
    # No context supplied: segment and attribute rules cannot be checked
    assert manager.get_variant(eid, "s4") is not None


def test_get_variant_not_running(manager):
    exp = manager.create_experiment(name="Draft", variants=_variants(1))
    assert manager.get_variant(exp.id, "u1") is None
    assert manager.get_variant("missing", "u1") is None


def test_determinism_across_instances():
    """Two fresh managers with the same definition assign identically."""
    def build():
        m = ExperimentManager()
        m.create_experiment(name="Same", variants=_variants(1, 1, 2), experiment_id="exp_fixed")
        m.start_experiment("exp_fixed")
        return m

    m1, m2 = build(), build()
    for i in range(300):
        uid = f"user-{i}"
        assert m1.get_variant("exp_fixed", uid).id == m2.get_variant("exp_fixed", uid).id


def test_concurrent_first_assignment(manager, ab_experiment):
    """Racing first-time calls for one user produce a single assignment."""
    seen = []
    barrier = threading.Barrier(16)

    def worker():
        barrier.wait()
        seen.append(manager.get_variant(ab_experiment.id, "racer").id)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(seen)) == 1
    counts = manager.assignments.participant_counts(ab_experiment.id)
    assert sum(counts.values()) == 1
