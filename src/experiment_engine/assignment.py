"""
Deterministic experiment assignment for A/B testing.

Traffic inclusion and variant choice are both derived from the bucketer, so a
user lands on the same side of every threshold for a given key. The
AssignmentTable makes the first decision sticky.
"""

import logging
import threading
from collections import Counter
from typing import Callable, Dict, List, Optional, Tuple

from .bucketing import bucket, fraction
from .schema import Assignment, TrafficAllocation, TrafficAllocationType, Variant

logger = logging.getLogger(__name__)

DEFAULT_LOCK_STRIPES = 64


def should_allocate_traffic(allocation: TrafficAllocation, user_id: str) -> bool:
    """
    Decide whether a user participates in the experiment at all.

    Only percentage allocation filters users; hash and user_id allocation
    include everyone.
    """
    if allocation.type == TrafficAllocationType.PERCENTAGE:
        return fraction(user_id) < allocation.percentage / 100
    return True


def variant_draw_key(experiment_id: str, user_id: str) -> str:
    return f"variant:{experiment_id}:{user_id}"


def select_variant(
    variants: List[Variant],
    experiment_id: str,
    user_id: str,
) -> Optional[Variant]:
    """
    Pick a variant by weighted draw.

    Walks variants in declared order accumulating normalised weight until it
    reaches the draw. Zero-weight variants are never chosen. The last weighted
    variant absorbs any rounding slack.
    """
    if not variants:
        return None
    total_weight = sum(v.weight for v in variants)
    if total_weight <= 0:
        return None

    draw = fraction(variant_draw_key(experiment_id, user_id))
    cumulative = 0.0
    for variant in variants:
        if variant.weight <= 0:
            continue
        cumulative += variant.weight / total_weight
        if cumulative >= draw:
            return variant
    return [v for v in variants if v.weight > 0][-1]


class AssignmentTable:
    """
    Sticky (experiment_id, user_id) -> variant_id assignments.

    First-time assignment runs under a lock striped by the pair's bucket, so
    two concurrent callers for the same user agree on one variant.
    """

    def __init__(self, lock_stripes: int = DEFAULT_LOCK_STRIPES):
        if lock_stripes < 1:
            raise ValueError("lock_stripes must be >= 1")
        self._stripes = [threading.Lock() for _ in range(lock_stripes)]
        self._assignments: Dict[str, Dict[str, Assignment]] = {}
        self._table_lock = threading.Lock()

    def _stripe(self, experiment_id: str, user_id: str) -> threading.Lock:
        return self._stripes[bucket(f"{experiment_id}:{user_id}") % len(self._stripes)]

    def get(self, experiment_id: str, user_id: str) -> Optional[Assignment]:
        with self._table_lock:
            return self._assignments.get(experiment_id, {}).get(user_id)

    def get_or_assign(
        self,
        experiment_id: str,
        user_id: str,
        decide: Callable[[], Optional[str]],
    ) -> Tuple[Optional[str], bool]:
        """
        Return the user's variant id, calling ``decide`` only if unassigned.

        ``decide`` returns a variant id or None (user excluded, nothing
        recorded). Returns (variant_id, created).
        """
        with self._stripe(experiment_id, user_id):
            existing = self.get(experiment_id, user_id)
            if existing is not None:
                return existing.variant_id, False

            variant_id = decide()
            if variant_id is None:
                return None, False

            with self._table_lock:
                self._assignments.setdefault(experiment_id, {})[user_id] = Assignment(
                    experiment_id=experiment_id,
                    user_id=user_id,
                    variant_id=variant_id,
                )
            logger.debug(f"Assigned {user_id} -> {variant_id} in {experiment_id}")
            return variant_id, True

    def participant_counts(self, experiment_id: str) -> Dict[str, int]:
        """Count of assigned users per variant id."""
        with self._table_lock:
            assignments = list(self._assignments.get(experiment_id, {}).values())
        return dict(Counter(a.variant_id for a in assignments))
