"""
Percentage-rollout feature flags.

Rollout reuses the experiment bucketer keyed on "<flag key>:<user id>", so a
user enabled at p% stays enabled at any higher percentage.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from .bucketing import fraction
from .schema import AudienceFilter, FeatureFlag

logger = logging.getLogger(__name__)


def _validate_percentage(rollout_percentage: float) -> None:
    if not 0 <= rollout_percentage <= 100:
        raise ValueError(f"rollout_percentage must be in [0, 100], got {rollout_percentage}")


class FeatureFlagStore:
    """Registry of feature flags keyed by flag key."""

    def __init__(self):
        self._flags: Dict[str, FeatureFlag] = {}
        self._lock = threading.Lock()

    def create(
        self,
        key: str,
        description: str = "",
        rollout_percentage: float = 0.0,
        targeting: Optional[AudienceFilter] = None,
        experiment_id: Optional[str] = None,
        config_key: Optional[str] = None,
    ) -> FeatureFlag:
        """Create a disabled flag. An existing flag with the same key is replaced."""
        _validate_percentage(rollout_percentage)
        if experiment_id is not None and config_key is None:
            config_key = key

        flag = FeatureFlag(
            key=key,
            description=description,
            enabled=False,
            targeting=targeting,
            rollout_percentage=rollout_percentage,
            experiment_id=experiment_id,
            config_key=config_key,
        )
        with self._lock:
            if key in self._flags:
                logger.warning(f"Feature flag {key} already exists; replacing it")
            self._flags[key] = flag
        logger.info(f"Created feature flag {key} (rollout={rollout_percentage}%)")
        return flag

    def get(self, key: str) -> Optional[FeatureFlag]:
        with self._lock:
            return self._flags.get(key)

    def list(self) -> List[FeatureFlag]:
        with self._lock:
            return list(self._flags.values())

    def set_enabled(self, key: str, enabled: bool) -> bool:
        with self._lock:
            flag = self._flags.get(key)
            if flag is None:
                return False
            flag.enabled = enabled
        logger.info(f"Feature flag {key} {'enabled' if enabled else 'disabled'}")
        return True

    def set_rollout(self, key: str, rollout_percentage: float) -> bool:
        _validate_percentage(rollout_percentage)
        with self._lock:
            flag = self._flags.get(key)
            if flag is None:
                return False
            flag.rollout_percentage = rollout_percentage
        return True

    def is_enabled(
        self,
        key: str,
        user_id: Optional[str] = None,
        segments: Optional[List[str]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Evaluate a flag for an optional user.

        Without a user id there is nothing to hash, so the flag is only on at
        100% rollout.
        """
        flag = self.get(key)
        if flag is None or not flag.enabled:
            return False

        if flag.targeting is not None and user_id is not None:
            if not flag.targeting.matches(user_id, segments, attributes):
                return False

        if user_id is not None:
            return fraction(f"{key}:{user_id}") < flag.rollout_percentage / 100

        return flag.rollout_percentage >= 100
