"""
Sample Ratio Mismatch (SRM) chi-square test.

Detects if the observed split of participants across variants deviates
significantly from the declared variant weights.
"""

from typing import List, Tuple

import numpy as np
from scipy import stats

DEFAULT_SRM_ALPHA = 0.01


def srm_chi_square(
    observed: List[int],
    weights: List[float],
) -> Tuple[float, float]:
    """
    Chi-square goodness-of-fit test for sample ratio mismatch.

    H0: participants are split in proportion to the weights
    H1: the split differs from the weights

    Args:
        observed: Participants per variant
        weights: Declared variant weights (any positive scale)

    Returns:
        Tuple of (chi2_statistic, p_value)
    """
    n_total = sum(observed)
    total_weight = sum(weights)
    if n_total == 0 or total_weight <= 0 or len(observed) < 2:
        return 0.0, 1.0

    obs = np.array(observed, dtype=float)
    expected = np.array(weights, dtype=float) / total_weight * n_total

    # Zero-weight variants should have no participants
    expected = np.where(expected == 0, 1e-10, expected)

    chi2 = float(np.sum((obs - expected) ** 2 / expected))
    p_value = float(1 - stats.chi2.cdf(chi2, df=len(observed) - 1))
    return chi2, p_value


def check_srm(
    observed: List[int],
    weights: List[float],
    alpha: float = DEFAULT_SRM_ALPHA,
) -> Tuple[bool, float, float]:
    """
    Check for sample ratio mismatch.

    Returns:
        Tuple of (srm_passed, chi2_statistic, p_value)
    """
    chi2, p_value = srm_chi_square(observed, weights)
    return p_value >= alpha, chi2, p_value
