"""
Power analysis for conversion experiments.

Computes the total sample size needed to detect a relative conversion uplift.
"""

import numpy as np
from scipy import stats


def sample_size_proportion(
    baseline: float,
    mde_relative: float,
    alpha: float = 0.05,
    power: float = 0.8,
    allocation: float = 0.5,
) -> int:
    """
    Total sample size for a two-proportion test.

    Args:
        baseline: Control conversion rate (e.g., 0.10)
        mde_relative: Minimum detectable uplift, relative (0.20 = +20%)
        alpha: Type I error rate
        power: Statistical power (1 - Type II)
        allocation: Fraction of participants in the treatment arm

    Returns:
        Participants across both arms
    """
    if not 0 < allocation < 1:
        raise ValueError("allocation must be in (0, 1)")

    p1 = baseline
    p2 = min(baseline * (1 + mde_relative), 1.0)
    effect = abs(p2 - p1)

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)

    p_pool = (p1 + p2) / 2
    se = np.sqrt(p_pool * (1 - p_pool) * (1 / allocation + 1 / (1 - allocation)))

    if se == 0 or effect == 0:
        raise ValueError("baseline and mde_relative must give a non-zero effect")

    n_total = ((z_alpha + z_beta) * se / effect) ** 2
    return int(np.ceil(n_total))

