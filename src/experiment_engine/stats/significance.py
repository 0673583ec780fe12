"""
Two-proportion significance testing between a control and a treatment variant.

Confidence is the two-sided normal probability mass within |z|, computed with
the Abramowitz-Stegun rational approximation of erf so results are identical
across platforms.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from scipy import stats

from ..schema import VariantResult

SIGNIFICANCE_LEVEL = 0.95
DEFAULT_CI_LEVEL = 0.95

# Abramowitz & Stegun 7.1.26
A1 = 0.254829592
A2 = -0.284496736
A3 = 1.421413741
A4 = -1.453152027
A5 = 1.061405429
P = 0.3275911


@dataclass
class SignificanceResult:
    """Outcome of comparing control against the chosen treatment."""
    confidence: float = 0.0
    is_significant: bool = False
    winner: Optional[str] = None
    z_score: float = 0.0
    control_id: Optional[str] = None
    treatment_id: Optional[str] = None


def z_to_confidence(z: float) -> float:
    """
    Two-sided confidence for a z-score: 2 * Phi(|z|) - 1.

    Equivalent to erf(|z| / sqrt(2)); symmetric in the sign of z.
    """
    x = abs(z) / np.sqrt(2)
    t = 1.0 / (1.0 + P * x)
    y = 1.0 - ((((A5 * t + A4) * t + A3) * t + A2) * t + A1) * t * np.exp(-x * x)
    return float(np.clip(y, 0.0, 1.0))


def proportions_z_test(
    n1: int,
    p1: float,
    n2: int,
    p2: float,
) -> Tuple[float, float]:
    """
    Pooled two-proportion z-test.

    Args:
        n1: Control participants
        p1: Control conversion rate
        n2: Treatment participants
        p2: Treatment conversion rate

    Returns:
        Tuple of (z_score, confidence). Zero participants on either side
        yields (0.0, 0.0).
    """
    if n1 <= 0 or n2 <= 0:
        return 0.0, 0.0

    p_pool = (p1 * n1 + p2 * n2) / (n1 + n2)
    # Repeat conversions can push a rate past 1; the variance floors at 0
    se = float(np.sqrt(max(p_pool * (1 - p_pool), 0.0) * (1 / n1 + 1 / n2)))
    if se == 0:
        se = 1.0

    z = (p2 - p1) / se
    return float(z), z_to_confidence(z)


def rate_confidence_interval(
    rate: float,
    n: int,
    ci_level: float = DEFAULT_CI_LEVEL,
) -> Tuple[float, float]:
    """Normal-approximation CI for a conversion rate, clipped to [0, 1]."""
    if n <= 0:
        return rate, rate
    z_crit = stats.norm.ppf((1 + ci_level) / 2)
    se = np.sqrt(max(rate * (1 - rate), 0.0) / n)
    lo = float(np.clip(rate - z_crit * se, 0.0, 1.0))
    hi = float(np.clip(rate + z_crit * se, 0.0, 1.0))
    return lo, hi


def pick_treatment(results: List[VariantResult]) -> Optional[VariantResult]:
    """Variant with the most participants after the control; ties keep declared order."""
    best = None
    for vr in results[1:]:
        if best is None or vr.participants > best.participants:
            best = vr
    return best


def calculate_significance(
    results: List[VariantResult],
    threshold: float = SIGNIFICANCE_LEVEL,
) -> SignificanceResult:
    """
    Compare the first variant (control) against the largest other variant.

    A winner is only reported when the treatment is significantly better;
    a significant regression reports no winner.
    """
    if len(results) < 2:
        return SignificanceResult()

    control = results[0]
    treatment = pick_treatment(results)
    if treatment is None:
        return SignificanceResult()

    control_rate = control.conversion_rate or 0.0
    treatment_rate = treatment.conversion_rate or 0.0

    z, confidence = proportions_z_test(
        control.participants, control_rate, treatment.participants, treatment_rate
    )
    is_significant = confidence > threshold
    winner = treatment.variant_id if is_significant and treatment_rate > control_rate else None

    return SignificanceResult(
        confidence=confidence,
        is_significant=is_significant,
        winner=winner,
        z_score=z,
        control_id=control.variant_id,
        treatment_id=treatment.variant_id,
    )
