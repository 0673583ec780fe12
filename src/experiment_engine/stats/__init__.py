"""Experiment statistics module."""

from .srm import srm_chi_square, check_srm
from .power import sample_size_proportion
from .significance import (
    SignificanceResult,
    calculate_significance,
    proportions_z_test,
    rate_confidence_interval,
    z_to_confidence,
)
from .sequential import early_stop_warning

__all__ = [
    "srm_chi_square",
    "check_srm",
    "sample_size_proportion",
    "SignificanceResult",
    "calculate_significance",
    "proportions_z_test",
    "rate_confidence_interval",
    "z_to_confidence",
    "early_stop_warning",
]
