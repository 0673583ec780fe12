"""
Early-stopping warnings for monitored experiments.

The runner looks at results on every poll. Stopping on one of many looks,
before the sample the experiment was powered for, inflates the false positive
rate, so each stop decision is compared against the planned sample size.
"""

from typing import Optional


def early_stop_warning(
    planned_sample_size: Optional[int],
    sample_size: int,
    n_looks: int,
) -> Optional[str]:
    """
    Describe why a stop decision is premature, if it is.

    Args:
        planned_sample_size: Participants the experiment was powered for
            (e.g. from ExperimentManager.plan_sample_size); None skips the check
        sample_size: Participants at the stop decision
        n_looks: Result evaluations so far, including this one

    Returns:
        Warning message, or None when the stop reaches the planned sample
    """
    if not planned_sample_size or sample_size >= planned_sample_size:
        return None

    pct = 100 * sample_size / planned_sample_size
    msg = f"stopping at {pct:.0f}% of the planned {planned_sample_size} participants"
    if n_looks > 1:
        msg += f" after {n_looks} looks; the false positive rate is above the nominal level"
    return msg
