"""
Risk-attitude inference.

Actors whose positions are most likely to prevail have the most to lose and
are treated as risk-averse; the least likely are risk-acceptant. The inferred
attitude R feeds back into utility curvature (see utility.bs_util).
"""

import logging

import numpy as np

from .config import BigRAdjust, BigRRange
from .errors import ConfigurationError, InvariantError

logger = logging.getLogger(__name__)

BIG_R_BOUNDS = {
    BigRRange.MIN: (0.0, 1.0),
    BigRRange.MID: (-0.5, 1.0),
    BigRRange.MAX: (-1.0, 1.0),
}

P_TOL = 1e-8


def big_r_from_prob(p: np.ndarray, big_r_range: BigRRange) -> np.ndarray:
    """
    Map each actor's win probability to a risk attitude in the configured range.

    The most likely actor gets the bottom of the range, the least likely the
    top, and everyone else is placed linearly in between.

    Args:
        p: Win probability per actor (column or flat)
        big_r_range: Which numeric range to map into

    Returns:
        Column vector of risk attitudes, shape (n, 1)
    """
    if big_r_range not in BIG_R_BOUNDS:
        raise ConfigurationError(f"big_r_from_prob: unrecognized BigRRange {big_r_range!r}")

    p = np.asarray(p, dtype=float).ravel()
    p_min = float(p.min())
    p_max = float(p.max())
    if p_min < -P_TOL or p_max > 1.0 + P_TOL:
        raise InvariantError(f"big_r_from_prob: probabilities outside [0,1]: [{p_min}, {p_max}]")

    n = p.shape[0]
    if p_max - p_min < 1e-10:
        logger.warning("All actors equally likely to prevail; inferring risk-neutral attitudes")
        return np.zeros((n, 1))

    lo, hi = BIG_R_BOUNDS[big_r_range]
    x = (p_max - p) / (p_max - p_min)
    return (lo + x * (hi - lo)).reshape(n, 1)


def est_nra(rh: float, ri: float, rule: BigRAdjust) -> float:
    """Actor h's estimate of actor i's risk attitude, blending rh and ri."""
    if rule == BigRAdjust.FULL:
        return ri
    if rule == BigRAdjust.TWO_THIRDS:
        return (rh + 2.0 * ri) / 3.0
    if rule == BigRAdjust.HALF:
        return (rh + ri) / 2.0
    if rule == BigRAdjust.ONE_THIRD:
        return (2.0 * rh + ri) / 3.0
    if rule == BigRAdjust.NONE:
        return rh
    raise ConfigurationError(f"est_nra: unrecognized BigRAdjust {rule!r}")
