"""Salience-weighted distance and risk-modulated utility for vector positions."""

import math

import numpy as np

from .errors import InvariantError


def bv_diff(vd: np.ndarray, vs: np.ndarray) -> float:
    """
    Salience-weighted normalized distance.

    sqrt(sum((d_k * s_k)^2) / sum(s_k^2)); 0 <= result, and 1 when every
    dimension differs by the full [0,1] span.

    Args:
        vd: Coordinate difference between two positions
        vs: Salience vector of the actor doing the comparing
    """
    vd = np.asarray(vd, dtype=float).ravel()
    vs = np.asarray(vs, dtype=float).ravel()
    if vd.shape != vs.shape:
        raise InvariantError(f"bv_diff: difference shape {vd.shape} != salience shape {vs.shape}")
    if (vs < 0).any():
        raise InvariantError(f"bv_diff: negative salience {vs.min()}")

    ss_sqr = float(np.dot(vs, vs))
    if ss_sqr <= 0:
        raise InvariantError("bv_diff: total salience is zero")
    ds = vd * vs
    return math.sqrt(float(np.dot(ds, ds)) / ss_sqr)


def bs_util(sd: float, r: float) -> float:
    """
    Utility of a position at normalized distance sd, for risk attitude r.

    0 <= sd <= 1 and -1 <= r <= +1 give a utility in [0,1]. Searches and
    round-off can push sd slightly past 1, where the curve keeps its slope.
    """
    if sd < 0:
        raise InvariantError(f"bs_util: negative distance {sd}")
    if sd <= 1:
        return (1 - sd) * (1 + sd * r)
    return (1 - sd) * (1 + r)


def bv_util(vd: np.ndarray, vs: np.ndarray, r: float) -> float:
    return bs_util(bv_diff(vd, vs), r)
