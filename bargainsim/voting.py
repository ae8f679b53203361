"""
Voting & Coalition Calculus
===========================

Pure functions turning utility comparisons into collective outcomes:

    vote        -> one actor's signed support for option i over option j
    coalitions  -> C[i, j], total positive support for i over j
    v_prob      -> P[i, j], probability that i defeats j (P[i,j] + P[j,i] = 1)
    prob_ce     -> p[i], marginal probability that option i prevails (sum 1)

Matrices are numpy float64 arrays; marginal vectors are column vectors of
shape (m, 1).
"""

from typing import Callable, Sequence, Tuple
import logging

import numpy as np
from scipy.special import logsumexp

from .config import PCEModel, VPModel, VotingRule
from .errors import ConfigurationError, InvariantError

logger = logging.getLogger(__name__)

# Arithmetic tolerance for probability conservation checks
PROB_TOL = 1e-8

# Floor on coalition strength, avoids 0/0 when nobody supports either side
MIN_COALITION = 1e-10

# Floor applied before taking logs of pairwise probabilities
MIN_LOG_PROB = 1e-300


# ============================================================================
# VOTES AND COALITIONS
# ============================================================================

def vote(rule: VotingRule, capability: float, u1: float, u2: float) -> float:
    """
    Signed voting weight for preferring an option worth u1 over one worth u2.

    vote(rule, c, u1, u2) == -vote(rule, c, u2, u1) exactly, for every rule.
    """
    du = u1 - u2
    sd = float(np.sign(du))
    if rule == VotingRule.BINARY:
        v = capability * sd
    elif rule == VotingRule.PROP_BIN:
        v = capability * (sd + du) / 2.0
    elif rule == VotingRule.PROPORTIONAL:
        v = capability * du
    elif rule == VotingRule.PROP_CBC:
        v = capability * (du + du * du * du) / 2.0
    elif rule == VotingRule.CUBIC:
        v = capability * du * du * du
    else:
        raise ConfigurationError(f"vote: unrecognized voting rule {rule!r}")
    return v


def coalitions(vote_fn: Callable[[int, int, int], float], n_rows: int, n_cols: int) -> np.ndarray:
    """
    Coalition strength for each ordered pair of options.

    Args:
        vote_fn: vote_fn(k, i, j) = signed vote of actor k for option i over j
        n_rows: Number of voting actors
        n_cols: Number of options (may be fewer than actors after pruning)

    Returns:
        (n_cols, n_cols) matrix C where C[i, j] sums the positive votes for i over j
    """
    c = np.zeros((n_cols, n_cols))
    for i in range(n_cols):
        for j in range(i):
            for k in range(n_rows):
                vkij = vote_fn(k, i, j)
                vkji = vote_fn(k, j, i)
                if vkij > 0:
                    c[i, j] += vkij
                if vkji > 0:
                    c[j, i] += vkji
    return c


# ============================================================================
# PAIRWISE VICTORY PROBABILITIES
# ============================================================================

_VP_POWER = {
    VPModel.LINEAR: 1,
    VPModel.SQUARE: 2,
    VPModel.QUARTIC: 4,
    VPModel.OCTIC: 8,
}


def v_prob_pair(model: VPModel, cij: float, cji: float) -> Tuple[float, float]:
    """
    Probability that i beats j, and j beats i, given their coalition strengths.

    Strengths are rescaled by the larger one before raising to a power so the
    higher-order models cannot overflow.
    """
    cij = max(float(cij), 0.0) + MIN_COALITION
    cji = max(float(cji), 0.0) + MIN_COALITION

    if model == VPModel.BINARY:
        if abs(cij - cji) <= MIN_COALITION:
            pij = 0.5
        else:
            pij = 1.0 if cij > cji else 0.0
    elif model in _VP_POWER:
        scale = max(cij, cji)
        a = (cij / scale) ** _VP_POWER[model]
        b = (cji / scale) ** _VP_POWER[model]
        pij = a / (a + b)
    else:
        raise ConfigurationError(f"v_prob: unrecognized VP model {model!r}")

    return pij, 1.0 - pij


def v_prob(model: VPModel, c: np.ndarray) -> np.ndarray:
    """
    Convert a square coalition matrix into pairwise victory probabilities.

    Returns:
        P with P[i, j] + P[j, i] == 1 for i != j, and 0.5 on the diagonal
    """
    c = np.asarray(c, dtype=float)
    if c.ndim != 2 or c.shape[0] != c.shape[1]:
        raise InvariantError(f"v_prob: coalition matrix must be square, got shape {c.shape}")

    m = c.shape[0]
    p = np.full((m, m), 0.5)
    for i in range(m):
        for j in range(i):
            pij, pji = v_prob_pair(model, c[i, j], c[j, i])
            p[i, j] = pij
            p[j, i] = pji

    check_prob_conservation(p)
    return p


def check_prob_conservation(p: np.ndarray, tol: float = PROB_TOL) -> None:
    """Raise InvariantError unless P[i,j] + P[j,i] == 1 off the diagonal."""
    total = p + p.T
    np.fill_diagonal(total, 1.0)
    worst = float(np.max(np.abs(total - 1.0))) if total.size else 0.0
    if worst > tol:
        i, j = np.unravel_index(int(np.argmax(np.abs(total - 1.0))), total.shape)
        raise InvariantError(
            f"Probability conservation violated for options ({i}, {j}): "
            f"P[i,j] + P[j,i] = {total[i, j]:.12f}"
        )


# ============================================================================
# MARGINAL PROBABILITIES (PCE)
# ============================================================================

def _conditional_pce(pv: np.ndarray) -> np.ndarray:
    # p_i proportional to prod_j P(i, j), in log space so that extreme
    # pairwise probabilities cannot underflow the whole vector to zero
    m = pv.shape[0]
    logs = np.log(np.maximum(pv, MIN_LOG_PROB))
    np.fill_diagonal(logs, 0.0)
    row = logs.sum(axis=1)
    return np.exp(row - logsumexp(row)).reshape(m, 1)


def _markov_transition(pv: np.ndarray, incentive: bool) -> np.ndarray:
    m = pv.shape[0]
    t = np.zeros((m, m))
    for i in range(m):
        beats_i = np.array([pv[j, i] if j != i else 0.0 for j in range(m)])
        if incentive:
            total = beats_i.sum()
            if total > 0:
                # challenger picked in proportion to its chance, then wins with it
                t[i] = beats_i * beats_i / total
        else:
            t[i] = beats_i / (m - 1)
        t[i, i] = 1.0 - t[i].sum()
    return t


def _stationary(t: np.ndarray) -> np.ndarray:
    m = t.shape[0]
    a = np.vstack([t.T - np.eye(m), np.ones((1, m))])
    b = np.zeros(m + 1)
    b[-1] = 1.0
    p, *_ = np.linalg.lstsq(a, b, rcond=None)
    p = np.clip(p, 0.0, None)
    total = p.sum()
    if total <= 0:
        logger.warning("Stationary distribution degenerate, falling back to uniform")
        return np.full((m, 1), 1.0 / m)
    return (p / total).reshape(m, 1)


def prob_ce(model: PCEModel, pv: np.ndarray) -> np.ndarray:
    """
    Combine pairwise victory probabilities into one marginal per option.

    Args:
        model: PCE model
        pv: Square pairwise probability matrix

    Returns:
        Column vector p, non-negative, summing to 1
    """
    pv = np.asarray(pv, dtype=float)
    if pv.ndim != 2 or pv.shape[0] != pv.shape[1]:
        raise InvariantError(f"prob_ce: pairwise matrix must be square, got shape {pv.shape}")

    m = pv.shape[0]
    if m == 0:
        raise InvariantError("prob_ce: no options")
    if m == 1:
        return np.ones((1, 1))

    if model == PCEModel.CONDITIONAL:
        p = _conditional_pce(pv)
    elif model == PCEModel.MARKOV_INCENTIVE:
        p = _stationary(_markov_transition(pv, incentive=True))
    elif model == PCEModel.MARKOV_UNIFORM:
        p = _stationary(_markov_transition(pv, incentive=False))
    else:
        raise ConfigurationError(f"prob_ce: unrecognized PCE model {model!r}")

    if abs(float(p.sum()) - 1.0) > PROB_TOL:
        raise InvariantError(f"prob_ce: marginal probabilities sum to {float(p.sum()):.12f}")
    return p


def prob_ce2(pce: PCEModel, vpm: VPModel, c: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return (marginal p, pairwise P) from a coalition matrix."""
    pv = v_prob(vpm, c)
    return prob_ce(pce, pv), pv


def scalar_pce(num_act: int, num_opt: int, caps: Sequence[float], u: np.ndarray,
               rule: VotingRule, vpm: VPModel, pce: PCEModel) -> np.ndarray:
    """
    Marginal probabilities over options when every actor votes with one rule.

    Args:
        num_act: Number of voting actors (rows of u)
        num_opt: Number of options (columns of u)
        caps: Capability of each actor
        u: Utility matrix, u[k, i] = utility to actor k of option i

    Returns:
        Column vector of length num_opt
    """
    u = np.asarray(u, dtype=float)
    caps = np.asarray(caps, dtype=float).ravel()
    if u.shape != (num_act, num_opt) or caps.shape[0] != num_act:
        raise InvariantError(
            f"scalar_pce: expected utilities {num_act}x{num_opt} and {num_act} capabilities, "
            f"got {u.shape} and {caps.shape[0]}"
        )

    def vfn(k, i, j):
        return vote(rule, caps[k], u[k, i], u[k, j])

    c = coalitions(vfn, num_act, num_opt)
    p, _ = prob_ce2(pce, vpm, c)
    return p


def eu_from_utils(u: np.ndarray, actors: Sequence, vpm: VPModel, pce: PCEModel,
                  tol: float = 1e-6) -> Tuple[np.ndarray, np.ndarray]:
    """
    Expected utility to each actor of the collective choice among the columns of u.

    Each actor votes with its own rule and capability.

    Args:
        u: Utility matrix (num_actors x num_options), entries in [0, 1]
        actors: Actors supplying ``voting_rule`` and ``capability``

    Returns:
        (eu, p): eu column of length num_actors, p column of length num_options
    """
    u = np.asarray(u, dtype=float)
    if u.shape[0] != len(actors):
        raise InvariantError(f"eu_from_utils: {u.shape[0]} utility rows for {len(actors)} actors")
    check_utility_range(u, tol=tol, where="eu_from_utils")

    def vfn(k, i, j):
        ak = actors[k]
        return vote(ak.voting_rule, ak.capability, u[k, i], u[k, j])

    c = coalitions(vfn, u.shape[0], u.shape[1])
    p, _ = prob_ce2(pce, vpm, c)
    eu = u @ p
    return eu, p


def check_utility_range(u: np.ndarray, tol: float = 1e-6, where: str = "") -> None:
    """Raise InvariantError if any utility falls outside [0, 1] beyond tol."""
    if u.size == 0:
        return
    lo = float(u.min())
    hi = float(u.max())
    if lo < -tol or hi > 1.0 + tol:
        i, j = np.unravel_index(int(np.argmax((u < -tol) | (u > 1.0 + tol))), u.shape)
        raise InvariantError(
            f"{where}: utility out of [0,1] for actor {i}, option {j}: {u[i, j]:.8f}"
        )
