"""
Simulation State
================

One snapshot of the negotiation: every actor's advocated position, private
ideal point, the accommodation matrix, and (lazily) the perceived utility
matrices and inferred risk attitudes derived from them.

Utilities are indexed as utilities[h][i, j] = utility to actor i if actor
j's position prevails, as estimated by actor h. Without divergent beliefs
(matching scenarios) every h sees the same matrix.

A state is filled in by the Model or by a transition and is read-only once
appended to the model history; ensure_ready() only fills caches that are a
pure function of the snapshot.
"""

from typing import Callable, List, Optional, Sequence, Tuple, TYPE_CHECKING
import logging

import numpy as np

from .config import ThirdPartyCommit, TransitionMode
from .errors import InvariantError, ScenarioError
from .positions import MatchingPosition, Position, VectorPosition
from .risk import big_r_from_prob, est_nra
from .utility import bs_util, bv_diff
from .voting import (
    check_utility_range,
    coalitions,
    prob_ce2,
    scalar_pce,
    v_prob_pair,
    vote,
)

if TYPE_CHECKING:
    from .bargain import Bargain
    from .model import Model

logger = logging.getLogger(__name__)

ACCOMMODATION_TOL = 1e-10
UTIL_TOL = 1e-6

TP_COMMIT_WEIGHT = {
    ThirdPartyCommit.NO_COMMIT: 0.0,
    ThirdPartyCommit.SEMI_COMMIT: 0.5,
    ThirdPartyCommit.FULL_COMMIT: 1.0,
}


def ue_indices(n: int, equiv: Callable[[int, int], bool]) -> Tuple[List[int], List[int]]:
    """
    Collapse equivalent items.

    Args:
        n: Number of items
        equiv: equiv(i, j) is True when items i and j are interchangeable

    Returns:
        (unique, representative): the first index of every distinct item, and
        for each item the unique index it collapses to
    """
    unique: List[int] = []
    rep: List[int] = []
    for i in range(n):
        for u in unique:
            if equiv(u, i):
                rep.append(u)
                break
        else:
            unique.append(i)
            rep.append(i)
    return unique, rep


class State:
    """One snapshot of a Model run."""

    def __init__(self, model: "Model", positions: Sequence[Position],
                 ideals: Optional[Sequence[Position]] = None,
                 accommodation: Optional[np.ndarray] = None,
                 mode: Optional[TransitionMode] = None):
        self.model = model
        self.positions: List[Position] = list(positions)
        n = model.num_actors
        if len(self.positions) != n:
            raise ScenarioError(f"State has {len(self.positions)} positions for {n} actors")

        self.mode = mode if mode is not None else model.config.transition_mode
        self.ideals: List[Position] = []
        self.accommodation = np.eye(n)
        self.set_accommodate(np.eye(n) if accommodation is None else accommodation)
        self.ideals_from_positions(ideals)

        # Lazily computed
        self.utilities: List[np.ndarray] = []
        self.nra: Optional[np.ndarray] = None
        self.v_diff: Optional[np.ndarray] = None
        self.unique_indices: List[int] = []
        self.equiv_indices: List[int] = []

        # Bargains that produced this state, for display
        self.bargains: List[List["Bargain"]] = []

    # ------------------------------------------------------------------
    # Basic properties
    # ------------------------------------------------------------------

    @property
    def num_actors(self) -> int:
        return len(self.positions)

    @property
    def is_vector(self) -> bool:
        return all(isinstance(p, VectorPosition) for p in self.positions)

    @property
    def turn(self) -> int:
        """Index in the model history (or the next free index if not yet added)."""
        for t, s in enumerate(self.model.history):
            if s is self:
                return t
        return len(self.model.history)

    def actor_caps(self) -> np.ndarray:
        return np.array([a.capability for a in self.model.actors], dtype=float)

    def step(self) -> "State":
        from .transition import transition
        return transition(self)

    # ------------------------------------------------------------------
    # Equivalence
    # ------------------------------------------------------------------

    def equiv_ndx(self, i: int, j: int) -> bool:
        """True when actors i and j advocate the same option."""
        return self.positions[i].equivalent(self.positions[j], self.model.config.pos_tol)

    def set_ue_indices(self) -> None:
        self.unique_indices, self.equiv_indices = ue_indices(self.num_actors, self.equiv_ndx)
        logger.debug(
            f"State {self.turn}: {len(self.unique_indices)}/{self.num_actors} unique positions "
            f"{self.unique_indices}"
        )

    # ------------------------------------------------------------------
    # Ideals and accommodation
    # ------------------------------------------------------------------

    def set_accommodate(self, acc: np.ndarray) -> None:
        acc = np.array(acc, dtype=float)
        n = self.model.num_actors
        if acc.shape != (n, n):
            raise ScenarioError(f"Accommodation matrix must be {n}x{n}, got {acc.shape}")
        if (acc < 0).any() or (acc > 1).any():
            raise ScenarioError("Accommodation entries must lie in [0, 1]")
        row_sums = acc.sum(axis=1)
        if (row_sums > 1.0 + ACCOMMODATION_TOL).any():
            i = int(np.argmax(row_sums))
            raise ScenarioError(f"Accommodation row {i} sums to {row_sums[i]:.6f} > 1")
        self.accommodation = acc

    def set_accommodate_rate(self, adj_rate: float) -> None:
        """Accommodation = adj_rate * identity: each ideal moves toward the actor's own position."""
        if not 0.0 <= adj_rate <= 1.0:
            raise ScenarioError(f"Accommodation rate must lie in [0, 1], got {adj_rate}")
        logger.info(f"Setting accommodation to {adj_rate:.3f} * identity")
        self.set_accommodate(adj_rate * np.eye(self.model.num_actors))

    def ideals_from_positions(self, ideals: Optional[Sequence[Position]] = None) -> None:
        """Use the given ideals, or copy the current positions."""
        if ideals is None:
            self.ideals = [p.copy() for p in self.positions]
            return
        if len(ideals) != self.num_actors:
            raise ScenarioError(f"Got {len(ideals)} ideals for {self.num_actors} actors")
        self.ideals = [p.copy() for p in ideals]

    def new_ideals(self) -> None:
        """
        Shift each ideal toward the positions of the actors it accommodates.

        ideal_i <- sum_j A[i,j] pos_j + (1 - sum_j A[i,j]) ideal_i

        Matching positions have no interpolation, so their ideals simply
        track the positions.
        """
        if not self.is_vector:
            self.ideals = [p.copy() for p in self.positions]
            return

        a = self.accommodation
        pos = np.vstack([p.coords for p in self.positions])
        new = []
        for i in range(self.num_actors):
            si = min(1.0, float(a[i].sum()))
            coords = a[i] @ pos + (1.0 - si) * self.ideals[i].coords
            new.append(VectorPosition(coords))
        self.ideals = new

    def pos_ideal_dist(self) -> float:
        """RMS distance between advocated positions and ideal points."""
        d = np.array([p.distance(q) for p, q in zip(self.positions, self.ideals)])
        return float(np.sqrt(np.mean(d * d)))

    # ------------------------------------------------------------------
    # Utilities and risk
    # ------------------------------------------------------------------

    def set_v_diff(self, v_pos: Optional[Sequence[VectorPosition]] = None) -> None:
        """v_diff[i, j] = distance, weighted by i's salience, from i's ideal (or v_pos[i]) to j's position."""
        refs = self.ideals if v_pos is None else list(v_pos)
        n = self.num_actors
        actors = self.model.actors
        self.v_diff = np.array([
            [bv_diff(refs[i].coords - self.positions[j].coords, actors[i].salience)
             for j in range(n)]
            for i in range(n)
        ])

    def est_nra(self, h: int, i: int) -> float:
        """Actor h's estimate of actor i's risk attitude."""
        return est_nra(float(self.nra[h, 0]), float(self.nra[i, 0]), self.model.config.big_r_adjust)

    def set_all_utilities(self) -> None:
        """Compute every perspective's utility matrix, inferring risk attitudes on the way."""
        if self.is_vector:
            self._set_vector_utilities()
        else:
            self._set_matching_utilities()

        for h, u in enumerate(self.utilities):
            check_utility_range(u, tol=UTIL_TOL, where=f"state {self.turn}, perspective {h}")

    def _set_vector_utilities(self) -> None:
        cfg = self.model.config
        n = self.num_actors
        caps = self.actor_caps()

        self.set_v_diff()
        rn_util = np.array([[bs_util(self.v_diff[i, j], 0.0) for j in range(n)] for i in range(n)])
        logger.debug(f"Risk-neutral actor-position utilities:\n{np.array2string(rn_util, precision=3)}")

        def vfn(k, i, j):
            return vote(cfg.voting_rule, caps[k], rn_util[k, i], rn_util[k, j])

        c = coalitions(vfn, n, n)
        p_i, _ = prob_ce2(cfg.pce_model, cfg.vp_model, c)
        self.nra = big_r_from_prob(p_i, cfg.big_r_range)
        logger.debug(f"Inferred risk attitudes: {np.round(self.nra.ravel(), 3).tolist()}")

        self.utilities = []
        for h in range(n):
            u_h = np.zeros((n, n))
            for i in range(n):
                rhi = self.est_nra(h, i)
                for j in range(n):
                    u_h[i, j] = bs_util(self.v_diff[i, j], rhi)
            self.utilities.append(u_h)

    def _set_matching_utilities(self) -> None:
        n = self.num_actors
        actors = self.model.actors
        u = np.array([[actors[i].pos_util(self.positions[j]) for j in range(n)] for i in range(n)])
        self.nra = np.zeros((n, 1))
        self.utilities = [u.copy() for _ in range(n)]

    def hypothetical_util(self, h: int, i: int, q: Position) -> float:
        """Actor h's estimate of the utility to actor i of position q."""
        ai = self.model.actors[i]
        if isinstance(q, VectorPosition):
            return ai.pos_util(q, self.ideals[i], self.est_nra(h, i))
        if isinstance(q, MatchingPosition):
            return ai.pos_util(q)
        raise TypeError(f"Unsupported position type {type(q).__name__}")

    def ensure_ready(self) -> None:
        """Fill the unique-index and utility caches if they are still empty."""
        if not self.unique_indices or not self.equiv_indices:
            self.set_ue_indices()
        if not self.utilities:
            self.set_all_utilities()

    # ------------------------------------------------------------------
    # Probabilities over positions
    # ------------------------------------------------------------------

    def p_dist(self, perspective: Optional[int] = None) -> Tuple[np.ndarray, List[int]]:
        """
        Probability that each unique position prevails.

        Args:
            perspective: Actor index whose utility estimates are used, or None
                to have every actor vote on its own estimate

        Returns:
            (p, unique_indices): column vector over unique positions, and the
            actor index holding each of those positions
        """
        self.ensure_ready()
        n = self.num_actors
        if perspective is None:
            u = np.array([[self.utilities[i][i, j] for j in range(n)] for i in range(n)])
        elif 0 <= perspective < n:
            u = self.utilities[perspective]
        else:
            raise InvariantError(f"p_dist: unrecognized perspective {perspective}")

        unq = list(self.unique_indices)
        u_unique = u[:, unq]
        cfg = self.model.config
        p = scalar_pce(n, len(unq), self.actor_caps(), u_unique,
                       cfg.voting_rule, cfg.vp_model, cfg.pce_model)
        return p, unq

    def pos_prob(self, i: int, unq: Sequence[int], p: np.ndarray) -> float:
        """Probability of the unique position that actor i's position collapses to."""
        for k, u in enumerate(unq):
            if self.equiv_ndx(i, u):
                return float(p[k, 0])
        raise InvariantError(f"pos_prob: actor {i} matches no unique position in {list(unq)}")

    # ------------------------------------------------------------------
    # Challenges
    # ------------------------------------------------------------------

    def prob_edu_challenge(self, h: int, k: int, i: int, j: int) -> Tuple[float, float]:
        """
        From h's perspective: probability i beats j, and the change in
        expected utility to k if i challenges j.

        The principals vote with full strength; third parties are scaled by
        the third-party-commitment rule. j resists with probability equal to
        its total salience, otherwise concedes to i.
        """
        self.ensure_ready()
        cfg = self.model.config
        uh = self.utilities[h]
        tp_weight = TP_COMMIT_WEIGHT[cfg.tp_commit]

        cij = 0.0
        cji = 0.0
        for l, al in enumerate(self.model.actors):
            v = vote(al.voting_rule, al.capability, uh[l, i], uh[l, j])
            w = 1.0 if l in (i, j) else tp_weight
            if v > 0:
                cij += w * v
            elif v < 0:
                cji -= w * v

        pij, _ = v_prob_pair(cfg.vp_model, cij, cji)
        uki = uh[k, i]
        ukj = uh[k, j]
        sj = self.model.actors[j].total_salience

        eu_sq = (uki + ukj) / 2.0
        eu_contest = pij * uki + (1.0 - pij) * ukj
        eu_chlg = sj * eu_contest + (1.0 - sj) * uki
        return pij, eu_chlg - eu_sq

    def best_challenge(self, i: int) -> Tuple[Optional[int], float, float]:
        """
        The target most worth challenging for actor i.

        Returns:
            (j, p_ij, delta_eu); j is None if no challenge has positive value
        """
        best_j = None
        best_p = 0.0
        best_eu = 0.0
        for j in range(self.num_actors):
            if j == i or self.equiv_ndx(i, j):
                continue
            pij, deu = self.prob_edu_challenge(i, i, i, j)
            if deu > best_eu:
                best_j, best_p, best_eu = j, pij, deu
        return best_j, best_p, best_eu

    def __repr__(self) -> str:
        return f"State(turn={self.turn}, actors={self.num_actors}, mode={self.mode.value})"
