"""
Actors
======

Actor          - holds a vector position; cares about each policy dimension
                 according to its salience vector.
MatchingActor  - holds a matching position; values each item/category pairing.

Both carry a capability (> 0) and a voting rule, which is all the voting
calculus needs from them.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Tuple
import logging

import numpy as np
from scipy.optimize import linear_sum_assignment

from .config import VotingRule
from .positions import MatchingPosition, VectorPosition
from .utility import bv_util

logger = logging.getLogger(__name__)

# Ranges used for randomized scenarios
CAPABILITY_RANGE = (10.0, 200.0)
OVERALL_SALIENCE_RANGE = (0.75, 0.99)
DIM_WEIGHT_RANGE = (0.1, 1.0)


@dataclass(eq=False)
class Actor:
    name: str
    description: str = ""
    capability: float = 1.0
    salience: np.ndarray = field(default_factory=lambda: np.ones(1))
    voting_rule: VotingRule = VotingRule.PROPORTIONAL

    def __post_init__(self):
        self.salience = np.array(self.salience, dtype=float).ravel()

    @property
    def total_salience(self) -> float:
        return float(self.salience.sum())

    def pos_util(self, position: VectorPosition, reference: VectorPosition, r: float) -> float:
        """Utility of position for an actor anchored at reference with risk attitude r."""
        return bv_util(reference.coords - position.coords, self.salience, r)

    def randomize(self, rng: np.random.Generator, num_dims: int) -> None:
        """
        Draw capability, saliences and voting rule.

        The overall salience is drawn first and then split across dimensions,
        so sum(salience) stays in [0.75, 0.99).
        """
        self.capability = float(rng.uniform(*CAPABILITY_RANGE))
        s = float(rng.uniform(*OVERALL_SALIENCE_RANGE))
        weights = rng.uniform(*DIM_WEIGHT_RANGE, size=num_dims)
        self.salience = s * weights / weights.sum()
        rules = list(VotingRule)
        self.voting_rule = rules[int(rng.integers(len(rules)))]


@dataclass(eq=False)
class MatchingActor:
    """values[i, c] in [0,1] is how much the actor likes item i in category c."""
    name: str
    description: str = ""
    capability: float = 1.0
    values: np.ndarray = field(default_factory=lambda: np.zeros((1, 1)))
    voting_rule: VotingRule = VotingRule.PROPORTIONAL

    def __post_init__(self):
        self.values = np.array(self.values, dtype=float)
        if self.values.ndim != 2:
            raise ValueError(f"MatchingActor {self.name}: values must be 2-D, got {self.values.shape}")
        self._bounds = lru_cache(maxsize=None)(self._assignment_bounds)

    def _raw_value(self, match: Tuple[int, ...]) -> float:
        return float(sum(self.values[i, c] for i, c in enumerate(match)))

    def _assignment_bounds(self, cats: Tuple[int, ...]) -> Tuple[float, float]:
        # Every feasible matching is a permutation of the same category
        # multiset, so the extremes are two assignment problems.
        cost = self.values[:, list(cats)]
        r_max, c_max = linear_sum_assignment(cost, maximize=True)
        r_min, c_min = linear_sum_assignment(cost)
        return float(cost[r_min, c_min].sum()), float(cost[r_max, c_max].sum())

    def pos_util(self, mp: MatchingPosition) -> float:
        """Value of the matching, scaled so the best feasible one is 1 and the worst 0."""
        if mp.num_items != self.values.shape[0]:
            raise ValueError(
                f"MatchingActor {self.name}: matching has {mp.num_items} items, "
                f"values cover {self.values.shape[0]}"
            )
        lo, hi = self._bounds(tuple(sorted(mp.match)))
        if hi - lo < 1e-12:
            return 1.0
        u = (self._raw_value(mp.match) - lo) / (hi - lo)
        return min(1.0, max(0.0, u))

    def randomize(self, rng: np.random.Generator, num_items: int, num_cats: int) -> None:
        self.capability = float(rng.uniform(*CAPABILITY_RANGE))
        self.values = rng.uniform(0.0, 1.0, size=(num_items, num_cats))
        rules = list(VotingRule)
        self.voting_rule = rules[int(rng.integers(len(rules)))]
        self._bounds.cache_clear()
