"""
Generic hill-climbing local search (GHC).

The searcher knows nothing about positions: the caller supplies

    eval_fn(point) -> float          score to maximize
    neighbors_fn(point) -> [points]  candidates, including point itself

Each iteration moves to the best-scoring neighbor of the current best point.
Ties go to whichever neighbor was generated first, so a deterministic
neighbor generator gives a deterministic search. The search stops after
iter_max iterations, or once the improvement has stayed below stable_tol
for stable_max consecutive iterations.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, TypeVar
import logging

from .errors import InvariantError

logger = logging.getLogger(__name__)

P = TypeVar("P")


class SearchStatus(Enum):
    SEARCHING = "searching"
    STABLE = "stable"
    TERMINATED = "terminated"


@dataclass
class SearchResult(Generic[P]):
    value: float
    point: P
    iterations: int
    stable_count: int


def _default_key(point: Any) -> Hashable:
    key = getattr(point, "key", None)
    return key() if callable(key) else point


class GHCSearch(Generic[P]):
    """Hill climber over an arbitrary point type."""

    def __init__(self,
                 eval_fn: Callable[[P], float],
                 neighbors_fn: Callable[[P], List[P]],
                 show_fn: Optional[Callable[[P], str]] = None,
                 key_fn: Callable[[P], Hashable] = _default_key):
        self.eval_fn = eval_fn
        self.neighbors_fn = neighbors_fn
        self.show_fn = show_fn or repr
        self.key_fn = key_fn
        self.status = SearchStatus.SEARCHING
        self._cache: Dict[Hashable, float] = {}

    def _evaluate(self, point: P) -> float:
        k = self.key_fn(point)
        try:
            hash(k)
        except TypeError:
            # Unhashable points (arrays, lists) are evaluated uncached
            return float(self.eval_fn(point))
        if k not in self._cache:
            self._cache[k] = float(self.eval_fn(point))
        return self._cache[k]

    def run(self, start: P, iter_max: int = 100, stable_max: int = 3,
            stable_tol: float = 0.001) -> SearchResult[P]:
        """
        Climb from start.

        Args:
            start: Initial point
            iter_max: Maximum number of iterations
            stable_max: Consecutive small-improvement iterations needed to stop
            stable_tol: Improvements below this count as stable

        Returns:
            SearchResult with the best value and point, iterations used and
            the final stable count
        """
        self.status = SearchStatus.SEARCHING
        self._cache = {}

        start_value = self._evaluate(start)
        best_point = start
        best_value = start_value
        iterations = 0
        stable_count = 0

        while iterations < iter_max and stable_count < stable_max:
            iterations += 1
            prev_value = best_value

            step_point = best_point
            step_value = best_value
            for candidate in self.neighbors_fn(best_point):
                v = self._evaluate(candidate)
                if v > step_value:
                    step_point = candidate
                    step_value = v

            best_point = step_point
            best_value = step_value

            if best_value - prev_value < stable_tol:
                stable_count += 1
                self.status = SearchStatus.STABLE
            else:
                stable_count = 0
                self.status = SearchStatus.SEARCHING

            logger.debug(
                f"GHC iter {iterations}: value={best_value:+.6f} stable={stable_count} "
                f"point={self.show_fn(best_point)}"
            )

        self.status = SearchStatus.TERMINATED

        if best_value < start_value:
            raise InvariantError(
                f"GHC search lost ground: best {best_value:.8f} < start {start_value:.8f}"
            )

        return SearchResult(best_value, best_point, iterations, stable_count)
