"""
Policy positions.

A position is one of two variants:

    VectorPosition    coordinates in [0,1]^d, one per policy dimension
    MatchingPosition  assignment of each item to a category

``Position`` is the union of the two. Operations comparing positions are only
defined within a variant; mixing them raises TypeError.
"""

from dataclasses import dataclass, field
from typing import Hashable, List, Tuple, Union

import numpy as np


@dataclass(eq=False)
class VectorPosition:
    coords: np.ndarray

    def __post_init__(self):
        self.coords = np.array(self.coords, dtype=float).ravel()

    @property
    def num_dims(self) -> int:
        return int(self.coords.shape[0])

    def diff(self, other: "VectorPosition") -> np.ndarray:
        _require_same_variant(self, other)
        return self.coords - other.coords

    def distance(self, other: "VectorPosition") -> float:
        return float(np.linalg.norm(self.diff(other)))

    def equivalent(self, other: "VectorPosition", tol: float) -> bool:
        return self.distance(other) < tol

    def copy(self) -> "VectorPosition":
        return VectorPosition(self.coords.copy())

    def key(self) -> Hashable:
        return tuple(float(x) for x in self.coords)

    def __repr__(self) -> str:
        inner = ", ".join(f"{x:.4f}" for x in self.coords)
        return f"VectorPosition([{inner}])"


@dataclass(frozen=True)
class MatchingPosition:
    """match[i] is the category assigned to item i."""
    match: Tuple[int, ...]
    num_cats: int = field(default=0)

    def __post_init__(self):
        object.__setattr__(self, "match", tuple(int(c) for c in self.match))
        if self.num_cats <= 0:
            object.__setattr__(self, "num_cats", max(self.match) + 1 if self.match else 0)
        if any(c < 0 or c >= self.num_cats for c in self.match):
            raise ValueError(f"MatchingPosition: category out of range in {self.match}")

    @property
    def num_items(self) -> int:
        return len(self.match)

    def distance(self, other: "MatchingPosition") -> float:
        _require_same_variant(self, other)
        if self.num_items != other.num_items:
            raise ValueError(
                f"MatchingPosition: item counts differ ({self.num_items} vs {other.num_items})"
            )
        return float(sum(1 for a, b in zip(self.match, other.match) if a != b))

    def equivalent(self, other: "MatchingPosition", tol: float = 0.0) -> bool:
        _require_same_variant(self, other)
        return self.match == other.match

    def copy(self) -> "MatchingPosition":
        return MatchingPosition(self.match, self.num_cats)

    def key(self) -> Hashable:
        return self.match

    def with_match(self, match: List[int]) -> "MatchingPosition":
        return MatchingPosition(tuple(match), self.num_cats)


Position = Union[VectorPosition, MatchingPosition]


def _require_same_variant(a, b) -> None:
    if type(a) is not type(b):
        raise TypeError(f"Cannot compare {type(a).__name__} with {type(b).__name__}")


# ============================================================================
# NEIGHBOR GENERATORS
# ============================================================================

def matching_neighbors(mp: MatchingPosition) -> List[MatchingPosition]:
    """
    The current matching, every pair swap, then every 3-rotation both ways.

    For k items that is 1 + k(k-1)/2 + k(k-1)(k-2)/3 candidates, always in
    the same order for the same input.
    """
    m = list(mp.match)
    n = len(m)
    out = [mp.copy()]

    for i in range(n):
        for j in range(i + 1, n):
            mij = list(m)
            mij[i], mij[j] = m[j], m[i]
            out.append(mp.with_match(mij))

    for i in range(n):
        for j in range(i + 1, n):
            for k in range(j + 1, n):
                mjki = list(m)
                mjki[i], mjki[j], mjki[k] = m[j], m[k], m[i]
                out.append(mp.with_match(mjki))

                mkij = list(m)
                mkij[i], mkij[j], mkij[k] = m[k], m[i], m[j]
                out.append(mp.with_match(mkij))

    return out


def vector_neighbors(vp: VectorPosition, step: float,
                     lower: float = 0.0, upper: float = 1.0) -> List[VectorPosition]:
    """
    The current point, then +step and -step along each dimension.

    Moves are clipped to [lower, upper]; a move that clips back onto the
    current point is dropped.
    """
    out = [vp.copy()]
    for k in range(vp.num_dims):
        for delta in (step, -step):
            c = vp.coords.copy()
            c[k] = min(upper, max(lower, c[k] + delta))
            if c[k] != vp.coords[k]:
                out.append(VectorPosition(c))
    return out
