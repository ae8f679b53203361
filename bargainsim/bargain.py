"""
Bargain construction.

A bargain is the pair of positions two actors would move to if they settled
instead of contesting. Each coordinate is interpolated between the two
actors' coordinates, weighted by how much each cares about the dimension
(salience) and how likely each is to prevail (probability).
"""

from dataclasses import dataclass
from typing import Tuple
import logging

import numpy as np

from .actors import Actor
from .config import InterVecBrgn
from .errors import ConfigurationError, InvariantError
from .positions import VectorPosition

logger = logging.getLogger(__name__)

# Minimum interpolation weight, keeps 0/0 out when neither side cares or can coerce
MIN_WEIGHT = 1e-6


@dataclass
class Bargain:
    """Positions proposed to the initiator and the receiver of a bargain."""
    init_index: int
    recv_index: int
    pos_init: VectorPosition
    pos_recv: VectorPosition
    init_actor: Actor = None
    recv_actor: Actor = None

    def position_for(self, k: int) -> VectorPosition:
        """The position this bargain assigns to actor k."""
        if k == self.init_index:
            return self.pos_init
        if k == self.recv_index:
            return self.pos_recv
        raise InvariantError(
            f"Bargain [{self.init_index}:{self.recv_index}] does not involve actor {k}"
        )

    def __str__(self) -> str:
        return f"[{self.init_index}:{self.recv_index}]"


def _round4(x: float) -> float:
    return int(0.5 + x * 10000.0) / 10000.0


def interp_bargain_sn_pm(n: int, m: int,
                         tik: float, sik: float, prb_i: float,
                         tjk: float, sjk: float, prb_j: float) -> Tuple[float, float]:
    """
    Interpolate one coordinate with weight salience^n * probability^m.

    When both weights are zero the MIN_WEIGHT floor on the initiator's side
    leaves each actor at its own coordinate; that asymmetry is deliberate.
    Results are rounded to 4 decimals to avoid spurious precision.
    """
    if n not in (1, 2) or m not in (1, 2):
        raise InvariantError(f"interp_bargain_sn_pm: exponents must be 1 or 2, got n={n}, m={m}")

    wik = (sik ** n) * (prb_i ** m)
    wjk = (sjk ** n) * (prb_j ** m)

    bik = _round4(((wik + MIN_WEIGHT) * tik + wjk * tjk) / (wik + MIN_WEIGHT + wjk))
    bjk = _round4((wik * tik + (MIN_WEIGHT + wjk) * tjk) / (wik + MIN_WEIGHT + wjk))
    return bik, bjk


def interp_bargain_s2_pmax(tik: float, sik: float, prb_i: float,
                           tjk: float, sjk: float, prb_j: float) -> Tuple[float, float]:
    """Only the side with the lower probability moves, by an amount set by the gap."""
    di = max(0.0, prb_j - prb_i)
    dj = max(0.0, prb_i - prb_j)
    sik2 = sik * sik
    sjk2 = sjk * sjk

    dik = (di * sjk2) / ((di * sjk2) + MIN_WEIGHT + ((1 - di) * sik2))
    djk = (dj * sik2) / ((dj * sik2) + MIN_WEIGHT + ((1 - dj) * sjk2))

    bik = tik + dik * (tjk - tik)
    bjk = tjk + djk * (tik - tjk)
    return bik, bjk


def interpolate_bargain(i: int, j: int, ai: Actor, aj: Actor,
                        pos_i: VectorPosition, pos_j: VectorPosition,
                        prb_i: float, prb_j: float, ivb: InterVecBrgn) -> Bargain:
    """
    Build the bargain between actors i and j, one dimension at a time.

    Args:
        i, j: Actor indices (initiator, receiver)
        ai, aj: The actors, for their saliences
        pos_i, pos_j: Their current positions
        prb_i, prb_j: Probability each prevails in a contest
        ivb: Weighting model

    Returns:
        Bargain with one proposed position per side
    """
    num_dims = pos_i.num_dims
    if pos_j.num_dims != num_dims:
        raise InvariantError(f"interpolate_bargain: dimension mismatch {num_dims} vs {pos_j.num_dims}")

    b_i = np.zeros(num_dims)
    b_j = np.zeros(num_dims)
    for k in range(num_dims):
        tik, sik = pos_i.coords[k], ai.salience[k]
        tjk, sjk = pos_j.coords[k], aj.salience[k]
        if ivb == InterVecBrgn.S1P1:
            b_i[k], b_j[k] = interp_bargain_sn_pm(1, 1, tik, sik, prb_i, tjk, sjk, prb_j)
        elif ivb == InterVecBrgn.S2P2:
            b_i[k], b_j[k] = interp_bargain_sn_pm(2, 2, tik, sik, prb_i, tjk, sjk, prb_j)
        elif ivb == InterVecBrgn.S2PMAX:
            b_i[k], b_j[k] = interp_bargain_s2_pmax(tik, sik, prb_i, tjk, sjk, prb_j)
        else:
            raise ConfigurationError(f"interpolate_bargain: unrecognized InterVecBrgn {ivb!r}")

    return Bargain(i, j, VectorPosition(b_i), VectorPosition(b_j), ai, aj)
