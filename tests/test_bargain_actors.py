"""
Tests for bargain.py and actors.py - bargain interpolation and actor utilities.
"""

import numpy as np
import pytest

from bargainsim.actors import Actor, MatchingActor, CAPABILITY_RANGE
from bargainsim.bargain import (
    Bargain,
    interp_bargain_s2_pmax,
    interp_bargain_sn_pm,
    interpolate_bargain,
)
from bargainsim.config import InterVecBrgn, VotingRule
from bargainsim.errors import InvariantError
from bargainsim.positions import MatchingPosition, VectorPosition


class TestInterpolation:
    """Tests for the per-coordinate interpolation rules"""

    def test_s2p2_weighting(self):
        """Stronger side pulls the bargain toward its own coordinate."""
        bi, bj = interp_bargain_sn_pm(2, 2, 0.0, 1.0, 2.0 / 3.0, 1.0, 1.0, 1.0 / 3.0)
        assert bi == pytest.approx(0.2)
        assert bj == pytest.approx(0.2)

    def test_s1p1_weighting(self):
        """Linear weights give the probability-weighted mean."""
        bi, _ = interp_bargain_sn_pm(1, 1, 0.0, 1.0, 0.75, 1.0, 1.0, 0.25)
        assert bi == pytest.approx(0.25)

    def test_zero_weights_stay_put(self):
        """When neither side carries weight each actor keeps its own coordinate."""
        bi, bj = interp_bargain_sn_pm(2, 2, 0.3, 0.0, 0.5, 0.8, 0.0, 0.5)
        assert bi == pytest.approx(0.3)
        assert bj == pytest.approx(0.8)

    def test_rounded_to_four_places(self):
        bi, _ = interp_bargain_sn_pm(1, 1, 0.0, 1.0, 1.0 / 3.0, 1.0, 1.0, 2.0 / 3.0)
        assert bi == round(bi, 4)

    def test_bad_exponent(self):
        with pytest.raises(InvariantError):
            interp_bargain_sn_pm(3, 1, 0.0, 1.0, 0.5, 1.0, 1.0, 0.5)

    def test_s2pmax_only_weaker_moves(self):
        """Under S2PMAX the more likely winner holds its coordinate."""
        bi, bj = interp_bargain_s2_pmax(0.0, 1.0, 0.8, 1.0, 1.0, 0.2)
        assert bi == pytest.approx(0.0)
        assert 0.0 < bj < 1.0

    def test_interpolate_bargain_per_dimension(self):
        """Bargain is built dimension by dimension with each actor's salience."""
        ai = Actor("i", capability=100.0, salience=[0.5, 0.5])
        aj = Actor("j", capability=50.0, salience=[0.5, 0.0])
        b = interpolate_bargain(0, 1, ai, aj, VectorPosition([0.0, 0.0]), VectorPosition([1.0, 1.0]),
                                0.5, 0.5, InterVecBrgn.S2P2)
        assert b.pos_init.coords[0] == pytest.approx(0.5)
        # j does not care about dimension 1, so i keeps its coordinate there
        assert b.pos_init.coords[1] == pytest.approx(0.0)

    def test_dimension_mismatch(self):
        ai = Actor("i", salience=[0.5, 0.5])
        with pytest.raises(InvariantError):
            interpolate_bargain(0, 1, ai, ai, VectorPosition([0.0, 0.0]), VectorPosition([1.0]),
                                0.5, 0.5, InterVecBrgn.S1P1)


class TestBargain:
    """Tests for the Bargain record"""

    def test_position_for(self):
        b = Bargain(2, 5, VectorPosition([0.1]), VectorPosition([0.9]))
        assert b.position_for(2).coords[0] == pytest.approx(0.1)
        assert b.position_for(5).coords[0] == pytest.approx(0.9)
        assert str(b) == "[2:5]"

    def test_position_for_outsider(self):
        b = Bargain(0, 1, VectorPosition([0.1]), VectorPosition([0.9]))
        with pytest.raises(InvariantError):
            b.position_for(3)


class TestActors:
    """Tests for Actor and MatchingActor"""

    def test_randomize_ranges(self):
        """Random actors draw capability and salience from the documented ranges."""
        rng = np.random.default_rng(42)
        for _ in range(20):
            a = Actor("x")
            a.randomize(rng, 3)
            assert CAPABILITY_RANGE[0] <= a.capability < CAPABILITY_RANGE[1]
            assert a.salience.shape == (3,)
            assert 0.75 - 1e-9 <= a.total_salience < 0.99 + 1e-9
            assert isinstance(a.voting_rule, VotingRule)

    def test_randomize_reproducible(self):
        a = Actor("x")
        b = Actor("x")
        a.randomize(np.random.default_rng(9), 2)
        b.randomize(np.random.default_rng(9), 2)
        assert a.capability == b.capability
        assert np.array_equal(a.salience, b.salience)

    def test_vector_pos_util(self):
        """Own reference point is worth 1; the far corner is worth 0."""
        a = Actor("x", salience=[0.4, 0.4])
        ref = VectorPosition([0.0, 0.0])
        assert a.pos_util(ref, ref, 0.0) == pytest.approx(1.0)
        assert a.pos_util(VectorPosition([1.0, 1.0]), ref, 0.0) == pytest.approx(0.0)

    def test_matching_pos_util_normalized(self):
        """Best feasible matching is worth 1, worst 0."""
        values = np.array([[1.0, 0.0], [0.0, 1.0], [0.5, 0.5]])
        a = MatchingActor("m", values=values)
        best = MatchingPosition((0, 1, 0), 2)
        worst = MatchingPosition((1, 0, 0), 2)
        assert a.pos_util(best) == pytest.approx(1.0)
        assert a.pos_util(worst) == pytest.approx(0.0)

    def test_matching_indifferent_actor(self):
        """An actor that values everything equally is fully satisfied by any matching."""
        a = MatchingActor("m", values=np.full((3, 2), 0.4))
        assert a.pos_util(MatchingPosition((0, 1, 1), 2)) == 1.0

    def test_matching_item_count_checked(self):
        a = MatchingActor("m", values=np.zeros((3, 2)))
        with pytest.raises(ValueError):
            a.pos_util(MatchingPosition((0, 1), 2))
