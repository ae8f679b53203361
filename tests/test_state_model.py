"""
Tests for state.py, transition.py and model.py - scenario construction,
utilities, transitions, the run loop and the stopping rule.
"""

import numpy as np
import pytest

from bargainsim.config import BargainModel, BargainSelection, ModelConfig, TransitionMode
from bargainsim.errors import ConfigurationError, ScenarioError
from bargainsim.model import (
    equivalent_states,
    init_matching_model,
    init_model,
    random_model,
    smp_stop_fn,
    state_distance,
)
from bargainsim.positions import MatchingPosition, VectorPosition, vector_neighbors
from bargainsim.state import State, ue_indices
from bargainsim.transition import best_response, hypothetical_eu, transition
from bargainsim.voting import check_utility_range


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def two_actor_model():
    """Strong actor at 0, weak actor at 1, fully salient single dimension."""
    return init_model(
        names=["Strong", "Weak"], descs=None, dim_names=["D0"],
        cap=[100.0, 50.0], pos=[[0.0], [1.0]], sal=[[1.0], [1.0]],
        seed=1,
    )


@pytest.fixture
def three_actor_model():
    return init_model(
        names=["A", "B", "C"], descs=["left", "centre", "right"], dim_names=["D0"],
        cap=[100.0, 100.0, 100.0], pos=[[0.2], [0.5], [0.8]],
        sal=[[0.8], [0.8], [0.8]], acc=np.eye(3), seed=2,
    )


def _search_model(parallel: bool):
    cfg = ModelConfig(transition_mode=TransitionMode.SEARCH, parallel=parallel, max_workers=4)
    return random_model(4, 2, seed=17, config=cfg)


# ============================================================================
# CONSTRUCTION
# ============================================================================

class TestInitModel:
    """Tests for init_model() validation"""

    def test_ideals_start_at_positions(self, three_actor_model):
        """With identity accommodation the initial ideal-position distance is zero."""
        s0 = three_actor_model.history[0]
        assert s0.pos_ideal_dist() == 0.0
        assert len(three_actor_model.history) == 1

    def test_too_few_actors(self):
        with pytest.raises(ScenarioError):
            init_model(["A"], None, ["D0"], [1.0], [[0.5]], [[0.5]])

    def test_count_mismatch(self):
        with pytest.raises(ScenarioError):
            init_model(["A", "B"], None, ["D0"], [1.0, 2.0, 3.0], [[0.5], [0.5]], [[0.5], [0.5]])

    def test_non_positive_capability(self):
        with pytest.raises(ScenarioError):
            init_model(["A", "B"], None, ["D0"], [1.0, 0.0], [[0.5], [0.5]], [[0.5], [0.5]])

    def test_salience_row_sum(self):
        """Saliences summing above 1 are rejected."""
        with pytest.raises(ScenarioError):
            init_model(["A", "B"], None, ["D0", "D1"], [1.0, 1.0],
                       [[0.5, 0.5], [0.5, 0.5]], [[0.7, 0.7], [0.5, 0.5]])

    def test_zero_salience(self):
        with pytest.raises(ScenarioError):
            init_model(["A", "B"], None, ["D0"], [1.0, 1.0], [[0.5], [0.5]], [[0.0], [0.5]])

    def test_position_out_of_range(self):
        with pytest.raises(ScenarioError):
            init_model(["A", "B"], None, ["D0"], [1.0, 1.0], [[1.5], [0.5]], [[0.5], [0.5]])

    def test_non_finite_position(self):
        with pytest.raises(ScenarioError):
            init_model(["A", "B"], None, ["D0"], [1.0, 1.0], [[np.nan], [0.5]], [[0.5], [0.5]])

    def test_bad_accommodation(self):
        """Accommodation rows may not sum above 1."""
        with pytest.raises(ScenarioError):
            init_model(["A", "B"], None, ["D0"], [1.0, 1.0], [[0.1], [0.5]], [[0.5], [0.5]],
                       acc=[[0.8, 0.8], [0.0, 1.0]])

    def test_config_vector(self):
        """The integer parameter vector selects options by position."""
        model = init_model(["A", "B"], None, ["D0"], [1.0, 1.0], [[0.1], [0.5]], [[0.5], [0.5]],
                           config=[1, 0, 1, 4, 0, 0, 2, 0, 1])
        assert model.config.transition_mode == TransitionMode.SEARCH
        assert model.config.bargain_model == BargainModel.INIT_RCVR

    def test_actor_index(self, three_actor_model):
        assert three_actor_model.actor_index("C") == 2
        with pytest.raises(KeyError):
            three_actor_model.actor_index("Z")


# ============================================================================
# STATE
# ============================================================================

class TestState:
    """Tests for State utilities, probabilities and challenges"""

    def test_stronger_actor_more_likely(self, two_actor_model):
        """The higher-capability actor's position is more likely to prevail."""
        s0 = two_actor_model.history[0]
        p, unq = s0.p_dist()
        assert unq == [0, 1]
        assert s0.pos_prob(0, unq, p) > s0.pos_prob(1, unq, p)
        assert float(p.sum()) == pytest.approx(1.0)

    def test_stronger_actor_most_risk_averse(self, two_actor_model):
        """Inferred risk: the likely winner gets the bottom of the range."""
        s0 = two_actor_model.history[0]
        s0.ensure_ready()
        assert s0.nra[0, 0] == pytest.approx(-1.0)
        assert s0.nra[1, 0] == pytest.approx(1.0)

    def test_utilities_bounded(self):
        """Every perspective's utilities lie in [0,1]."""
        model = random_model(6, 3, seed=5)
        s0 = model.history[0]
        s0.ensure_ready()
        assert len(s0.utilities) == 6
        for u in s0.utilities:
            assert u.shape == (6, 6)
            assert u.min() >= -1e-6 and u.max() <= 1.0 + 1e-6
            assert np.allclose(np.diag(u), 1.0)

    def test_duplicates_collapse(self):
        """Actors at the same position share one unique index."""
        model = init_model(["A", "B", "C"], None, ["D0"], [10.0, 20.0, 30.0],
                           [[0.3], [0.3], [0.9]], [[0.5], [0.5], [0.5]])
        s0 = model.history[0]
        p, unq = s0.p_dist()
        assert unq == [0, 2]
        assert s0.equiv_indices == [0, 0, 2]
        assert p.shape == (2, 1)
        assert s0.pos_prob(1, unq, p) == s0.pos_prob(0, unq, p)

    def test_perspective_p_dist(self, three_actor_model):
        s0 = three_actor_model.history[0]
        for h in range(3):
            p, _ = s0.p_dist(h)
            assert float(p.sum()) == pytest.approx(1.0)

    def test_challenge_value(self, two_actor_model):
        """Strong actor gains from challenging; weak actor does not."""
        s0 = two_actor_model.history[0]
        pij, deu = s0.prob_edu_challenge(0, 0, 0, 1)
        assert pij == pytest.approx(2.0 / 3.0)
        assert deu == pytest.approx(1.0 / 6.0)
        assert s0.best_challenge(0)[0] == 1
        assert s0.best_challenge(1)[0] is None

    def test_accommodation_moves_ideals(self):
        """Half accommodation moves each ideal halfway to the new position."""
        model = init_model(["A", "B"], None, ["D0"], [1.0, 1.0], [[0.2], [0.6]], [[0.5], [0.5]],
                           acc=0.5 * np.eye(2))
        s0 = model.history[0]
        s1 = State(model, [VectorPosition([0.4]), VectorPosition([0.6])],
                   ideals=s0.ideals, accommodation=s0.accommodation)
        s1.new_ideals()
        assert s1.ideals[0].coords[0] == pytest.approx(0.3)
        assert s1.ideals[1].coords[0] == pytest.approx(0.6)

    def test_ue_indices(self):
        groups = [0, 1, 0, 2, 1]
        unq, rep = ue_indices(5, lambda a, b: groups[a] == groups[b])
        assert unq == [0, 1, 3]
        assert rep == [0, 1, 0, 3, 1]


# ============================================================================
# TRANSITIONS
# ============================================================================

class TestBargainTransition:
    """Tests for the bargaining transition"""

    def test_weak_actor_concedes(self, two_actor_model):
        """Strong actor keeps its position; weak actor accepts the bargain."""
        s1 = two_actor_model.history[0].step()
        assert s1.positions[0].coords[0] == pytest.approx(0.0)
        assert s1.positions[1].coords[0] == pytest.approx(0.2)
        assert s1.mode == TransitionMode.BARGAIN
        assert len(s1.bargains[0]) == 2
        assert len(s1.bargains[1]) == 2
        # identity accommodation: ideals follow positions
        assert s1.pos_ideal_dist() == pytest.approx(0.0)

    def test_does_not_mutate_previous_state(self, two_actor_model):
        s0 = two_actor_model.history[0]
        before = [p.coords.copy() for p in s0.positions]
        s0.step()
        for b, p in zip(before, s0.positions):
            assert np.array_equal(b, p.coords)

    def test_init_rcvr(self):
        """Receiver-weighted bargains still keep positions in range."""
        cfg = ModelConfig(bargain_model=BargainModel.INIT_RCVR)
        model = random_model(5, 2, seed=3, config=cfg)
        s1 = transition(model.history[0])
        for p in s1.positions:
            assert (p.coords >= 0).all() and (p.coords <= 1).all()

    def test_matching_bargain_rejected(self):
        model = init_matching_model(["A", "B"], None, ["i0", "i1"], 2, [1.0, 1.0],
                                    [np.eye(2), np.eye(2)[::-1]], matches=[(0, 1), (1, 0)])
        s0 = model.history[0]
        s0.mode = TransitionMode.BARGAIN
        with pytest.raises(ConfigurationError):
            s0.step()


class TestSearchTransition:
    """Tests for the best-response search transition"""

    def test_best_response_never_worse(self):
        """Each actor's hill climb never lowers its own expected utility."""
        model = _search_model(parallel=False)
        s0 = model.history[0]
        s0.ensure_ready()
        for h in range(s0.num_actors):
            _, rslt, du = best_response(s0, h)
            assert du >= 0.0
            assert rslt.value == pytest.approx(hypothetical_eu(s0, h, rslt.point))

    def test_parallel_matches_sequential(self):
        """Thread-pool and sequential searches produce identical states."""
        a = _search_model(parallel=True)
        b = _search_model(parallel=False)
        a.history.append(a.history[0].step())
        b.history.append(b.history[0].step())
        for pa, pb in zip(a.history[1].positions, b.history[1].positions):
            assert np.array_equal(pa.coords, pb.coords)

    def test_hypothetical_at_current_position(self):
        """Advocating one's current position reproduces the baseline choice."""
        model = _search_model(parallel=False)
        s0 = model.history[0]
        s0.ensure_ready()
        for h in range(s0.num_actors):
            eu = hypothetical_eu(s0, h, s0.positions[h])
            assert 0.0 <= eu <= 1.0

    def test_edge_positions_stay_in_range(self):
        """Neighbours clipped at the [0,1] corners still give utilities in [0,1]."""
        cfg = ModelConfig(transition_mode=TransitionMode.SEARCH, parallel=False)
        model = init_model(["A", "B", "C"], None, ["D0", "D1"], [100.0, 60.0, 30.0],
                           [[0.0, 1.0], [1.0, 0.0], [0.5, 1.0]],
                           [[0.45, 0.45], [0.45, 0.45], [0.45, 0.45]], seed=3, config=cfg)
        s0 = model.history[0]
        s0.ensure_ready()
        for h in range(s0.num_actors):
            for q in vector_neighbors(s0.positions[h], cfg.search_step):
                uh = s0.utilities[h].copy()
                for i in range(s0.num_actors):
                    uh[i, h] = s0.hypothetical_util(h, i, q)
                check_utility_range(uh, tol=1e-6, where="edge search")
                assert np.isfinite(hypothetical_eu(s0, h, q))

    def test_hypothetical_util_uses_actor_utility(self, three_actor_model):
        """Hypothetical utility is the actor's own utility of q from its ideal."""
        s0 = three_actor_model.history[0]
        s0.ensure_ready()
        q = VectorPosition([0.35])
        for h in range(3):
            for i in range(3):
                actor = three_actor_model.actors[i]
                expected = actor.pos_util(q, s0.ideals[i], s0.est_nra(h, i))
                assert s0.hypothetical_util(h, i, q) == pytest.approx(expected)

    def test_matching_search(self):
        """Matching actors search over swaps and rotations of their assignment."""
        rng = np.random.default_rng(8)
        values = [rng.uniform(size=(4, 2)) for _ in range(3)]
        model = init_matching_model(["A", "B", "C"], None, ["i0", "i1", "i2", "i3"], 2,
                                    [50.0, 80.0, 120.0], values, seed=8)
        s0 = model.history[0]
        s1 = s0.step()
        assert s1.mode == TransitionMode.SEARCH
        for p0, p1 in zip(s0.positions, s1.positions):
            assert isinstance(p1, MatchingPosition)
            assert sorted(p1.match) == sorted(p0.match)

    def test_matching_requires_search(self):
        with pytest.raises(ConfigurationError):
            init_matching_model(["A", "B"], None, ["i0", "i1"], 2, [1.0, 1.0],
                                [np.eye(2), np.eye(2)], config=ModelConfig())


# ============================================================================
# RUN LOOP AND STOPPING
# ============================================================================

class TestStopFunction:
    """Tests for smp_stop_fn()"""

    def _history(self, steps):
        model = init_model(["A", "B"], None, ["D0"], [1.0, 1.0], [[0.0], [1.0]], [[0.5], [0.5]])
        for a, b in steps:
            model.add_state(State(model, [VectorPosition([a]), VectorPosition([b])]))
        return model

    def test_max_iter(self):
        stop = smp_stop_fn(2, 100, 0.02)
        model = self._history([(0.5, 1.0)])
        assert stop(100, model.history[-1])
        assert stop(150, model.history[-1])

    def test_only_iteration_bound_with_one_state(self):
        stop = smp_stop_fn(2, 100, 0.02)
        model = self._history([])
        assert not stop(5, model.history[-1])

    def test_min_iter(self):
        """Before min_iter the ratio is not consulted."""
        stop = smp_stop_fn(2, 100, 0.02)
        model = self._history([(0.5, 1.0), (0.5, 1.0)])
        assert not stop(1, model.history[-1])
        assert stop(2, model.history[-1])

    def test_ratio(self):
        """Stops once the latest move is below 2% of the first move."""
        stop = smp_stop_fn(2, 100, 0.02)
        small = self._history([(0.5, 1.0), (0.5, 0.995)])
        assert stop(2, small.history[-1])
        large = self._history([(0.5, 1.0), (0.5, 0.95)])
        assert not stop(2, large.history[-1])

    def test_state_distance(self):
        model = self._history([(0.5, 0.7)])
        assert state_distance(model.history[0], model.history[1]) == pytest.approx(0.8)
        assert equivalent_states(model.history[0], model.history[0])
        assert not equivalent_states(model.history[0], model.history[1])


class TestRun:
    """Tests for Model.run() and the history accessors"""

    def test_bargain_run(self):
        model = random_model(4, 2, seed=7, stop=smp_stop_fn(2, 5, 0.02))
        model.run()
        assert 3 <= len(model.history) <= 6
        ph = model.position_history()
        assert ph.shape == (len(model.history), 4, 2)
        assert (ph >= 0).all() and (ph <= 1).all()
        probs = model.prob_history()
        assert probs.shape == (len(model.history), 4)
        assert (probs >= 0).all() and (probs <= 1.0 + 1e-9).all()
        assert "Turn 0" in model.show_history()

    def test_search_run(self):
        cfg = ModelConfig(transition_mode=TransitionMode.SEARCH, search_iter_max=20)
        model = random_model(3, 1, seed=11, config=cfg, stop=smp_stop_fn(2, 4, 0.02))
        model.run()
        assert all(s.mode == TransitionMode.SEARCH for s in model.history)
        assert len(model.history) >= 3

    def test_reproducible(self):
        """Same seed, same history."""
        a = random_model(4, 2, seed=21, stop=smp_stop_fn(2, 3, 0.02))
        b = random_model(4, 2, seed=21, stop=smp_stop_fn(2, 3, 0.02))
        a.run()
        b.run()
        assert np.array_equal(a.position_history(), b.position_history())

    def test_random_selection_reproducible(self):
        """Random bargain selection draws from the seeded model generator."""
        cfg = ModelConfig(bargain_selection=BargainSelection.RANDOM)
        a = random_model(4, 2, seed=5, config=cfg, stop=smp_stop_fn(2, 4, 0.02))
        b = random_model(4, 2, seed=5, config=cfg, stop=smp_stop_fn(2, 4, 0.02))
        a.run()
        b.run()
        assert np.array_equal(a.position_history(), b.position_history())
        assert (a.position_history() >= 0).all() and (a.position_history() <= 1).all()

    def test_run_without_state(self, two_actor_model):
        two_actor_model.history.clear()
        with pytest.raises(ScenarioError):
            two_actor_model.run()
