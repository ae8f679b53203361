"""
Bargaining Model
================

A Model owns the roster of actors, the policy dimensions, the run
configuration and the append-only history of States. run() steps the latest
state until the stop predicate is satisfied.

Usage:
    from bargainsim.model import init_model, random_model

    model = random_model(num_actors=5, num_dims=2, seed=42)
    model.run()
    print(model.show_history())

Scenario constructors validate every input up front and raise ScenarioError
before any state is stepped.
"""

from typing import Callable, List, Optional, Sequence, Union
import logging

import numpy as np

from .actors import Actor, MatchingActor
from .config import ModelConfig, StopConfig, TransitionMode
from .errors import ConfigurationError, InvariantError, ScenarioError
from .positions import MatchingPosition, VectorPosition
from .state import State

logger = logging.getLogger(__name__)

MIN_ACTORS = 2

StopFn = Callable[[int, State], bool]


# ============================================================================
# STATE COMPARISON AND STOPPING
# ============================================================================

def state_distance(s1: State, s2: State) -> float:
    """Sum over actors of the distance between their positions in two states."""
    if s1.num_actors != s2.num_actors:
        raise InvariantError(
            f"state_distance: states have {s1.num_actors} and {s2.num_actors} actors"
        )
    total = 0.0
    for i, (p1, p2) in enumerate(zip(s1.positions, s2.positions)):
        d = p1.distance(p2)
        if d < 0:
            raise InvariantError(f"state_distance: negative distance {d} for actor {i}")
        total += d
    return total


def equivalent_states(s1: State, s2: State, tol: float = 1e-5) -> bool:
    return all(p1.equivalent(p2, tol) for p1, p2 in zip(s1.positions, s2.positions))


def smp_stop_fn(min_iter: int = 2, max_iter: int = 100,
                min_delta_ratio: float = 0.02, min_sig_delta: float = 1e-4) -> StopFn:
    """
    Build the standard stopping rule.

    Stops once max_iter is reached, or (after min_iter) once the latest step
    moved less than min_delta_ratio times the first step. Until two states
    exist only the iteration bound applies.
    """
    def stop(iteration: int, state: State) -> bool:
        if iteration >= max_iter:
            logger.info(f"Stopping at iteration {iteration}: reached max_iter {max_iter}")
            return True

        hist = state.model.history
        if iteration < min_iter or len(hist) < 2:
            return False

        d_first = state_distance(hist[0], hist[1])
        d_last = state_distance(hist[-1], hist[-2])
        ratio = d_last / (d_first + min_sig_delta)
        logger.info(f"Iteration {iteration}: last move {d_last:.5f}, first move {d_first:.5f}, ratio {ratio:.4f}")
        return ratio < min_delta_ratio

    return stop


def stop_fn_from_config(cfg: StopConfig) -> StopFn:
    return smp_stop_fn(cfg.min_iter, cfg.max_iter, cfg.min_delta_ratio, cfg.min_sig_delta)


# ============================================================================
# MODEL
# ============================================================================

class Model:
    """A bargaining scenario and the history of its states."""

    def __init__(self, actors: Sequence[Union[Actor, MatchingActor]], dim_names: Sequence[str],
                 config: Optional[ModelConfig] = None, seed: Optional[int] = None,
                 stop: Optional[StopFn] = None, description: str = ""):
        self.actors = list(actors)
        self.dim_names = list(dim_names)
        self.config = config or ModelConfig()
        self.seed = seed
        self.rng = np.random.default_rng(seed)
        self.stop = stop or stop_fn_from_config(StopConfig())
        self.description = description
        self.history: List[State] = []

    @property
    def num_actors(self) -> int:
        return len(self.actors)

    @property
    def num_dims(self) -> int:
        return len(self.dim_names)

    def actor_index(self, name: str) -> int:
        for i, a in enumerate(self.actors):
            if a.name == name:
                return i
        raise KeyError(f"No actor named {name!r}")

    def add_state(self, state: State) -> None:
        if state.model is not self:
            raise InvariantError("add_state: state belongs to a different model")
        self.history.append(state)

    def run(self) -> None:
        """Step the latest state until the stop predicate is satisfied."""
        if not self.history:
            raise ScenarioError("Model has no initial state")

        state = self.history[-1]
        state.ensure_ready()
        logger.info(
            f"Running model {self.description or '(unnamed)'}: {self.num_actors} actors, "
            f"{self.num_dims} dimensions, mode={state.mode.value}"
        )

        iteration = 0
        while not self.stop(iteration, state):
            state = state.step()
            self.add_state(state)
            iteration += 1
            logger.info(f"Completed state {len(self.history) - 1}")

        logger.info(f"Run finished after {iteration} iterations ({len(self.history)} states)")

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    def position_history(self) -> np.ndarray:
        """Positions over time as a (turns, actors, dims) array."""
        rows = []
        for s in self.history:
            if s.is_vector:
                rows.append([p.coords for p in s.positions])
            else:
                rows.append([list(p.match) for p in s.positions])
        return np.array(rows, dtype=float)

    def prob_history(self) -> np.ndarray:
        """Probability that each actor's position prevails, per turn, as (turns, actors)."""
        out = np.zeros((len(self.history), self.num_actors))
        for t, s in enumerate(self.history):
            p, unq = s.p_dist()
            for i in range(self.num_actors):
                out[t, i] = s.pos_prob(i, unq, p)
        return out

    def show_history(self) -> str:
        """Plain-text report of positions and win probabilities per turn."""
        probs = self.prob_history()
        names = [a.name for a in self.actors]
        width = max(len(n) for n in names)
        lines = [f"Model {self.description or '(unnamed)'}: dimensions {', '.join(self.dim_names)}"]
        for t, s in enumerate(self.history):
            lines.append(f"Turn {t}")
            for i, name in enumerate(names):
                pos = s.positions[i]
                if isinstance(pos, VectorPosition):
                    shown = "[" + ", ".join(f"{100 * x:6.2f}" for x in pos.coords) + "]"
                else:
                    shown = str(list(pos.match))
                lines.append(f"  {name:<{width}}  {shown}  p={probs[t, i]:.4f}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Model(actors={self.num_actors}, dims={self.num_dims}, states={len(self.history)})"


# ============================================================================
# SCENARIO CONSTRUCTION
# ============================================================================

def _resolve_config(config) -> ModelConfig:
    if config is None:
        return ModelConfig()
    if isinstance(config, ModelConfig):
        return config
    if isinstance(config, dict):
        return ModelConfig.from_dict(config)
    return ModelConfig.from_vector(config)


def _check_names(names: Sequence[str], descs: Optional[Sequence[str]]) -> List[str]:
    n = len(names)
    if n < MIN_ACTORS:
        raise ScenarioError(f"A scenario needs at least {MIN_ACTORS} actors, got {n}")
    if descs is None:
        return [""] * n
    if len(descs) != n:
        raise ScenarioError(f"Got {len(descs)} descriptions for {n} actors")
    return list(descs)


def _check_capabilities(cap, n: int) -> np.ndarray:
    cap = np.asarray(cap, dtype=float).ravel()
    if cap.shape[0] != n:
        raise ScenarioError(f"Got {cap.shape[0]} capabilities for {n} actors")
    if not np.all(np.isfinite(cap)) or (cap <= 0).any():
        i = int(np.argmax(~np.isfinite(cap) | (cap <= 0)))
        raise ScenarioError(f"Capability of actor {i} must be positive and finite, got {cap[i]}")
    return cap


def init_model(names: Sequence[str], descs: Optional[Sequence[str]], dim_names: Sequence[str],
               cap, pos, sal, acc=None, seed: Optional[int] = None, config=None,
               stop: Optional[StopFn] = None, description: str = "") -> Model:
    """
    Build a vector-position scenario with one initial state.

    Args:
        names, descs: Actor names and descriptions
        dim_names: Policy dimension names
        cap: Capabilities, one per actor
        pos: Positions, actors x dims, in [0, 1]
        sal: Saliences, actors x dims; each row in [0, 1] with sum in (0, 1]
        acc: Accommodation matrix, actors x actors (default identity)
        seed: Seed for the model's random generator
        config: ModelConfig, a dict of options, or the integer parameter vector

    Returns:
        Model with history [initial state]

    Raises:
        ScenarioError: If any input is malformed
        ConfigurationError: If the configuration cannot be resolved
    """
    descs = _check_names(names, descs)
    n = len(names)
    d = len(dim_names)
    if d < 1:
        raise ScenarioError("A scenario needs at least one dimension")
    cfg = _resolve_config(config)
    cap = _check_capabilities(cap, n)

    pos = np.asarray(pos, dtype=float)
    sal = np.asarray(sal, dtype=float)
    if pos.shape != (n, d):
        raise ScenarioError(f"Position matrix must be {n}x{d}, got {pos.shape}")
    if sal.shape != (n, d):
        raise ScenarioError(f"Salience matrix must be {n}x{d}, got {sal.shape}")
    if not np.all(np.isfinite(pos)):
        raise ScenarioError("Positions must be finite")
    if (pos < 0).any() or (pos > 1).any():
        i, k = np.unravel_index(int(np.argmax((pos < 0) | (pos > 1))), pos.shape)
        raise ScenarioError(f"Position of actor {i} on dimension {k} outside [0, 1]: {pos[i, k]}")
    if not np.all(np.isfinite(sal)) or (sal < 0).any() or (sal > 1).any():
        raise ScenarioError("Saliences must lie in [0, 1]")
    row_sums = sal.sum(axis=1)
    for i, s in enumerate(row_sums):
        if not 0.0 < s <= 1.0 + 1e-10:
            raise ScenarioError(f"Saliences of actor {i} sum to {s:.6f}, outside (0, 1]")

    actors = [
        Actor(name=names[i], description=descs[i], capability=float(cap[i]),
              salience=sal[i], voting_rule=cfg.voting_rule)
        for i in range(n)
    ]
    model = Model(actors, dim_names, cfg, seed, stop, description)
    positions = [VectorPosition(pos[i]) for i in range(n)]
    model.add_state(State(model, positions, accommodation=acc))
    logger.info(f"Initialized model with {n} actors on {d} dimensions (seed={seed})")
    return model


def random_model(num_actors: int, num_dims: int, seed: Optional[int] = None, config=None,
                 accommodation_rate: float = 1.0, stop: Optional[StopFn] = None) -> Model:
    """Random vector scenario: actors, saliences and positions drawn from the model's generator."""
    if num_actors < MIN_ACTORS:
        raise ScenarioError(f"A scenario needs at least {MIN_ACTORS} actors, got {num_actors}")
    if num_dims < 1:
        raise ScenarioError("A scenario needs at least one dimension")

    cfg = _resolve_config(config)
    actors = [Actor(name=f"A{i:02d}", description=f"Actor {i}") for i in range(num_actors)]
    dim_names = [f"D{k:02d}" for k in range(num_dims)]
    model = Model(actors, dim_names, cfg, seed, stop, description=f"random-{seed}")

    for a in actors:
        a.randomize(model.rng, num_dims)
    positions = [VectorPosition(model.rng.uniform(0.0, 1.0, size=num_dims)) for _ in actors]

    s0 = State(model, positions)
    s0.set_accommodate_rate(accommodation_rate)
    model.add_state(s0)
    logger.info(f"Randomized {num_actors} actors on {num_dims} dimensions (seed={seed})")
    return model


def init_matching_model(names: Sequence[str], descs: Optional[Sequence[str]],
                        item_names: Sequence[str], num_cats: int, cap, values,
                        matches=None, seed: Optional[int] = None, config=None,
                        stop: Optional[StopFn] = None, description: str = "") -> Model:
    """
    Build a matching scenario: each actor advocates an assignment of items to categories.

    Args:
        names, descs: Actor names and descriptions
        item_names: Names of the items being assigned
        num_cats: Number of categories
        cap: Capabilities, one per actor
        values: Per actor, an items x categories array of values in [0, 1]
        matches: Initial assignment per actor (default: random shuffles of a
            round-robin assignment, drawn from the model's generator)
        config: Must use the search transition; defaults to one that does

    Returns:
        Model with history [initial state]
    """
    descs = _check_names(names, descs)
    n = len(names)
    num_items = len(item_names)
    if num_items < 1 or num_cats < 1:
        raise ScenarioError(f"Need at least one item and one category, got {num_items} and {num_cats}")

    cfg = _resolve_config(config) if config is not None else ModelConfig(transition_mode=TransitionMode.SEARCH)
    if cfg.transition_mode != TransitionMode.SEARCH:
        raise ConfigurationError(
            f"Matching scenarios support only the search transition, got {cfg.transition_mode.value}"
        )
    cap = _check_capabilities(cap, n)

    if len(values) != n:
        raise ScenarioError(f"Got {len(values)} value tables for {n} actors")
    actors = []
    for i in range(n):
        v = np.asarray(values[i], dtype=float)
        if v.shape != (num_items, num_cats):
            raise ScenarioError(f"Values of actor {i} must be {num_items}x{num_cats}, got {v.shape}")
        if not np.all(np.isfinite(v)) or (v < 0).any() or (v > 1).any():
            raise ScenarioError(f"Values of actor {i} must lie in [0, 1]")
        actors.append(MatchingActor(name=names[i], description=descs[i], capability=float(cap[i]),
                                    values=v, voting_rule=cfg.voting_rule))

    model = Model(actors, item_names, cfg, seed, stop, description)

    if matches is None:
        base = np.array([k % num_cats for k in range(num_items)])
        matches = [tuple(int(c) for c in model.rng.permutation(base)) for _ in range(n)]
    if len(matches) != n:
        raise ScenarioError(f"Got {len(matches)} initial matchings for {n} actors")
    try:
        positions = [MatchingPosition(tuple(m), num_cats) for m in matches]
    except ValueError as e:
        raise ScenarioError(f"Invalid initial matching: {e}")
    for i, p in enumerate(positions):
        if p.num_items != num_items:
            raise ScenarioError(f"Matching of actor {i} has {p.num_items} items, expected {num_items}")

    model.add_state(State(model, positions))
    logger.info(f"Initialized matching model with {n} actors, {num_items} items, {num_cats} categories")
    return model
