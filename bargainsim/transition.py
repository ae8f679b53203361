"""
State Transitions
=================

Two strategies move a State to its successor. The strategy is carried by the
state (State.mode) and inherited by the state it produces.

BARGAIN (challenge / bargain / negotiate):
    1. Each actor picks the target most worth challenging.
    2. The pair's positions are interpolated into a bargain.
    3. Each actor's bargains, plus staying put, are put to a vote of all
       actors; the winner is the actor's next position.
    4. Ideal points shift through the accommodation matrix.

SEARCH (unilateral best response):
    Each actor hill-climbs from its current position to the position that
    maximizes its own expected utility, holding everyone else fixed. The
    searches are independent and run on a thread pool; each returns its own
    result and the next state is only assembled after all have finished.

Usage:
    next_state = transition(state)
"""

from concurrent.futures import ThreadPoolExecutor
from typing import List, Tuple
import logging

import numpy as np

from .bargain import Bargain, interpolate_bargain
from .config import BargainModel, BargainSelection, TransitionMode
from .errors import ConfigurationError, InvariantError
from .positions import MatchingPosition, Position, VectorPosition, matching_neighbors, vector_neighbors
from .search import GHCSearch, SearchResult
from .state import State, ue_indices
from .voting import eu_from_utils

logger = logging.getLogger(__name__)

# Actors plan as if nobody else moves, so realized gains can dip slightly
# below zero through round-off; anything worse is a logic error.
EU_DROP_TOL = 0.05


def transition(state: State) -> State:
    """Produce the successor of state using the state's own transition mode."""
    state.ensure_ready()
    if state.mode == TransitionMode.BARGAIN:
        nxt = step_bargain(state)
    elif state.mode == TransitionMode.SEARCH:
        nxt = step_search(state)
    else:
        raise ConfigurationError(f"transition: unrecognized mode {state.mode!r}")
    nxt.ensure_ready()
    return nxt


# ============================================================================
# BARGAINING
# ============================================================================

def make_bargain(state: State, i: int, j: int, pij: float) -> Bargain:
    """Interpolate the bargain i offers j, given i's estimate pij that i would win."""
    cfg = state.model.config
    actors = state.model.actors
    pos_i = state.positions[i]
    pos_j = state.positions[j]

    brgn = interpolate_bargain(i, j, actors[i], actors[j], pos_i, pos_j,
                               pij, 1.0 - pij, cfg.inter_vec_brgn)

    if cfg.bargain_model == BargainModel.INIT_RCVR:
        # The receiver's estimate gets equal say in where the bargain lands
        pij_j, _ = state.prob_edu_challenge(j, j, i, j)
        other = interpolate_bargain(i, j, actors[i], actors[j], pos_i, pos_j,
                                    pij_j, 1.0 - pij_j, cfg.inter_vec_brgn)
        brgn = Bargain(i, j,
                       VectorPosition((brgn.pos_init.coords + other.pos_init.coords) / 2.0),
                       VectorPosition((brgn.pos_recv.coords + other.pos_recv.coords) / 2.0),
                       actors[i], actors[j])
    elif cfg.bargain_model != BargainModel.INIT_ONLY:
        raise ConfigurationError(f"make_bargain: unrecognized bargain model {cfg.bargain_model!r}")

    return brgn


def resolve_bargains(state: State, k: int, candidates: List[Bargain]) -> VectorPosition:
    """
    Choose actor k's next position from the bargains it is involved in.

    Every actor votes over the distinct candidate positions, using k's
    estimates of their risk attitudes.
    """
    model = state.model
    cfg = model.config
    actors = model.actors
    n = state.num_actors

    options: List[VectorPosition] = []
    for b in candidates:
        pos = b.position_for(k)
        if not any(pos.equivalent(o, cfg.pos_tol) for o in options):
            options.append(pos)

    if len(options) == 1:
        return options[0].copy()

    u = np.zeros((n, len(options)))
    for l in range(n):
        r = state.est_nra(k, l)
        for b, pos in enumerate(options):
            u[l, b] = actors[l].pos_util(pos, state.ideals[l], r)

    _, p = eu_from_utils(u, actors, cfg.vp_model, cfg.pce_model)
    p = p.ravel()
    if cfg.bargain_selection == BargainSelection.RANDOM:
        idx = int(model.rng.choice(len(options), p=p / p.sum()))
    else:
        idx = int(np.argmax(p))

    logger.debug(f"Actor {k}: {len(options)} options, chose {idx} with p={p[idx]:.4f}")
    return options[idx].copy()


def step_bargain(state: State) -> State:
    if not state.is_vector:
        raise ConfigurationError("Bargaining transition requires vector positions")

    model = state.model
    actors = model.actors
    n = state.num_actors

    brgns: List[List[Bargain]] = [[] for _ in range(n)]
    for i in range(n):
        j, pij, deu = state.best_challenge(i)
        if j is None:
            continue
        logger.debug(f"Actor {i} has most advantageous target {j} worth {deu:.4f} (p={pij:.3f})")
        b = make_bargain(state, i, j, pij)
        brgns[i].append(b)
        brgns[j].append(b)

    # Everyone can also keep their current position
    for k in range(n):
        pk = state.positions[k]
        brgns[k].append(Bargain(k, k, pk.copy(), pk.copy(), actors[k], actors[k]))

    new_positions = [resolve_bargains(state, k, brgns[k]) for k in range(n)]

    s2 = State(model, new_positions, ideals=state.ideals,
               accommodation=state.accommodation.copy(), mode=state.mode)
    s2.bargains = brgns
    s2.new_ideals()
    return s2


# ============================================================================
# BEST-RESPONSE SEARCH
# ============================================================================

def _neighbors_fn(state: State):
    step = state.model.config.search_step

    def nfn(p: Position) -> List[Position]:
        if isinstance(p, MatchingPosition):
            return matching_neighbors(p)
        if isinstance(p, VectorPosition):
            return vector_neighbors(p, step)
        raise TypeError(f"Unsupported position type {type(p).__name__}")

    return nfn


def hypothetical_eu(state: State, h: int, q: Position) -> float:
    """
    Actor h's expected utility if it advocated q while everyone else stays put.

    The h-column of h's utility matrix is replaced by everyone's utility of q,
    and options made duplicate by the substitution are dropped before voting.
    """
    model = state.model
    cfg = model.config
    n = state.num_actors

    uh = state.utilities[h].copy()
    for i in range(n):
        uh[i, h] = state.hypothetical_util(h, i, q)

    def pos(a):
        return q if a == h else state.positions[a]

    def equiv_h(a, b):
        if a == b:
            return True
        return pos(a).equivalent(pos(b), cfg.pos_tol)

    unq, _ = ue_indices(n, equiv_h)
    eu, _ = eu_from_utils(uh[:, unq], model.actors, cfg.vp_model, cfg.pce_model)
    return float(eu[h, 0])


def best_response(state: State, h: int) -> Tuple[int, SearchResult, float]:
    """Hill-climb actor h's position; returns (h, result, EU improvement)."""
    cfg = state.model.config
    start = state.positions[h]

    def efn(q: Position) -> float:
        return hypothetical_eu(state, h, q)

    ghc = GHCSearch(efn, _neighbors_fn(state))
    eu0 = efn(start)
    rslt = ghc.run(start, iter_max=cfg.search_iter_max,
                   stable_max=cfg.search_stable_max, stable_tol=cfg.search_stable_tol)

    du = rslt.value - eu0
    if du < -EU_DROP_TOL:
        raise InvariantError(
            f"Actor {h} in state {state.turn}: best response lowers expected utility by {-du:.6f}"
        )
    logger.debug(
        f"Actor {h}: iter={rslt.iterations} stable={rslt.stable_count} "
        f"best={rslt.value:+.6f} dEU={du:+.4E}"
    )
    return h, rslt, du


def step_search(state: State) -> State:
    model = state.model
    cfg = model.config
    n = state.num_actors

    def task(h: int) -> Tuple[int, SearchResult, float]:
        return best_response(state, h)

    if cfg.parallel and cfg.max_workers > 1 and n > 1:
        with ThreadPoolExecutor(max_workers=min(cfg.max_workers, n)) as executor:
            results = list(executor.map(task, range(n)))
    else:
        results = [task(h) for h in range(n)]

    new_positions: List[Position] = [None] * n
    for h, rslt, _ in results:
        new_positions[h] = rslt.point.copy()
    if any(p is None for p in new_positions):
        missing = [h for h, p in enumerate(new_positions) if p is None]
        raise InvariantError(f"Search transition left positions unset for actors {missing}")

    s2 = State(model, new_positions, ideals=state.ideals,
               accommodation=state.accommodation.copy(), mode=state.mode)
    s2.new_ideals()
    return s2
