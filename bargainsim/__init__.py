"""
Spatial bargaining simulation kernel.

Actors with capabilities, saliences and positions negotiate over a
multi-dimensional policy space (or over discrete matchings); each run steps a
State forward by bargaining or by unilateral best-response search until a
stopping rule is met.

Modules:
    config - Enumerated model options, ModelConfig/StopConfig, YAML loading
    errors - Scenario, invariant and configuration errors
    positions - Vector and matching positions, neighbor generators
    utility - Salience-weighted distance and risk-modulated utility
    voting - Votes, coalitions, victory probabilities, Condorcet election
    risk - Risk-attitude inference
    actors - Vector and matching actors
    bargain - Bargain interpolation
    search - Generic hill-climbing search
    state - Simulation state: utilities, challenges, ideals
    transition - Bargaining and best-response transitions
    model - Model, run loop, stopping rule, scenario constructors
    cli - Command-line interface entrypoint
"""

from . import config
from . import errors
from . import positions
from . import utility
from . import voting
from . import risk
from . import actors
from . import bargain
from . import search
from . import state
from . import transition
from . import model

__version__ = "0.1.0"
