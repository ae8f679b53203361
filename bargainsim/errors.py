"""
Error taxonomy for the simulation kernel.

None of these are retried. A deterministic offline run either completes or
aborts on the first violation, with a message naming the invariant and the
actor/turn involved.
"""


class ScenarioError(Exception):
    """Raised when scenario data violates construction invariants."""
    pass


class InvariantError(Exception):
    """Raised when a numeric invariant fails during a run."""
    pass


class ConfigurationError(Exception):
    """Raised when a configuration value cannot be resolved."""
    pass
