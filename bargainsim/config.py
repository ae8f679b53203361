"""
Model Configuration
===================

Enumerated model options and the run configuration dataclasses.

Every enumerated option is a closed set. Values can be given as the enum
member, its name ("PROPORTIONAL"), its value ("proportional") or its integer
position in declaration order (the way scenario files from older tooling
encode them). Anything else raises ConfigurationError at resolution time,
before a model is built.

Usage:
    from bargainsim.config import ModelConfig, load_config

    cfg = ModelConfig.from_dict({"voting_rule": "cubic", "parallel": False})
    model_cfg, stop_cfg = load_config("config/default_model.yaml")
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type, TypeVar
import logging

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


# ============================================================================
# ENUMERATED OPTIONS
# ============================================================================

class VotingRule(Enum):
    BINARY = "binary"                # full capability for any preference
    PROP_BIN = "prop_bin"            # half binary, half proportional
    PROPORTIONAL = "proportional"    # capability times utility gap
    PROP_CBC = "prop_cbc"            # half proportional, half cubic
    CUBIC = "cubic"                  # capability times cubed gap


class VPModel(Enum):
    """Victory-probability model: pairwise coalition strengths to P(i beats j)."""
    LINEAR = "linear"
    SQUARE = "square"
    QUARTIC = "quartic"
    OCTIC = "octic"
    BINARY = "binary"


class PCEModel(Enum):
    """Probabilistic Condorcet election: pairwise P to marginal p."""
    CONDITIONAL = "conditional"
    MARKOV_INCENTIVE = "markov_incentive"
    MARKOV_UNIFORM = "markov_uniform"


class BigRAdjust(Enum):
    """How actor h estimates actor i's risk attitude."""
    FULL = "full"                # r^h_i = ri
    TWO_THIRDS = "two_thirds"    # r^h_i = (rh + 2 ri) / 3
    HALF = "half"                # r^h_i = (rh + ri) / 2
    ONE_THIRD = "one_third"      # r^h_i = (2 rh + ri) / 3
    NONE = "none"                # r^h_i = rh


class BigRRange(Enum):
    MIN = "min"    # [0, +1]
    MID = "mid"    # [-1/2, +1]
    MAX = "max"    # [-1, +1]


class ThirdPartyCommit(Enum):
    NO_COMMIT = "no_commit"
    SEMI_COMMIT = "semi_commit"
    FULL_COMMIT = "full_commit"


class InterVecBrgn(Enum):
    """Per-dimension weighting used to interpolate a bargain."""
    S1P1 = "s1p1"
    S2P2 = "s2p2"
    S2PMAX = "s2pmax"


class BargainModel(Enum):
    """Whose probability estimate drives the interpolation."""
    INIT_ONLY = "init_only"
    INIT_RCVR = "init_rcvr"


class TransitionMode(Enum):
    BARGAIN = "bargain"    # bargain / challenge / negotiate
    SEARCH = "search"      # unilateral best-response search


class BargainSelection(Enum):
    """How an actor picks its next position from the voted bargain candidates."""
    MAX_PROB = "max_prob"    # most likely candidate, first on ties
    RANDOM = "random"        # drawn from the vote distribution with the model rng


E = TypeVar("E", bound=Enum)


def resolve_enum(enum_cls: Type[E], value: Any) -> E:
    """
    Resolve a configuration value into a member of enum_cls.

    Args:
        enum_cls: Target enumeration
        value: Member, name, value string, or integer index

    Returns:
        The enum member

    Raises:
        ConfigurationError: If the value matches nothing
    """
    if isinstance(value, enum_cls):
        return value

    members = list(enum_cls)
    if isinstance(value, bool):
        raise ConfigurationError(f"{enum_cls.__name__}: boolean is not a valid option")
    if isinstance(value, int):
        if 0 <= value < len(members):
            return members[value]
        raise ConfigurationError(
            f"{enum_cls.__name__}: index {value} out of range [0, {len(members) - 1}]"
        )
    if isinstance(value, str):
        key = value.strip()
        for m in members:
            if key.upper() == m.name or key.lower() == m.value:
                return m

    valid = ", ".join(m.name for m in members)
    raise ConfigurationError(f"Unrecognized {enum_cls.__name__} value {value!r} (valid: {valid})")


# ============================================================================
# CONFIGURATION
# ============================================================================

_ENUM_FIELDS = {
    "voting_rule": VotingRule,
    "vp_model": VPModel,
    "pce_model": PCEModel,
    "big_r_adjust": BigRAdjust,
    "big_r_range": BigRRange,
    "tp_commit": ThirdPartyCommit,
    "inter_vec_brgn": InterVecBrgn,
    "bargain_model": BargainModel,
    "transition_mode": TransitionMode,
    "bargain_selection": BargainSelection,
}


def _known_fields(cls, config: Optional[Dict[str, Any]], section: str) -> Dict[str, Any]:
    """Keep the dataclass fields of cls from config, warning about the rest."""
    config = config or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(k for k in config if k not in known)
    if unknown:
        logger.warning(f"Ignoring unknown {section} config keys: {unknown}")
    return {k: v for k, v in config.items() if k in known}


@dataclass
class ModelConfig:
    """Global model options, fixed for the lifetime of a Model."""
    # Coalition voting and collective choice
    voting_rule: VotingRule = VotingRule.PROPORTIONAL
    vp_model: VPModel = VPModel.LINEAR
    pce_model: PCEModel = PCEModel.CONDITIONAL

    # Risk inference
    big_r_adjust: BigRAdjust = BigRAdjust.HALF
    big_r_range: BigRRange = BigRRange.MAX

    # Bargaining
    tp_commit: ThirdPartyCommit = ThirdPartyCommit.SEMI_COMMIT
    inter_vec_brgn: InterVecBrgn = InterVecBrgn.S2P2
    bargain_model: BargainModel = BargainModel.INIT_ONLY
    bargain_selection: BargainSelection = BargainSelection.MAX_PROB

    transition_mode: TransitionMode = TransitionMode.BARGAIN

    # Best-response search
    search_step: float = 0.05
    search_iter_max: int = 100
    search_stable_max: int = 3
    search_stable_tol: float = 0.001
    max_workers: int = 4
    parallel: bool = True

    # Vector positions closer than this are the same option
    pos_tol: float = 1e-5

    # Consumed by the external run logger, not by the kernel
    db_path: str = "bargainsim.db"

    def __post_init__(self):
        for name, enum_cls in _ENUM_FIELDS.items():
            setattr(self, name, resolve_enum(enum_cls, getattr(self, name)))
        if self.search_step <= 0:
            raise ConfigurationError(f"search_step must be positive, got {self.search_step}")
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]] = None) -> "ModelConfig":
        """Build from a dict, ignoring keys that are not configuration fields."""
        return cls(**_known_fields(cls, config, "model"))

    @classmethod
    def from_vector(cls, params) -> "ModelConfig":
        """
        Build from the integer parameter vector used by scenario tooling.

        Order: vp_model, pce_model, transition_mode, voting_rule,
        big_r_adjust, big_r_range, tp_commit, inter_vec_brgn, bargain_model.

        Slot 2 picks the bargain or search transition. Bargain selection
        is not part of the vector and keeps its default.
        """
        names = ["vp_model", "pce_model", "transition_mode", "voting_rule",
                 "big_r_adjust", "big_r_range", "tp_commit", "inter_vec_brgn",
                 "bargain_model"]
        if len(params) != len(names):
            raise ConfigurationError(
                f"Parameter vector must have {len(names)} entries, got {len(params)}"
            )
        return cls(**{name: int(v) for name, v in zip(names, params)})

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for f in fields(self):
            v = getattr(self, f.name)
            out[f.name] = v.value if isinstance(v, Enum) else v
        return out


@dataclass
class StopConfig:
    """Parameters of the standard stopping rule (see model.smp_stop_fn)."""
    min_iter: int = 2
    max_iter: int = 100
    # On a [0,100] scale, a first move of 100 points makes 2 points the
    # smallest change still considered significant.
    min_delta_ratio: float = 0.02
    # Guards the ratio against a degenerate first step
    min_sig_delta: float = 1e-4

    def __post_init__(self):
        if self.max_iter < 1:
            raise ConfigurationError(f"max_iter must be >= 1, got {self.max_iter}")
        if self.min_iter > self.max_iter:
            raise ConfigurationError(
                f"min_iter ({self.min_iter}) cannot exceed max_iter ({self.max_iter})"
            )

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]] = None) -> "StopConfig":
        return cls(**_known_fields(cls, config, "stop"))


def load_config(path: str) -> Tuple[ModelConfig, StopConfig]:
    """
    Load model and stop configuration from a YAML file.

    The file may contain a ``model:`` section and a ``stop:`` section;
    missing sections fall back to defaults.

    Args:
        path: Path to YAML file

    Returns:
        (ModelConfig, StopConfig)

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")

    logger.debug(f"Loaded config from {path}: sections={sorted(raw)}")
    return ModelConfig.from_dict(raw.get("model")), StopConfig.from_dict(raw.get("stop"))
