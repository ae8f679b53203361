"""
Command-line interface for the bargaining simulation.

Runs a randomized scenario and prints the position/probability history.

Usage:
    python -m bargainsim.cli --actors 5 --dims 2 --seed 42
    python -m bargainsim.cli --config config/default_model.yaml --mode search -v
"""

import argparse
import logging
import sys
from typing import Optional

from .config import ModelConfig, StopConfig, load_config
from .errors import ConfigurationError, InvariantError, ScenarioError
from .logging_config import configure_logging
from .model import random_model, stop_fn_from_config

logger = logging.getLogger(__name__)


def cmd_run(args: argparse.Namespace) -> int:
    """Build and run one random scenario."""
    try:
        if args.config:
            model_cfg, stop_cfg = load_config(args.config)
        else:
            model_cfg, stop_cfg = ModelConfig(), StopConfig()

        overrides = model_cfg.to_dict()
        if args.mode:
            overrides["transition_mode"] = args.mode
        if args.sequential:
            overrides["parallel"] = False
        model_cfg = ModelConfig.from_dict(overrides)
        if args.max_iter is not None:
            stop_cfg = StopConfig(stop_cfg.min_iter, args.max_iter,
                                  stop_cfg.min_delta_ratio, stop_cfg.min_sig_delta)

        model = random_model(args.actors, args.dims, seed=args.seed, config=model_cfg,
                             accommodation_rate=args.accommodation,
                             stop=stop_fn_from_config(stop_cfg))
        model.run()

        print(model.show_history())
        print(f"\n{len(model.history)} states, final position-ideal distance "
              f"{model.history[-1].pos_ideal_dist():.5f}")
        return 0

    except (ScenarioError, InvariantError, ConfigurationError) as e:
        logger.error(f"Run aborted: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="bargainsim",
        description="Spatial bargaining simulation over a random scenario"
    )
    parser.add_argument("--actors", type=int, default=5, help="Number of actors")
    parser.add_argument("--dims", type=int, default=2, help="Number of policy dimensions")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--config", help="YAML file with model: and stop: sections")
    parser.add_argument("--mode", choices=["bargain", "search"], help="Transition mode override")
    parser.add_argument("--accommodation", type=float, default=1.0,
                        help="Identity accommodation rate in [0, 1]")
    parser.add_argument("--max-iter", type=int, default=None, help="Stop after this many iterations")
    parser.add_argument("--sequential", action="store_true",
                        help="Run per-actor searches in a loop instead of a thread pool")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging"
    )
    parser.add_argument("--log-dir", default="logs", help="Directory for the run log file")
    parser.add_argument("--log-file", default="bargainsim.log", help="Run log file name")

    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO,
                      log_dir=args.log_dir, log_file=args.log_file)
    return cmd_run(args)


if __name__ == "__main__":
    sys.exit(main())
