"""Shared logging configuration for the bargaining simulation.

Call ``configure_logging()`` once at an entry point (the CLI, a notebook) to
ensure simulation logs are emitted. The function is idempotent: if the root
logger already has handlers, it does nothing.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int = logging.INFO, log_dir: Optional[str] = "logs",
                      log_file: str = "bargainsim.log") -> None:
    """Configure root logger with console + optional file handler.

    Only configures if the root logger has no handlers (idempotent).
    The file handler writes to ``log_dir/log_file``; pass ``log_dir=None``
    to log to the console only.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)
    root.setLevel(level)

    if log_dir is None:
        return

    try:
        os.makedirs(log_dir, exist_ok=True)
        fh = logging.FileHandler(os.path.join(log_dir, log_file), mode="a")
    except OSError as e:
        logging.getLogger(__name__).warning(f"File logging disabled ({log_dir}/{log_file}): {e}")
        return
    fh.setFormatter(formatter)
    root.addHandler(fh)
