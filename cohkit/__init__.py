import logging

from . import _config
from .settings import TrialData, ConnectivitySettings
from .tapers import generate_tapers
from .network import Network, NetworkNode, NetworkEdge
from .coherency import (
    CoherencyAnalyzer,
    calculate,
    calculate_real,
    calculate_imag,
    compute_coherency,
    compute_connectivity,
)
from .exceptions import CohkitError, DimensionMismatchError, ComputationError

__version__ = "0.1.0"


def set_log_level(level="INFO"):
    """
    Set the logging level of the cohkit package logger.

    Parameters
    ----------
    level : str or int
        A logging level name ('DEBUG', 'INFO', ...) or number. DEBUG shows
        per-phase timings.
    """
    if isinstance(level, str):
        valid = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if level.upper() not in valid:
            raise ValueError(f"Log level '{level}' not recognized. Available: {list(valid)}")
        level = getattr(logging, level.upper())

    logger = logging.getLogger("cohkit")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-8s %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
        logger.addHandler(handler)
        logger.propagate = False
