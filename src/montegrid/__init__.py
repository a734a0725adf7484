"""
montegrid: reproducible Monte Carlo simulation studies over design grids.

Researchers supply ``generate``, ``analyse`` and ``summarise`` functions and a
design of conditions; the engine runs replications on independent random
substreams, retries failed draws, checkpoints, honours time budgets, and
reassembles results from distributed array jobs.
"""

import logging

from .control import SimulationControl
from .design import (
    Design,
    ExpandedDesign,
    ExpandedUnit,
    concatenate,
    expand,
    replication_split,
)
from .engine import (
    ConditionExecutor,
    ReplicationRunner,
    ResultRow,
    SeedState,
    SeedStream,
    SimulationDriver,
    run_simulation,
)
from .errors import (
    ConfigurationError,
    FatalError,
    NamespaceMismatchError,
    NonDecomposableSummaryError,
    RedoRequested,
    ReplicationFailed,
    SimulationError,
)
from .storage import FileStore, MemoryStore, ResultCollector, check_completeness, collect
from .summary import MomentSummary, bias, edr, rmse

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "SimulationControl",
    "Design",
    "ExpandedDesign",
    "ExpandedUnit",
    "expand",
    "replication_split",
    "concatenate",
    "SeedState",
    "SeedStream",
    "ReplicationRunner",
    "ConditionExecutor",
    "ResultRow",
    "SimulationDriver",
    "run_simulation",
    "FileStore",
    "MemoryStore",
    "ResultCollector",
    "collect",
    "check_completeness",
    "MomentSummary",
    "bias",
    "rmse",
    "edr",
    "SimulationError",
    "RedoRequested",
    "ReplicationFailed",
    "FatalError",
    "ConfigurationError",
    "NamespaceMismatchError",
    "NonDecomposableSummaryError",
]
