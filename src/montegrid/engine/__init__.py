"""Replication engine: seeds, retries, condition execution and the driver."""

from .driver import SimulationDriver, run_simulation
from .executor import ConditionExecutor
from .records import Checkpoint, ReplicationRecord, ResultRow, results_table
from .runner import ReplicationRunner
from .seeds import SeedState, SeedStream

__all__ = [
    "SeedState",
    "SeedStream",
    "ReplicationRunner",
    "ReplicationRecord",
    "ConditionExecutor",
    "Checkpoint",
    "ResultRow",
    "results_table",
    "SimulationDriver",
    "run_simulation",
]
