"""Records passed between the runner, the executor and the persistence layer."""

from __future__ import annotations

import enum
import numbers
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from .seeds import SeedState

STATUS_COMPLETED = "completed"
STATUS_TRUNCATED = "truncated"
STATUS_FAILED = "failed"

BOOKKEEPING_COLUMNS = (
    "REPLICATIONS",
    "TARGET",
    "SIM_TIME",
    "SEED",
    "COMPLETED",
    "STATUS",
    "ERRORS",
    "WARNINGS",
    "FAILURE",
    "UNIT",
)


class ResultShape(enum.Enum):
    """Shape of a value returned by ``analyse``."""

    VECTOR = "vector"
    TABLE = "table"
    COMPOSITE = "composite"


def _is_scalar(value: Any) -> bool:
    return isinstance(value, numbers.Number | np.generic | str) or value is None


def classify_result(value: Any) -> tuple[ResultShape, Any]:
    """Classify an analysis result and normalise vectors to a ``dict``.

    Scalars become ``{"value": x}``; mappings and :class:`pandas.Series` of
    scalars keep their names; flat sequences or arrays of scalars are named
    ``value_0 ... value_k``.  Data frames are tables; everything else is
    composite and returned untouched.
    """

    if isinstance(value, pd.DataFrame):
        return ResultShape.TABLE, value
    if _is_scalar(value):
        return ResultShape.VECTOR, {"value": value}
    if isinstance(value, pd.Series):
        if all(_is_scalar(v) for v in value.to_numpy()):
            return ResultShape.VECTOR, {str(k): v for k, v in value.items()}
        return ResultShape.COMPOSITE, value
    if isinstance(value, Mapping):
        if all(_is_scalar(v) for v in value.values()):
            return ResultShape.VECTOR, {str(k): v for k, v in value.items()}
        return ResultShape.COMPOSITE, value
    if isinstance(value, np.ndarray) and value.ndim == 0:
        return ResultShape.VECTOR, {"value": value.item()}
    if isinstance(value, np.ndarray | Sequence) and not isinstance(value, bytes):
        items = list(value)
        if all(_is_scalar(v) for v in items):
            return ResultShape.VECTOR, {f"value_{i}": v for i, v in enumerate(items)}
    return ResultShape.COMPOSITE, value


def reduce_results(values: Sequence[Any]) -> pd.DataFrame | list[Any]:
    """Combine successful analysis results into the replications accumulator.

    When every result is a named vector the accumulator is a data frame with
    one row per replication; otherwise the raw results are returned as a
    list.
    """

    classified = [classify_result(v) for v in values]
    if classified and all(shape is ResultShape.VECTOR for shape, _ in classified):
        return pd.DataFrame.from_records([payload for _, payload in classified])
    if not classified:
        return pd.DataFrame()
    return list(values)


def normalise_statistics(value: Any) -> dict[str, Any]:
    """Turn the output of ``summarise`` into a flat ``{name: value}`` dict."""

    if value is None:
        return {}
    shape, payload = classify_result(value)
    if shape is not ResultShape.VECTOR:
        raise TypeError(
            "summarise must return a scalar, a flat sequence, or a mapping of "
            f"scalars; got {type(value).__name__}"
        )
    return payload


@dataclass(frozen=True)
class ReplicationRecord:
    """Outcome of one successful generate/analyse trial."""

    replication: int
    seed: SeedState
    data: Any
    result: Any
    attempts: int = 1
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass
class ResultRow:
    """One condition (or one unit of a condition) in the final table.

    ``sim_time`` (``SIM_TIME``) is wall-clock seconds summed over every
    invocation that worked on the row, including time carried in from a
    checkpoint.  The ``max_time`` budget is checked against the same total.
    """

    condition_id: int
    factors: dict[str, Any]
    statistics: dict[str, Any]
    replications: int
    target: int
    sim_time: float
    seed: int
    completed: str
    status: str
    errors: dict[str, int] = field(default_factory=dict)
    warnings: dict[str, int] = field(default_factory=dict)
    failure: str | None = None
    unit: int | None = None
    replication_offset: int = 0
    results: list[Any] | None = None
    seeds: list[SeedState] | None = None
    partial: dict[str, Any] | None = None
    makeup: bool = False

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED

    def to_record(self) -> dict[str, Any]:
        """Flatten into a ``{column: value}`` mapping for the result table."""

        record: dict[str, Any] = {"ID": self.condition_id}
        record.update(self.factors)
        record.update(self.statistics)
        record.update(
            {
                "REPLICATIONS": self.replications,
                "TARGET": self.target,
                "SIM_TIME": self.sim_time,
                "SEED": self.seed,
                "COMPLETED": self.completed,
                "STATUS": self.status,
                "ERRORS": sum(self.errors.values()),
                "WARNINGS": sum(self.warnings.values()),
                "FAILURE": self.failure,
                "UNIT": self.unit,
            }
        )
        return record


@dataclass
class Checkpoint:
    """Progress of one unit, written between replications."""

    condition_id: int
    unit: int | None
    target: int
    consumed: int
    next_state: SeedState
    results: list[Any]
    seeds: list[SeedState]
    errors: dict[str, int]
    warnings: dict[str, int]
    sim_time: float


def results_table(rows: Sequence[ResultRow]) -> pd.DataFrame:
    """Assemble result rows into a table, bookkeeping columns last."""

    frame = pd.DataFrame.from_records([row.to_record() for row in rows])
    if frame.empty:
        return pd.DataFrame(columns=["ID", *BOOKKEEPING_COLUMNS])
    leading = [c for c in frame.columns if c not in BOOKKEEPING_COLUMNS]
    return frame[leading + list(BOOKKEEPING_COLUMNS)]


__all__ = [
    "ResultShape",
    "classify_result",
    "reduce_results",
    "normalise_statistics",
    "ReplicationRecord",
    "ResultRow",
    "Checkpoint",
    "results_table",
    "STATUS_COMPLETED",
    "STATUS_TRUNCATED",
    "STATUS_FAILED",
    "BOOKKEEPING_COLUMNS",
]
