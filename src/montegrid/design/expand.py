"""Split design rows into independently schedulable array units.

A condition with a large replication target can be repeated across several
units, each running a slice of the replications.  Units of one condition
cover disjoint, consecutive replication index ranges, and seeds are derived
from ``(condition, replication index)``; running all units and collecting
them therefore reproduces a single direct run draw for draw.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np
import pandas as pd

from ..errors import ConfigurationError, NamespaceMismatchError
from .design import ID_COLUMN, Design


@dataclass(frozen=True)
class ExpandedUnit:
    """One schedulable slice of work.

    Attributes
    ----------
    condition_id : int
        ``ConditionID`` of the design row the unit belongs to.
    factors : dict
        Factor values of that row.
    replications : int
        Replications this unit must run.
    replication_offset : int
        Index of the unit's first replication within its condition.
    unit : int
        1-based array index; names the unit's result artifact.
    makeup : bool
        Unit was added by :func:`concatenate` to cover a shortfall of its
        condition; it does not raise the condition's target.
    """

    condition_id: int
    factors: dict[str, Any] = field(hash=False)
    replications: int
    replication_offset: int
    unit: int
    makeup: bool = False

    @property
    def replication_range(self) -> range:
        return range(self.replication_offset, self.replication_offset + self.replications)


class ExpandedDesign:
    """Immutable ordered collection of :class:`ExpandedUnit`."""

    def __init__(self, units: Iterable[ExpandedUnit], namespace: str) -> None:
        self._units = tuple(units)
        self.namespace = namespace
        indices = [u.unit for u in self._units]
        if len(set(indices)) != len(indices):
            raise ConfigurationError("Unit indices must be unique")
        by_condition: dict[int, list[range]] = {}
        for u in self._units:
            if u.replications < 1:
                raise ConfigurationError(f"Unit {u.unit} has no replications")
            for other in by_condition.get(u.condition_id, []):
                if max(other.start, u.replication_range.start) < min(
                    other.stop, u.replication_range.stop
                ):
                    raise ConfigurationError(
                        f"Unit {u.unit} overlaps another unit of condition "
                        f"{u.condition_id}"
                    )
            by_condition.setdefault(u.condition_id, []).append(u.replication_range)

    @classmethod
    def from_design(cls, design: Design, replications: int | Sequence[int]) -> ExpandedDesign:
        """One unit per design row, numbered ``1..n`` in design order."""

        targets = _per_row(replications, len(design), "replications")
        units = [
            ExpandedUnit(
                condition_id=condition_id,
                factors=factors,
                replications=targets[position],
                replication_offset=0,
                unit=position + 1,
            )
            for position, (condition_id, factors) in enumerate(design.rows())
        ]
        return cls(units, design.namespace)

    @property
    def units(self) -> tuple[ExpandedUnit, ...]:
        return self._units

    @property
    def condition_ids(self) -> list[int]:
        """Distinct condition IDs in order of first appearance."""

        return list(dict.fromkeys(u.condition_id for u in self._units))

    def targets(self) -> dict[int, int]:
        """Total replications requested per condition.

        Make-up units only replace missing replications, so they are not
        counted.
        """

        totals: dict[int, int] = {}
        for u in self._units:
            if u.makeup:
                continue
            totals[u.condition_id] = totals.get(u.condition_id, 0) + u.replications
        return totals

    def next_offsets(self) -> dict[int, int]:
        """First unused replication index per condition."""

        ends: dict[int, int] = {}
        for u in self._units:
            ends[u.condition_id] = max(ends.get(u.condition_id, 0), u.replication_range.stop)
        return ends

    def unit(self, index: int) -> ExpandedUnit:
        for u in self._units:
            if u.unit == index:
                return u
        raise KeyError(index)

    def select(self, array_id: int | Iterable[int] | None) -> list[ExpandedUnit]:
        """Units picked by an array selector, in design order."""

        if array_id is None:
            return list(self._units)
        wanted = {int(array_id)} if isinstance(array_id, int | np.integer) else {int(i) for i in array_id}
        known = {u.unit for u in self._units}
        unknown = sorted(wanted - known)
        if unknown:
            raise ConfigurationError(f"array_id {unknown} outside units {min(known)}..{max(known)}")
        return [u for u in self._units if u.unit in wanted]

    def to_frame(self) -> pd.DataFrame:
        records = [
            {
                ID_COLUMN: u.condition_id,
                **u.factors,
                "UNIT": u.unit,
                "REPLICATIONS": u.replications,
                "OFFSET": u.replication_offset,
                "MAKEUP": u.makeup,
            }
            for u in self._units
        ]
        return pd.DataFrame.from_records(records)

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[ExpandedUnit]:
        return iter(self._units)

    def __repr__(self) -> str:
        return f"ExpandedDesign({len(self)} units, namespace={self.namespace!r})"


def _per_row(value: int | Sequence[int], n: int, name: str) -> list[int]:
    if isinstance(value, int | np.integer):
        values = [int(value)] * n
    else:
        values = [int(v) for v in value]
        if len(values) != n:
            raise ConfigurationError(f"{name} has {len(values)} entries for {n} design rows")
    if any(v < 1 for v in values):
        raise ConfigurationError(f"{name} must be positive")
    return values


def replication_split(
    total: int, repeat: int, weights: Sequence[float] | None = None
) -> list[int]:
    """Divide ``total`` replications across ``repeat`` units.

    Without ``weights`` the split is as even as possible, with the remainder
    going to the first units.  With ``weights`` (one per unit, e.g. to reflect
    unequal expected run time) shares are proportional, rounded by the
    largest-remainder rule.

    >>> replication_split(10, 3)
    [4, 3, 3]
    >>> replication_split(10, 2, weights=[3, 1])
    [8, 2]
    """

    if repeat < 1:
        raise ConfigurationError("repeat must be positive")
    if total < repeat:
        raise ConfigurationError(f"Cannot split {total} replications across {repeat} units")
    if weights is None:
        base, extra = divmod(total, repeat)
        return [base + 1 if i < extra else base for i in range(repeat)]

    w = np.asarray(weights, dtype=float)
    if w.shape != (repeat,) or np.any(w <= 0) or not np.all(np.isfinite(w)):
        raise ConfigurationError(f"weights must be {repeat} positive finite numbers")
    exact = total * w / w.sum()
    counts = np.floor(exact).astype(int)
    shortfall = total - int(counts.sum())
    order = np.argsort(-(exact - counts), kind="stable")
    counts[order[:shortfall]] += 1
    if np.any(counts < 1):
        raise ConfigurationError("weights leave a unit without replications")
    return [int(c) for c in counts]


def expand(
    design: Design,
    repeat: int | Sequence[int],
    replications: int | Sequence[int],
    *,
    weights: Sequence[float] | Sequence[Sequence[float]] | None = None,
) -> ExpandedDesign:
    """Repeat each design row into array units.

    Parameters
    ----------
    design : Design
        Base design (or a subset of one).
    repeat : int or sequence of int
        Units per row, uniform or one count per row.
    replications : int or sequence of int
        Total replications per row, split across its units by
        :func:`replication_split`.
    weights : sequence, optional
        Per-unit weights: one sequence shared by every row (uniform
        ``repeat``) or one sequence per row.

    Returns
    -------
    ExpandedDesign
        Units numbered ``1..sum(repeat)`` in row order; all units of a row
        keep the row's ``ConditionID``.
    """

    n = len(design)
    repeats = _per_row(repeat, n, "repeat")
    totals = _per_row(replications, n, "replications")
    if weights is None:
        row_weights: list[Sequence[float] | None] = [None] * n
    elif len(weights) and np.ndim(weights[0]) == 0:
        row_weights = [weights] * n  # type: ignore[list-item]
    else:
        row_weights = list(weights)  # type: ignore[arg-type]
        if len(row_weights) != n:
            raise ConfigurationError(f"weights has {len(row_weights)} entries for {n} rows")

    units: list[ExpandedUnit] = []
    offsets: dict[int, int] = {}
    for position, (condition_id, factors) in enumerate(design.rows()):
        split = replication_split(totals[position], repeats[position], row_weights[position])
        for count in split:
            offset = offsets.get(condition_id, 0)
            units.append(
                ExpandedUnit(
                    condition_id=condition_id,
                    factors=factors,
                    replications=count,
                    replication_offset=offset,
                    unit=len(units) + 1,
                )
            )
            offsets[condition_id] = offset + count
    return ExpandedDesign(units, design.namespace)


def concatenate(
    first: ExpandedDesign, second: ExpandedDesign, *, preserve_ids: bool = True
) -> ExpandedDesign:
    """Row-bind two expanded designs.

    Units of ``second`` are renumbered to follow ``first``.  With
    ``preserve_ids`` (the make-up submission case) both designs must come from
    the same base design, and ``second``'s replication offsets are shifted
    past the highest offset ``first`` uses for each condition, so no seed is
    reused.  Units of conditions ``first`` already covers are marked
    ``makeup`` and leave the conditions' targets unchanged.  Without
    ``preserve_ids``, ``second``'s conditions get fresh IDs after ``first``'s.

    Raises
    ------
    NamespaceMismatchError
        ``preserve_ids`` was requested for designs built from different base
        designs, or a shared ID carries different factor values.
    """

    next_unit = max((u.unit for u in first), default=0) + 1
    if preserve_ids:
        if first.namespace != second.namespace:
            raise NamespaceMismatchError(
                f"Designs come from different base designs ({first.namespace} vs "
                f"{second.namespace}); pass preserve_ids=False to treat them as distinct"
            )
        known = {u.condition_id: u.factors for u in first}
        for u in second:
            if u.condition_id in known and known[u.condition_id] != u.factors:
                raise NamespaceMismatchError(
                    f"Condition {u.condition_id} has different factor values in the two designs"
                )
        shift = first.next_offsets()
        moved = [
            replace(
                u,
                replication_offset=u.replication_offset + shift.get(u.condition_id, 0),
                unit=next_unit + i,
                makeup=u.makeup or u.condition_id in shift,
            )
            for i, u in enumerate(second)
        ]
        return ExpandedDesign([*first, *moved], first.namespace)

    id_shift = max((u.condition_id for u in first), default=0)
    moved = [
        replace(u, condition_id=u.condition_id + id_shift, unit=next_unit + i)
        for i, u in enumerate(second)
    ]
    namespace = hashlib.sha256(f"{first.namespace}+{second.namespace}".encode()).hexdigest()[:16]
    return ExpandedDesign([*first, *moved], namespace)


__all__ = [
    "ExpandedUnit",
    "ExpandedDesign",
    "expand",
    "replication_split",
    "concatenate",
]
