"""Reassemble unit results written by array runs.

Units sharing a ``ConditionID`` are merged into one row: replication counts,
run times and error tallies add up, and statistics are rebuilt either from
additive partial statistics (decomposable summarisers) or from retained raw
results.  Anything else would mean averaging averages, which is refused with
:class:`~montegrid.errors.NonDecomposableSummaryError`.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

import pandas as pd

from ..design.expand import ExpandedDesign
from ..engine.records import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_TRUNCATED,
    ResultRow,
    normalise_statistics,
    reduce_results,
    results_table,
)
from ..errors import ConfigurationError, NonDecomposableSummaryError
from ..summary import DecomposableSummary, combine_partials
from .store import RESULT, ArtifactKey, ArtifactStore

logger = logging.getLogger(__name__)


class ResultCollector:
    """Read, check and merge unit result artifacts.

    Parameters
    ----------
    store : ArtifactStore
        Where the units wrote their rows.
    basename : str, default ``"simulation"``
        Artifact basename (``control.filename`` of the run).
    summarise : callable or DecomposableSummary, optional
        The summariser used for the run; needed whenever a condition spans
        more than one unit.
    fixed_objects : any, optional
        Forwarded to ``summarise`` when statistics are recomputed.
    """

    def __init__(
        self,
        store: ArtifactStore,
        basename: str = "simulation",
        *,
        summarise: Any = None,
        fixed_objects: Any = None,
    ) -> None:
        self.store = store
        self.basename = basename
        self.summarise = summarise
        self.fixed_objects = fixed_objects

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def keys(self, units: Iterable[int] | None = None) -> list[ArtifactKey]:
        if units is None:
            return self.store.list(self.basename, RESULT)
        keys = [ArtifactKey(self.basename, int(u), RESULT) for u in units]
        absent = [k.filename for k in keys if not self.store.exists(k)]
        if absent:
            raise FileNotFoundError(f"Missing unit results: {absent}")
        return keys

    def unit_rows(self, units: Iterable[int] | None = None) -> list[ResultRow]:
        """Rows exactly as the units wrote them."""

        return [self.store.read(key) for key in self.keys(units)]

    def missing_units(self, design: ExpandedDesign) -> list[int]:
        """Unit indices of ``design`` without a result artifact."""

        return [
            u.unit
            for u in design
            if not self.store.exists(ArtifactKey(self.basename, u.unit, RESULT))
        ]

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def rows(self, units: Iterable[int] | None = None) -> list[ResultRow]:
        """One merged row per condition, ordered by ``ConditionID``."""

        groups: dict[int, list[ResultRow]] = {}
        for row in self.unit_rows(units):
            groups.setdefault(row.condition_id, []).append(row)
        if not groups:
            logger.warning("No results found for basename %r", self.basename)
        return [self._merge(cid, groups[cid]) for cid in sorted(groups)]

    def collect(self, units: Iterable[int] | None = None) -> pd.DataFrame:
        """Merged result table, equivalent to a single direct run."""

        frame = results_table(self.rows(units))
        frame.attrs["seed"] = int(frame["SEED"].iloc[0]) if len(frame) else None
        return frame

    def check_completeness(
        self,
        targets: ExpandedDesign | Mapping[int, int],
        units: Iterable[int] | None = None,
    ) -> pd.DataFrame:
        """Replication shortfall per condition.

        Parameters
        ----------
        targets : ExpandedDesign or mapping
            The expanded design that was submitted, or total target
            replications by ``ConditionID``.

        Returns
        -------
        pandas.DataFrame
            Columns ``ID``, ``TARGET``, ``REPLICATIONS`` and ``MISSING``
            (``TARGET - REPLICATIONS``, never negative), one row per target
            condition.
        """

        wanted = targets.targets() if isinstance(targets, ExpandedDesign) else dict(targets)
        collected: Counter[int] = Counter()
        for row in self.unit_rows(units):
            collected[row.condition_id] += row.replications
        records = [
            {
                "ID": cid,
                "TARGET": int(target),
                "REPLICATIONS": int(collected.get(cid, 0)),
                "MISSING": max(int(target) - int(collected.get(cid, 0)), 0),
            }
            for cid, target in sorted(wanted.items())
        ]
        unexpected = sorted(set(collected) - set(wanted))
        if unexpected:
            logger.warning("Collected results for conditions without a target: %s", unexpected)
        return pd.DataFrame.from_records(
            records, columns=["ID", "TARGET", "REPLICATIONS", "MISSING"]
        )

    def _merge(self, condition_id: int, rows: list[ResultRow]) -> ResultRow:
        rows = sorted(rows, key=lambda r: r.replication_offset)
        if len(rows) == 1:
            return rows[0]

        seeds = {r.seed for r in rows}
        if len(seeds) > 1:
            raise ConfigurationError(
                f"Condition {condition_id} was run with different master seeds {sorted(seeds)}"
            )
        errors: Counter[str] = Counter()
        caught: Counter[str] = Counter()
        for r in rows:
            errors.update(r.errors)
            caught.update(r.warnings)
        contributing = [r for r in rows if r.replications > 0]
        failures = [f"unit {r.unit}: {r.failure}" for r in rows if r.failure]

        merged = ResultRow(
            condition_id=condition_id,
            factors=dict(rows[0].factors),
            statistics={},
            replications=sum(r.replications for r in rows),
            target=sum(r.target for r in rows if not r.makeup)
            or sum(r.target for r in rows),
            sim_time=sum(r.sim_time for r in rows),
            seed=rows[0].seed,
            completed=max(r.completed for r in rows),
            status=STATUS_COMPLETED,
            errors=dict(errors),
            warnings=dict(caught),
            failure="; ".join(failures) or None,
            unit=None,
            replication_offset=rows[0].replication_offset,
        )
        if all(r.results is not None for r in contributing):
            merged.results = [res for r in contributing for res in r.results]
            merged.seeds = [s for r in contributing for s in (r.seeds or [])]

        if not contributing:
            merged.status = STATUS_FAILED
            return merged
        if any(r.status == STATUS_TRUNCATED for r in rows):
            merged.status = STATUS_TRUNCATED
        merged.statistics, merged.partial = self._statistics(merged, contributing)
        return merged

    def _statistics(
        self, merged: ResultRow, contributing: list[ResultRow]
    ) -> tuple[dict[str, Any], dict[str, Any] | None]:
        summarise = self.summarise
        condition = pd.Series(
            {"ID": merged.condition_id, **merged.factors}, name=merged.condition_id, dtype=object
        )
        if summarise is None:
            if any(r.statistics for r in contributing):
                raise NonDecomposableSummaryError(
                    merged.condition_id,
                    "pass the summariser used for the run to recombine unit statistics",
                )
            return {}, None

        if isinstance(summarise, DecomposableSummary) and all(
            r.partial is not None for r in contributing
        ):
            partial = combine_partials([r.partial for r in contributing])
            return normalise_statistics(
                summarise.finalize(condition, partial, self.fixed_objects)
            ), partial

        if merged.results is None:
            raise NonDecomposableSummaryError(
                merged.condition_id,
                "units kept neither partial statistics nor raw results "
                "(use a decomposable summariser or store_results=True)",
            )
        accumulator = reduce_results(merged.results)
        if isinstance(summarise, DecomposableSummary):
            partial = summarise.partial(condition, accumulator, self.fixed_objects)
            return normalise_statistics(
                summarise.finalize(condition, partial, self.fixed_objects)
            ), dict(partial)
        return normalise_statistics(summarise(condition, accumulator, self.fixed_objects)), None


def collect(
    store: ArtifactStore,
    basename: str = "simulation",
    *,
    summarise: Any = None,
    fixed_objects: Any = None,
    units: Iterable[int] | None = None,
) -> pd.DataFrame:
    """Shorthand for ``ResultCollector(...).collect(units)``."""

    collector = ResultCollector(
        store, basename, summarise=summarise, fixed_objects=fixed_objects
    )
    return collector.collect(units)


def check_completeness(
    store: ArtifactStore,
    targets: ExpandedDesign | Mapping[int, int],
    basename: str = "simulation",
) -> pd.DataFrame:
    """Shorthand for ``ResultCollector(...).check_completeness(targets)``."""

    return ResultCollector(store, basename).check_completeness(targets)


__all__ = ["ResultCollector", "collect", "check_completeness"]
