"""Run a simulation over every row (or array unit) of a design.

The driver hands each unit to a :class:`~montegrid.engine.executor.ConditionExecutor`
either in a plain serial loop, through :mod:`joblib` (``control.n_jobs``), or
through any :class:`concurrent.futures.Executor`.  Units share nothing but
their immutable inputs; rows are reassembled in design order whatever order
workers finish in.

With a store, each unit's row is written to its own artifact as soon as it
finishes and units whose artifact already exists are skipped, so an
interrupted run can simply be started again.  An ``array_id`` restricts the
run to selected units, which is how one design is fanned out over many
scheduler array tasks.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable, Sequence
from concurrent.futures import Executor, as_completed
from dataclasses import dataclass
from typing import Any

import pandas as pd

from ..control import SimulationControl
from ..design.design import Design
from ..design.expand import ExpandedDesign, ExpandedUnit
from ..errors import ConfigurationError
from ..storage.store import RESULT, ArtifactKey, ArtifactStore
from .executor import ConditionExecutor, SummariseFn
from .records import ResultRow, results_table
from .runner import AnalyseFn, GenerateFn
from .seeds import SeedStream

logger = logging.getLogger(__name__)


class SimulationDriver:
    """Iterate the condition executor over a design.

    Parameters
    ----------
    generate : callable
        ``(condition, fixed_objects, rng) -> data``.
    analyse : callable
        ``(condition, data, fixed_objects, rng) -> named vector``.
    summarise : callable, DecomposableSummary or None
        ``(condition, results, fixed_objects) -> named vector``.
    control : SimulationControl or mapping, optional
        Run settings.
    fixed_objects : any, optional
        Passed to every user function.
    store : ArtifactStore, optional
        Persistence for unit results and checkpoints.
    executor : concurrent.futures.Executor, optional
        Pool used instead of joblib to run units concurrently.  For a
        process pool the user functions must be importable (module-level)
        and the store must be shared across processes (e.g.
        :class:`~montegrid.storage.store.FileStore`).
    """

    def __init__(
        self,
        generate: GenerateFn,
        analyse: AnalyseFn,
        summarise: SummariseFn | Any | None = None,
        *,
        control: SimulationControl | dict[str, Any] | None = None,
        fixed_objects: Any = None,
        store: ArtifactStore | None = None,
        executor: Executor | None = None,
    ) -> None:
        if not isinstance(control, SimulationControl):
            control = SimulationControl.from_mapping(control)
        self.generate = generate
        self.analyse = analyse
        self.summarise = summarise
        self.control = control
        self.fixed_objects = fixed_objects
        self.store = store
        self.executor = executor
        self.seeds: SeedStream | None = None

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def run(
        self,
        design: Design | ExpandedDesign,
        replications: int | Sequence[int] | None = None,
        *,
        array_id: int | Iterable[int] | None = None,
    ) -> pd.DataFrame:
        """Run the simulation and return the result table.

        Parameters
        ----------
        design : Design or ExpandedDesign
            Conditions to run.  A plain design becomes one unit per row.
        replications : int or sequence of int, optional
            Replications per row; required for a plain :class:`Design`,
            ignored for an :class:`ExpandedDesign` (its units carry targets).
        array_id : int or iterable of int, optional
            Run only these unit indices (1-based).

        Returns
        -------
        pandas.DataFrame
            One row per processed unit in design order; see
            :func:`~montegrid.engine.records.results_table`.  The master
            seed is also stored in ``frame.attrs["seed"]``.
        """

        frame = results_table(self.run_rows(design, replications, array_id=array_id))
        frame.attrs["seed"] = self.seeds.master_seed if self.seeds else self.control.seed
        return frame

    def run_rows(
        self,
        design: Design | ExpandedDesign,
        replications: int | Sequence[int] | None = None,
        *,
        array_id: int | Iterable[int] | None = None,
    ) -> list[ResultRow]:
        """Like :meth:`run` but return the :class:`ResultRow` objects."""

        if isinstance(design, Design):
            if replications is None:
                raise ConfigurationError("replications is required for an unexpanded design")
            design = ExpandedDesign.from_design(design, replications)
        elif not isinstance(design, ExpandedDesign):
            raise ConfigurationError(
                f"design must be a Design or ExpandedDesign, not {type(design).__name__}"
            )
        if array_id is not None and self.control.seed is None:
            raise ConfigurationError(
                "Array runs need an explicit master seed so every task draws from "
                "the same stream"
            )
        if self.control.checkpoint_every and self.store is None:
            raise ConfigurationError("checkpoint_every needs a store")

        units = design.select(array_id)
        self.seeds = SeedStream(self.control.seed)
        pending: list[tuple[int, ExpandedUnit]] = []
        rows: dict[int, ResultRow] = {}
        for position, unit in enumerate(units):
            key = self._result_key(unit)
            if key is not None and self.store.exists(key):
                logger.info("Unit %d already finished; loading %s", unit.unit, key.filename)
                rows[position] = self.store.read(key)
            else:
                pending.append((position, unit))

        logger.info(
            "Running %d of %d units (%d already finished)",
            len(pending),
            len(units),
            len(units) - len(pending),
        )
        for position, row in self._dispatch(pending):
            rows[position] = row
        return [rows[position] for position in range(len(units))]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, pending: list[tuple[int, ExpandedUnit]]) -> Iterable[tuple[int, ResultRow]]:
        total = len(pending)
        job = self._job
        if self.executor is not None:
            futures = {
                self.executor.submit(_execute_unit, job, unit): position
                for position, unit in pending
            }
            for done, future in enumerate(as_completed(futures), start=1):
                self._report(done, total)
                yield futures[future], future.result()
            return

        if self.control.n_jobs == 1 or total <= 1:
            for done, (position, unit) in enumerate(pending, start=1):
                row = _execute_unit(job, unit)
                self._report(done, total)
                yield position, row
            return

        from joblib import Parallel, delayed

        verbose = 5 if self.control.progress else 0
        results = Parallel(
            n_jobs=self.control.n_jobs, backend=self.control.backend, verbose=verbose
        )(delayed(_execute_unit)(job, unit) for _, unit in pending)
        yield from zip((position for position, _ in pending), results)

    def _report(self, done: int, total: int) -> None:
        if self.control.progress and (done % max(1, total // 10) == 0 or done == total):
            print(f"  [{done}/{total}]", file=sys.stderr, flush=True)

    def _result_key(self, unit: ExpandedUnit) -> ArtifactKey | None:
        return _result_key(self.store, self.control, unit)

    @property
    def _job(self) -> _UnitJob:
        # Workers get only these inputs, never the driver (which holds the pool).
        return _UnitJob(
            generate=self.generate,
            analyse=self.analyse,
            summarise=self.summarise,
            control=self.control,
            fixed_objects=self.fixed_objects,
            store=self.store,
            seeds=self.seeds,
        )


@dataclass(frozen=True)
class _UnitJob:
    """Picklable inputs shared by every unit of one run."""

    generate: GenerateFn
    analyse: AnalyseFn
    summarise: Any
    control: SimulationControl
    fixed_objects: Any
    store: ArtifactStore | None
    seeds: SeedStream


def _result_key(
    store: ArtifactStore | None, control: SimulationControl, unit: ExpandedUnit
) -> ArtifactKey | None:
    if store is None:
        return None
    return ArtifactKey(control.filename, unit.unit, RESULT)


def _execute_unit(job: _UnitJob, unit: ExpandedUnit) -> ResultRow:
    """Worker entry point: execute one unit and persist its row.

    Module-level so process pools can pickle it by reference.
    """

    executor = ConditionExecutor(
        job.generate,
        job.analyse,
        job.summarise,
        seeds=job.seeds,
        control=job.control,
        fixed_objects=job.fixed_objects,
        store=job.store,
    )
    row = executor.execute(
        unit.condition_id,
        unit.factors,
        unit.replications,
        replication_offset=unit.replication_offset,
        unit=unit.unit,
    )
    row.makeup = unit.makeup
    key = _result_key(job.store, job.control, unit)
    if key is not None:
        job.store.write(key, row)
        job.store.delete(key.checkpoint())
    return row


def run_simulation(
    design: Design | ExpandedDesign,
    replications: int | Sequence[int] | None,
    generate: GenerateFn,
    analyse: AnalyseFn,
    summarise: SummariseFn | Any | None = None,
    *,
    control: SimulationControl | dict[str, Any] | None = None,
    fixed_objects: Any = None,
    store: ArtifactStore | None = None,
    executor: Executor | None = None,
    array_id: int | Iterable[int] | None = None,
) -> pd.DataFrame:
    """Functional front end to :class:`SimulationDriver`.

    Examples
    --------
    >>> from montegrid import Design, MomentSummary
    >>> design = Design.grid(N=[10, 20])
    >>> def generate(condition, fixed_objects, rng):
    ...     return rng.normal(10.0, 5.0, size=condition["N"])
    >>> def analyse(condition, data, fixed_objects, rng):
    ...     return {"mean": data.mean()}
    >>> table = run_simulation(design, 20, generate, analyse, MomentSummary(),
    ...                        control={"seed": 1})
    >>> table["REPLICATIONS"].tolist()
    [20, 20]
    """

    driver = SimulationDriver(
        generate,
        analyse,
        summarise,
        control=control,
        fixed_objects=fixed_objects,
        store=store,
        executor=executor,
    )
    return driver.run(design, replications, array_id=array_id)


__all__ = ["SimulationDriver", "run_simulation"]
