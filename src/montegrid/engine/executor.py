"""Run all replications of one condition and summarise them into a row."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Mapping
from typing import Any

import pandas as pd

from ..control import SimulationControl
from ..errors import ConfigurationError, FatalError, ReplicationFailed
from ..storage.store import CHECKPOINT, ArtifactKey, ArtifactStore
from ..summary import DecomposableSummary
from ..utils.timing import Stopwatch, utc_timestamp
from .records import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_TRUNCATED,
    Checkpoint,
    ResultRow,
    normalise_statistics,
    reduce_results,
)
from .runner import AnalyseFn, GenerateFn, ReplicationRunner
from .seeds import SeedState, SeedStream

logger = logging.getLogger(__name__)

SummariseFn = Callable[[Any, Any, Any], Any]


class ConditionExecutor:
    """Drive the replication loop for a single condition or unit.

    Parameters
    ----------
    generate, analyse : callable
        User functions, see :class:`~montegrid.engine.runner.ReplicationRunner`.
    summarise : callable, DecomposableSummary or None
        Reduces the replications accumulator to a named vector.  ``None``
        keeps the raw results and reports no statistics.
    seeds : SeedStream
        Source of per-replication seed states.
    control : SimulationControl, optional
        Retry, budget, checkpoint and retention settings.
    fixed_objects : any, optional
        Passed unchanged to every user function.
    store : ArtifactStore, optional
        Where checkpoints are written when ``control.checkpoint_every > 0``.
    """

    def __init__(
        self,
        generate: GenerateFn,
        analyse: AnalyseFn,
        summarise: SummariseFn | DecomposableSummary | None,
        *,
        seeds: SeedStream,
        control: SimulationControl | None = None,
        fixed_objects: Any = None,
        store: ArtifactStore | None = None,
    ) -> None:
        self.generate = generate
        self.analyse = analyse
        self.summarise = summarise
        self.seeds = seeds
        self.control = control or SimulationControl()
        self.fixed_objects = fixed_objects
        self.store = store
        self.runner = ReplicationRunner(
            self.control.max_tries, warnings_as_errors=self.control.warnings_as_errors
        )

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def _checkpoint_key(self, unit: int | None) -> ArtifactKey | None:
        if self.store is None or unit is None or self.control.checkpoint_every <= 0:
            return None
        return ArtifactKey(self.control.filename, unit, CHECKPOINT)

    def _resume(
        self, key: ArtifactKey | None, condition_id: int, target: int
    ) -> Checkpoint | None:
        if key is None or not self.store.exists(key):
            return None
        checkpoint: Checkpoint = self.store.read(key)
        if checkpoint.condition_id != condition_id or checkpoint.target != target:
            raise ConfigurationError(
                f"Checkpoint {key.filename} belongs to condition "
                f"{checkpoint.condition_id} with target {checkpoint.target}, not "
                f"condition {condition_id} with target {target}"
            )
        if checkpoint.next_state.entropy != self.seeds.master_seed:
            raise ConfigurationError(
                f"Checkpoint {key.filename} was written with a different master seed"
            )
        logger.info(
            "Resuming condition %d from checkpoint at replication %d/%d",
            condition_id,
            checkpoint.consumed,
            target,
        )
        return checkpoint

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(
        self,
        condition_id: int,
        factors: Mapping[str, Any],
        target: int,
        *,
        replication_offset: int = 0,
        unit: int | None = None,
    ) -> ResultRow:
        """Run ``target`` replications of one condition.

        Replications ``replication_offset`` to ``replication_offset + target
        - 1`` are executed in order.  The wall-clock budget is polled after
        each replication, so a replication in flight always completes.  The
        returned row has status ``completed``, ``truncated`` (budget
        expired) or ``failed`` (no successful replication, or ``summarise``
        raised); row-level failures never raise.
        """

        if target < 1:
            raise ConfigurationError(f"Condition {condition_id}: target must be positive")
        condition = pd.Series({"ID": condition_id, **factors}, name=condition_id, dtype=object)
        key = self._checkpoint_key(unit)
        checkpoint = self._resume(key, condition_id, target)

        if checkpoint is None:
            state = self.seeds.substream(condition_id, replication_offset)
            consumed = 0
            results: list[Any] = []
            used_seeds: list[SeedState] = []
            errors: Counter[str] = Counter()
            caught: Counter[str] = Counter()
            carried = 0.0
        else:
            state = checkpoint.next_state
            consumed = checkpoint.consumed
            results = list(checkpoint.results)
            used_seeds = list(checkpoint.seeds)
            errors = Counter(checkpoint.errors)
            caught = Counter(checkpoint.warnings)
            carried = checkpoint.sim_time

        clock = Stopwatch(self.control.max_time, offset=carried)
        truncated = False
        logger.info("Condition %d: running %d replications", condition_id, target - consumed)

        while consumed < target:
            try:
                record = self.runner.run(
                    self.generate, self.analyse, state, condition, self.fixed_objects
                )
            except ReplicationFailed as exc:
                errors.update(exc.errors)
                logger.debug("Condition %d: %s", condition_id, exc)
            else:
                results.append(record.result)
                used_seeds.append(record.seed)
                errors.update(record.errors)
                caught.update(record.warnings)
            consumed += 1
            state = SeedStream.advance(state)

            if consumed < target and clock.expired():
                truncated = True
                logger.warning(
                    "Condition %d: time budget of %.1fs expired after %d/%d replications",
                    condition_id,
                    self.control.max_time,
                    consumed,
                    target,
                )
                break
            if key is not None and consumed < target and consumed % self.control.checkpoint_every == 0:
                self.store.write(
                    key,
                    Checkpoint(
                        condition_id=condition_id,
                        unit=unit,
                        target=target,
                        consumed=consumed,
                        next_state=state,
                        results=results,
                        seeds=used_seeds,
                        errors=dict(errors),
                        warnings=dict(caught),
                        sim_time=clock.total,
                    ),
                )
                logger.debug("Condition %d: checkpoint at %d/%d", condition_id, consumed, target)

        row = ResultRow(
            condition_id=condition_id,
            factors=dict(factors),
            statistics={},
            replications=len(results),
            target=target,
            sim_time=0.0,
            seed=self.seeds.master_seed,
            completed="",
            status=STATUS_TRUNCATED if truncated else STATUS_COMPLETED,
            errors=dict(errors),
            warnings=dict(caught),
            unit=unit,
            replication_offset=replication_offset,
        )
        if self.control.store_results or self.summarise is None:
            row.results = list(results)
            row.seeds = list(used_seeds)

        if not results:
            row.status = STATUS_FAILED
            row.failure = f"No successful replications out of {consumed} attempted"
        else:
            self._summarise(row, condition, results)

        row.sim_time = clock.total
        row.completed = utc_timestamp()
        if row.failed:
            logger.warning("Condition %d failed: %s", condition_id, row.failure)
        else:
            logger.info(
                "Condition %d %s with %d/%d replications in %.2fs",
                condition_id,
                row.status,
                row.replications,
                target,
                row.sim_time,
            )
        return row

    def _summarise(self, row: ResultRow, condition: pd.Series, results: list[Any]) -> None:
        accumulator = reduce_results(results)
        summarise = self.summarise
        try:
            if summarise is None:
                return
            if isinstance(summarise, DecomposableSummary):
                partial = summarise.partial(condition, accumulator, self.fixed_objects)
                row.partial = dict(partial)
                stats = summarise.finalize(condition, partial, self.fixed_objects)
            else:
                stats = summarise(condition, accumulator, self.fixed_objects)
            row.statistics = normalise_statistics(stats)
        except FatalError:
            raise
        except Exception as exc:  # noqa: BLE001 - recorded as a row failure
            row.status = STATUS_FAILED
            row.statistics = {}
            row.partial = None
            row.failure = f"summarise raised {type(exc).__name__}: {exc}"


__all__ = ["ConditionExecutor", "SummariseFn"]
