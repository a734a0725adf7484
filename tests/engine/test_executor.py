"""Tests for the per-condition replication loop."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from montegrid import ConditionExecutor, ConfigurationError, MemoryStore, SeedStream, SimulationControl
from montegrid.engine.records import Checkpoint
from montegrid.storage.store import CHECKPOINT, ArtifactKey

from ..utils.simulations import (
    CountingGenerate,
    Killed,
    always_redo,
    identity_analyse,
    mean_analyse,
    mean_summarise,
    normal_generate,
    redo_small_draws,
    sleepy_generate,
    uniform_generate,
)

FACTORS = {"N": 25}


def _executor(generate=normal_generate, analyse=mean_analyse, summarise=mean_summarise, **control):
    control.setdefault("seed", 42)
    settings = SimulationControl(**control)
    return ConditionExecutor(
        generate, analyse, summarise, seeds=SeedStream(settings.seed), control=settings
    )


class TestConditionExecutor:
    """ConditionExecutor.execute() outcomes."""

    def test_completed_row(self) -> None:
        row = _executor().execute(1, FACTORS, 50)
        assert row.status == "completed"
        assert row.replications == row.target == 50
        assert row.seed == 42
        assert set(row.statistics) == {"mu", "SE", "median_mu"}
        assert row.sim_time > 0
        assert row.completed.endswith("+00:00")
        assert row.results is None

    def test_bit_identical_reruns(self) -> None:
        first = _executor(store_results=True).execute(3, FACTORS, 40)
        second = _executor(store_results=True).execute(3, FACTORS, 40)
        assert first.statistics == second.statistics
        assert first.results == second.results
        assert first.seeds == second.seeds

    def test_offset_selects_later_replications(self) -> None:
        whole = _executor(store_results=True).execute(1, FACTORS, 30)
        tail = _executor(store_results=True).execute(1, FACTORS, 10, replication_offset=20)
        assert tail.results == whole.results[20:]

    def test_retry_exhaustion_records_missing(self) -> None:
        row = _executor(uniform_generate, redo_small_draws, None, max_tries=1).execute(
            1, {}, 200
        )
        assert row.status == "completed"
        assert 0 < row.replications < 200
        assert sum(row.errors.values()) == 200 - row.replications
        assert len(row.results) == row.replications

    def test_no_successes_fails_row(self) -> None:
        row = _executor(uniform_generate, always_redo, mean_summarise, max_tries=3).execute(
            1, {}, 5
        )
        assert row.status == "failed"
        assert row.replications == 0
        assert "No successful replications" in row.failure
        assert row.errors == {"RedoRequested: never good enough": 15}
        assert row.statistics == {}

    def test_summarise_error_fails_row(self) -> None:
        def broken(condition, results, fixed_objects):
            raise KeyError("missing column")

        row = _executor(summarise=broken).execute(1, FACTORS, 5)
        assert row.status == "failed"
        assert row.replications == 5
        assert row.failure.startswith("summarise raised KeyError")

    def test_budget_truncation(self) -> None:
        delay = 0.02
        budget = 0.1
        settings = SimulationControl(seed=1, max_time=budget)
        executor = ConditionExecutor(
            sleepy_generate,
            identity_analyse,
            None,
            seeds=SeedStream(1),
            control=settings,
            fixed_objects={"delay": delay},
        )
        row = executor.execute(1, {}, 1000)
        assert row.status == "truncated"
        assert 0 < row.replications < 1000
        # Budget plus one replication, with slack for scheduling noise
        assert row.sim_time <= budget + delay + 0.25

    def test_condition_passed_to_user_functions(self) -> None:
        seen = []

        def generate(condition, fixed_objects, rng):
            seen.append(dict(condition))
            return 0.0

        _executor(generate, identity_analyse, None).execute(7, {"N": 3, "dist": "t"}, 1)
        assert seen == [{"ID": 7, "N": 3, "dist": "t"}]

    def test_table_results_stay_as_list(self) -> None:
        def analyse(condition, data, fixed_objects, rng):
            return pd.DataFrame({"x": [data, data]})

        received = []

        def summarise(condition, results, fixed_objects):
            received.append(results)
            return {"n": len(results)}

        row = _executor(uniform_generate, analyse, summarise).execute(1, {}, 4)
        assert row.statistics == {"n": 4}
        assert isinstance(received[0], list)
        assert all(isinstance(r, pd.DataFrame) for r in received[0])

    def test_invalid_target(self) -> None:
        with pytest.raises(ConfigurationError):
            _executor().execute(1, FACTORS, 0)


class TestCheckpointing:
    """Resume after interruption without repeating or skipping replications."""

    @staticmethod
    def _checkpointed(store: MemoryStore, generate) -> ConditionExecutor:
        settings = SimulationControl(seed=5, checkpoint_every=5, store_results=True)
        return ConditionExecutor(
            generate,
            mean_analyse,
            mean_summarise,
            seeds=SeedStream(5),
            control=settings,
            store=store,
        )

    def test_resume_matches_uninterrupted_run(self) -> None:
        reference = _executor(seed=5, store_results=True).execute(2, FACTORS, 20, unit=1)

        store = MemoryStore()
        killer = CountingGenerate(fail_on_call=13)
        with pytest.raises(Killed):
            self._checkpointed(store, killer).execute(2, FACTORS, 20, unit=1)
        key = ArtifactKey("simulation", 1, CHECKPOINT)
        assert store.exists(key)
        assert store.read(key).consumed == 10

        resumed_generate = CountingGenerate()
        row = self._checkpointed(store, resumed_generate).execute(2, FACTORS, 20, unit=1)
        assert resumed_generate.calls == 10
        assert row.replications == 20
        assert row.results == reference.results
        assert row.seeds == reference.seeds
        np.testing.assert_allclose(row.statistics["mu"], reference.statistics["mu"])

    def test_checkpoint_for_other_condition_rejected(self) -> None:
        store = MemoryStore()
        with pytest.raises(Killed):
            self._checkpointed(store, CountingGenerate(fail_on_call=7)).execute(
                2, FACTORS, 20, unit=1
            )
        with pytest.raises(ConfigurationError, match="belongs to condition"):
            self._checkpointed(store, normal_generate).execute(3, FACTORS, 20, unit=1)

    def test_budget_counts_time_before_resume(self) -> None:
        state = SeedStream(1).substream(1, 0)
        earlier = [SeedStream.advance(state)]
        store = MemoryStore()
        key = ArtifactKey("simulation", 1, CHECKPOINT)
        store.write(
            key,
            Checkpoint(
                condition_id=1,
                unit=1,
                target=50,
                consumed=2,
                next_state=SeedStream.advance(earlier[0]),
                results=[0.5, 0.5],
                seeds=[state, earlier[0]],
                errors={},
                warnings={},
                sim_time=1.0,
            ),
        )
        settings = SimulationControl(seed=1, max_time=0.1, checkpoint_every=5)
        executor = ConditionExecutor(
            sleepy_generate,
            identity_analyse,
            None,
            seeds=SeedStream(1),
            control=settings,
            fixed_objects={"delay": 0.01},
            store=store,
        )
        row = executor.execute(1, {}, 50, unit=1)
        assert row.status == "truncated"
        assert row.replications == 3
        assert row.sim_time >= 1.0

    def test_no_checkpoint_without_unit(self) -> None:
        store = MemoryStore()
        self._checkpointed(store, normal_generate).execute(2, FACTORS, 20)
        assert len(store) == 0
