"""Tests for the simulation driver."""

from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor

import pandas as pd
import pytest
from montegrid import (
    ConfigurationError,
    Design,
    FileStore,
    MemoryStore,
    MomentSummary,
    SimulationControl,
    SimulationDriver,
    run_simulation,
)
from montegrid.engine.records import BOOKKEEPING_COLUMNS

from ..utils.simulations import (
    CountingGenerate,
    delayed_generate,
    failing_for_n10,
    mean_analyse,
    mean_summarise,
    normal_generate,
)

VOLATILE = ["SIM_TIME", "COMPLETED"]


def _stable(frame: pd.DataFrame) -> pd.DataFrame:
    return frame.drop(columns=VOLATILE).sort_values("ID").reset_index(drop=True)


class TestSimulationDriver:
    """SimulationDriver.run() over whole designs."""

    def test_table_layout(self) -> None:
        design = Design.grid(N=[5, 10, 15])
        table = run_simulation(
            design, 12, normal_generate, mean_analyse, mean_summarise, control={"seed": 1}
        )
        assert table["ID"].tolist() == [1, 2, 3]
        assert table["N"].tolist() == [5, 10, 15]
        assert list(table.columns[-len(BOOKKEEPING_COLUMNS):]) == list(BOOKKEEPING_COLUMNS)
        assert (table["REPLICATIONS"] == 12).all()
        assert (table["STATUS"] == "completed").all()
        assert table.attrs["seed"] == 1

    def test_per_row_replications(self) -> None:
        design = Design.grid(N=[5, 10])
        table = run_simulation(
            design, [3, 7], normal_generate, mean_analyse, mean_summarise, control={"seed": 1}
        )
        assert table["REPLICATIONS"].tolist() == [3, 7]

    def test_out_of_order_executor_matches_serial(self) -> None:
        design = Design.grid(N=[5, 10, 15, 20, 25])
        control = SimulationControl(seed=17)
        serial = SimulationDriver(
            delayed_generate, mean_analyse, mean_summarise, control=control
        ).run(design, 10)
        with ThreadPoolExecutor(max_workers=5) as pool:
            concurrent = SimulationDriver(
                delayed_generate, mean_analyse, mean_summarise, control=control, executor=pool
            ).run(design, 10)
        assert concurrent["ID"].tolist() == [1, 2, 3, 4, 5]
        pd.testing.assert_frame_equal(_stable(serial), _stable(concurrent))

    def test_process_pool_matches_serial(self, tmp_path) -> None:
        design = Design.grid(N=[5, 10, 15])
        control = SimulationControl(seed=1)
        serial = SimulationDriver(
            normal_generate, mean_analyse, mean_summarise, control=control
        ).run(design, 4)
        with ProcessPoolExecutor(max_workers=2) as pool:
            pooled = SimulationDriver(
                normal_generate,
                mean_analyse,
                mean_summarise,
                control=control,
                store=FileStore(tmp_path),
                executor=pool,
            ).run(design, 4)
        pd.testing.assert_frame_equal(_stable(serial), _stable(pooled))
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "simulation-1.pkl",
            "simulation-2.pkl",
            "simulation-3.pkl",
        ]

    def test_joblib_matches_serial(self) -> None:
        design = Design.grid(N=[5, 10, 15])
        serial = run_simulation(
            design, 8, normal_generate, mean_analyse, MomentSummary(), control={"seed": 3}
        )
        parallel = run_simulation(
            design,
            8,
            normal_generate,
            mean_analyse,
            MomentSummary(),
            control={"seed": 3, "n_jobs": 2, "backend": "threading"},
        )
        pd.testing.assert_frame_equal(_stable(serial), _stable(parallel))

    def test_failed_row_does_not_stop_others(self) -> None:
        design = Design.grid(N=[5, 10, 15])
        table = run_simulation(
            design,
            4,
            failing_for_n10,
            mean_analyse,
            mean_summarise,
            control={"seed": 1, "max_tries": 2},
        )
        assert table["STATUS"].tolist() == ["completed", "failed", "completed"]
        assert table.loc[1, "REPLICATIONS"] == 0
        assert table.loc[1, "ERRORS"] == 8
        assert "No successful replications" in table.loc[1, "FAILURE"]
        assert pd.isna(table.loc[1, "mu"])

    def test_array_id_selects_units(self) -> None:
        design = Design.grid(N=[5, 10, 15])
        table = run_simulation(
            design, 4, normal_generate, mean_analyse, mean_summarise,
            control={"seed": 9}, array_id=[3, 1],
        )
        assert table["ID"].tolist() == [1, 3]
        assert table["UNIT"].tolist() == [1, 3]

    def test_array_run_requires_seed(self) -> None:
        design = Design.grid(N=[5, 10])
        with pytest.raises(ConfigurationError, match="master seed"):
            run_simulation(design, 2, normal_generate, mean_analyse, array_id=1)

    def test_array_units_match_full_run(self) -> None:
        design = Design.grid(N=[5, 10, 15])
        control = {"seed": 21}
        full = run_simulation(design, 6, normal_generate, mean_analyse, mean_summarise, control=control)
        second = run_simulation(
            design, 6, normal_generate, mean_analyse, mean_summarise, control=control, array_id=2
        )
        assert second.loc[0, "mu"] == full.loc[1, "mu"]

    def test_finished_units_are_skipped(self) -> None:
        design = Design.grid(N=[5, 10, 15])
        store = MemoryStore()
        control = SimulationControl(seed=4)
        SimulationDriver(
            normal_generate, mean_analyse, mean_summarise, control=control, store=store
        ).run(design, 5, array_id=1)

        counting = CountingGenerate()
        table = SimulationDriver(
            counting, mean_analyse, mean_summarise, control=control, store=store
        ).run(design, 5)
        assert counting.calls == 10
        assert table["ID"].tolist() == [1, 2, 3]
        assert len(store.list("simulation")) == 3

    def test_generated_seed_reported(self) -> None:
        design = Design.grid(N=[5])
        with pytest.warns(UserWarning, match="generated seed"):
            table = run_simulation(design, 2, normal_generate, mean_analyse, mean_summarise)
        assert table.attrs["seed"] == table.loc[0, "SEED"]

    def test_plain_design_needs_replications(self) -> None:
        driver = SimulationDriver(normal_generate, mean_analyse, control={"seed": 1})
        with pytest.raises(ConfigurationError):
            driver.run(Design.grid(N=[5]))

    def test_unknown_control_key(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown control settings"):
            SimulationDriver(normal_generate, mean_analyse, control={"seeed": 1})

    def test_checkpointing_needs_store(self) -> None:
        driver = SimulationDriver(
            normal_generate, mean_analyse, control={"seed": 1, "checkpoint_every": 2}
        )
        with pytest.raises(ConfigurationError, match="store"):
            driver.run(Design.grid(N=[5]), 4)

    def test_checkpoint_removed_after_unit_finishes(self) -> None:
        store = MemoryStore()
        SimulationDriver(
            normal_generate,
            mean_analyse,
            mean_summarise,
            control={"seed": 1, "checkpoint_every": 2},
            store=store,
        ).run(Design.grid(N=[5, 6]), 5)
        assert store.list("simulation", "checkpoint") == []
        assert len(store.list("simulation")) == 2
