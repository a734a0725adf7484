"""Sampling distribution of the mean (tangled from documentation)."""

from __future__ import annotations

import numpy as np
from montegrid import Design, RedoRequested, bias, rmse, run_simulation

design = Design.grid(N=[10, 20, 30], sd=[1.0, 5.0])


def generate(condition, fixed_objects, rng: np.random.Generator) -> np.ndarray:
    """Normal sample centred at 10."""

    return rng.normal(10.0, condition["sd"], size=int(condition["N"]))


def analyse(condition, dat: np.ndarray, fixed_objects, rng: np.random.Generator) -> dict:
    """Mean and trimmed mean of one sample."""

    if np.ptp(dat) == 0:
        # Degenerate draw; ask for a fresh one.
        raise RedoRequested("constant sample")
    trimmed = np.sort(dat)[1:-1]
    return {"mean": dat.mean(), "trimmed": trimmed.mean()}


def summarise(condition, results, fixed_objects) -> dict:
    """Bias and RMSE of both estimators."""

    return {
        "bias_mean": bias(results["mean"], 10.0),
        "bias_trimmed": bias(results["trimmed"], 10.0),
        "rmse_mean": rmse(results["mean"], 10.0),
        "rmse_trimmed": rmse(results["trimmed"], 10.0),
    }


table = run_simulation(
    design,
    1000,
    generate,
    analyse,
    summarise,
    control={"seed": 2025, "max_time": "00:05:00"},
)

print(table[["ID", "N", "sd", "rmse_mean", "rmse_trimmed", "REPLICATIONS", "SIM_TIME"]])
