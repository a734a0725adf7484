"""Module-level simulation functions shared by the tests.

Kept at module level so they pickle by reference for process pools.
"""

from __future__ import annotations

import time
import warnings
from typing import Any

import numpy as np
import pandas as pd
from montegrid import RedoRequested


def normal_generate(condition: Any, fixed_objects: Any, rng: np.random.Generator) -> np.ndarray:
    return rng.normal(10.0, 5.0, size=int(condition["N"]))


def mean_analyse(
    condition: Any, data: np.ndarray, fixed_objects: Any, rng: np.random.Generator
) -> dict:
    return {"mean": float(np.mean(data)), "median": float(np.median(data))}


def mean_summarise(condition: Any, results: pd.DataFrame, fixed_objects: Any) -> dict:
    return {
        "mu": float(results["mean"].mean()),
        "SE": float(results["mean"].std(ddof=1)),
        "median_mu": float(results["median"].median()),
    }


def uniform_generate(condition: Any, fixed_objects: Any, rng: np.random.Generator) -> float:
    return float(rng.random())


def identity_analyse(condition: Any, data: Any, fixed_objects: Any, rng: np.random.Generator) -> Any:
    return data


def always_redo(condition: Any, data: Any, fixed_objects: Any, rng: np.random.Generator) -> Any:
    raise RedoRequested("never good enough")


def redo_small_draws(condition: Any, data: float, fixed_objects: Any, rng: np.random.Generator) -> float:
    if data < 0.3:
        raise RedoRequested("draw below 0.3")
    return data


def warning_analyse(condition: Any, data: Any, fixed_objects: Any, rng: np.random.Generator) -> Any:
    warnings.warn("careful", UserWarning)
    return data


def delayed_generate(condition: Any, fixed_objects: Any, rng: np.random.Generator) -> np.ndarray:
    """Later conditions finish first, so a pool completes them out of order."""

    time.sleep(0.002 * (6 - int(condition["ID"])))
    return normal_generate(condition, fixed_objects, rng)


def sleepy_generate(condition: Any, fixed_objects: Any, rng: np.random.Generator) -> float:
    time.sleep(fixed_objects["delay"])
    return float(rng.random())


def failing_for_n10(condition: Any, fixed_objects: Any, rng: np.random.Generator) -> np.ndarray:
    if int(condition["N"]) == 10:
        raise ValueError("cannot simulate N=10")
    return normal_generate(condition, fixed_objects, rng)


class CountingGenerate:
    """Wrap a generate function and count calls (single process only)."""

    def __init__(self, inner=normal_generate, *, fail_on_call: int | None = None) -> None:
        self.inner = inner
        self.calls = 0
        self.fail_on_call = fail_on_call

    def __call__(self, condition: Any, fixed_objects: Any, rng: np.random.Generator) -> Any:
        self.calls += 1
        if self.fail_on_call is not None and self.calls == self.fail_on_call:
            raise Killed(f"process killed at call {self.calls}")
        return self.inner(condition, fixed_objects, rng)


class Killed(BaseException):
    """Stands in for the process being terminated mid-run."""
