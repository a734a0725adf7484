r"""Summary statistics over replications.

``summarise`` can be any callable ``(condition, results, fixed_objects) ->
named vector``.  Such summaries are opaque: when a condition is split across
array units they can only be recomputed from retained raw results.

A *decomposable* summariser instead exposes two steps:

``partial(condition, results, fixed_objects)``
    Additive sufficient statistics (counts, sums, sums of squares, ...).
    Partials of different units are combined by element-wise summation.
``finalize(condition, partial, fixed_objects)``
    The named vector reported in the result table.

:class:`MomentSummary` is the built-in decomposable summariser.  The helpers
:func:`bias`, :func:`rmse` and :func:`edr` are the usual Monte Carlo
performance measures for plain summarisers.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

import numpy as np
import pandas as pd


@runtime_checkable
class DecomposableSummary(Protocol):
    """Summariser whose state can be merged across units."""

    def partial(
        self, condition: Mapping[str, Any], results: Any, fixed_objects: Any
    ) -> dict[str, Any]:
        """Additive sufficient statistics of ``results``."""

    def finalize(
        self, condition: Mapping[str, Any], partial: Mapping[str, Any], fixed_objects: Any
    ) -> Mapping[str, Any]:
        """Statistics reported for the condition."""


def combine_partials(partials: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    """Element-wise sum of partial statistics.

    Keys missing from some partials count as zero.
    """

    combined: dict[str, Any] = {}
    for partial in partials:
        for key, value in partial.items():
            if key in combined:
                combined[key] = np.add(combined[key], value)
            else:
                combined[key] = value
    return combined


def bias(estimates: Any, parameter: Any) -> float | np.ndarray:
    """Mean deviation of ``estimates`` from the true ``parameter``."""

    values = np.asarray(estimates, dtype=float)
    return np.mean(values - np.asarray(parameter, dtype=float), axis=0)


def rmse(estimates: Any, parameter: Any) -> float | np.ndarray:
    """Root mean squared error of ``estimates`` around ``parameter``."""

    values = np.asarray(estimates, dtype=float)
    return np.sqrt(np.mean((values - np.asarray(parameter, dtype=float)) ** 2, axis=0))


def edr(p_values: Any, alpha: float = 0.05) -> float | np.ndarray:
    """Empirical detection rate: share of ``p_values`` below ``alpha``."""

    if not 0.0 < alpha < 1.0:
        raise ValueError("alpha must lie in (0, 1)")
    values = np.asarray(p_values, dtype=float)
    return np.mean(values < alpha, axis=0)


class MomentSummary:
    r"""Decomposable first/second moment summary.

    For each result column :math:`x` the partial statistics are the count
    :math:`n`, the sum :math:`\sum x` and the sum of squares
    :math:`\sum x^2`.  These finalise to

    * ``<col>_mean`` and ``<col>_sd`` (sample standard deviation);
    * ``<col>_bias`` and ``<col>_rmse`` when a true value is known;
    * ``<col>_edr``, the share of values below ``alpha[col]``.

    Parameters
    ----------
    columns : sequence of str or None
        Result columns to summarise; ``None`` uses every numeric column.
    parameters : mapping or callable or None
        True values by column name, or a callable ``condition -> mapping``.
    alpha : mapping or None
        Detection thresholds by column name (typically p-value columns).

    Examples
    --------
    >>> import pandas as pd
    >>> summary = MomentSummary(parameters={"value": 1.0})
    >>> stats = summary({}, pd.DataFrame({"value": [0.5, 1.5]}), None)
    >>> stats["value_mean"], stats["value_bias"]
    (1.0, 0.0)
    """

    def __init__(
        self,
        columns: Sequence[str] | None = None,
        *,
        parameters: Mapping[str, float] | Callable[[Any], Mapping[str, float]] | None = None,
        alpha: Mapping[str, float] | None = None,
    ) -> None:
        self._columns = None if columns is None else list(columns)
        self._parameters = parameters
        self._alpha = dict(alpha or {})

    def _frame(self, results: Any) -> pd.DataFrame:
        if not isinstance(results, pd.DataFrame):
            raise TypeError(
                "MomentSummary needs results reducible to a table of named "
                "scalars; analyse returned tables or composite values"
            )
        if self._columns is None:
            return results.select_dtypes(include="number")
        return results[self._columns]

    def _truth(self, condition: Mapping[str, Any]) -> Mapping[str, float]:
        if self._parameters is None:
            return {}
        if callable(self._parameters):
            return self._parameters(condition)
        return self._parameters

    def partial(
        self, condition: Mapping[str, Any], results: Any, fixed_objects: Any
    ) -> dict[str, Any]:
        frame = self._frame(results).astype(float)
        partial: dict[str, Any] = {}
        for column in frame.columns:
            values = frame[column].to_numpy()
            values = values[~np.isnan(values)]
            partial[f"{column}:n"] = int(values.size)
            partial[f"{column}:sum"] = float(values.sum())
            partial[f"{column}:sumsq"] = float(np.square(values).sum())
            if column in self._alpha:
                partial[f"{column}:below"] = int((values < self._alpha[column]).sum())
        return partial

    def finalize(
        self, condition: Mapping[str, Any], partial: Mapping[str, Any], fixed_objects: Any
    ) -> dict[str, float]:
        truth = self._truth(condition)
        columns = [key[: -len(":n")] for key in partial if key.endswith(":n")]
        stats: dict[str, float] = {}
        for column in columns:
            n = partial[f"{column}:n"]
            total = partial[f"{column}:sum"]
            sumsq = partial[f"{column}:sumsq"]
            mean = total / n if n else np.nan
            if n > 1:
                variance = max(sumsq - total * total / n, 0.0) / (n - 1)
                sd = float(np.sqrt(variance))
            else:
                sd = np.nan
            stats[f"{column}_mean"] = float(mean)
            stats[f"{column}_sd"] = sd
            if column in truth:
                theta = float(truth[column])
                stats[f"{column}_bias"] = float(mean - theta)
                mse = (sumsq - 2.0 * theta * total + n * theta * theta) / n if n else np.nan
                stats[f"{column}_rmse"] = float(np.sqrt(max(mse, 0.0)))
            if f"{column}:below" in partial:
                below = partial[f"{column}:below"]
                stats[f"{column}_edr"] = below / n if n else np.nan
        return stats

    def __call__(
        self, condition: Mapping[str, Any], results: Any, fixed_objects: Any
    ) -> dict[str, float]:
        return self.finalize(condition, self.partial(condition, results, fixed_objects), fixed_objects)


__all__ = [
    "DecomposableSummary",
    "MomentSummary",
    "combine_partials",
    "bias",
    "rmse",
    "edr",
]
