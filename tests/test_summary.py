"""Tests for summary statistics."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from montegrid import MomentSummary, bias, edr, rmse
from montegrid.summary import DecomposableSummary, combine_partials


class TestPerformanceMeasures:
    def test_bias_and_rmse(self) -> None:
        estimates = np.array([9.0, 11.0, 12.0])
        assert bias(estimates, 10.0) == pytest.approx(2.0 / 3.0)
        assert rmse(estimates, 10.0) == pytest.approx(np.sqrt(6.0 / 3.0))

    def test_columnwise(self) -> None:
        estimates = np.array([[1.0, 2.0], [3.0, 4.0]])
        np.testing.assert_allclose(bias(estimates, [2.0, 2.0]), [0.0, 1.0])

    def test_edr(self) -> None:
        assert edr([0.01, 0.2, 0.04, 0.5], alpha=0.05) == pytest.approx(0.5)
        with pytest.raises(ValueError):
            edr([0.1], alpha=1.5)


class TestMomentSummary:
    """MomentSummary partial/finalize behaviour."""

    results = pd.DataFrame({"est": [1.0, 2.0, 3.0, 6.0], "p": [0.01, 0.5, 0.03, 0.2]})

    def test_is_decomposable(self) -> None:
        assert isinstance(MomentSummary(), DecomposableSummary)

    def test_moments(self) -> None:
        stats = MomentSummary(parameters={"est": 2.0}, alpha={"p": 0.05})({}, self.results, None)
        assert stats["est_mean"] == pytest.approx(3.0)
        assert stats["est_sd"] == pytest.approx(self.results["est"].std(ddof=1))
        assert stats["est_bias"] == pytest.approx(1.0)
        assert stats["est_rmse"] == pytest.approx(rmse(self.results["est"], 2.0))
        assert stats["p_edr"] == pytest.approx(0.5)
        assert "p_bias" not in stats

    def test_split_partials_match_whole(self) -> None:
        summary = MomentSummary(parameters={"est": 2.0}, alpha={"p": 0.05})
        whole = summary({}, self.results, None)
        parts = [
            summary.partial({}, self.results.iloc[:1], None),
            summary.partial({}, self.results.iloc[1:], None),
        ]
        combined = summary.finalize({}, combine_partials(parts), None)
        assert combined.keys() == whole.keys()
        for key in whole:
            assert combined[key] == pytest.approx(whole[key])

    def test_parameters_from_condition(self) -> None:
        summary = MomentSummary(["est"], parameters=lambda condition: {"est": condition["mu"]})
        stats = summary({"mu": 3.0}, self.results, None)
        assert stats["est_bias"] == pytest.approx(0.0)
        assert set(stats) == {"est_mean", "est_sd", "est_bias", "est_rmse"}

    def test_missing_values_ignored(self) -> None:
        frame = pd.DataFrame({"est": [1.0, np.nan, 3.0]})
        stats = MomentSummary()({}, frame, None)
        assert stats["est_mean"] == pytest.approx(2.0)

    def test_non_tabular_results_rejected(self) -> None:
        with pytest.raises(TypeError):
            MomentSummary()({}, [pd.DataFrame({"x": [1]})], None)

    def test_single_value_has_no_sd(self) -> None:
        stats = MomentSummary()({}, pd.DataFrame({"x": [4.0]}), None)
        assert stats["x_mean"] == 4.0
        assert np.isnan(stats["x_sd"])


def test_combine_partials_sums_and_fills() -> None:
    combined = combine_partials([{"a:n": 2, "a:sum": 1.5}, {"a:n": 3, "b:n": 1}])
    assert combined == {"a:n": 5, "a:sum": 1.5, "b:n": 1}
