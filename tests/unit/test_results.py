"""
Tests for results aggregation.
"""

import numpy as np
import pandas as pd
import pytest

from therapistsim.core.cache import SCHEMA_VERSION
from therapistsim.core.results import (
    NULL_VALUES,
    SUMMARY_COLUMNS,
    ReplicateResult,
    ResultsAggregator,
    SimulationResult,
)

TRUTH = {"m": {"treatment": 1.0, "icc": 0.0, "u3": 0.7}}


def _replicates():
    return [
        ReplicateResult(0, [("m", "treatment", 0.8, 0.2, 1.4), ("m", "icc", 0.1, np.nan, np.nan)]),
        ReplicateResult(1, [("m", "treatment", 1.2, -0.1, 2.5), ("m", "icc", 0.0, np.nan, np.nan)]),
        ReplicateResult(2, [("m", "treatment", 1.6, 1.1, 2.1), ("m", "icc", 0.2, np.nan, np.nan)]),
        ReplicateResult(3, [], {"m": "REML optimization did not converge"}),
    ]


@pytest.fixture
def result():
    aggregator = ResultsAggregator(TRUTH, ["m"])
    return aggregator.aggregate(_replicates(), config_key="abc", study="bias", n_replications=4)


class TestAggregate:
    def test_columns_and_metadata(self, result):
        assert list(result.summary.columns) == SUMMARY_COLUMNS
        assert result.n_replications == 4
        assert result.config_key == "abc"
        assert result.schema_version == SCHEMA_VERSION

    def test_treatment_metrics(self, result):
        row = result.get("m", "treatment")
        assert row["n_replicates"] == 3
        assert row["n_failed"] == 1
        assert row["mean_estimate"] == pytest.approx(1.2)
        assert row["bias"] == pytest.approx(0.2)
        assert row["relative_bias"] == pytest.approx(0.2)
        assert row["empirical_sd"] == pytest.approx(np.std([0.8, 1.2, 1.6], ddof=1))
        assert row["coverage"] == pytest.approx(2 / 3)
        # Intervals 1 and 3 exclude zero
        assert row["power"] == pytest.approx(2 / 3)

    def test_relative_bias_nan_for_zero_truth(self, result):
        row = result.get("m", "icc")
        assert row["bias"] == pytest.approx(0.1)
        assert np.isnan(row["relative_bias"])

    def test_no_interval_no_coverage(self, result):
        row = result.get("m", "icc")
        assert np.isnan(row["coverage"])
        assert np.isnan(row["power"])

    def test_failure_reasons(self, result):
        assert result.failure_reasons == {"m": {"REML optimization did not converge": 1}}

    def test_order_invariant(self):
        aggregator = ResultsAggregator(TRUTH, ["m"])
        forward = aggregator.aggregate(_replicates(), "k", "bias", 4).summary
        backward = aggregator.aggregate(list(reversed(_replicates())), "k", "bias", 4).summary
        pd.testing.assert_frame_equal(forward, backward)

    def test_all_failed_model_keeps_row(self):
        reps = [ReplicateResult(i, [], {"m": "boom"}) for i in range(3)]
        summary = ResultsAggregator(TRUTH, ["m"]).aggregate(reps, "k", "bias", 3).summary
        assert len(summary) == 1
        assert summary.loc[0, "n_replicates"] == 0
        assert summary.loc[0, "n_failed"] == 3


class TestNullValues:
    def test_power_against_half_for_u3(self):
        reps = [
            ReplicateResult(0, [("m", "u3", 0.7, 0.55, 0.85)]),
            ReplicateResult(1, [("m", "u3", 0.6, 0.45, 0.75)]),
        ]
        row = ResultsAggregator(TRUTH, ["m"]).aggregate(reps, "k", "coverage", 2).get("m", "u3")
        assert row["power"] == pytest.approx(0.5)
        assert row["coverage"] == pytest.approx(1.0)

    def test_null_table(self):
        assert NULL_VALUES == {"treatment": 0.0, "u3": 0.5, "probability_of_superiority": 0.5}


class TestSimulationResult:
    def test_frozen(self, result):
        with pytest.raises(AttributeError):
            result.study = "coverage"

    def test_get_missing(self, result):
        with pytest.raises(KeyError):
            result.get("m", "overlap")

    def test_for_model_and_models(self, result):
        assert result.models == ["m"]
        assert len(result.for_model("m")) == 2

    def test_report(self, result):
        text = result.report(parameters=["treatment"])
        assert "BIAS STUDY" in text
        assert "treatment" in text
        assert "icc" not in text.split("\n", 3)[3]

    def test_type(self, result):
        assert isinstance(result, SimulationResult)
