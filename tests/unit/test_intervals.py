"""
Tests for the parametric bootstrap interval source.
"""

import numpy as np
import pytest

from therapistsim.exceptions import FitFailure
from therapistsim.stats.intervals import (
    BOOTSTRAP_PARAMETERS,
    bootstrap_intervals,
    parametric_bootstrap,
    point_estimates,
)
from therapistsim.stats.models import DEFAULT_BATTERY, fit_model

RAND_LMM = DEFAULT_BATTERY[5]
RAND_OLS = DEFAULT_BATTERY[4]


@pytest.fixture
def lmm_fit(replicate):
    return fit_model(RAND_LMM, replicate)


class TestParametricBootstrap:
    def test_draw_shapes(self, replicate, lmm_fit):
        draws = parametric_bootstrap(RAND_LMM, replicate, lmm_fit, 30, np.random.default_rng(5))
        assert set(draws) == {"treatment", "cluster_sd", "error_sd"}
        assert 15 <= len(draws["treatment"]) <= 30
        assert np.all(draws["cluster_sd"] >= 0)

    def test_draws_centered_on_fit(self, replicate, lmm_fit):
        draws = parametric_bootstrap(RAND_LMM, replicate, lmm_fit, 100, np.random.default_rng(5))
        spread = np.std(draws["treatment"])
        assert abs(np.mean(draws["treatment"]) - lmm_fit.treatment) < 4 * spread / np.sqrt(100) + 1e-9
        assert np.mean(draws["error_sd"]) == pytest.approx(np.sqrt(lmm_fit.error_var), rel=0.05)

    def test_reproducible(self, replicate, lmm_fit):
        a = parametric_bootstrap(RAND_LMM, replicate, lmm_fit, 10, np.random.default_rng(9))
        b = parametric_bootstrap(RAND_LMM, replicate, lmm_fit, 10, np.random.default_rng(9))
        np.testing.assert_array_equal(a["cluster_sd"], b["cluster_sd"])

    def test_requires_cluster(self, replicate):
        fit = fit_model(RAND_OLS, replicate)
        with pytest.raises(FitFailure, match="clustering"):
            parametric_bootstrap(RAND_OLS, replicate, fit, 10, np.random.default_rng(1))


class TestBootstrapIntervals:
    def test_all_parameters(self):
        rng = np.random.default_rng(0)
        draws = {
            "treatment": rng.normal(0.5, 0.1, 500),
            "cluster_sd": np.abs(rng.normal(0.3, 0.05, 500)),
            "error_sd": rng.normal(1.5, 0.02, 500),
        }
        intervals = bootstrap_intervals(draws, level=0.95)
        assert tuple(intervals) == BOOTSTRAP_PARAMETERS
        for lower, upper in intervals.values():
            assert lower <= upper

    def test_percentiles(self):
        draws = {
            "treatment": np.arange(101, dtype=float),
            "cluster_sd": np.ones(101),
            "error_sd": np.ones(101),
        }
        lower, upper = bootstrap_intervals(draws, level=0.9)["treatment"]
        assert lower == pytest.approx(5.0)
        assert upper == pytest.approx(95.0)

    def test_boundary_draws(self):
        draws = {
            "treatment": np.array([0.4, 0.5, 0.6, 0.5]),
            "cluster_sd": np.array([0.0, 0.0, 0.2, 0.3]),
            "error_sd": np.ones(4),
        }
        intervals = bootstrap_intervals(draws)
        lower, upper = intervals["u3"]
        assert 0.5 < lower <= upper <= 1.0
        assert intervals["icc"][0] == 0.0


def test_point_estimates(lmm_fit):
    estimates = point_estimates(lmm_fit)
    assert tuple(estimates) == BOOTSTRAP_PARAMETERS
    assert estimates["cluster_sd"] ** 2 == pytest.approx(max(lmm_fit.cluster_var, 0.0))
    assert 0.0 <= estimates["overlap"] <= 1.0
