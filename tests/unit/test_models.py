"""
Tests for the model battery and the model fitter.
"""

import dataclasses

import numpy as np
import pytest

from therapistsim.exceptions import ConfigurationError, FitFailure
from therapistsim.stats.data_generation import generate_replicate
from therapistsim.stats.models import (
    COVERAGE_BATTERY,
    DEFAULT_BATTERY,
    FitResult,
    ModelSpec,
    design_matrix,
    fit_model,
)


class TestModelSpec:
    def test_default_battery(self):
        names = [spec.name for spec in DEFAULT_BATTERY]
        assert names == ["conf_ols", "conf_ols_adj", "conf_lmm", "conf_lmm_adj", "rand_ols", "rand_lmm"]
        assert sum(spec.has_cluster for spec in DEFAULT_BATTERY) == 3

    def test_coverage_battery_is_clustered(self):
        assert [spec.name for spec in COVERAGE_BATTERY] == ["rand_lmm", "conf_lmm_adj"]
        assert all(spec.has_cluster for spec in COVERAGE_BATTERY)

    def test_formula(self):
        spec = ModelSpec("conf_lmm_adj", "y_confounded", ("treatment", "covariate"), "cluster_confounded")
        assert spec.formula == "y_confounded ~ treatment + covariate + (1|cluster_confounded)"
        assert ModelSpec("rand_ols", "y_random").formula == "y_random ~ treatment"

    def test_invalid_outcome(self):
        with pytest.raises(ConfigurationError, match="outcome"):
            ModelSpec("bad", "y")

    def test_treatment_must_come_first(self):
        with pytest.raises(ConfigurationError, match="treatment"):
            ModelSpec("bad", "y_random", ("covariate", "treatment"))

    def test_invalid_cluster(self):
        with pytest.raises(ConfigurationError, match="cluster"):
            ModelSpec("bad", "y_random", ("treatment",), "therapist")

    def test_to_dict(self):
        d = ModelSpec("rand_lmm", "y_random", ("treatment",), "cluster_random").to_dict()
        assert d == {"name": "rand_lmm", "outcome": "y_random", "fixed_effects": ["treatment"], "cluster": "cluster_random"}


class TestDesignMatrix:
    def test_columns(self, replicate):
        X = design_matrix(DEFAULT_BATTERY[1], replicate)
        assert X.shape == (len(replicate), 3)
        assert np.all(X[:, 0] == 1.0)
        np.testing.assert_array_equal(X[:, 2], replicate.covariate)


class TestFitModel:
    @pytest.mark.parametrize("spec", DEFAULT_BATTERY, ids=lambda s: s.name)
    def test_every_model_fits(self, spec, replicate):
        fit = fit_model(spec, replicate)
        assert isinstance(fit, FitResult)
        assert fit.ci_lower < fit.treatment < fit.ci_upper
        assert 0.0 <= fit.p_value <= 1.0
        assert fit.se > 0
        assert fit.error_var > 0

    def test_ols_df_is_residual(self, replicate):
        fit = fit_model(DEFAULT_BATTERY[1], replicate)
        assert fit.df == len(replicate) - 3
        assert np.isnan(fit.cluster_var)
        assert np.isnan(fit.icc)

    def test_lmm_df_between_limits(self, replicate):
        fit = fit_model(DEFAULT_BATTERY[5], replicate)
        assert 1.0 <= fit.df <= len(replicate) - 2
        assert fit.cluster_var >= 0
        assert 0.0 <= fit.icc < 1.0

    def test_alpha_widens_interval(self, replicate):
        narrow = fit_model(DEFAULT_BATTERY[0], replicate, alpha=0.2)
        wide = fit_model(DEFAULT_BATTERY[0], replicate, alpha=0.01)
        assert wide.ci_upper - wide.ci_lower > narrow.ci_upper - narrow.ci_lower

    def test_covariate_only_when_modelled(self, replicate):
        assert np.isnan(fit_model(DEFAULT_BATTERY[0], replicate).covariate)
        assert np.isfinite(fit_model(DEFAULT_BATTERY[1], replicate).covariate)

    def test_singular_design_raises_fit_failure(self, small_design):
        data = generate_replicate(small_design, np.random.default_rng(1))
        # A constant outcome leaves no residual variance
        data = dataclasses.replace(data, y_random=np.zeros(len(data)))
        with pytest.raises(FitFailure) as excinfo:
            fit_model(DEFAULT_BATTERY[5], data)
        assert excinfo.value.model == "rand_lmm"


class TestParameterRecords:
    def test_clustered_records(self, replicate):
        fit = fit_model(DEFAULT_BATTERY[3], replicate)
        params = [row[0] for row in fit.parameter_records()]
        assert params == ["treatment", "covariate", "error_var", "cluster_var", "icc"]

    def test_only_treatment_has_interval(self, replicate):
        fit = fit_model(DEFAULT_BATTERY[3], replicate)
        for name, _, lower, upper in fit.parameter_records():
            if name == "treatment":
                assert np.isfinite(lower) and np.isfinite(upper)
            else:
                assert np.isnan(lower) and np.isnan(upper)
