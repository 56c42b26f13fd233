"""
Tests for design parameter resolution.
"""

import numpy as np
import pytest

from therapistsim.core.parameters import (
    OUTCOME_INTERCEPT,
    DesignParameters,
    cluster_sd_from_icc,
    confound_mean_shift,
    derive_ate,
    icc_from_cluster_sd,
    resolve_design,
)
from therapistsim.exceptions import ConfigurationError
from therapistsim.stats.models import DEFAULT_BATTERY, ModelSpec


class TestClusterSdFromIcc:
    @pytest.mark.parametrize("icc", [0.0, 0.01, 0.05, 0.2, 0.5, 0.9])
    @pytest.mark.parametrize("error_sd", [0.5, 1.0, 1.5, 3.0])
    def test_icc_round_trip(self, icc, error_sd):
        cluster_sd = cluster_sd_from_icc(icc, error_sd)
        assert icc_from_cluster_sd(cluster_sd, error_sd) == pytest.approx(icc, abs=1e-12)

    def test_zero_icc_gives_zero_sd(self):
        assert cluster_sd_from_icc(0.0, 1.5) == 0.0

    def test_known_value(self):
        assert cluster_sd_from_icc(0.05, 1.5) == pytest.approx(np.sqrt(0.05 / 0.95) * 1.5)

    @pytest.mark.parametrize("icc", [1.0, 1.2, -0.1, np.nan, np.inf])
    def test_icc_out_of_range(self, icc):
        with pytest.raises(ConfigurationError, match="icc"):
            cluster_sd_from_icc(icc, 1.0)

    @pytest.mark.parametrize("error_sd", [0.0, -1.0, np.nan, np.inf])
    def test_non_positive_error_sd(self, error_sd):
        with pytest.raises(ConfigurationError, match="error_sd"):
            cluster_sd_from_icc(0.1, error_sd)


class TestConfoundMeanShift:
    @pytest.mark.parametrize("n2", [2, 4, 10, 30])
    @pytest.mark.parametrize("confound_sd", [0.1, 0.5, 2.0])
    def test_pooled_sd_round_trip(self, n2, confound_sd):
        """n2 units at 0 and n2 units at M have pooled SD (ddof=1) equal to confound_sd."""
        shift = confound_mean_shift(confound_sd, n2)
        units = np.concatenate([np.zeros(n2), np.full(n2, shift)])
        assert np.std(units, ddof=1) == pytest.approx(confound_sd, rel=1e-12)

    def test_zero_sd(self):
        assert confound_mean_shift(0.0, 10) == 0.0

    def test_invalid_count(self):
        with pytest.raises(ConfigurationError):
            confound_mean_shift(0.5, 0)


class TestResolveDesign:
    def test_default_scenario(self, design):
        assert design.total_n == 400
        assert design.n_clusters == 20
        assert design.degrees_of_freedom == 18
        assert design.cluster_sd == pytest.approx(0.3441, abs=1e-4)
        assert design.true_icc == pytest.approx(0.05)

    def test_ate_is_d_times_total_sd(self, design):
        expected_total = np.sqrt(design.cluster_sd**2 + design.cluster_confound_sd**2 + design.error_sd**2)
        assert design.total_sd == pytest.approx(expected_total)
        assert design.average_treatment_effect == pytest.approx(0.5 * expected_total)

    def test_confound_sd_from_confound_icc(self, design):
        assert design.cluster_confound_sd == pytest.approx(cluster_sd_from_icc(0.1, 1.5))
        assert design.confound_mean_shift == pytest.approx(confound_mean_shift(design.cluster_confound_sd, 10))

    def test_deterministic(self):
        assert resolve_design().to_dict() == resolve_design().to_dict()

    def test_frozen(self, design):
        with pytest.raises(AttributeError):
            design.cluster_sd = 1.0

    @pytest.mark.parametrize("n2", [3, 9, 1])
    def test_odd_or_small_cluster_count(self, n2):
        with pytest.raises(ConfigurationError, match="n_clusters_per_arm"):
            resolve_design(n_clusters_per_arm=n2)

    def test_non_positive_patients(self):
        with pytest.raises(ConfigurationError, match="n_patients_per_cluster"):
            resolve_design(n_patients_per_cluster=0)

    def test_collects_several_errors(self):
        with pytest.raises(ConfigurationError) as excinfo:
            resolve_design(n_clusters_per_arm=5, icc=1.5, error_sd=-1.0)
        message = str(excinfo.value)
        assert "n_clusters_per_arm" in message
        assert "icc" in message
        assert "error_sd" in message

    @pytest.mark.parametrize(
        "knob,value",
        [
            ("icc", np.nan),
            ("confound_icc", np.nan),
            ("cohens_d", np.nan),
            ("cohens_d", np.inf),
            ("error_sd", np.inf),
            ("error_sd", -np.inf),
        ],
    )
    def test_non_finite_knob_rejected(self, knob, value):
        with pytest.raises(ConfigurationError, match=knob):
            resolve_design(**{knob: value})

    def test_float_sample_size_rejected(self):
        with pytest.raises(ConfigurationError):
            resolve_design(n_patients_per_cluster=20.0)

    def test_derive_ate(self):
        assert derive_ate(0.5, 2.0) == 1.0
        assert derive_ate(0.0, 2.0) == 0.0


class TestWithSampleSizes:
    def test_reresolves(self, design):
        bigger = design.with_sample_sizes(n_clusters_per_arm=30)
        assert bigger.n_clusters_per_arm == 30
        assert bigger.total_n == 2 * 20 * 30
        assert bigger.cluster_sd == pytest.approx(design.cluster_sd)
        # The mean shift depends on the number of clusters
        assert bigger.confound_mean_shift != pytest.approx(design.confound_mean_shift)

    def test_original_untouched(self, design):
        design.with_sample_sizes(n_patients_per_cluster=5)
        assert design.n_patients_per_cluster == 20


class TestTrueValues:
    def test_clustered_model(self, design):
        spec = ModelSpec("rand_lmm", "y_random", ("treatment",), "cluster_random")
        truth = design.true_values(spec)
        assert truth["treatment"] == design.average_treatment_effect
        assert truth["cluster_var"] == pytest.approx(design.cluster_sd**2)
        assert truth["error_var"] == pytest.approx(design.error_sd**2)
        assert truth["icc"] == pytest.approx(0.05)
        assert truth["covariate"] == 0.0

    def test_ols_absorbs_cluster_variance(self, design):
        spec = ModelSpec("rand_ols", "y_random")
        truth = design.true_values(spec)
        assert truth["error_var"] == pytest.approx(design.cluster_sd**2 + design.error_sd**2)

    def test_unadjusted_confounded_ols_absorbs_shift(self, design):
        unadjusted = design.true_values(ModelSpec("conf_ols", "y_confounded"))
        adjusted = design.true_values(ModelSpec("conf_ols_adj", "y_confounded", ("treatment", "covariate")))
        assert unadjusted["error_var"] - adjusted["error_var"] == pytest.approx(design.confound_mean_shift**2 / 4)
        assert adjusted["covariate"] == pytest.approx(design.confound_mean_shift)

    def test_overlap_truth_in_unit_interval(self, design):
        for spec in DEFAULT_BATTERY:
            truth = design.true_values(spec)
            for name in ("overlap", "u3", "probability_of_superiority"):
                assert 0.0 <= truth[name] <= 1.0


def test_outcome_intercept():
    assert OUTCOME_INTERCEPT == 10.0


def test_design_parameters_is_dataclass(design):
    assert isinstance(design, DesignParameters)
    assert set(design.to_dict()) >= {"cluster_sd", "error_sd", "average_treatment_effect"}
