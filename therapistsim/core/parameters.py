"""
Design parameter resolution for TherapistSim.

Turns the small set of user-facing knobs (target ICC, residual SD,
confound strength, standardized effect size, sample sizes) into an
internally consistent, immutable ``DesignParameters`` record. Nothing
in this module is random.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict

import numpy as np

from ..stats.overlap import overlap_raw, probability_of_superiority_raw, u3_raw
from ..utils.validators import _validate_design_knobs, _validate_icc, _validate_sd

# Grand mean of both outcome formulas
OUTCOME_INTERCEPT = 10.0


def cluster_sd_from_icc(icc: float, error_sd: float) -> float:
    """Cluster-level SD that yields *icc* for a given residual SD.

    ``icc = cluster_sd^2 / (cluster_sd^2 + error_sd^2)`` solved for
    ``cluster_sd``.

    Raises:
        ConfigurationError: If *icc* is outside [0, 1) or *error_sd* <= 0.
    """
    result = _validate_icc(icc, "icc").merge(_validate_sd(error_sd, "error_sd", allow_zero=False))
    result.raise_if_invalid()
    return float(np.sqrt(icc / (1.0 - icc)) * error_sd)


def icc_from_cluster_sd(cluster_sd: float, error_sd: float) -> float:
    """Inverse of ``cluster_sd_from_icc``."""
    result = _validate_sd(cluster_sd, "cluster_sd").merge(_validate_sd(error_sd, "error_sd", allow_zero=False))
    result.raise_if_invalid()
    cluster_var = cluster_sd**2
    return float(cluster_var / (cluster_var + error_sd**2))


def confound_mean_shift(confound_sd: float, n_clusters_per_arm: int) -> float:
    """Mean difference between the two covariate groups of a cluster pool.

    Solves the pooled (ddof=1) variance of ``n2`` units at 0 and ``n2``
    units at ``M`` for ``M`` so that the pooled SD equals *confound_sd*::

        M = 2 * sqrt(confound_sd^2 * (2*n2 - 1) / (2*n2))

    The inversion is exact.
    """
    result = _validate_sd(confound_sd, "confound_sd")
    if not isinstance(n_clusters_per_arm, int) or isinstance(n_clusters_per_arm, bool) or n_clusters_per_arm < 1:
        result.errors.append(f"n_clusters_per_arm must be a positive integer, got {n_clusters_per_arm}")
        result.is_valid = False
    result.raise_if_invalid()

    n2 = n_clusters_per_arm
    return float(2.0 * np.sqrt(confound_sd**2 * (2 * n2 - 1) / (2 * n2)))


def derive_ate(cohens_d: float, total_sd: float) -> float:
    """Raw average treatment effect from a standardized effect size."""
    return float(cohens_d * total_sd)


@dataclass(frozen=True)
class DesignParameters:
    """Resolved parameters of one simulation design.

    Attributes:
        n_patients_per_cluster: Average patients per cluster (n1).
        n_clusters_per_arm: Clusters per treatment arm (n2, even).
        cluster_sd: SD of the cluster random intercepts.
        cluster_confound_sd: SD contribution of the covariate-linked shift.
        error_sd: Patient-level residual SD.
        average_treatment_effect: Raw treatment effect, ``cohens_d * total_sd``.
        confound_mean_shift: Outcome shift for covariate = 1 in the
            confounded outcome.
        icc: ICC target the cluster SD was resolved from.
        confound_icc: ICC-scale target the confound SD was resolved from.
        cohens_d: Standardized effect size relative to the total SD.
    """

    n_patients_per_cluster: int
    n_clusters_per_arm: int
    cluster_sd: float
    cluster_confound_sd: float
    error_sd: float
    average_treatment_effect: float
    confound_mean_shift: float
    icc: float
    confound_icc: float
    cohens_d: float

    @property
    def total_n(self) -> int:
        """Total number of patients, ``2 * n1 * n2``."""
        return 2 * self.n_patients_per_cluster * self.n_clusters_per_arm

    @property
    def n_clusters(self) -> int:
        """Total number of clusters over both arms."""
        return 2 * self.n_clusters_per_arm

    @property
    def degrees_of_freedom(self) -> int:
        """Between-cluster df for the arm contrast, ``2 * n2 - 2``."""
        return 2 * self.n_clusters_per_arm - 2

    @property
    def total_sd(self) -> float:
        """Total outcome SD (cluster, confound and residual variance)."""
        return float(np.sqrt(self.cluster_sd**2 + self.cluster_confound_sd**2 + self.error_sd**2))

    @property
    def true_icc(self) -> float:
        """Cluster-variance fraction of the cluster + residual variance."""
        return icc_from_cluster_sd(self.cluster_sd, self.error_sd)

    def with_sample_sizes(self, n_patients_per_cluster: int = None, n_clusters_per_arm: int = None) -> "DesignParameters":
        """Re-resolve the same knobs with different sample sizes.

        Returns a new instance; ``self`` is never modified.
        """
        return resolve_design(
            n_patients_per_cluster=n_patients_per_cluster if n_patients_per_cluster is not None else self.n_patients_per_cluster,
            n_clusters_per_arm=n_clusters_per_arm if n_clusters_per_arm is not None else self.n_clusters_per_arm,
            icc=self.icc,
            error_sd=self.error_sd,
            confound_icc=self.confound_icc,
            cohens_d=self.cohens_d,
        )

    def true_values(self, spec) -> Dict[str, float]:
        """True value of every parameter a model specification can report.

        Args:
            spec: A ``ModelSpec`` (only ``outcome``, ``fixed_effects`` and
                ``cluster`` are read).

        Returns:
            Mapping of parameter name to its true value.
        """
        confounded = spec.outcome == "y_confounded"
        adjusted = "covariate" in spec.fixed_effects
        shift = self.confound_mean_shift if confounded else 0.0

        cluster_var = self.cluster_sd**2
        error_var = self.error_sd**2
        if spec.cluster is None:
            # Without a clustering term every non-modelled component lands in the residual
            error_var = cluster_var + error_var
            if confounded and not adjusted:
                error_var += shift**2 / 4.0

        ate = self.average_treatment_effect
        return {
            "treatment": ate,
            "covariate": shift,
            "cluster_var": cluster_var,
            "error_var": error_var,
            "icc": self.true_icc,
            "cluster_sd": self.cluster_sd,
            "error_sd": self.error_sd,
            "overlap": float(overlap_raw(ate, self.cluster_sd)),
            "u3": float(u3_raw(ate, self.cluster_sd)),
            "probability_of_superiority": float(probability_of_superiority_raw(ate, self.cluster_sd)),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict view (used for cache keys and result metadata)."""
        return asdict(self)


def resolve_design(
    n_patients_per_cluster: int = 20,
    n_clusters_per_arm: int = 10,
    icc: float = 0.05,
    error_sd: float = 1.5,
    confound_icc: float = 0.1,
    cohens_d: float = 0.5,
) -> DesignParameters:
    """Derive a consistent ``DesignParameters`` from user-facing knobs.

    Args:
        n_patients_per_cluster: Patients per cluster (n1).
        n_clusters_per_arm: Clusters per arm (n2); must be even.
        icc: Target cluster ICC in [0, 1).
        error_sd: Patient-level residual SD (> 0).
        confound_icc: ICC-scale strength of the covariate confound in [0, 1).
        cohens_d: Standardized treatment effect relative to the total SD.

    Returns:
        Immutable ``DesignParameters``.

    Raises:
        ConfigurationError: On any invalid knob.

    Example:
        >>> params = resolve_design(n_patients_per_cluster=20, n_clusters_per_arm=10,
        ...                         icc=0.05, error_sd=1.5, cohens_d=0.5)
        >>> round(params.cluster_sd, 4)
        0.3441
    """
    _validate_design_knobs(n_patients_per_cluster, n_clusters_per_arm, icc, error_sd, confound_icc, cohens_d).raise_if_invalid()

    cluster_sd = cluster_sd_from_icc(icc, error_sd)
    confound_sd = cluster_sd_from_icc(confound_icc, error_sd)
    total_sd = float(np.sqrt(cluster_sd**2 + confound_sd**2 + error_sd**2))

    return DesignParameters(
        n_patients_per_cluster=n_patients_per_cluster,
        n_clusters_per_arm=n_clusters_per_arm,
        cluster_sd=cluster_sd,
        cluster_confound_sd=confound_sd,
        error_sd=float(error_sd),
        average_treatment_effect=derive_ate(cohens_d, total_sd),
        confound_mean_shift=confound_mean_shift(confound_sd, n_clusters_per_arm),
        icc=float(icc),
        confound_icc=float(confound_icc),
        cohens_d=float(cohens_d),
    )
