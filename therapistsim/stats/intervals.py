"""
Parametric bootstrap intervals for variance components and overlap measures.

The random-intercept fit gives Wald intervals only for fixed effects.
Intervals for the cluster SD and for the effect sizes derived from it
come from simulating new outcomes under the fitted model, refitting,
and taking percentiles of the refitted draws.
"""

from typing import Dict

import numpy as np

from ..exceptions import FitFailure
from .data_generation import ReplicateData
from .lme_solver import lme_fit
from .models import FitResult, ModelSpec, design_matrix
from .overlap import overlap_raw, probability_of_superiority_raw, u3_raw

BOOTSTRAP_PARAMETERS = ("treatment", "cluster_sd", "error_sd", "icc", "overlap", "u3", "probability_of_superiority")

# Share of refits that must succeed for the draws to be usable
MIN_SUCCESS_RATE = 0.5


def parametric_bootstrap(
    spec: ModelSpec,
    data: ReplicateData,
    fit: FitResult,
    n_draws: int,
    rng: np.random.Generator,
) -> Dict[str, np.ndarray]:
    """Simulate from a fitted random-intercept model and refit.

    Args:
        spec: Clustered model specification that produced *fit*.
        data: Dataset the model was fitted on (design and clusters reused).
        fit: Converged fit of *spec* on *data*.
        n_draws: Number of bootstrap samples.
        rng: Random generator for the bootstrap outcomes.

    Returns:
        Dict with arrays ``treatment``, ``cluster_sd`` and ``error_sd`` of
        successful refits.

    Raises:
        FitFailure: If *spec* has no clustering term, or fewer than half of
            the refits succeed.
    """
    if spec.cluster is None:
        raise FitFailure(spec.name, "parametric bootstrap needs a clustering term")

    X = design_matrix(spec, data)
    clusters = data.column(spec.cluster)
    K = data.n_clusters
    n = len(data)
    mean = X @ fit.coefficients
    cluster_sd = np.sqrt(max(fit.cluster_var, 0.0))
    error_sd = np.sqrt(max(fit.error_var, 0.0))

    treatment = []
    cluster_sds = []
    error_sds = []
    for _ in range(n_draws):
        y_star = mean + rng.normal(0.0, cluster_sd, size=K)[clusters] + rng.normal(0.0, error_sd, size=n)
        try:
            result = lme_fit(X, y_star, clusters, K, reml=True)
        except np.linalg.LinAlgError:
            continue
        if not result.converged:
            continue
        treatment.append(result.beta[1])
        cluster_sds.append(np.sqrt(result.tau2))
        error_sds.append(np.sqrt(result.sigma2))

    n_ok = len(treatment)
    if n_ok < MIN_SUCCESS_RATE * n_draws:
        raise FitFailure(spec.name, f"only {n_ok}/{n_draws} bootstrap refits converged")

    return {
        "treatment": np.asarray(treatment),
        "cluster_sd": np.asarray(cluster_sds),
        "error_sd": np.asarray(error_sds),
    }


def bootstrap_intervals(draws: Dict[str, np.ndarray], level: float = 0.95) -> Dict[str, tuple]:
    """Percentile intervals for the bootstrapped and derived parameters.

    ICC and the overlap measures are computed per draw before taking
    percentiles, so every interval respects the parameter's range.

    Args:
        draws: Output of ``parametric_bootstrap``.
        level: Interval coverage level.

    Returns:
        Mapping of parameter name to ``(lower, upper)``.
    """
    tail = (1.0 - level) / 2.0 * 100.0
    cluster_var = draws["cluster_sd"] ** 2
    error_var = draws["error_sd"] ** 2

    derived = {
        "treatment": draws["treatment"],
        "cluster_sd": draws["cluster_sd"],
        "error_sd": draws["error_sd"],
        "icc": cluster_var / (cluster_var + error_var),
        "overlap": np.atleast_1d(overlap_raw(draws["treatment"], draws["cluster_sd"])),
        "u3": np.atleast_1d(u3_raw(draws["treatment"], draws["cluster_sd"])),
        "probability_of_superiority": np.atleast_1d(probability_of_superiority_raw(draws["treatment"], draws["cluster_sd"])),
    }

    intervals = {}
    for name in BOOTSTRAP_PARAMETERS:
        lower, upper = np.percentile(derived[name], [tail, 100.0 - tail])
        intervals[name] = (float(lower), float(upper))
    return intervals


def point_estimates(fit: FitResult) -> Dict[str, float]:
    """Point estimates matching ``BOOTSTRAP_PARAMETERS`` for one clustered fit."""
    cluster_sd = float(np.sqrt(max(fit.cluster_var, 0.0)))
    return {
        "treatment": fit.treatment,
        "cluster_sd": cluster_sd,
        "error_sd": float(np.sqrt(max(fit.error_var, 0.0))),
        "icc": fit.icc,
        "overlap": float(overlap_raw(fit.treatment, cluster_sd)),
        "u3": float(u3_raw(fit.treatment, cluster_sd)),
        "probability_of_superiority": float(probability_of_superiority_raw(fit.treatment, cluster_sd)),
    }
