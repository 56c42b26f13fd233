"""Model battery and model fitter for TherapistSim.

A ``ModelSpec`` names an outcome column, its fixed-effect terms and an
optional clustering column. ``fit_model`` routes unclustered specs to
OLS and clustered specs to the REML random-intercept solver, and returns
a ``FitResult`` with the treatment estimate, its small-sample inference
and the variance components. Fit problems surface as ``FitFailure``.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.stats import t as t_dist

from ..exceptions import FitFailure
from .data_generation import COLUMNS, ReplicateData
from .lme_solver import lme_fit_with_df
from .ols import ols_fit

FIXED_EFFECT_TERMS = ("treatment", "covariate")
OUTCOME_COLUMNS = ("y_confounded", "y_random")
CLUSTER_COLUMNS = ("cluster_confounded", "cluster_random")


@dataclass(frozen=True)
class ModelSpec:
    """One model of the battery.

    Attributes:
        name: Short identifier used in result tables.
        outcome: Outcome column (``y_confounded`` or ``y_random``).
        fixed_effects: Fixed-effect terms; must start with ``treatment``.
        cluster: Clustering column for a random intercept, or ``None``.
    """

    name: str
    outcome: str
    fixed_effects: Tuple[str, ...] = ("treatment",)
    cluster: Optional[str] = None

    def __post_init__(self):
        from ..utils.validators import _ValidationResult

        errors = []
        if self.outcome not in OUTCOME_COLUMNS:
            errors.append(f"outcome must be one of {OUTCOME_COLUMNS}, got '{self.outcome}'")
        if not self.fixed_effects or self.fixed_effects[0] != "treatment":
            errors.append(f"fixed_effects must start with 'treatment', got {self.fixed_effects}")
        unknown = [t for t in self.fixed_effects if t not in FIXED_EFFECT_TERMS]
        if unknown:
            errors.append(f"Unknown fixed-effect terms: {', '.join(unknown)}")
        if self.cluster is not None and self.cluster not in CLUSTER_COLUMNS:
            errors.append(f"cluster must be one of {CLUSTER_COLUMNS} or None, got '{self.cluster}'")
        _ValidationResult(len(errors) == 0, errors, []).raise_if_invalid()

    @property
    def has_cluster(self) -> bool:
        return self.cluster is not None

    @property
    def formula(self) -> str:
        """R-style formula, e.g. ``y_random ~ treatment + (1|cluster_random)``."""
        rhs = " + ".join(self.fixed_effects)
        if self.cluster is not None:
            rhs += f" + (1|{self.cluster})"
        return f"{self.outcome} ~ {rhs}"

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "outcome": self.outcome,
            "fixed_effects": list(self.fixed_effects),
            "cluster": self.cluster,
        }


DEFAULT_BATTERY: Tuple[ModelSpec, ...] = (
    ModelSpec("conf_ols", "y_confounded", ("treatment",)),
    ModelSpec("conf_ols_adj", "y_confounded", ("treatment", "covariate")),
    ModelSpec("conf_lmm", "y_confounded", ("treatment",), "cluster_confounded"),
    ModelSpec("conf_lmm_adj", "y_confounded", ("treatment", "covariate"), "cluster_confounded"),
    ModelSpec("rand_ols", "y_random", ("treatment",)),
    ModelSpec("rand_lmm", "y_random", ("treatment",), "cluster_random"),
)

COVERAGE_BATTERY: Tuple[ModelSpec, ...] = (
    ModelSpec("rand_lmm", "y_random", ("treatment",), "cluster_random"),
    ModelSpec("conf_lmm_adj", "y_confounded", ("treatment", "covariate"), "cluster_confounded"),
)


@dataclass
class FitResult:
    """Estimates from one model fit on one replicate.

    ``cluster_var`` and ``icc`` are NaN for unclustered models; ``icc`` is
    computed from this fit's own variance components.
    """

    model: str
    treatment: float
    se: float
    df: float
    p_value: float
    ci_lower: float
    ci_upper: float
    error_var: float
    cluster_var: float = np.nan
    covariate: float = np.nan
    coefficients: np.ndarray = field(default=None, repr=False)

    @property
    def icc(self) -> float:
        if np.isnan(self.cluster_var):
            return np.nan
        total = self.cluster_var + self.error_var
        return float(self.cluster_var / total) if total > 0 else np.nan

    def parameter_records(self) -> List[Tuple[str, float, float, float]]:
        """``(parameter, estimate, lower, upper)`` rows for the aggregator.

        Only the treatment effect carries an interval.
        """
        rows = [("treatment", self.treatment, self.ci_lower, self.ci_upper)]
        if not np.isnan(self.covariate):
            rows.append(("covariate", self.covariate, np.nan, np.nan))
        rows.append(("error_var", self.error_var, np.nan, np.nan))
        if not np.isnan(self.cluster_var):
            rows.append(("cluster_var", self.cluster_var, np.nan, np.nan))
            rows.append(("icc", self.icc, np.nan, np.nan))
        return rows


def design_matrix(spec: ModelSpec, data: ReplicateData) -> np.ndarray:
    """Intercept plus the spec's fixed-effect columns."""
    columns = [np.ones(len(data))] + [data.column(term).astype(np.float64) for term in spec.fixed_effects]
    return np.column_stack(columns)


def _wald_t(estimate: float, se: float, df: float, alpha: float) -> Tuple[float, float, float]:
    """Two-sided p-value and ``1 - alpha`` interval from a t reference."""
    t_crit = t_dist.ppf(1 - alpha / 2, df)
    if se > 0:
        p_value = float(2 * t_dist.sf(abs(estimate / se), df))
    else:
        p_value = np.nan
    return p_value, estimate - t_crit * se, estimate + t_crit * se


def fit_model(spec: ModelSpec, data: ReplicateData, alpha: float = 0.05) -> FitResult:
    """Fit one model specification to one dataset.

    Args:
        spec: Model specification.
        data: Simulated trial.
        alpha: Interval level is ``1 - alpha``.

    Returns:
        FitResult.

    Raises:
        FitFailure: On non-convergence, singular designs or non-finite
            estimates.
    """
    X = design_matrix(spec, data)
    y = data.column(spec.outcome)
    has_covariate = "covariate" in spec.fixed_effects

    try:
        if spec.cluster is None:
            ols = ols_fit(X, y)
            beta, se, df = ols.beta, ols.se_beta, float(ols.dof)
            error_var, cluster_var = ols.sigma2, np.nan
        else:
            lme, df = lme_fit_with_df(X, y, data.column(spec.cluster), data.n_clusters, coef_index=1)
            if not lme.converged:
                raise FitFailure(spec.name, "REML optimization did not converge")
            beta, se = lme.beta, lme.se_beta
            error_var, cluster_var = lme.sigma2, lme.tau2
    except np.linalg.LinAlgError as e:
        raise FitFailure(spec.name, f"LinAlgError: {e}") from e

    if not (np.all(np.isfinite(beta)) and np.isfinite(se[1]) and np.isfinite(df)):
        raise FitFailure(spec.name, "non-finite estimates")

    p_value, ci_lower, ci_upper = _wald_t(float(beta[1]), float(se[1]), df, alpha)

    return FitResult(
        model=spec.name,
        treatment=float(beta[1]),
        se=float(se[1]),
        df=df,
        p_value=p_value,
        ci_lower=float(ci_lower),
        ci_upper=float(ci_upper),
        error_var=float(error_var),
        cluster_var=float(cluster_var),
        covariate=float(beta[2]) if has_covariate else np.nan,
        coefficients=beta,
    )


__all__ = [
    "COLUMNS",
    "COVERAGE_BATTERY",
    "DEFAULT_BATTERY",
    "FitResult",
    "ModelSpec",
    "design_matrix",
    "fit_model",
]
