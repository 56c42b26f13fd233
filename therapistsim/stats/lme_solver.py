"""REML solver for random-intercept linear mixed models.

Implements REML/ML estimation via profiled deviance optimization,
following Bates et al. (2015) "Fitting Linear Mixed-Effects Models
Using lme4" (JSS 67(1), arXiv:1406.5823).

For a single random intercept the covariance of y is block diagonal,
so the profiled deviance reduces to a 1D optimization over
``lambda^2 = tau^2 / sigma^2`` (Brent's method) with every per-cluster
operation scalar. Per-cluster cross-products are computed once and
reused by each deviance evaluation.

Small-sample inference for a fixed effect uses the Satterthwaite
approximation: the REML information matrix of ``(tau^2, sigma^2)`` and
the gradient of ``Var(beta_k)`` are obtained by central differences of
closed-form block-diagonal expressions.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

FLOAT_NEAR_ZERO = 1e-15
TAU2_BOUNDARY = 1e-8
LAMBDA_SQ_UPPER = 1e6


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class SufficientStats:
    """Per-cluster precomputed statistics for LME fitting.

    All cross-products are precomputed once per fit, then reused across
    all optimizer evaluations of the profiled deviance.
    """

    K: int  # number of clusters
    p: int  # fixed effects (including intercept)
    N: int  # total observations
    cluster_sizes: np.ndarray  # (K,)
    ZtX: np.ndarray  # (K, p) column sums of X per cluster
    Zty: np.ndarray  # (K,) sum of y per cluster
    XtX: np.ndarray  # (p, p) pooled
    Xty: np.ndarray  # (p,) pooled
    yty: float  # pooled


@dataclass
class LMEResult:
    """Result of LME model fitting."""

    beta: np.ndarray  # (p,) fixed effects incl. intercept
    sigma2: float  # residual variance
    tau2: float  # random intercept variance
    lam_sq: float  # tau2 / sigma2 at the optimum
    cov_beta: np.ndarray  # (p, p) covariance of fixed effects
    se_beta: np.ndarray  # (p,) standard errors
    converged: bool


# ---------------------------------------------------------------------------
# Sufficient statistics computation
# ---------------------------------------------------------------------------


def compute_sufficient_statistics(X, y, cluster_ids, K):
    """Precompute per-cluster cross-products for LME fitting.

    With ``Z_j = 1_{n_j}``:
        ZtZ_j = n_j
        ZtX_j = colsum(X_j)
        Zty_j = sum(y_j)

    Only the cluster-level quantities are needed per cluster; ``X'X``,
    ``X'y`` and ``y'y`` enter the deviance pooled.

    Args:
        X: (N, p) fixed-effects design matrix (with intercept column).
        y: (N,) response vector.
        cluster_ids: (N,) integer cluster membership in ``0..K-1``.
        K: Number of clusters (empty clusters are allowed).

    Returns:
        SufficientStats instance.
    """
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    cluster_ids = np.asarray(cluster_ids, dtype=np.int64)
    N, p = X.shape

    if cluster_ids.shape[0] != N or y.shape[0] != N:
        raise ValueError("X, y and cluster_ids must have the same number of rows")
    if N and (cluster_ids.min() < 0 or cluster_ids.max() >= K):
        raise ValueError(f"cluster_ids must lie in [0, {K})")

    cluster_sizes = np.bincount(cluster_ids, minlength=K).astype(np.float64)
    ZtX = np.zeros((K, p))
    np.add.at(ZtX, cluster_ids, X)
    Zty = np.bincount(cluster_ids, weights=y, minlength=K)

    return SufficientStats(
        K=K,
        p=p,
        N=N,
        cluster_sizes=cluster_sizes,
        ZtX=ZtX,
        Zty=Zty,
        XtX=X.T @ X,
        Xty=X.T @ y,
        yty=float(y @ y),
    )


# ---------------------------------------------------------------------------
# Profiled deviance
# ---------------------------------------------------------------------------


def _absorb_random_intercepts(lam_sq, stats):
    """Schur complement after absorbing the random intercepts.

    Returns ``(A, b, c, log_det_L)`` where ``A = X'V*^{-1}X``,
    ``b = X'V*^{-1}y``, ``c = y'V*^{-1}y`` with ``V* = V / sigma^2`` and
    ``log_det_L = log|I + lam_sq Z'Z|``.
    """
    M = lam_sq * stats.cluster_sizes + 1.0
    w = lam_sq / M

    A = stats.XtX - (stats.ZtX * w[:, None]).T @ stats.ZtX
    b = stats.Xty - stats.ZtX.T @ (w * stats.Zty)
    c = stats.yty - np.sum(w * stats.Zty**2)
    log_det_L = float(np.sum(np.log(M)))
    return A, b, c, log_det_L


def _profiled_deviance(lam_sq, stats, reml):
    """Evaluate profiled REML/ML deviance at ``lambda^2``.

    Args:
        lam_sq: tau^2 / sigma^2. Must be >= 0.
        stats: SufficientStats.
        reml: True for REML, False for ML.

    Returns:
        Profiled deviance value (scalar to minimize).
    """
    A, b, c, log_det_L = _absorb_random_intercepts(lam_sq, stats)

    try:
        R_X = np.linalg.cholesky(A)
    except np.linalg.LinAlgError:
        return 1e30  # Not positive definite

    z = np.linalg.solve(R_X, b)
    r_sq = c - z @ z
    if r_sq <= 0:
        return 1e30

    if reml:
        log_det_RX = 2.0 * np.sum(np.log(np.diag(R_X)))
        return log_det_L + log_det_RX + (stats.N - stats.p) * np.log(r_sq)
    return log_det_L + stats.N * np.log(r_sq)


def _extract_results(lam_sq_opt, stats, reml, converged=True):
    """Extract beta, sigma2, tau2 and cov_beta at the optimum."""
    N, p = stats.N, stats.p
    A, b, c, _ = _absorb_random_intercepts(lam_sq_opt, stats)

    beta = np.linalg.solve(A, b)
    r_sq = float(c - beta @ b)
    sigma2 = r_sq / (N - p) if reml else r_sq / N
    tau2 = float(sigma2 * lam_sq_opt)

    cov_beta = sigma2 * np.linalg.inv(A)
    se_beta = np.sqrt(np.maximum(np.diag(cov_beta), 0.0))

    return LMEResult(
        beta=beta,
        sigma2=float(sigma2),
        tau2=tau2,
        lam_sq=float(lam_sq_opt),
        cov_beta=cov_beta,
        se_beta=se_beta,
        converged=converged,
    )


# ---------------------------------------------------------------------------
# Main fitting function
# ---------------------------------------------------------------------------


def _fit_stats(stats, reml=True):
    """Fit a random intercept model from precomputed statistics."""
    from scipy.optimize import minimize_scalar

    if stats.N <= stats.p:
        raise np.linalg.LinAlgError(f"Not enough observations ({stats.N}) for {stats.p} fixed effects")

    def objective(lam_sq):
        return _profiled_deviance(lam_sq, stats, reml)

    result = minimize_scalar(objective, bounds=(0.0, LAMBDA_SQ_UPPER), method="bounded", options={"xatol": 1e-8, "maxiter": 200})

    lam_sq_opt = float(result.x)
    # Bounded Brent never evaluates the boundary itself; tau^2 = 0 is a legal REML optimum
    if objective(0.0) <= result.fun:
        lam_sq_opt = 0.0

    converged = bool(result.success) and result.fun < 1e30 and lam_sq_opt < LAMBDA_SQ_UPPER * 0.99
    return _extract_results(lam_sq_opt, stats, reml, converged=converged)


def lme_fit(X, y, cluster_ids, K, reml=True):
    """Fit a random-intercept linear mixed model.

    Args:
        X: (N, p) fixed-effects design matrix (WITH intercept column).
        y: (N,) response vector.
        cluster_ids: (N,) integer cluster membership.
        K: Number of clusters.
        reml: Use REML (True) or ML (False).

    Returns:
        LMEResult with estimated parameters.
    """
    stats = compute_sufficient_statistics(X, y, cluster_ids, K)
    return _fit_stats(stats, reml)


# ---------------------------------------------------------------------------
# Satterthwaite degrees of freedom
# ---------------------------------------------------------------------------


def _reml_loglik_and_cov(theta, stats) -> Tuple[float, np.ndarray]:
    """REML log-likelihood and ``Cov(beta)`` as functions of ``(tau2, sigma2)``.

    Uses ``V_j^{-1} = (I - w_j 11') / sigma2`` with
    ``w_j = tau2 / (sigma2 + n_j tau2)``.
    """
    tau2, sigma2 = theta
    n = stats.cluster_sizes
    w = tau2 / (sigma2 + n * tau2)

    XtVinvX = (stats.XtX - (stats.ZtX * w[:, None]).T @ stats.ZtX) / sigma2
    XtVinvy = (stats.Xty - stats.ZtX.T @ (w * stats.Zty)) / sigma2
    ytVinvy = (stats.yty - np.sum(w * stats.Zty**2)) / sigma2

    cov_beta = np.linalg.inv(XtVinvX)
    r_quad = ytVinvy - XtVinvy @ cov_beta @ XtVinvy

    # log|V| over non-empty clusters; an empty cluster contributes -log(sigma2) + log(sigma2) = 0
    log_det_V = float(np.sum((n - 1.0) * np.log(sigma2) + np.log(sigma2 + n * tau2)))
    _, log_det_XVX = np.linalg.slogdet(XtVinvX)

    loglik = -0.5 * (log_det_V + log_det_XVX + r_quad)
    return float(loglik), cov_beta


def _numeric_hessian(func, x, steps):
    """Central-difference Hessian of a scalar function."""
    k = len(x)
    H = np.zeros((k, k))
    for i in range(k):
        for j in range(i, k):
            ei = np.zeros(k)
            ej = np.zeros(k)
            ei[i] = steps[i]
            ej[j] = steps[j]
            val = (func(x + ei + ej) - func(x + ei - ej) - func(x - ei + ej) + func(x - ei - ej)) / (4.0 * steps[i] * steps[j])
            H[i, j] = H[j, i] = val
    return H


def satterthwaite_df(stats: SufficientStats, result: LMEResult, coef_index: int) -> float:
    """Satterthwaite degrees of freedom for one fixed-effect coefficient.

    ``df = 2 * Var(beta_k)^2 / (g' A g)`` where ``A`` is the asymptotic
    covariance of the variance parameters (inverse REML information) and
    ``g`` the gradient of ``Var(beta_k)`` with respect to them. When
    ``tau^2`` sits on the zero boundary it is held fixed and only
    ``sigma^2`` is treated as estimated.

    Args:
        stats: SufficientStats the model was fitted on.
        result: REML fit.
        coef_index: Index into ``beta`` (intercept is 0).

    Returns:
        Degrees of freedom, clipped to ``[1, N - p]``.
    """
    upper = float(stats.N - stats.p)
    theta_hat = np.array([result.tau2, result.sigma2])

    if result.tau2 < TAU2_BOUNDARY:
        free = [1]
    else:
        free = [0, 1]

    def full_theta(sub):
        theta = theta_hat.copy()
        theta[free] = sub
        return theta

    def loglik(sub):
        return _reml_loglik_and_cov(full_theta(sub), stats)[0]

    def var_k(sub):
        return _reml_loglik_and_cov(full_theta(sub), stats)[1][coef_index, coef_index]

    x0 = theta_hat[free]
    steps = np.maximum(np.abs(x0) * 1e-4, 1e-7)
    # Keep tau^2 - step > 0 for the central differences
    steps = np.minimum(steps, np.abs(x0) * 0.5)

    H = _numeric_hessian(loglik, x0, steps)
    try:
        asym_cov = np.linalg.inv(-H)
    except np.linalg.LinAlgError:
        asym_cov = np.linalg.pinv(-H)

    grad = np.zeros(len(x0))
    for i in range(len(x0)):
        e = np.zeros(len(x0))
        e[i] = steps[i]
        grad[i] = (var_k(x0 + e) - var_k(x0 - e)) / (2.0 * steps[i])

    v = result.cov_beta[coef_index, coef_index]
    denom = float(grad @ asym_cov @ grad)
    if not np.isfinite(denom) or denom <= FLOAT_NEAR_ZERO:
        return upper

    df = 2.0 * v**2 / denom
    return float(np.clip(df, 1.0, upper))


def lme_fit_with_df(X, y, cluster_ids, K, coef_index: int) -> Tuple[LMEResult, float]:
    """REML fit plus Satterthwaite df for ``beta[coef_index]``."""
    stats = compute_sufficient_statistics(X, y, cluster_ids, K)
    result = _fit_stats(stats, reml=True)
    df: Optional[float] = None
    if result.converged:
        df = satterthwaite_df(stats, result, coef_index)
    return result, df
