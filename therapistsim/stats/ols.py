"""
OLS fitting for the unclustered models of the model battery.

Solves the normal equations through a QR decomposition and reports
coefficients with classical standard errors and residual df.
"""

from dataclasses import dataclass

import numpy as np


@dataclass
class OLSResult:
    """Result of an OLS fit."""

    beta: np.ndarray  # (p,) including intercept
    se_beta: np.ndarray  # (p,)
    sigma2: float  # residual variance (ss_res / dof)
    dof: int  # n - p


def ols_fit(X, y):
    """Ordinary least squares with classical standard errors.

    Args:
        X: (n, p) design matrix WITH intercept column.
        y: (n,) response vector.

    Returns:
        OLSResult.

    Raises:
        np.linalg.LinAlgError: If the design is rank deficient or has no
            residual degrees of freedom.
    """
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    n, p = X.shape
    dof = n - p
    if dof <= 0:
        raise np.linalg.LinAlgError(f"No residual degrees of freedom (n={n}, p={p})")

    Q, R = np.linalg.qr(X)
    if np.any(np.abs(np.diag(R)) < 1e-10 * max(1.0, np.abs(R).max())):
        raise np.linalg.LinAlgError("Design matrix is rank deficient")

    beta = np.linalg.solve(R, Q.T @ y)
    residuals = y - X @ beta
    ss_res = float(residuals @ residuals)
    mse = ss_res / dof

    # diag((X'X)^{-1}) = row sums of squares of R^{-1}
    R_inv = np.linalg.solve(R, np.eye(p))
    var_coef = mse * np.sum(R_inv**2, axis=1)
    se_beta = np.sqrt(np.maximum(var_coef, 0.0))

    return OLSResult(beta=beta, se_beta=se_beta, sigma2=mse, dof=dof)
