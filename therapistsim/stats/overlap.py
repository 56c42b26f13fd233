"""Closed-form overlap effect-size measures for cluster-effect distributions.

Each measure compares the distribution of cluster (therapist) effects in
the treatment arm with that of the control arm, both normal with the
cluster SD and shifted by the treatment effect. Two parameterizations
are provided and are algebraically identical:

* standardized: ``d = ATE / total_sd`` and ``icc = cluster_sd^2 / total_sd^2``
* raw: ``ATE`` and ``cluster_sd``

All functions accept scalars or numpy arrays (e.g. bootstrap or
posterior draws) and broadcast.
"""

from dataclasses import dataclass
from typing import Union

import numpy as np
from scipy.stats import norm

from ..exceptions import ConfigurationError

ArrayLike = Union[float, np.ndarray]

SQRT2 = np.sqrt(2.0)


def _check_icc(icc) -> np.ndarray:
    icc_arr = np.asarray(icc, dtype=float)
    if np.any(~np.isfinite(icc_arr)) or np.any(icc_arr <= 0.0) or np.any(icc_arr > 1.0):
        raise ConfigurationError(f"icc must lie in (0, 1] for overlap measures, got {icc}")
    return icc_arr


def _check_cluster_sd(cluster_sd) -> np.ndarray:
    sd_arr = np.asarray(cluster_sd, dtype=float)
    if np.any(sd_arr < 0.0):
        raise ConfigurationError(f"cluster_sd must be >= 0, got {cluster_sd}")
    return sd_arr


def _as_output(value: np.ndarray) -> ArrayLike:
    return float(value) if np.ndim(value) == 0 else value


def overlap(d: ArrayLike, icc: ArrayLike) -> ArrayLike:
    """Overlapping coefficient ``2 * Phi(-|d| / (2 * sqrt(icc)))``."""
    icc_arr = _check_icc(icc)
    return _as_output(2.0 * norm.cdf(-np.abs(d) / (2.0 * np.sqrt(icc_arr))))


def u3(d: ArrayLike, icc: ArrayLike) -> ArrayLike:
    """Cohen's U3 ``Phi(d / sqrt(icc))``."""
    icc_arr = _check_icc(icc)
    return _as_output(norm.cdf(np.asarray(d, dtype=float) / np.sqrt(icc_arr)))


def probability_of_superiority(d: ArrayLike, icc: ArrayLike) -> ArrayLike:
    """Probability of superiority ``Phi(d / (sqrt(icc) * sqrt(2)))``."""
    icc_arr = _check_icc(icc)
    return _as_output(norm.cdf(np.asarray(d, dtype=float) / (np.sqrt(icc_arr) * SQRT2)))


def _effect_in_cluster_sds(ate, cluster_sd) -> np.ndarray:
    """``ATE / cluster_sd`` with the degenerate-distribution limits at ``cluster_sd == 0``.

    A zero effect over a zero SD is treated as no separation (ratio 0).
    """
    ate_arr = np.asarray(ate, dtype=float)
    sd_arr = _check_cluster_sd(cluster_sd)
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = ate_arr / sd_arr
    return np.where(ate_arr == 0.0, 0.0, ratio)


def overlap_raw(ate: ArrayLike, cluster_sd: ArrayLike) -> ArrayLike:
    """Overlapping coefficient ``2 * Phi(-|ATE| / (2 * cluster_sd))``."""
    ratio = _effect_in_cluster_sds(ate, cluster_sd)
    return _as_output(2.0 * norm.cdf(-np.abs(ratio) / 2.0))


def u3_raw(ate: ArrayLike, cluster_sd: ArrayLike) -> ArrayLike:
    """Cohen's U3 ``Phi(ATE / cluster_sd)``."""
    return _as_output(norm.cdf(_effect_in_cluster_sds(ate, cluster_sd)))


def probability_of_superiority_raw(ate: ArrayLike, cluster_sd: ArrayLike) -> ArrayLike:
    """Probability of superiority ``Phi(ATE / (cluster_sd * sqrt(2)))``."""
    return _as_output(norm.cdf(_effect_in_cluster_sds(ate, cluster_sd) / SQRT2))


@dataclass(frozen=True)
class OverlapMeasures:
    """The three overlap measures for one ``(effect, icc)`` source.

    Fields hold floats for scalar inputs and arrays for vectorized inputs.
    """

    overlap: ArrayLike
    u3: ArrayLike
    probability_of_superiority: ArrayLike

    @classmethod
    def from_standardized(cls, d: ArrayLike, icc: ArrayLike) -> "OverlapMeasures":
        """Build from a standardized effect size and a variance-partition coefficient."""
        return cls(
            overlap=overlap(d, icc),
            u3=u3(d, icc),
            probability_of_superiority=probability_of_superiority(d, icc),
        )

    @classmethod
    def from_raw(cls, ate: ArrayLike, cluster_sd: ArrayLike) -> "OverlapMeasures":
        """Build from a raw treatment effect and the cluster SD."""
        return cls(
            overlap=overlap_raw(ate, cluster_sd),
            u3=u3_raw(ate, cluster_sd),
            probability_of_superiority=probability_of_superiority_raw(ate, cluster_sd),
        )

    def as_dict(self):
        return {
            "overlap": self.overlap,
            "u3": self.u3,
            "probability_of_superiority": self.probability_of_superiority,
        }


def overlap_measures(d: ArrayLike = None, icc: ArrayLike = None, ate: ArrayLike = None, cluster_sd: ArrayLike = None) -> OverlapMeasures:
    """``OverlapMeasures`` from either ``(d, icc)`` or ``(ate, cluster_sd)``.

    Raises:
        ConfigurationError: Unless exactly one complete pair is given.
    """
    standardized = d is not None and icc is not None
    raw = ate is not None and cluster_sd is not None
    given = [name for name, value in (("d", d), ("icc", icc), ("ate", ate), ("cluster_sd", cluster_sd)) if value is not None]
    if standardized == raw or len(given) != 2:
        raise ConfigurationError(f"Pass either (d, icc) or (ate, cluster_sd), got {given}")
    if standardized:
        return OverlapMeasures.from_standardized(d, icc)
    return OverlapMeasures.from_raw(ate, cluster_sd)
