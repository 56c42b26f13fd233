"""
Data generation for TherapistSim.

Draws one synthetic two-arm clustered trial per call. Every dataset
carries two outcome columns built from the *same* cluster effects and
patient errors: one under confounded (covariate-stratified) cluster
assignment and one under random cluster assignment, so the two columns
differ only in the assignment mechanism.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd

from ..core.parameters import OUTCOME_INTERCEPT, DesignParameters
from ..utils.validators import _validate_cluster_count

COLUMNS: Tuple[str, ...] = (
    "treatment",
    "covariate",
    "cluster_confounded",
    "cluster_random",
    "y_confounded",
    "y_random",
)


@dataclass
class ReplicateData:
    """Columnar record of one simulated trial.

    Attributes:
        treatment: (N,) int8, 0 = control, 1 = treatment (fixed blocks).
        covariate: (N,) int8 binary prognostic covariate.
        cluster_confounded: (N,) int64 cluster id under confounded assignment.
        cluster_random: (N,) int64 cluster id under random assignment.
        y_confounded: (N,) float64 outcome under confounded assignment.
        y_random: (N,) float64 outcome under random assignment.
        cluster_effects: (2 * n2,) float64 drawn cluster intercepts,
            control-arm clusters first.
    """

    treatment: np.ndarray
    covariate: np.ndarray
    cluster_confounded: np.ndarray
    cluster_random: np.ndarray
    y_confounded: np.ndarray
    y_random: np.ndarray
    cluster_effects: np.ndarray

    def __len__(self) -> int:
        return len(self.treatment)

    @property
    def n_clusters(self) -> int:
        return len(self.cluster_effects)

    def column(self, name: str) -> np.ndarray:
        """Return one of the ``COLUMNS`` by name."""
        if name not in COLUMNS:
            raise KeyError(f"Unknown column '{name}'. Expected one of: {', '.join(COLUMNS)}")
        return getattr(self, name)

    def to_frame(self) -> pd.DataFrame:
        """Patient-level table with the ``COLUMNS`` in order."""
        return pd.DataFrame({c: getattr(self, c) for c in COLUMNS})


def _assign_clusters(
    treatment: np.ndarray,
    covariate: np.ndarray,
    n_clusters_per_arm: int,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, np.ndarray]:
    """Confounded and random cluster ids for every patient.

    Clusters ``0..n2-1`` belong to the control arm and ``n2..2*n2-1`` to
    the treatment arm. Under confounded assignment a patient with
    covariate 0 draws from the low half of the arm's clusters and one
    with covariate 1 from the high half; under random assignment the
    draw is from the arm's whole pool.
    """
    n = len(treatment)
    half = n_clusters_per_arm // 2
    arm_offset = treatment.astype(np.int64) * n_clusters_per_arm

    confounded = arm_offset + covariate.astype(np.int64) * half + rng.integers(0, half, size=n)
    random = arm_offset + rng.integers(0, n_clusters_per_arm, size=n)
    return confounded, random


def generate_replicate(params: DesignParameters, rng: np.random.Generator) -> ReplicateData:
    """Generate one synthetic trial.

    Args:
        params: Resolved design parameters.
        rng: Independent random generator for this replicate.

    Returns:
        ``ReplicateData`` with ``2 * n1 * n2`` rows.

    Raises:
        ConfigurationError: If ``n_clusters_per_arm`` is odd.
    """
    _validate_cluster_count(params.n_clusters_per_arm).raise_if_invalid()

    n2 = params.n_clusters_per_arm
    n = params.total_n

    # 1. Cluster intercepts: control arm pool, then treatment arm pool
    cluster_effects = np.concatenate(
        [
            rng.normal(0.0, params.cluster_sd, size=n2),
            rng.normal(0.0, params.cluster_sd, size=n2),
        ]
    )

    # 2. Prognostic covariate, independent of everything else
    covariate = rng.binomial(1, 0.5, size=n).astype(np.int8)

    # 3. Fixed block design: first half control, second half treatment
    treatment = np.repeat(np.array([0, 1], dtype=np.int8), n // 2)

    # 4-5. Cluster membership under both mechanisms
    cluster_confounded, cluster_random = _assign_clusters(treatment, covariate, n2, rng)

    # 6. Patient errors shared by both outcomes
    errors = rng.normal(0.0, params.error_sd, size=n)

    # 7-8. Outcomes
    base = OUTCOME_INTERCEPT + treatment * params.average_treatment_effect + errors
    y_confounded = base + cluster_effects[cluster_confounded] + covariate * params.confound_mean_shift
    y_random = base + cluster_effects[cluster_random]

    return ReplicateData(
        treatment=treatment,
        covariate=covariate,
        cluster_confounded=cluster_confounded,
        cluster_random=cluster_random,
        y_confounded=y_confounded,
        y_random=y_random,
        cluster_effects=cluster_effects,
    )
