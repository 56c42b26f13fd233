"""
The two simulation studies and the overlap grid used for figures.

``run_bias_study`` fits the full model battery to the default design;
``run_coverage_study`` re-resolves the same design with more clusters
and checks interval coverage of the clustered models, including the
bootstrap intervals of the overlap measures.
"""

from typing import Dict, Iterable, Optional

import numpy as np
import pandas as pd

from ..config import StudySettings
from ..stats.models import COVERAGE_BATTERY, DEFAULT_BATTERY
from ..stats.overlap import OverlapMeasures
from .cache import FileCache
from .parameters import DesignParameters, resolve_design
from .results import SimulationResult
from .simulation import ReplicationDriver, StudyConfiguration

BIAS_DESIGN: Dict[str, float] = {
    "n_patients_per_cluster": 20,
    "n_clusters_per_arm": 10,
    "icc": 0.05,
    "error_sd": 1.5,
    "confound_icc": 0.1,
    "cohens_d": 0.5,
}

COVERAGE_N_CLUSTERS_PER_ARM = 30


def bias_design() -> DesignParameters:
    """Design of the bias study."""
    return resolve_design(**BIAS_DESIGN)


def coverage_design() -> DesignParameters:
    """Bias-study knobs re-resolved with ``COVERAGE_N_CLUSTERS_PER_ARM`` clusters per arm."""
    return bias_design().with_sample_sizes(n_clusters_per_arm=COVERAGE_N_CLUSTERS_PER_ARM)


def bias_configuration(settings: StudySettings, design: Optional[DesignParameters] = None) -> StudyConfiguration:
    return StudyConfiguration(
        design=design if design is not None else bias_design(),
        battery=DEFAULT_BATTERY,
        n_replications=settings.n_sims,
        seed=settings.seed,
        study="bias",
        alpha=settings.alpha,
    )


def coverage_configuration(settings: StudySettings, design: Optional[DesignParameters] = None) -> StudyConfiguration:
    return StudyConfiguration(
        design=design if design is not None else coverage_design(),
        battery=COVERAGE_BATTERY,
        n_replications=settings.n_sims_ci,
        seed=settings.seed,
        study="coverage",
        alpha=settings.alpha,
        bootstrap_draws=settings.bootstrap_draws,
    )


def _driver(settings: StudySettings, cache, progress, n_jobs, cancel_check) -> ReplicationDriver:
    if cache is None:
        cache = FileCache(settings.cache_dir)
    return ReplicationDriver(
        n_jobs=n_jobs,
        cache=cache if cache is not False else None,
        progress=progress,
        cancel_check=cancel_check,
        max_workers=settings.max_workers,
    )


def run_bias_study(
    settings: Optional[StudySettings] = None,
    cache=None,
    progress=None,
    n_jobs: Optional[int] = None,
    cancel_check=None,
    design: Optional[DesignParameters] = None,
) -> SimulationResult:
    """Bias, coverage and power of the six-model battery.

    Args:
        settings: Run settings; defaults to ``StudySettings.from_env()``.
        cache: Result store; ``None`` uses a ``FileCache`` in
            ``settings.cache_dir``, ``False`` disables caching.
        progress: Optional ``ProgressReporter``.
        n_jobs: Worker processes; ``None`` uses available cores minus one.
        cancel_check: Optional callable returning ``True`` to abort.
        design: Override of the default bias design.

    Returns:
        SimulationResult with ``study == "bias"``.
    """
    if settings is None:
        settings = StudySettings.from_env()
    config = bias_configuration(settings, design)
    return _driver(settings, cache, progress, n_jobs, cancel_check).run(config)


def run_coverage_study(
    settings: Optional[StudySettings] = None,
    cache=None,
    progress=None,
    n_jobs: Optional[int] = None,
    cancel_check=None,
    design: Optional[DesignParameters] = None,
) -> SimulationResult:
    """Interval coverage of the clustered models with ``n2 = 30``.

    The treatment effect uses its Satterthwaite interval; cluster SD,
    residual SD, ICC and the overlap measures use parametric bootstrap
    percentile intervals. Arguments as for ``run_bias_study``.
    """
    if settings is None:
        settings = StudySettings.from_env()
    config = coverage_configuration(settings, design)
    return _driver(settings, cache, progress, n_jobs, cancel_check).run(config)


def overlap_grid(effect_sizes: Iterable[float], iccs: Iterable[float]) -> pd.DataFrame:
    """Overlap measures over a grid of standardized effects and ICCs.

    Returns:
        Tidy DataFrame with columns ``d``, ``icc``, ``measure``, ``value``;
        one row per grid point and measure.
    """
    d_values = np.asarray(list(effect_sizes), dtype=float)
    icc_values = np.asarray(list(iccs), dtype=float)
    d_grid, icc_grid = np.meshgrid(d_values, icc_values, indexing="ij")

    measures = OverlapMeasures.from_standardized(d_grid.ravel(), icc_grid.ravel()).as_dict()
    frames = [
        pd.DataFrame({"d": d_grid.ravel(), "icc": icc_grid.ravel(), "measure": name, "value": np.asarray(values, dtype=float).ravel()})
        for name, values in measures.items()
    ]
    return pd.concat(frames, ignore_index=True)
