"""TherapistSim - Monte Carlo studies of therapist effects in clustered trials.

Simulates two-arm trials where patients are nested in therapists, fits a
battery of OLS and random-intercept models to each replicate, and
summarizes bias, interval coverage and power. Closed-form overlap
measures describe how far apart the therapist-effect distributions of
the two arms are.

Example:
    >>> from therapistsim import StudySettings, run_bias_study
    >>>
    >>> settings = StudySettings(n_sims=200, profile="reduced")
    >>> result = run_bias_study(settings, cache=False, n_jobs=1)
    >>> print(result.report(parameters=["treatment"]))
"""

from importlib.metadata import version as _get_version

from .config import StudySettings
from .core import (
    DesignParameters,
    FileCache,
    MemoryCache,
    ReplicationDriver,
    SimulationResult,
    StudyConfiguration,
    overlap_grid,
    resolve_design,
    run_bias_study,
    run_coverage_study,
)
from .exceptions import CacheCorruption, ConfigurationError, FitFailure
from .progress import PrintReporter, ProgressReporter, SimulationCancelled, TqdmReporter
from .stats.models import COVERAGE_BATTERY, DEFAULT_BATTERY, ModelSpec, fit_model
from .stats.overlap import OverlapMeasures, overlap, overlap_measures, probability_of_superiority, u3

__version__ = _get_version("TherapistSim")

__all__ = [
    "StudySettings",
    "DesignParameters",
    "resolve_design",
    "ModelSpec",
    "DEFAULT_BATTERY",
    "COVERAGE_BATTERY",
    "fit_model",
    "StudyConfiguration",
    "ReplicationDriver",
    "SimulationResult",
    "FileCache",
    "MemoryCache",
    "run_bias_study",
    "run_coverage_study",
    "overlap_grid",
    "OverlapMeasures",
    "overlap",
    "overlap_measures",
    "u3",
    "probability_of_superiority",
    "ConfigurationError",
    "FitFailure",
    "CacheCorruption",
    "SimulationCancelled",
    "ProgressReporter",
    "PrintReporter",
    "TqdmReporter",
]
