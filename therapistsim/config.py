"""
Run settings for TherapistSim studies.

Settings come from ``THERAPISTSIM_*`` environment variables so the same
scripts serve full production runs and quick reduced runs. Invalid
values raise ``ConfigurationError`` before any work starts.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from .utils.validators import _ValidationResult, _validate_numeric_parameter, _validate_parallel_settings, _validate_simulations

ENV_PREFIX = "THERAPISTSIM_"

PROFILES = ("full", "reduced")
PROFILE_ALIASES = {"anonymized": "reduced"}

# Caps applied by the reduced profile
REDUCED_N_SIMS = 500
REDUCED_N_SIMS_CI = 100
REDUCED_BOOTSTRAP_DRAWS = 100

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "therapistsim"


def _parse_int(environ: Mapping[str, str], name: str, default: Optional[int], result: _ValidationResult) -> Optional[int]:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        result.errors.append(f"{ENV_PREFIX}{name} must be an integer, got '{raw}'")
        result.is_valid = False
        return default


@dataclass(frozen=True)
class StudySettings:
    """Resolved run settings.

    Attributes:
        n_sims: Replicates of the bias study.
        n_sims_ci: Replicates of the coverage study.
        seed: Base seed of both studies.
        profile: ``"full"`` or ``"reduced"``.
        max_workers: Upper bound on worker processes, ``None`` for no cap.
        cache_dir: Directory of the file cache.
        bootstrap_draws: Parametric bootstrap samples per clustered fit in
            the coverage study.
        alpha: Intervals are at level ``1 - alpha``.
    """

    n_sims: int = 5000
    n_sims_ci: int = 1000
    seed: int = 2137
    profile: str = "full"
    max_workers: Optional[int] = None
    cache_dir: Path = DEFAULT_CACHE_DIR
    bootstrap_draws: int = 500
    alpha: float = 0.05

    def __post_init__(self):
        profile = PROFILE_ALIASES.get(self.profile, self.profile)
        object.__setattr__(self, "profile", profile)
        object.__setattr__(self, "cache_dir", Path(self.cache_dir).expanduser())
        self.validate().raise_if_invalid()

        if profile == "reduced":
            object.__setattr__(self, "n_sims", min(self.n_sims, REDUCED_N_SIMS))
            object.__setattr__(self, "n_sims_ci", min(self.n_sims_ci, REDUCED_N_SIMS_CI))
            object.__setattr__(self, "bootstrap_draws", min(self.bootstrap_draws, REDUCED_BOOTSTRAP_DRAWS))

    def validate(self) -> _ValidationResult:
        _, result = _validate_simulations(self.n_sims, "n_sims")
        result = result.merge(_validate_simulations(self.n_sims_ci, "n_sims_ci")[1])
        result = result.merge(_validate_numeric_parameter(self.seed, "seed", expected_types=(int,), min_val=0))
        result = result.merge(_validate_numeric_parameter(self.bootstrap_draws, "bootstrap_draws", expected_types=(int,), min_val=1))
        result = result.merge(_validate_numeric_parameter(self.alpha, "alpha", min_val=0, max_val=0.5, min_inclusive=False))
        if self.max_workers is not None:
            result = result.merge(_validate_parallel_settings(None, self.max_workers)[1])
        if self.profile not in PROFILES:
            errors = [f"profile must be one of {PROFILES} (or 'anonymized'), got '{self.profile}'"]
            result = result.merge(_ValidationResult(False, errors, []))
        return result

    @property
    def reduced(self) -> bool:
        return self.profile == "reduced"

    def with_overrides(self, **changes) -> "StudySettings":
        """Copy with some settings replaced (profile caps are re-applied)."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StudySettings":
        """Read settings from ``THERAPISTSIM_*`` environment variables.

        Args:
            environ: Mapping to read from; defaults to ``os.environ``.

        Raises:
            ConfigurationError: On unparsable or out-of-range values.
        """
        if environ is None:
            environ = os.environ

        result = _ValidationResult(True, [], [])
        defaults = cls.__dataclass_fields__
        kwargs = {
            "n_sims": _parse_int(environ, "N_SIMS", defaults["n_sims"].default, result),
            "n_sims_ci": _parse_int(environ, "N_SIMS_CI", defaults["n_sims_ci"].default, result),
            "seed": _parse_int(environ, "SEED", defaults["seed"].default, result),
            "max_workers": _parse_int(environ, "MAX_WORKERS", None, result),
            "bootstrap_draws": _parse_int(environ, "BOOTSTRAP_DRAWS", defaults["bootstrap_draws"].default, result),
        }
        result.raise_if_invalid()

        profile = environ.get(ENV_PREFIX + "PROFILE", "").strip().lower()
        if profile:
            kwargs["profile"] = profile
        cache_dir = environ.get(ENV_PREFIX + "CACHE_DIR", "").strip()
        if cache_dir:
            kwargs["cache_dir"] = Path(cache_dir)

        return cls(**kwargs)
