"""
Validation utilities for TherapistSim.

This module provides validation functions for design knobs, run settings,
and mathematical constraints. Every check returns a ``_ValidationResult``
so callers can collect several problems before raising.
"""

import os
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

import numpy as np

from ..exceptions import ConfigurationError

__all__ = []


@dataclass
class _ValidationResult:
    """Outcome of a validation check, carrying errors and warnings.

    Attributes:
        is_valid: ``True`` if no errors were found.
        errors: List of error messages (empty when valid).
        warnings: List of non-fatal warning messages.
    """

    is_valid: bool
    errors: List[str]
    warnings: List[str]

    def raise_if_invalid(self):
        """Raise ``ConfigurationError`` if the validation failed."""
        if not self.is_valid:
            error_msg = "Validation failed:\n" + "\n".join(f"• {err}" for err in self.errors)
            raise ConfigurationError(error_msg)

    def merge(self, other: "_ValidationResult") -> "_ValidationResult":
        """Combine two results into one (errors and warnings concatenated)."""
        errors = self.errors + other.errors
        return _ValidationResult(len(errors) == 0, errors, self.warnings + other.warnings)


class _Validator:
    """Static helpers for type and range checks used by all validators."""

    @staticmethod
    def _check_type(value: Any, expected_types: tuple, name: str) -> Optional[str]:
        """Check if value has expected type."""
        # bool is an int subclass, never a valid numeric knob
        if isinstance(value, bool) or not isinstance(value, expected_types):
            actual_type = type(value).__name__
            expected = expected_types[0].__name__ if len(expected_types) == 1 else f"one of {[t.__name__ for t in expected_types]}"
            return f"{name} must be {expected}, got {actual_type}"
        return None

    @staticmethod
    def _check_range(
        value: Union[int, float],
        min_val: Optional[float],
        max_val: Optional[float],
        name: str,
        min_inclusive: bool = True,
        max_inclusive: bool = True,
    ) -> Optional[str]:
        """Check if value is within range."""
        if min_val is not None:
            if value < min_val or (not min_inclusive and value == min_val):
                op = ">=" if min_inclusive else ">"
                return f"{name} must be {op} {min_val}, got {value}"
        if max_val is not None:
            if value > max_val or (not max_inclusive and value == max_val):
                op = "<=" if max_inclusive else "<"
                return f"{name} must be {op} {max_val}, got {value}"
        return None


_validator = _Validator()


def _validate_numeric_parameter(
    value: Any,
    name: str,
    expected_types: tuple = (int, float),
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
    min_inclusive: bool = True,
    max_inclusive: bool = True,
) -> _ValidationResult:
    """Generic validation for numeric parameters."""
    errors: List[str] = []

    type_error = _validator._check_type(value, expected_types, name)
    if type_error:
        errors.append(type_error)
        return _ValidationResult(False, errors, [])

    if isinstance(value, float) and not np.isfinite(value):
        errors.append(f"{name} must be a finite number, got {value}")
        return _ValidationResult(False, errors, [])

    range_error = _validator._check_range(value, min_val, max_val, name, min_inclusive, max_inclusive)
    if range_error:
        errors.append(range_error)

    return _ValidationResult(len(errors) == 0, errors, [])


def _validate_icc(icc: Any, name: str = "ICC") -> _ValidationResult:
    """Validate a variance-partition coefficient in [0, 1)."""
    return _validate_numeric_parameter(icc, name, min_val=0.0, max_val=1.0, max_inclusive=False)


def _validate_sd(sd: Any, name: str, allow_zero: bool = True) -> _ValidationResult:
    """Validate a standard deviation (>= 0, or > 0 when *allow_zero* is False)."""
    return _validate_numeric_parameter(sd, name, min_val=0.0, min_inclusive=allow_zero)


def _validate_cluster_count(n_clusters_per_arm: Any) -> _ValidationResult:
    """Validate clusters per arm: an even integer >= 2.

    The confounded assignment splits each arm's clusters into a low and a
    high half, so the count has to divide evenly.
    """
    result = _validate_numeric_parameter(n_clusters_per_arm, "n_clusters_per_arm", expected_types=(int,), min_val=2)
    if result.is_valid and n_clusters_per_arm % 2 != 0:
        result.errors.append(f"n_clusters_per_arm must be even (clusters are split into two halves per arm), got {n_clusters_per_arm}")
        result.is_valid = False
    return result


def _validate_design_knobs(
    n_patients_per_cluster: Any,
    n_clusters_per_arm: Any,
    icc: Any,
    error_sd: Any,
    confound_icc: Any,
    cohens_d: Any,
) -> _ValidationResult:
    """Validate the user-facing knobs of the parameter resolver in one pass."""
    result = _validate_numeric_parameter(n_patients_per_cluster, "n_patients_per_cluster", expected_types=(int,), min_val=1)
    result = result.merge(_validate_cluster_count(n_clusters_per_arm))
    result = result.merge(_validate_icc(icc, "icc"))
    result = result.merge(_validate_icc(confound_icc, "confound_icc"))
    result = result.merge(_validate_sd(error_sd, "error_sd", allow_zero=False))
    result = result.merge(_validate_numeric_parameter(cohens_d, "cohens_d"))
    return result


def _validate_alpha(alpha: Any) -> _ValidationResult:
    """Validate alpha level parameter (0-0.5)."""
    return _validate_numeric_parameter(alpha, "Alpha", min_val=0, max_val=0.5, min_inclusive=False)


def _validate_simulations(n_simulations: Any, name: str = "Number of simulations") -> Tuple[int, _ValidationResult]:
    """Validate and process number of replications."""
    result = _validate_numeric_parameter(n_simulations, name, expected_types=(int,), min_val=1)

    if result.is_valid:
        if n_simulations < 1000:
            result.warnings.append(f"Low simulation count ({n_simulations}). Consider using at least 1000 for reliable results.")
        return n_simulations, result

    return 0, result


def _validate_parallel_settings(n_jobs: Optional[int], max_workers: Optional[int] = None) -> Tuple[int, _ValidationResult]:
    """Resolve and validate the worker count.

    Args:
        n_jobs: Requested number of workers, or ``None`` for the default
            (available cores minus one).
        max_workers: Upper bound supplied by the environment, if any.

    Returns:
        (resolved_n_jobs, ValidationResult)
    """
    errors = []

    available = os.cpu_count() or 1
    resolved = max(1, available - 1)

    if n_jobs is not None:
        if isinstance(n_jobs, bool) or not isinstance(n_jobs, int) or n_jobs <= 0:
            errors.append(f"n_jobs must be a positive integer, got {n_jobs}")
        else:
            resolved = min(n_jobs, available)

    if max_workers is not None:
        if isinstance(max_workers, bool) or not isinstance(max_workers, int) or max_workers <= 0:
            errors.append(f"max_workers must be a positive integer, got {max_workers}")
        else:
            resolved = min(resolved, max_workers)

    return resolved, _ValidationResult(len(errors) == 0, errors, [])
