"""
Replication driver for TherapistSim.

Fans a study configuration out into independent replicates, fits the
model battery on each one, and gathers the per-replicate estimates for
aggregation. Replicates run in joblib worker processes when more than
one worker is available; a finished run is stored in the cache so that
an identical configuration is never recomputed.
"""

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import FitFailure
from ..stats.data_generation import generate_replicate
from ..stats.intervals import bootstrap_intervals, parametric_bootstrap, point_estimates
from ..stats.models import DEFAULT_BATTERY, ModelSpec, fit_model
from ..utils.validators import _ValidationResult, _validate_alpha, _validate_numeric_parameter, _validate_parallel_settings, _validate_simulations
from .cache import SCHEMA_VERSION, configuration_key
from .parameters import DesignParameters
from .results import ReplicateResult, ResultsAggregator, SimulationResult

STUDY_KINDS = ("bias", "coverage")

# Warn when a model fails in more than this share of replicates
FAILURE_WARN_RATE = 0.05


class RunState(Enum):
    """Lifecycle of one ``ReplicationDriver.run`` call."""

    PENDING = "pending"
    RUNNING = "running"
    CACHED = "cached"
    FAILED = "failed"


@dataclass(frozen=True)
class StudyConfiguration:
    """Everything that determines the result of one run.

    Attributes:
        design: Resolved design parameters.
        battery: Model specifications fitted on every replicate.
        n_replications: Number of replicates.
        seed: Base seed; replicate ``i`` uses the ``i``-th spawned child.
        study: Study kind, one of ``STUDY_KINDS``.
        alpha: Intervals are at level ``1 - alpha``.
        bootstrap_draws: Parametric bootstrap samples per clustered fit
            (0 disables the bootstrap).
    """

    design: DesignParameters
    battery: Tuple[ModelSpec, ...] = DEFAULT_BATTERY
    n_replications: int = 5000
    seed: int = 2137
    study: str = "bias"
    alpha: float = 0.05
    bootstrap_draws: int = 0

    def __post_init__(self):
        object.__setattr__(self, "battery", tuple(self.battery))
        self.validate().raise_if_invalid()

    def validate(self) -> _ValidationResult:
        _, result = _validate_simulations(self.n_replications, "n_replications")
        result = result.merge(_validate_alpha(self.alpha))
        result = result.merge(_validate_numeric_parameter(self.seed, "seed", expected_types=(int,), min_val=0))
        result = result.merge(_validate_numeric_parameter(self.bootstrap_draws, "bootstrap_draws", expected_types=(int,), min_val=0))

        errors = []
        if self.study not in STUDY_KINDS:
            errors.append(f"study must be one of {STUDY_KINDS}, got '{self.study}'")
        if not self.battery:
            errors.append("battery must contain at least one model")
        names = [spec.name for spec in self.battery]
        if len(set(names)) != len(names):
            errors.append(f"model names in the battery must be unique, got {names}")
        return result.merge(_ValidationResult(len(errors) == 0, errors, []))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "design": self.design.to_dict(),
            "battery": [spec.to_dict() for spec in self.battery],
            "n_replications": self.n_replications,
            "seed": self.seed,
            "study": self.study,
            "alpha": self.alpha,
            "bootstrap_draws": self.bootstrap_draws,
            "schema_version": SCHEMA_VERSION,
        }

    @property
    def key(self) -> str:
        """Cache key of this configuration."""
        return configuration_key(self.to_dict())

    def true_values(self) -> Dict[str, Dict[str, float]]:
        return {spec.name: self.design.true_values(spec) for spec in self.battery}


def _fit_records(spec: ModelSpec, data, config: StudyConfiguration, rng: np.random.Generator) -> List[tuple]:
    """Estimate rows of one model on one replicate.

    Raises:
        FitFailure: If the fit, or its bootstrap, fails.
    """
    fit = fit_model(spec, data, config.alpha)
    rows = {param: (est, lo, hi) for param, est, lo, hi in fit.parameter_records()}

    if config.bootstrap_draws > 0 and spec.cluster is not None:
        draws = parametric_bootstrap(spec, data, fit, config.bootstrap_draws, rng)
        intervals = bootstrap_intervals(draws, level=1.0 - config.alpha)
        estimates = point_estimates(fit)
        for param, (lo, hi) in intervals.items():
            # The treatment effect keeps its Satterthwaite interval
            if param == "treatment":
                continue
            rows[param] = (estimates[param], lo, hi)

    return [(spec.name, param, est, lo, hi) for param, (est, lo, hi) in rows.items()]


def _run_replicate(rep_id: int, seed_seq: np.random.SeedSequence, config: StudyConfiguration) -> ReplicateResult:
    """Generate one dataset and fit the whole battery on it."""
    rng = np.random.default_rng(seed_seq)
    data = generate_replicate(config.design, rng)

    result = ReplicateResult(rep_id=rep_id)
    for spec in config.battery:
        try:
            result.records.extend(_fit_records(spec, data, config, rng))
        except FitFailure as e:
            result.failures[spec.name] = e.reason
    return result


def _run_chunk(rep_ids: Sequence[int], seed_seqs: Sequence[np.random.SeedSequence], config: StudyConfiguration) -> List[ReplicateResult]:
    """Worker entry point: a contiguous block of replicates."""
    return [_run_replicate(rep_id, ss, config) for rep_id, ss in zip(rep_ids, seed_seqs)]


class ReplicationDriver:
    """Runs a ``StudyConfiguration`` and returns its ``SimulationResult``.

    A cache hit returns the stored result unchanged. Otherwise every
    replicate is computed, results are sorted by ``rep_id``, aggregated,
    and written to the cache once, after the last replicate finished.
    Interrupted runs write nothing.
    """

    def __init__(
        self,
        n_jobs: Optional[int] = None,
        cache=None,
        progress=None,
        cancel_check: Optional[Callable[[], bool]] = None,
        max_workers: Optional[int] = None,
        chunks_per_worker: int = 8,
    ):
        """Initialise the driver.

        Args:
            n_jobs: Worker processes; ``None`` uses available cores minus one.
            cache: Optional store with ``get(key)`` / ``put(key, result)``.
            progress: Optional ``ProgressReporter`` (advanced once per replicate).
            cancel_check: Optional callable returning ``True`` to abort.
            max_workers: Upper bound on workers (environment setting).
            chunks_per_worker: Replicate blocks dispatched per worker.
        """
        self.n_jobs, validation = _validate_parallel_settings(n_jobs, max_workers)
        validation.raise_if_invalid()
        self.cache = cache
        self.progress = progress
        self.cancel_check = cancel_check
        self.chunks_per_worker = chunks_per_worker
        self.state = RunState.PENDING

    def _check_cancel(self):
        if self.cancel_check is not None and self.cancel_check():
            from ..progress import SimulationCancelled

            raise SimulationCancelled("Simulation cancelled by user")

    def _chunks(self, n_replications: int, seed_seqs: List[np.random.SeedSequence]):
        n_chunks = max(1, min(n_replications, self.n_jobs * self.chunks_per_worker))
        for block in np.array_split(np.arange(n_replications), n_chunks):
            if len(block):
                ids = [int(i) for i in block]
                yield ids, [seed_seqs[i] for i in ids]

    def _run_sequential(self, config: StudyConfiguration, seed_seqs) -> List[ReplicateResult]:
        replicates = []
        for rep_id, ss in enumerate(seed_seqs):
            self._check_cancel()
            replicates.append(_run_replicate(rep_id, ss, config))
            if self.progress is not None:
                self.progress.advance(1)
        return replicates

    def _run_parallel(self, config: StudyConfiguration, seed_seqs) -> List[ReplicateResult]:
        from joblib import Parallel, delayed

        from ..progress import SimulationCancelled

        try:
            chunk_results = Parallel(
                n_jobs=self.n_jobs,
                backend="loky",
                verbose=0,
                return_as="generator_unordered",
            )(delayed(_run_chunk)(ids, seeds, config) for ids, seeds in self._chunks(config.n_replications, seed_seqs))
            replicates = []
            for chunk in chunk_results:
                self._check_cancel()
                replicates.extend(chunk)
                if self.progress is not None:
                    self.progress.advance(len(chunk))
            return replicates
        except Exception as e:
            if isinstance(e, SimulationCancelled):
                raise
            warnings.warn(f"Parallel execution failed ({e}). Falling back to sequential.", stacklevel=3)
            if self.progress is not None:
                self.progress.start()
            return self._run_sequential(config, seed_seqs)

    def run(self, config: StudyConfiguration) -> SimulationResult:
        """Execute (or fetch from cache) one study configuration.

        Raises:
            SimulationCancelled: If ``cancel_check`` requested a stop.
            RuntimeError: If every fit of every model failed.
        """
        self.state = RunState.PENDING
        key = config.key

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                self.state = RunState.CACHED
                return cached

        for message in config.validate().warnings:
            warnings.warn(message, stacklevel=2)

        self.state = RunState.RUNNING
        seed_seqs = np.random.SeedSequence(config.seed).spawn(config.n_replications)

        try:
            if self.progress is not None:
                self.progress.start()
            if self.n_jobs > 1 and config.n_replications > 1:
                replicates = self._run_parallel(config, seed_seqs)
            else:
                replicates = self._run_sequential(config, seed_seqs)
            if self.progress is not None:
                self.progress.finish()

            replicates.sort(key=lambda r: r.rep_id)
            _check_failures(replicates, config)

            aggregator = ResultsAggregator(config.true_values(), [spec.name for spec in config.battery])
            result = aggregator.aggregate(
                replicates,
                config_key=key,
                study=config.study,
                n_replications=config.n_replications,
                design=config.design.to_dict(),
            )
        except BaseException:
            self.state = RunState.FAILED
            raise

        if self.cache is not None:
            self.cache.put(key, result)
        self.state = RunState.CACHED
        return result


def _check_failures(replicates: List[ReplicateResult], config: StudyConfiguration) -> None:
    """Warn about failure rates; raise if nothing converged at all."""
    n_reps = len(replicates)
    n_failed = {spec.name: 0 for spec in config.battery}
    for rep in replicates:
        for model in rep.failures:
            n_failed[model] += 1

    if n_reps and all(count == n_reps for count in n_failed.values()):
        raise RuntimeError("All model fits failed in every replicate")

    for model, count in n_failed.items():
        if count == 0:
            continue
        failed_pct = count / n_reps
        if failed_pct > FAILURE_WARN_RATE:
            warnings.warn(f"{model}: {count}/{n_reps} fits failed ({failed_pct:.1%}) - check the design", stacklevel=3)
        else:
            warnings.warn(f"{model}: {count} fits failed ({failed_pct:.1%})", stacklevel=3)
