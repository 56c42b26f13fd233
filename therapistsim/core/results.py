"""
Results aggregation for TherapistSim.

This module turns per-replicate estimates into bias, coverage and power
summaries per model and parameter.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from .cache import SCHEMA_VERSION

SUMMARY_COLUMNS = [
    "model",
    "parameter",
    "true_value",
    "n_replicates",
    "n_failed",
    "mean_estimate",
    "bias",
    "relative_bias",
    "empirical_sd",
    "coverage",
    "power",
]

# Value whose exclusion from an interval counts as a rejection
NULL_VALUES = {
    "treatment": 0.0,
    "u3": 0.5,
    "probability_of_superiority": 0.5,
}

# (model, parameter, estimate, lower, upper)
Record = Tuple[str, str, float, float, float]


@dataclass
class ReplicateResult:
    """Everything one replicate produced; discarded after aggregation.

    Attributes:
        rep_id: Zero-based replicate index.
        records: Long-format estimate rows.
        failures: Model name to failure reason, for fits that failed.
    """

    rep_id: int
    records: List[Record] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, eq=False)
class SimulationResult:
    """Aggregated outcome of one study run.

    Attributes:
        summary: One row per model and parameter, ``SUMMARY_COLUMNS``.
        n_replications: Replicates requested.
        config_key: Hash of the configuration that produced this result.
        study: Study kind (``"bias"`` or ``"coverage"``).
        design: Resolved design parameters as a plain dict.
        failure_reasons: Model name to ``{reason: count}``.
        schema_version: Layout version of this record.
    """

    summary: pd.DataFrame
    n_replications: int
    config_key: str
    study: str
    design: Dict[str, Any] = field(default_factory=dict)
    failure_reasons: Dict[str, Dict[str, int]] = field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION

    def for_model(self, model: str) -> pd.DataFrame:
        """Summary rows of one model."""
        return self.summary[self.summary["model"] == model].reset_index(drop=True)

    def get(self, model: str, parameter: str) -> pd.Series:
        """Summary row for one model and parameter.

        Raises:
            KeyError: If the pair was not part of the run.
        """
        mask = (self.summary["model"] == model) & (self.summary["parameter"] == parameter)
        rows = self.summary[mask]
        if rows.empty:
            raise KeyError(f"No summary row for model '{model}', parameter '{parameter}'")
        return rows.iloc[0]

    @property
    def models(self) -> List[str]:
        return list(dict.fromkeys(self.summary["model"]))

    def report(self, parameters: Optional[Iterable[str]] = None) -> str:
        """Plain-text table of the summary, optionally restricted to *parameters*."""
        table = self.summary
        if parameters is not None:
            table = table[table["parameter"].isin(list(parameters))]

        lines = [
            "=" * 80,
            f"{self.study.upper()} STUDY ({self.n_replications} replications)",
            "=" * 80,
            table.to_string(index=False, float_format=lambda v: f"{v:.4f}"),
        ]
        return "\n".join(lines)


class ResultsAggregator:
    """Summarizes replicate results into a ``SimulationResult``.

    Replicates are sorted by ``rep_id`` before anything is computed, so
    the summary does not depend on the order in which workers finished.
    """

    def __init__(self, true_values: Dict[str, Dict[str, float]], model_order: List[str]):
        """Initialise the aggregator.

        Args:
            true_values: Model name to ``{parameter: true value}``.
            model_order: Model names in battery order (row order of the summary).
        """
        self.true_values = true_values
        self.model_order = model_order

    def records_frame(self, replicates: List[ReplicateResult]) -> pd.DataFrame:
        """Long-format frame of every estimate, sorted by ``rep_id``."""
        rows = []
        for rep in sorted(replicates, key=lambda r: r.rep_id):
            for model, parameter, estimate, lower, upper in rep.records:
                rows.append((rep.rep_id, model, parameter, estimate, lower, upper))
        return pd.DataFrame(rows, columns=["rep_id", "model", "parameter", "estimate", "lower", "upper"])

    @staticmethod
    def failure_reasons(replicates: List[ReplicateResult]) -> Dict[str, Dict[str, int]]:
        reasons: Dict[str, Dict[str, int]] = {}
        for rep in replicates:
            for model, reason in rep.failures.items():
                model_reasons = reasons.setdefault(model, {})
                model_reasons[reason] = model_reasons.get(reason, 0) + 1
        return reasons

    def summarize_parameter(self, model: str, parameter: str, rows: pd.DataFrame, n_failed: int) -> Dict[str, Any]:
        """Bias, coverage and power for one model and parameter."""
        true_value = self.true_values.get(model, {}).get(parameter, np.nan)
        estimates = rows["estimate"].to_numpy(dtype=np.float64)
        estimates = estimates[np.isfinite(estimates)]
        n = len(estimates)

        mean_estimate = float(np.mean(estimates)) if n else np.nan
        bias = mean_estimate - true_value
        relative_bias = bias / true_value if true_value != 0 else np.nan
        empirical_sd = float(np.std(estimates, ddof=1)) if n > 1 else np.nan

        lower = rows["lower"].to_numpy(dtype=np.float64)
        upper = rows["upper"].to_numpy(dtype=np.float64)
        has_interval = np.isfinite(lower) & np.isfinite(upper)
        lower, upper = lower[has_interval], upper[has_interval]

        coverage = np.nan
        power = np.nan
        if len(lower):
            if np.isfinite(true_value):
                coverage = float(np.mean((lower <= true_value) & (true_value <= upper)))
            null = NULL_VALUES.get(parameter)
            if null is not None:
                power = float(np.mean((upper < null) | (lower > null)))

        return {
            "model": model,
            "parameter": parameter,
            "true_value": true_value,
            "n_replicates": n,
            "n_failed": n_failed,
            "mean_estimate": mean_estimate,
            "bias": bias,
            "relative_bias": relative_bias,
            "empirical_sd": empirical_sd,
            "coverage": coverage,
            "power": power,
        }

    def aggregate(
        self,
        replicates: List[ReplicateResult],
        config_key: str,
        study: str,
        n_replications: int,
        design: Optional[Dict[str, Any]] = None,
    ) -> SimulationResult:
        """Build the ``SimulationResult`` for one run.

        Args:
            replicates: Every finished replicate, in any order.
            config_key: Configuration hash to stamp on the result.
            study: Study kind.
            n_replications: Replicates requested.
            design: Optional design dict stored as metadata.

        Returns:
            Frozen ``SimulationResult``.
        """
        frame = self.records_frame(replicates)
        reasons = self.failure_reasons(replicates)
        n_failed = {model: sum(counts.values()) for model, counts in reasons.items()}

        rows = []
        for model in self.model_order:
            model_rows = frame[frame["model"] == model]
            for parameter in dict.fromkeys(model_rows["parameter"]):
                rows.append(self.summarize_parameter(model, parameter, model_rows[model_rows["parameter"] == parameter], n_failed.get(model, 0)))
            if model_rows.empty:
                # Every fit failed: keep a treatment row so the failure is visible
                rows.append(self.summarize_parameter(model, "treatment", model_rows, n_failed.get(model, 0)))

        summary = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
        return SimulationResult(
            summary=summary,
            n_replications=n_replications,
            config_key=config_key,
            study=study,
            design=dict(design or {}),
            failure_reasons=reasons,
        )
