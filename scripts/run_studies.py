#!/usr/bin/env python
"""
Run the TherapistSim studies and write their summaries as CSV.

Replicate counts, seed, profile, worker cap and cache directory come
from the ``THERAPISTSIM_*`` environment variables; command-line options
override them.

Usage:
    python scripts/run_studies.py [--study {bias,coverage,all}] [--output-dir PATH]
                                  [--n-sims N] [--n-sims-ci N] [--seed S]
                                  [--n-jobs J] [--no-cache] [--tqdm] [--plot]
"""

import argparse
from pathlib import Path

import numpy as np

from therapistsim import StudySettings
from therapistsim.core.studies import (
    bias_configuration,
    coverage_configuration,
    overlap_grid,
    run_bias_study,
    run_coverage_study,
)
from therapistsim.progress import PrintReporter, TqdmReporter, make_reporter


def _settings(args) -> StudySettings:
    settings = StudySettings.from_env()
    overrides = {}
    if args.n_sims is not None:
        overrides["n_sims"] = args.n_sims
    if args.n_sims_ci is not None:
        overrides["n_sims_ci"] = args.n_sims_ci
    if args.seed is not None:
        overrides["seed"] = args.seed
    return settings.with_overrides(**overrides) if overrides else settings


def _reporter(total: int, label: str, use_tqdm: bool):
    callback = TqdmReporter(desc=label) if use_tqdm else PrintReporter(label=label)
    return make_reporter(total, callback)


def main():
    parser = argparse.ArgumentParser(description="Run the TherapistSim bias and coverage studies")
    parser.add_argument("--study", choices=["bias", "coverage", "all"], default="all", help="Which study to run (default: all)")
    parser.add_argument("--output-dir", type=Path, default=Path("results"), help="Directory for CSV output")
    parser.add_argument("--n-sims", type=int, default=None, help="Replicates of the bias study")
    parser.add_argument("--n-sims-ci", type=int, default=None, help="Replicates of the coverage study")
    parser.add_argument("--seed", type=int, default=None, help="Base random seed")
    parser.add_argument("--n-jobs", type=int, default=None, help="Worker processes (default: cores - 1)")
    parser.add_argument("--no-cache", action="store_true", help="Recompute even if a cached result exists")
    parser.add_argument("--tqdm", action="store_true", help="Show a tqdm progress bar")
    parser.add_argument("--plot", action="store_true", help="Also save the overlap figure")
    args = parser.parse_args()

    settings = _settings(args)
    cache = False if args.no_cache else None
    args.output_dir.mkdir(parents=True, exist_ok=True)

    print(f"Profile: {settings.profile}, seed: {settings.seed}, cache: {'off' if args.no_cache else settings.cache_dir}")

    if args.study in ("bias", "all"):
        n = bias_configuration(settings).n_replications
        result = run_bias_study(settings, cache=cache, progress=_reporter(n, "bias", args.tqdm), n_jobs=args.n_jobs)
        print(result.report(["treatment", "cluster_var", "error_var", "icc"]))
        result.summary.to_csv(args.output_dir / "bias_study.csv", index=False)

    if args.study in ("coverage", "all"):
        n = coverage_configuration(settings).n_replications
        result = run_coverage_study(settings, cache=cache, progress=_reporter(n, "coverage", args.tqdm), n_jobs=args.n_jobs)
        print(result.report())
        result.summary.to_csv(args.output_dir / "coverage_study.csv", index=False)

    if args.plot:
        from therapistsim.utils.visualization import _create_overlap_plot

        grid = overlap_grid(effect_sizes=[0.2, 0.5, 0.8], iccs=np.linspace(0.01, 0.3, 30))
        grid.to_csv(args.output_dir / "overlap_grid.csv", index=False)
        fig = _create_overlap_plot(grid, show=False)
        fig.savefig(args.output_dir / "overlap.png", dpi=150, bbox_inches="tight")

    print(f"\nResults saved to: {args.output_dir}")


if __name__ == "__main__":
    main()
