"""
Visualization utilities for TherapistSim.

This module provides line plots of the overlap measures as functions of
the variance-partition coefficient.
"""

from typing import Optional, Sequence

import numpy as np
import pandas as pd

__all__ = []

MEASURE_LABELS = {
    "overlap": "Overlap",
    "u3": "Cohen's U3",
    "probability_of_superiority": "Probability of superiority",
}


def _create_overlap_plot(
    grid: pd.DataFrame,
    measures: Optional[Sequence[str]] = None,
    title: str = "Overlap of therapist-effect distributions",
    show: bool = True,
):
    """One panel per measure, one line per effect size, ICC on the x-axis.

    Args:
        grid: Tidy frame from ``overlap_grid`` (columns ``d``, ``icc``,
            ``measure``, ``value``).
        measures: Measures to draw; defaults to all measures in *grid*.
        title: Figure title.
        show: Call ``plt.show()`` after drawing.

    Returns:
        The matplotlib ``Figure``.

    Raises:
        ImportError: If ``matplotlib`` is not installed.
    """
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        raise ImportError("matplotlib required for plotting: pip install matplotlib") from None

    if measures is None:
        measures = list(dict.fromkeys(grid["measure"]))
    effect_sizes = sorted(grid["d"].unique())

    fig, axes = plt.subplots(1, len(measures), figsize=(5 * len(measures), 4.5), squeeze=False)
    colors = plt.get_cmap("viridis")(np.linspace(0, 0.9, len(effect_sizes)))

    for ax, measure in zip(axes[0], measures):
        subset = grid[grid["measure"] == measure]
        for color, d in zip(colors, effect_sizes):
            line = subset[subset["d"] == d].sort_values("icc")
            ax.plot(line["icc"], line["value"], "-", color=color, linewidth=2, label=f"d = {d:g}")

        ax.set_title(MEASURE_LABELS.get(measure, measure), fontsize=12)
        ax.set_xlabel("ICC", fontsize=11)
        ax.set_ylim(0, 1.02)
        ax.grid(True, alpha=0.3)

    axes[0][0].set_ylabel("Value", fontsize=11)
    axes[0][-1].legend(loc="lower right")
    fig.suptitle(title, fontsize=14, fontweight="bold")
    plt.tight_layout()
    if show:
        plt.show()
    return fig
