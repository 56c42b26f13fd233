"""
Tests for the overlap plot.
"""

import pytest

matplotlib = pytest.importorskip("matplotlib")
matplotlib.use("Agg")

from therapistsim.core.studies import overlap_grid  # noqa: E402
from therapistsim.utils.visualization import _create_overlap_plot  # noqa: E402


class TestOverlapPlot:
    def test_one_panel_per_measure(self):
        import matplotlib.pyplot as plt

        grid = overlap_grid([0.2, 0.5, 0.8], [0.01, 0.05, 0.1, 0.2])
        fig = _create_overlap_plot(grid, show=False)
        assert len(fig.axes) == 3
        assert len(fig.axes[0].lines) == 3
        plt.close(fig)

    def test_subset_of_measures(self):
        import matplotlib.pyplot as plt

        grid = overlap_grid([0.5], [0.05, 0.1])
        fig = _create_overlap_plot(grid, measures=["u3"], show=False)
        assert len(fig.axes) == 1
        assert fig.axes[0].get_title() == "Cohen's U3"
        plt.close(fig)
