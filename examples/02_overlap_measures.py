"""
Overlap Measures Example
========================

How much do therapist-effect distributions in the two arms overlap for
a given treatment effect? This example evaluates the three overlap
measures on a grid of effect sizes and ICCs and plots them.
"""

import numpy as np

from therapistsim import overlap, probability_of_superiority, u3
from therapistsim.core.studies import overlap_grid

print("=" * 60)
print("OVERLAP MEASURES EXAMPLE")
print("=" * 60)

# 1. Single values: d = 0.5 with 5% of the variance between therapists
print(f"\nOverlap:                    {overlap(0.5, 0.05):.3f}")
print(f"U3:                         {u3(0.5, 0.05):.3f}")
print(f"Probability of superiority: {probability_of_superiority(0.5, 0.05):.3f}")

# 2. A grid in tidy format, ready for plotting or export
grid = overlap_grid(effect_sizes=[0.2, 0.5, 0.8], iccs=np.linspace(0.01, 0.3, 30))
print("\nGrid (first rows):")
print(grid.head(10).to_string(index=False))

# 3. Plot it (requires matplotlib)
from therapistsim.utils.visualization import _create_overlap_plot

_create_overlap_plot(grid)
