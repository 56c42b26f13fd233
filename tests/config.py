"""
Shared test configuration constants.

All test files should import from this module to ensure consistency
across the test suite.
"""

# Monte Carlo replicate counts - 3-tier ladder
N_SIMS_CHECK = 20
"""Smoke tests - just verify no crash, structure, API contract."""

N_SIMS_STANDARD = 200
"""Standard tests - bias and confounding checks with loose margins."""

N_SIMS_CALIBRATION = 400
"""Calibration tests - interval coverage against the nominal level."""

SEED = 2137
"""Default random seed for reproducibility."""

# Statistical test parameters
DEFAULT_ALPHA = 0.05
"""Default significance level for hypothesis tests."""

MC_Z = 3.5
"""Z-score for Monte Carlo margin of error calculations, ~5% of bonferronized alpha across 100+ tests."""

ALLOWED_BIAS = 0.01
"""Extra slack (proportion scale) on top of the MC margin."""

# Default bias-study knobs
N1 = 20
N2 = 10
ICC = 0.05
ERROR_SD = 1.5
CONFOUND_ICC = 0.1
COHENS_D = 0.5

# Solver cross-validation tolerances
BETA_ATOL = 1e-3
SE_ATOL = 1e-3
SIGMA2_RTOL = 0.01
TAU2_RTOL = 0.05
