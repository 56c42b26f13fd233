"""
Shared pytest fixtures for TherapistSim tests.
"""

import numpy as np
import pytest

from tests.config import COHENS_D, CONFOUND_ICC, ERROR_SD, ICC, N1, N2, SEED


@pytest.fixture
def design():
    """Default bias-study design (n1=20, n2=10)."""
    from therapistsim.core.parameters import resolve_design

    return resolve_design(N1, N2, ICC, ERROR_SD, CONFOUND_ICC, COHENS_D)


@pytest.fixture
def small_design():
    """Small design for fast driver tests."""
    from therapistsim.core.parameters import resolve_design

    return resolve_design(n_patients_per_cluster=8, n_clusters_per_arm=4, icc=0.2, error_sd=1.0, confound_icc=0.1, cohens_d=0.5)


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


@pytest.fixture
def replicate(design, rng):
    """One simulated trial from the default design."""
    from therapistsim.stats.data_generation import generate_replicate

    return generate_replicate(design, rng)


@pytest.fixture
def memory_cache():
    from therapistsim.core.cache import MemoryCache

    return MemoryCache()


@pytest.fixture
def file_cache(tmp_path):
    from therapistsim.core.cache import FileCache

    return FileCache(tmp_path / "cache")


@pytest.fixture
def quiet_settings(tmp_path):
    """Reduced settings writing into a temporary cache directory."""
    from therapistsim.config import StudySettings

    return StudySettings(n_sims=10, n_sims_ci=5, bootstrap_draws=20, profile="reduced", cache_dir=tmp_path / "cache")


def pytest_configure(config):
    config.addinivalue_line("markers", "lme: tests of the mixed-model solver")
    config.addinivalue_line("markers", "slow: Monte Carlo calibration tests")
