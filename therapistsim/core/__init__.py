"""Core components for the TherapistSim framework.

Re-exports the foundational building blocks:

- ``DesignParameters``, ``resolve_design`` - design parameter resolution.
- ``StudyConfiguration``, ``ReplicationDriver``, ``RunState`` - Monte
  Carlo replication.
- ``ResultsAggregator``, ``SimulationResult`` - bias, coverage and power.
- ``FileCache``, ``MemoryCache``, ``configuration_key`` - result caching.
- ``run_bias_study``, ``run_coverage_study``, ``overlap_grid`` - studies.
"""

from .parameters import DesignParameters, resolve_design
from .cache import FileCache, MemoryCache, configuration_key
from .results import ReplicateResult, ResultsAggregator, SimulationResult
from .simulation import ReplicationDriver, RunState, StudyConfiguration
from .studies import overlap_grid, run_bias_study, run_coverage_study

__all__ = [
    # Parameters
    "DesignParameters",
    "resolve_design",
    # Cache
    "FileCache",
    "MemoryCache",
    "configuration_key",
    # Results
    "ReplicateResult",
    "ResultsAggregator",
    "SimulationResult",
    # Simulation
    "ReplicationDriver",
    "RunState",
    "StudyConfiguration",
    # Studies
    "overlap_grid",
    "run_bias_study",
    "run_coverage_study",
]
