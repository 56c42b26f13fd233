"""Exception types raised across the TherapistSim package."""


class ConfigurationError(ValueError):
    """Invalid design or run configuration (raised before any simulation work)."""

    pass


class FitFailure(RuntimeError):
    """A single model fit did not converge or had a singular design.

    Recorded by the replication driver as a missing result for that
    replicate and model; it never aborts the batch.
    """

    def __init__(self, model: str, reason: str):
        super().__init__(f"{model}: {reason}")
        self.model = model
        self.reason = reason


class CacheCorruption(UserWarning):
    """A persisted simulation result could not be read or has the wrong schema.

    Raised internally while reading an artifact and issued as a warning
    category when the cache falls back to recomputing.
    """

    pass
