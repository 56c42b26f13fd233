"""Result caching for simulation runs.

Finished runs are keyed by a hash of their full configuration, so a
repeated run with identical inputs returns the stored result instead of
recomputing. Stores are written once per run, after every replicate has
finished, and the file store replaces its artifact atomically.
"""

import copy
import hashlib
import json
import os
import pickle
import tempfile
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

from ..exceptions import CacheCorruption

# Bump when the stored SimulationResult layout changes
SCHEMA_VERSION = 1


def _json_default(obj):
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (tuple, set)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def configuration_key(payload: Dict[str, Any]) -> str:
    """Stable SHA-256 hex digest of a JSON-serializable configuration.

    Key order and whitespace do not influence the digest.
    """
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=_json_default)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class MemoryCache:
    """In-process store, mostly for tests and interactive sessions.

    Results are deep-copied on the way in and out, so editing a returned
    summary never changes the stored entry.
    """

    def __init__(self):
        self._store: Dict[str, Any] = {}

    def get(self, key: str):
        result = self._store.get(key)
        return copy.deepcopy(result) if result is not None else None

    def put(self, key: str, result) -> None:
        self._store[key] = copy.deepcopy(result)

    def __contains__(self, key: str) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)


class FileCache:
    """On-disk store with one pickle file per configuration key.

    Unreadable artifacts, or ones whose schema version or key does not
    match, emit a ``CacheCorruption`` warning and are treated as misses.
    """

    SUFFIX = ".pkl"

    def __init__(self, directory=None):
        """Initialise the file cache.

        Args:
            directory: Cache directory. Defaults to ``~/.cache/therapistsim``.
        """
        if directory is None:
            directory = Path.home() / ".cache" / "therapistsim"
        self.directory = Path(directory).expanduser()

    def ensure_directory(self) -> None:
        """Ensure cache directory exists."""
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}{self.SUFFIX}"

    def get(self, key: str):
        """Return the stored result for *key*, or ``None`` on a miss."""
        path = self.path_for(key)
        if not path.exists():
            return None

        try:
            with open(path, "rb") as fh:
                result = pickle.load(fh)
            self._check(result, key)
        except (OSError, pickle.UnpicklingError, EOFError, AttributeError, ImportError, ValueError, TypeError, KeyError, IndexError, CacheCorruption) as e:
            warnings.warn(f"Ignoring unreadable cache entry {path.name}: {e}", CacheCorruption, stacklevel=2)
            return None

        return result

    @staticmethod
    def _check(result, key: str) -> None:
        schema = getattr(result, "schema_version", None)
        if schema != SCHEMA_VERSION:
            raise CacheCorruption(f"schema version {schema}, expected {SCHEMA_VERSION}")
        if getattr(result, "config_key", None) != key:
            raise CacheCorruption("configuration key mismatch")

    def put(self, key: str, result) -> None:
        """Write *result* under *key*, replacing any existing entry atomically."""
        self.ensure_directory()
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key[:12]}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                pickle.dump(result, fh, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(tmp_name, self.path_for(key))
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def __contains__(self, key: str) -> bool:
        return self.path_for(key).exists()

    def clear(self) -> int:
        """Delete every cached entry; returns how many were removed."""
        if not self.directory.exists():
            return 0
        removed = 0
        for path in self.directory.glob(f"*{self.SUFFIX}"):
            path.unlink()
            removed += 1
        return removed
