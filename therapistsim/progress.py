"""
Progress reporting for TherapistSim runs.

Provides a callback-based progress system for scripts and notebooks.
Progress is reported via a simple (current, total) callback counted in
replicates.
"""

import sys
from typing import Callable, Optional


class SimulationCancelled(Exception):
    """Raised when a simulation run is cancelled by the caller."""

    pass


class ProgressReporter:
    """Wraps a ``(current, total)`` callback with counting and throttling.

    Tracks the number of completed replicates and fires the callback at
    most once every *update_every* advances, so fast runs do not flood
    the terminal.

    Args:
        total: Total number of replicates.
        callback: Function called as ``callback(current, total)`` on each
            (throttled) update.
        update_every: Fire the callback at most once per this many advances.
            Defaults to ``max(1, total // 200)`` (~200 updates total).
    """

    def __init__(
        self,
        total: int,
        callback: Callable[[int, int], None],
        update_every: Optional[int] = None,
    ):
        self.total = total
        self._callback = callback
        self._current = 0
        self._last_fired = 0
        self.update_every = update_every if update_every is not None else max(1, total // 200)

    @property
    def current(self) -> int:
        return self._current

    def start(self):
        """Signal the beginning of the run (fires an initial 0/total update)."""
        self._current = 0
        self._last_fired = 0
        self._callback(0, self.total)

    def advance(self, n: int = 1):
        """Advance the counter by *n* replicates, firing the callback when due."""
        self._current = min(self._current + n, self.total)
        # Chunked workers advance by more than one at a time
        if self._current >= self.total or self._current - self._last_fired >= self.update_every:
            self._last_fired = self._current
            self._callback(self._current, self.total)

    def finish(self):
        """Signal completion (fires a final total/total update if not already there)."""
        if self._current < self.total:
            self._current = self.total
            self._callback(self.total, self.total)


class PrintReporter:
    """Console progress reporter, prints ``\\rProgress:  45.2% (723/1600 replicates)``."""

    def __init__(self, label: str = ""):
        self.label = f"{label}: " if label else ""

    def __call__(self, current: int, total: int):
        if total <= 0:
            return
        pct = 100.0 * current / total
        sys.stderr.write(f"\r{self.label}Progress: {pct:5.1f}% ({current}/{total} replicates)")
        sys.stderr.flush()
        if current >= total:
            sys.stderr.write("\n")
            sys.stderr.flush()


class TqdmReporter:
    """Optional tqdm-based progress reporter (lazy import).

    Usage::

        from therapistsim.progress import ProgressReporter, TqdmReporter
        reporter = ProgressReporter(5000, TqdmReporter(desc="bias study"))
    """

    def __init__(self, **tqdm_kwargs):
        self._tqdm_kwargs = tqdm_kwargs
        self._bar = None

    def __call__(self, current: int, total: int):
        from tqdm import tqdm

        if self._bar is None:
            self._bar = tqdm(total=total, unit="rep", **self._tqdm_kwargs)

        delta = current - self._bar.n
        if delta > 0:
            self._bar.update(delta)

        if current >= total:
            self._bar.close()
            self._bar = None


def make_reporter(total: int, progress_callback=None) -> Optional[ProgressReporter]:
    """Resolve a ``progress_callback`` argument into a ``ProgressReporter``.

    Args:
        total: Replicates in the run.
        progress_callback: ``None`` prints to stderr, ``False`` disables
            progress, any other callable receives ``(current, total)``.
    """
    if progress_callback is False:
        return None
    if progress_callback is None:
        progress_callback = PrintReporter()
    return ProgressReporter(total, progress_callback)
