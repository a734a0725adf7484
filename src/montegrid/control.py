"""Run-time settings shared by the driver, executor and runner."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from .errors import ConfigurationError
from .utils.timing import parse_duration


@dataclass(frozen=True)
class SimulationControl:
    """Settings controlling one simulation run.

    Attributes
    ----------
    seed : int or None
        Master seed for :class:`~montegrid.engine.seeds.SeedStream`.  When
        ``None`` a seed is generated and surfaced with a warning; array runs
        require an explicit seed.
    max_tries : int
        Attempts allowed per replication before it is recorded as missing.
    max_time : float, str or None
        Wall-clock budget per condition, in seconds or as ``[D-]HH:MM:SS``,
        counting time carried over from checkpoints.
        Stored as seconds.
    warnings_as_errors : bool
        Escalate warnings raised by ``generate``/``analyse`` to retryable
        errors.
    store_results : bool
        Keep raw per-replication results and their seed states in each row.
    checkpoint_every : int
        Write a checkpoint after every *k* replications; ``0`` disables
        checkpointing.  Requires a store.
    filename : str
        Basename of result and checkpoint artifacts.
    n_jobs : int
        Number of joblib workers across units.  ``1`` runs serially.
    backend : str or None
        joblib backend (``"loky"``, ``"threading"``, ...).
    progress : bool
        Print ``[i/n]`` progress lines to stderr.
    """

    seed: int | None = None
    max_tries: int = 10
    max_time: float | str | None = None
    warnings_as_errors: bool = False
    store_results: bool = False
    checkpoint_every: int = 0
    filename: str = "simulation"
    n_jobs: int = 1
    backend: str | None = None
    progress: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "max_time", parse_duration(self.max_time))
        if self.seed is not None and (
            isinstance(self.seed, bool) or not isinstance(self.seed, int) or self.seed < 0
        ):
            raise ConfigurationError("seed must be a non-negative integer or None")
        if self.max_tries < 1:
            raise ConfigurationError("max_tries must be at least 1")
        if self.checkpoint_every < 0:
            raise ConfigurationError("checkpoint_every must be non-negative")
        if self.n_jobs == 0:
            raise ConfigurationError("n_jobs must be non-zero")
        if not self.filename or any(sep in self.filename for sep in ("/", "\\")):
            raise ConfigurationError(f"Invalid artifact basename {self.filename!r}")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> SimulationControl:
        """Build settings from a plain dictionary, rejecting unknown keys."""

        mapping = dict(mapping or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown control settings {unknown}; choose from {sorted(known)}"
            )
        return cls(**mapping)

    def replace(self, **changes: Any) -> SimulationControl:
        """Return a copy with ``changes`` applied."""

        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(changes)
        return type(self)(**values)


__all__ = ["SimulationControl"]
