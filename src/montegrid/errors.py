"""Exception taxonomy for the simulation engine.

Four kinds of failure are distinguished:

* recoverable replication errors (:class:`RedoRequested` or any ordinary
  exception raised by user code), retried by the replication runner;
* terminal replication failures (:class:`ReplicationFailed`), recorded by the
  condition executor as a missing replication;
* row-fatal failures, which never raise and instead produce a result row with
  ``STATUS == "failed"``;
* fatal errors (:class:`FatalError` and its subclasses), which indicate a
  caller logic error and abort the whole operation.
"""

from __future__ import annotations

from collections.abc import Sequence


class SimulationError(Exception):
    """Base class for all errors raised by :mod:`montegrid`."""


class RedoRequested(SimulationError):
    """Raised by ``generate`` or ``analyse`` to discard the current draw.

    The replication runner catches this, advances to a fresh seed and tries
    again.  It counts against the retry limit like any other recoverable
    error.
    """


class ReplicationFailed(SimulationError):
    """A replication exhausted its retry budget."""

    def __init__(self, replication: int, errors: Sequence[str]) -> None:
        self.replication = replication
        self.errors = tuple(errors)
        last = self.errors[-1] if self.errors else "unknown error"
        super().__init__(
            f"Replication {replication} failed after {len(self.errors)} attempts; "
            f"last error: {last}"
        )


class FatalError(SimulationError):
    """Error that must not be retried and aborts the current operation."""


class ConfigurationError(FatalError, ValueError):
    """Malformed design, control settings or seed material."""


class NamespaceMismatchError(ConfigurationError):
    """Two designs with incompatible ``ConditionID`` namespaces were combined."""


class NonDecomposableSummaryError(ConfigurationError):
    """Summary statistics cannot be recombined across distributed units."""

    def __init__(self, condition_id: int, detail: str | None = None) -> None:
        self.condition_id = condition_id
        message = (
            f"non-decomposable summary across distributed units for condition "
            f"{condition_id}"
        )
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


__all__ = [
    "SimulationError",
    "RedoRequested",
    "ReplicationFailed",
    "FatalError",
    "ConfigurationError",
    "NamespaceMismatchError",
    "NonDecomposableSummaryError",
]
