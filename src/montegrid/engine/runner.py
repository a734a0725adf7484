"""One generate/analyse trial with retry-on-failure.

The runner is where replication-level robustness lives: a misbehaving draw is
discarded and retried from a fresh seed, and only after ``max_tries``
attempts does it give up with :class:`~montegrid.errors.ReplicationFailed`.
Warnings are recorded on the replication record rather than treated as
failures unless the caller escalates them.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Mapping
from typing import Any

from ..errors import FatalError, RedoRequested, ReplicationFailed
from .records import ReplicationRecord
from .seeds import SeedState, SeedStream

logger = logging.getLogger(__name__)

GenerateFn = Callable[[Any, Any, Any], Any]
AnalyseFn = Callable[[Any, Any, Any, Any], Any]


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class ReplicationRunner:
    """Execute replications under a retry policy.

    Parameters
    ----------
    max_tries : int, default 10
        Attempts per replication, including the first.
    warnings_as_errors : bool, default False
        Turn warnings raised inside ``generate``/``analyse`` into retryable
        errors.
    """

    def __init__(self, max_tries: int = 10, *, warnings_as_errors: bool = False) -> None:
        if max_tries < 1:
            raise ValueError("max_tries must be at least 1")
        self.max_tries = max_tries
        self.warnings_as_errors = warnings_as_errors

    def run(
        self,
        generate: GenerateFn,
        analyse: AnalyseFn,
        state: SeedState,
        condition: Mapping[str, Any],
        fixed_objects: Any = None,
    ) -> ReplicationRecord:
        """Run one replication starting from ``state``.

        ``generate(condition, fixed_objects, rng)`` produces the data and
        ``analyse(condition, data, fixed_objects, rng)`` reduces it; both
        receive the same :class:`numpy.random.Generator`, freshly built from
        the current seed state.

        Raises
        ------
        ReplicationFailed
            Every attempt raised a recoverable error.
        FatalError
            Propagated untouched from user code.
        """

        errors: list[str] = []
        for attempt in range(self.max_tries):
            rng = state.generator()
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("error" if self.warnings_as_errors else "always")
                try:
                    data = generate(condition, fixed_objects, rng)
                    result = analyse(condition, data, fixed_objects, rng)
                except FatalError:
                    raise
                except RedoRequested as exc:
                    errors.append(_describe(exc))
                except Exception as exc:  # noqa: BLE001 - user code, retried
                    errors.append(_describe(exc))
                else:
                    return ReplicationRecord(
                        replication=state.replication,
                        seed=state,
                        data=data,
                        result=result,
                        attempts=attempt + 1,
                        errors=tuple(errors),
                        warnings=tuple(_describe(w.message) for w in caught),
                    )
            logger.debug(
                "Replication %d of condition %d: attempt %d failed (%s)",
                state.replication,
                state.condition_id,
                attempt + 1,
                errors[-1],
            )
            state = SeedStream.redraw(state)
        raise ReplicationFailed(state.replication, errors)


__all__ = ["ReplicationRunner", "GenerateFn", "AnalyseFn"]
