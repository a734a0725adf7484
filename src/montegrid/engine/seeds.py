"""Reproducible random substreams keyed by condition and replication.

Every replication draws from its own :class:`numpy.random.SeedSequence`
built from the master entropy and a fixed-length spawn key
``(condition_id, replication, attempt)``.  SeedSequence hashes the key into
the generator state, so distinct keys give statistically independent
streams, and the stream of replication *r* is the same whether it runs
first, last, in another process, or in a make-up job submitted weeks later.
The usual ``seed + i`` re-seeding is deliberately avoided because adjacent
integer seeds can produce correlated streams.

State is threaded explicitly: no function here touches NumPy's global
random state.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any

import numpy as np

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


def _check_index(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int | np.integer) or value < 0:
        raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")
    return int(value)


@dataclass(frozen=True)
class SeedState:
    """Serializable position in the substream tree.

    Attributes
    ----------
    entropy : int
        Master entropy shared by the whole run.
    condition_id : int
        Condition the stream belongs to.
    replication : int
        Replication index within the condition (not within a unit).
    attempt : int
        Retry counter; ``0`` for the first draw of a replication.
    """

    entropy: int
    condition_id: int
    replication: int
    attempt: int = 0

    @property
    def key(self) -> tuple[int, int, int]:
        return (self.condition_id, self.replication, self.attempt)

    def seed_sequence(self) -> np.random.SeedSequence:
        return np.random.SeedSequence(self.entropy, spawn_key=self.key)

    def generator(self) -> np.random.Generator:
        """Fresh generator positioned at the start of this substream."""

        return np.random.default_rng(self.seed_sequence())

    def as_dict(self) -> dict[str, int]:
        return {
            "entropy": self.entropy,
            "condition_id": self.condition_id,
            "replication": self.replication,
            "attempt": self.attempt,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, int]) -> SeedState:
        return cls(**payload)


class SeedStream:
    """Derive per-replication seed states from one master seed.

    Parameters
    ----------
    master_seed : int or None
        Non-negative master seed.  When ``None`` fresh OS entropy is drawn,
        exposed as :attr:`master_seed`, and a :class:`UserWarning` asks the
        caller to record it; without it a run cannot be continued later.

    Examples
    --------
    >>> stream = SeedStream(2024)
    >>> state = stream.substream(condition_id=3, replication_offset=0)
    >>> SeedStream.advance(state).replication
    1
    """

    def __init__(self, master_seed: int | None = None) -> None:
        if master_seed is None:
            entropy = int(np.random.SeedSequence().entropy)
            self.generated = True
            logger.warning("No master seed supplied; generated seed %d", entropy)
            warnings.warn(
                f"No master seed supplied; generated seed {entropy}. Record it to "
                "reproduce or extend this run.",
                UserWarning,
                stacklevel=2,
            )
        else:
            entropy = _check_index("master_seed", master_seed)
            self.generated = False
        self._entropy = entropy

    @property
    def master_seed(self) -> int:
        return self._entropy

    def substream(self, condition_id: int, replication_offset: int = 0) -> SeedState:
        """First seed state of a unit.

        A unit is identified by its condition and the index of its first
        replication; units of one condition that cover disjoint replication
        ranges never share a seed state.
        """

        return SeedState(
            entropy=self._entropy,
            condition_id=_check_index("condition_id", condition_id),
            replication=_check_index("replication_offset", replication_offset),
        )

    @staticmethod
    def advance(state: SeedState) -> SeedState:
        """Seed state of the next replication."""

        return SeedState(state.entropy, state.condition_id, state.replication + 1, 0)

    @staticmethod
    def redraw(state: SeedState) -> SeedState:
        """Fresh seed state for retrying the same replication."""

        return SeedState(
            state.entropy, state.condition_id, state.replication, state.attempt + 1
        )


__all__ = ["SeedState", "SeedStream"]
