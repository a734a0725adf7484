"""Design grids with stable condition identifiers."""

from __future__ import annotations

import hashlib
import itertools
from collections.abc import Iterable, Iterator, Sequence
from typing import Any

import pandas as pd

from ..errors import ConfigurationError

ID_COLUMN = "ID"


def _fingerprint(frame: pd.DataFrame) -> str:
    digest = hashlib.sha256()
    digest.update(repr(list(frame.columns)).encode())
    for row in frame.itertuples(index=False, name=None):
        digest.update(repr(tuple(_plain(v) for v in row)).encode())
    return digest.hexdigest()[:16]


class Design:
    """Ordered table of simulation conditions.

    Each row carries an integer ``ID`` (its ``ConditionID``) assigned when the
    base design is built.  IDs survive subsetting, and every design derived
    from the same base shares its :attr:`namespace` token, which is how
    distributed results are matched back to conditions.

    Parameters
    ----------
    frame : pandas.DataFrame
        Factor columns plus an ``ID`` column.
    namespace : str
        Token identifying the base design.

    Use :meth:`grid` or :meth:`from_frame` rather than the constructor.
    """

    def __init__(self, frame: pd.DataFrame, namespace: str) -> None:
        self._frame = frame.reset_index(drop=True)
        self.namespace = namespace

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> Design:
        """Build a base design from factor columns; IDs are ``1..n``."""

        from ..engine.records import BOOKKEEPING_COLUMNS

        if frame.empty or len(frame.columns) == 0:
            raise ConfigurationError("A design needs at least one row and one factor")
        reserved = sorted(set(frame.columns) & {ID_COLUMN, *BOOKKEEPING_COLUMNS})
        if reserved:
            raise ConfigurationError(f"Reserved column names used as factors: {reserved}")
        factors = frame.reset_index(drop=True).copy()
        factors.columns = [str(c) for c in factors.columns]
        namespace = _fingerprint(factors)
        factors.insert(0, ID_COLUMN, range(1, len(factors) + 1))
        return cls(factors, namespace)

    @classmethod
    def grid(cls, **factors: Iterable[Any]) -> Design:
        """Fully crossed design; the first factor varies slowest.

        Examples
        --------
        >>> design = Design.grid(N=[10, 20], sd=[1.0, 2.0])
        >>> len(design)
        4
        >>> design.ids
        [1, 2, 3, 4]
        """

        if not factors:
            raise ConfigurationError("Design.grid needs at least one factor")
        levels = {name: list(values) for name, values in factors.items()}
        empty = [name for name, values in levels.items() if not values]
        if empty:
            raise ConfigurationError(f"Factors without levels: {empty}")
        rows = list(itertools.product(*levels.values()))
        return cls.from_frame(pd.DataFrame(rows, columns=list(levels)))

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def factor_names(self) -> list[str]:
        return [c for c in self._frame.columns if c != ID_COLUMN]

    @property
    def ids(self) -> list[int]:
        return [int(i) for i in self._frame[ID_COLUMN]]

    def factors(self, position: int) -> dict[str, Any]:
        """Factor values of the row at ``position`` (0-based)."""

        row = self._frame.iloc[position]
        return {name: _plain(row[name]) for name in self.factor_names}

    def lookup(self, condition_id: int) -> dict[str, Any]:
        """Factor values of the condition with ``ID == condition_id``."""

        matches = self._frame.index[self._frame[ID_COLUMN] == condition_id]
        if len(matches) == 0:
            raise KeyError(condition_id)
        return self.factors(int(matches[0]))

    def rows(self) -> Iterator[tuple[int, dict[str, Any]]]:
        """Yield ``(condition_id, factors)`` in design order."""

        for position, condition_id in enumerate(self.ids):
            yield condition_id, self.factors(position)

    def subset(self, condition_ids: Sequence[int]) -> Design:
        """Rows with the given IDs, in the order given, IDs preserved."""

        known = set(self.ids)
        missing = [i for i in condition_ids if i not in known]
        if missing:
            raise ConfigurationError(f"Unknown condition IDs {missing}")
        index = self._frame.set_index(ID_COLUMN, drop=False)
        return Design(index.loc[list(condition_ids)].reset_index(drop=True), self.namespace)

    def to_frame(self) -> pd.DataFrame:
        return self._frame.copy()

    def __len__(self) -> int:
        return len(self._frame)

    def __repr__(self) -> str:
        return f"Design({len(self)} conditions, namespace={self.namespace!r})\n{self._frame}"


def _plain(value: Any) -> Any:
    """Unwrap NumPy scalars so factor values pickle and compare cleanly."""

    item = getattr(value, "item", None)
    if callable(item):
        try:
            return item()
        except (TypeError, ValueError):
            return value
    return value


__all__ = ["Design", "ID_COLUMN"]
