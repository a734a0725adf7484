"""Artifact stores for unit results and checkpoints.

Artifacts are keyed by ``(basename, unit, kind)``.  The file-based store
names them ``<basename>-<unit>.pkl`` (results) and
``<basename>-<unit>.checkpoint`` (checkpoints) so external tooling that
globs array-job outputs keeps working.  Each unit is written by exactly one
worker, so no cross-unit locking is needed; writes are atomic so a reader
never sees half an artifact.
"""

from __future__ import annotations

import logging
import os
import pickle
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

RESULT = "result"
CHECKPOINT = "checkpoint"

_EXTENSIONS = {RESULT: "pkl", CHECKPOINT: "checkpoint"}


@dataclass(frozen=True, order=True)
class ArtifactKey:
    """Address of one artifact."""

    basename: str
    unit: int
    kind: str = RESULT

    def __post_init__(self) -> None:
        if self.kind not in _EXTENSIONS:
            raise ValueError(f"Unknown artifact kind {self.kind!r}")

    @property
    def filename(self) -> str:
        return f"{self.basename}-{self.unit}.{_EXTENSIONS[self.kind]}"

    def checkpoint(self) -> ArtifactKey:
        return ArtifactKey(self.basename, self.unit, CHECKPOINT)


class ArtifactStore(Protocol):
    """Key-value persistence used by the driver, executor and collector."""

    def write(self, key: ArtifactKey, obj: Any) -> None:
        """Persist ``obj`` under ``key``, replacing any previous artifact."""

    def read(self, key: ArtifactKey) -> Any:
        """Return the artifact stored under ``key``."""

    def exists(self, key: ArtifactKey) -> bool:
        """Whether an artifact is stored under ``key``."""

    def list(self, basename: str, kind: str = RESULT) -> list[ArtifactKey]:
        """Keys of ``kind`` stored for ``basename``, ordered by unit."""

    def delete(self, key: ArtifactKey) -> None:
        """Remove the artifact under ``key`` if present."""


def _dumps(obj: Any) -> bytes:
    return pickle.dumps(obj, protocol=pickle.HIGHEST_PROTOCOL)


class FileStore:
    """Pickle artifacts into a directory.

    Parameters
    ----------
    directory : str or Path
        Target directory, created on first use.
    """

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def path(self, key: ArtifactKey) -> Path:
        return self.directory / key.filename

    def write(self, key: ArtifactKey, obj: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.path(key)
        temp = self.directory / f".{key.filename}.tmp"
        try:
            temp.write_bytes(_dumps(obj))
            os.replace(temp, target)
        finally:
            if temp.exists():
                temp.unlink()
        logger.debug("Wrote %s", target)

    def read(self, key: ArtifactKey) -> Any:
        with open(self.path(key), "rb") as handle:
            return pickle.load(handle)

    def exists(self, key: ArtifactKey) -> bool:
        return self.path(key).is_file()

    def list(self, basename: str, kind: str = RESULT) -> list[ArtifactKey]:
        if not self.directory.is_dir():
            return []
        pattern = re.compile(
            rf"^{re.escape(basename)}-(\d+)\.{re.escape(_EXTENSIONS[kind])}$"
        )
        keys = []
        for entry in self.directory.iterdir():
            match = pattern.match(entry.name)
            if match is not None:
                keys.append(ArtifactKey(basename, int(match.group(1)), kind))
        return sorted(keys)

    def delete(self, key: ArtifactKey) -> None:
        self.path(key).unlink(missing_ok=True)


class MemoryStore:
    """In-process store holding pickled bytes.

    Values are serialized on write and deserialized on read, so callers never
    share mutable state through the store, matching the file store.
    """

    def __init__(self) -> None:
        self._artifacts: dict[ArtifactKey, bytes] = {}

    def write(self, key: ArtifactKey, obj: Any) -> None:
        self._artifacts[key] = _dumps(obj)

    def read(self, key: ArtifactKey) -> Any:
        try:
            payload = self._artifacts[key]
        except KeyError:
            raise FileNotFoundError(key.filename) from None
        return pickle.loads(payload)

    def exists(self, key: ArtifactKey) -> bool:
        return key in self._artifacts

    def list(self, basename: str, kind: str = RESULT) -> list[ArtifactKey]:
        return sorted(
            key for key in self._artifacts if key.basename == basename and key.kind == kind
        )

    def delete(self, key: ArtifactKey) -> None:
        self._artifacts.pop(key, None)

    def __len__(self) -> int:
        return len(self._artifacts)


__all__ = [
    "ArtifactKey",
    "ArtifactStore",
    "FileStore",
    "MemoryStore",
    "RESULT",
    "CHECKPOINT",
]
