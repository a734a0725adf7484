"""Persistence of unit results and checkpoints, and their reassembly."""

from .collector import ResultCollector, check_completeness, collect
from .store import CHECKPOINT, RESULT, ArtifactKey, ArtifactStore, FileStore, MemoryStore

__all__ = [
    "ArtifactKey",
    "ArtifactStore",
    "FileStore",
    "MemoryStore",
    "RESULT",
    "CHECKPOINT",
    "ResultCollector",
    "collect",
    "check_completeness",
]
