"""Design grids and their expansion into array units."""

from .design import ID_COLUMN, Design
from .expand import ExpandedDesign, ExpandedUnit, concatenate, expand, replication_split

__all__ = [
    "Design",
    "ID_COLUMN",
    "ExpandedDesign",
    "ExpandedUnit",
    "expand",
    "replication_split",
    "concatenate",
]
