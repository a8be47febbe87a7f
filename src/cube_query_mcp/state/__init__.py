# Cube Query MCP Server
# File: state/__init__.py
# Version: v1

"""Query construction and incremental-result state."""

from __future__ import annotations

from .controller import OperationResult, OperationStatus, QueryController, StateChange
from .hierarchy import DimensionHierarchy, DimensionSelection
from .options import Aggregation, Mode, QueryOptions, Solver
from .pager import CuboidPager
from .selection import Axis, SelectionSet
from .view import ResultView

__all__ = [
    "Aggregation",
    "Axis",
    "CuboidPager",
    "DimensionHierarchy",
    "DimensionSelection",
    "Mode",
    "OperationResult",
    "OperationStatus",
    "QueryController",
    "QueryOptions",
    "ResultView",
    "SelectionSet",
    "Solver",
    "StateChange",
]
