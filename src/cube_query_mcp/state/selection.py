# Cube Query MCP Server
# File: state/selection.py
# Version: v1

"""Horizontal and series dimension selections."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Tuple

from ..errors import InvalidSelectionError
from ..models import DimensionDef
from .hierarchy import DimensionHierarchy, DimensionSelection


class Axis(str, Enum):
    HORIZONTAL = "horizontal"
    SERIES = "series"


class SelectionSet:
    """Two ordered selection lists bound to one hierarchy.

    Order is significant (it is the chart/table column order) and the same
    dimension may appear more than once, on either axis.
    """

    def __init__(self, hierarchy: DimensionHierarchy) -> None:
        self._hierarchy = hierarchy
        self._axes: Dict[Axis, List[DimensionSelection]] = {axis: [] for axis in Axis}

    @property
    def hierarchy(self) -> DimensionHierarchy:
        return self._hierarchy

    @property
    def horizontal(self) -> Tuple[DimensionSelection, ...]:
        return tuple(self._axes[Axis.HORIZONTAL])

    @property
    def series(self) -> Tuple[DimensionSelection, ...]:
        return tuple(self._axes[Axis.SERIES])

    def get(self, axis: Axis) -> Tuple[DimensionSelection, ...]:
        return tuple(self._axes[Axis(axis)])

    def reset(self, hierarchy: DimensionHierarchy) -> None:
        """Swap the hierarchy and drop every selection made against the old one."""
        self._axes = {axis: [] for axis in Axis}
        self._hierarchy = hierarchy

    def add(self, axis: Axis, dimension_index: int, level_index: int = 0) -> DimensionSelection:
        selection = DimensionSelection(dimension_index, level_index)
        self._hierarchy.validate(selection)
        self._axes[Axis(axis)].append(selection)
        return selection

    def remove(self, axis: Axis, position: int) -> DimensionSelection:
        items = self._at(axis, position)
        return items.pop(position)

    def zoom_in(self, axis: Axis, position: int) -> bool:
        """Move the selection one level finer. False when already finest."""
        items = self._at(axis, position)
        zoomed = self._hierarchy.zoom_in(items[position])
        changed = zoomed != items[position]
        items[position] = zoomed
        return changed

    def zoom_out(self, axis: Axis, position: int) -> bool:
        """Move the selection one level coarser. False when already coarsest."""
        items = self._at(axis, position)
        zoomed = self._hierarchy.zoom_out(items[position])
        changed = zoomed != items[position]
        items[position] = zoomed
        return changed

    def resolve(self, axis: Axis) -> Tuple[DimensionDef, ...]:
        """Names for the engine, looked up in the current hierarchy."""
        return tuple(self._hierarchy.resolve(s) for s in self._axes[Axis(axis)])

    def _at(self, axis: Axis, position: int) -> List[DimensionSelection]:
        items = self._axes[Axis(axis)]
        if not 0 <= position < len(items):
            raise InvalidSelectionError(
                f"No {Axis(axis).value} selection at position {position} (have {len(items)})."
            )
        return items

    def to_dict(self) -> Dict[str, List[dict]]:
        return {
            axis.value: [
                {
                    "dimension_index": s.dimension_index,
                    "level_index": s.level_index,
                    "label": self._hierarchy.label(s),
                }
                for s in self._axes[axis]
            ]
            for axis in Axis
        }
