# Cube Query MCP Server
# File: state/hierarchy.py
# Version: v1

"""Dimension hierarchy of the selected cube and zoom navigation over it."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Iterator, List, Optional

from ..errors import InvalidSelectionError
from ..models import Dimension, DimensionDef


@dataclass(frozen=True)
class DimensionSelection:
    """A dimension picked at one of its levels (0 = coarsest)."""

    dimension_index: int
    level_index: int = 0


class DimensionHierarchy:
    """Read-only, ordered dimensions of one cube.

    Replaced wholesale when the cube changes; selections made against an
    older hierarchy must not be resolved against a new one.
    """

    def __init__(self, dimensions: Optional[Iterable[Dimension]] = None) -> None:
        self._dimensions: List[Dimension] = list(dimensions or [])

    def __len__(self) -> int:
        return len(self._dimensions)

    def __iter__(self) -> Iterator[Dimension]:
        return iter(self._dimensions)

    def __getitem__(self, index: int) -> Dimension:
        return self._dimensions[index]

    def __repr__(self) -> str:
        return f"DimensionHierarchy({[d.name for d in self._dimensions]!r})"

    def validate(self, selection: DimensionSelection) -> None:
        """Raise :class:`InvalidSelectionError` if ``selection`` is out of range."""
        d = selection.dimension_index
        if not 0 <= d < len(self._dimensions):
            raise InvalidSelectionError(
                f"Dimension index {d} out of range for {len(self._dimensions)} dimensions."
            )
        levels = self._dimensions[d].levels
        if not 0 <= selection.level_index < len(levels):
            raise InvalidSelectionError(
                f"Level index {selection.level_index} out of range for dimension "
                f"'{self._dimensions[d].name}' with {len(levels)} levels."
            )

    def zoom_in(self, selection: DimensionSelection) -> DimensionSelection:
        """Next finer level, or ``selection`` itself at the finest level."""
        self.validate(selection)
        last = len(self._dimensions[selection.dimension_index].levels) - 1
        if selection.level_index >= last:
            return selection
        return replace(selection, level_index=selection.level_index + 1)

    def zoom_out(self, selection: DimensionSelection) -> DimensionSelection:
        """Next coarser level, or ``selection`` itself at level 0."""
        self.validate(selection)
        if selection.level_index <= 0:
            return selection
        return replace(selection, level_index=selection.level_index - 1)

    def resolve(self, selection: DimensionSelection) -> DimensionDef:
        self.validate(selection)
        dim = self._dimensions[selection.dimension_index]
        return DimensionDef(dimension_name=dim.name, level_name=dim.levels[selection.level_index])

    def label(self, selection: DimensionSelection) -> str:
        d = self.resolve(selection)
        return f"{d.dimension_name} / {d.level_name}"

    def to_list(self) -> List[dict]:
        return [{"name": d.name, "levels": list(d.levels)} for d in self._dimensions]
