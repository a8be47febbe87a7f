# Cube Query MCP Server
# File: state/view.py
# Version: v1

"""Read-only projection of controller state into chart and table data."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models import CuboidDimension, Metric, SeriesData
from .options import Solver


@dataclass
class ResultView:
    show_results: bool = False
    series: List[SeriesData] = field(default_factory=list)
    metrics: List[Metric] = field(default_factory=list)
    applied_solver: Optional[Solver] = None

    @property
    def has_bounds(self) -> bool:
        """Linear-programming results carry (value, lower, upper) series triples."""
        return self.applied_solver is Solver.LINEAR_PROGRAMMING

    def legend(self) -> List[str]:
        """Series names to show in a legend; bound series are folded away."""
        step = 3 if self.has_bounds else 1
        return [s.name for i, s in enumerate(self.series) if i % step == 0]

    @staticmethod
    def columns(cuboid_dimensions: List[CuboidDimension]) -> List[Dict[str, str]]:
        return [{"key": d.name, "header": d.header} for d in cuboid_dimensions]

    def clear(self) -> None:
        self.show_results = False
        self.series = []
        self.metrics = []
        self.applied_solver = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "show_results": self.show_results,
            "has_bounds": self.has_bounds,
            "applied_solver": self.applied_solver.value if self.applied_solver else None,
            "series": [{"id": s.name, "data": s.data} for s in self.series],
            "legend": self.legend(),
            "metrics": [{"name": m.name, "value": m.value} for m in self.metrics],
        }
