# Cube Query MCP Server
# File: state/options.py
# Version: v1

"""Scalar query configuration: measures, aggregation, solver and mode."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..models import DimensionDef, QueryRequest


class Aggregation(str, Enum):
    SUM = "SUM"
    AVERAGE = "AVERAGE"
    VARIANCE = "VARIANCE"
    CORRELATION = "COR"
    REGRESSION = "REG"

    @property
    def needs_two_measures(self) -> bool:
        return self in (Aggregation.CORRELATION, Aggregation.REGRESSION)


class Solver(str, Enum):
    LINEAR_PROGRAMMING = "Linear Programming"
    MOMENT = "Moment"
    NAIVE = "Naive"


class Mode(str, Enum):
    BATCH = "Batch"
    INTERACTIVE = "Interactive"


@dataclass
class QueryOptions:
    """Options as currently edited. They reach the engine only on ``run``."""

    measure: str = ""
    measure2: Optional[str] = None
    aggregation: Aggregation = Aggregation.SUM
    solver: Solver = Solver.MOMENT
    mode: Mode = Mode.INTERACTIVE
    page_size: int = 10

    def build_request(
        self,
        horizontal: Tuple[DimensionDef, ...],
        series: Tuple[DimensionDef, ...],
        page_size: int,
    ) -> QueryRequest:
        # A stale measure2 left over from a two-measure aggregation must not
        # reach the engine.
        measure2 = self.measure2 if self.aggregation.needs_two_measures else None
        return QueryRequest(
            horizontal=tuple(horizontal),
            series=tuple(series),
            measure=self.measure,
            measure2=measure2,
            aggregation=self.aggregation.value,
            solver=self.solver.value,
            mode=self.mode.value,
            page_size=int(page_size),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "measure": self.measure,
            "measure2": self.measure2 if self.aggregation.needs_two_measures else None,
            "aggregation": self.aggregation.value,
            "solver": self.solver.value,
            "mode": self.mode.value,
            "page_size": self.page_size,
        }
