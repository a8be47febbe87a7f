# Cube Query MCP Server
# File: mock.py
# Version: v1

"""In-memory stand-in for the remote cube engine.

Activated when CUBE_ENGINE_MOCK_MODE is truthy. Prepared cuboids are produced
progressively: ``start_query`` materialises one step of them, each
``continue_query`` another, until every cuboid of the query is prepared.
Batch mode materialises everything up front.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import EngineError
from .models import (
    CubeMetadata,
    CuboidDimension,
    Dimension,
    Filter,
    Metric,
    PageResult,
    QueryRequest,
    QueryResult,
    SeriesData,
)


@dataclass
class _MockCube:
    hierarchy: List[Dimension]
    cuboid_dimensions: List[CuboidDimension]
    measures: List[str]
    filters: List[Filter] = field(default_factory=list)


def _default_cubes() -> Dict[str, _MockCube]:
    return {
        "SalesCube": _MockCube(
            hierarchy=[
                Dimension("Time", ("Year", "Quarter", "Month")),
                Dimension("Location", ("Country", "City")),
                Dimension("Product", ("Category", "Item")),
            ],
            cuboid_dimensions=[
                CuboidDimension("Time", 6),
                CuboidDimension("Location", 4),
                CuboidDimension("Product", 5),
            ],
            measures=["revenue", "units"],
            filters=[
                Filter("Location", "Country", ("DE",)),
                Filter("Time", "Year", ("2023", "2024")),
            ],
        ),
        "WeatherCube": _MockCube(
            hierarchy=[
                Dimension("Time", ("Year", "Month", "Day")),
                Dimension("Station", ("Region", "Station")),
            ],
            cuboid_dimensions=[
                CuboidDimension("Time", 9),
                CuboidDimension("Station", 7),
            ],
            measures=["temperature", "precipitation"],
        ),
    }


@dataclass
class _MockQuery:
    request: QueryRequest
    prepared: List[Dict[str, Any]]
    computed: int = 0


class MockEngineClient:
    """Implements the engine client surface without any network access.

    ``fail_next(operation, message)`` makes the next call of that operation
    fail with :class:`EngineError`, which tests and demos use to exercise the
    error paths.
    """

    def __init__(
        self,
        total_cuboids: int = 25,
        cuboids_per_step: int = 7,
        latency_seconds: float = 0.0,
    ) -> None:
        self.total_cuboids = total_cuboids
        self.cuboids_per_step = cuboids_per_step
        self.latency_seconds = latency_seconds

        self._cubes = _default_cubes()
        self._selected: Optional[str] = None
        self._query: Optional[_MockQuery] = None
        self._failures: Dict[str, Tuple[str, int]] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def fail_next(self, operation: str, message: str, status: int = 2) -> None:
        self._failures[operation] = (message, status)

    async def _enter(self, operation: str, **args: Any) -> None:
        self.calls.append((operation, args))
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        failure = self._failures.pop(operation, None)
        if failure is not None:
            message, status = failure
            raise EngineError(operation, message, status=status)

    def _cube(self, operation: str) -> _MockCube:
        if self._selected is None:
            raise EngineError(operation, "No cube selected.", status=9)
        return self._cubes[self._selected]

    # ------------------------------------------------------------------
    # Engine surface
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        return True

    async def list_cubes(self) -> List[str]:
        await self._enter("listCubes")
        return list(self._cubes)

    async def select_cube(self, name: str) -> CubeMetadata:
        await self._enter("selectCube", name=name)
        cube = self._cubes.get(name)
        if cube is None:
            raise EngineError("selectCube", f"Unknown cube '{name}'.", status=5)
        self._selected = name
        self._query = None
        return CubeMetadata(
            hierarchy=list(cube.hierarchy),
            cuboid_dimensions=list(cube.cuboid_dimensions),
            measures=list(cube.measures),
        )

    async def get_filters(self) -> List[Filter]:
        await self._enter("getFilters")
        return list(self._cube("getFilters").filters)

    async def delete_filter(self, index: int) -> None:
        await self._enter("deleteFilter", index=index)
        filters = self._cube("deleteFilter").filters
        if not 0 <= index < len(filters):
            raise EngineError("deleteFilter", f"No filter at index {index}.", status=3)
        del filters[index]

    async def start_query(self, request: QueryRequest) -> QueryResult:
        await self._enter("startQuery", request=request.to_dict())
        cube = self._cube("startQuery")
        prepared = [self._cuboid_row(cube, i) for i in range(self.total_cuboids)]
        self._query = _MockQuery(request=request, prepared=prepared)
        if request.mode == "Batch":
            self._query.computed = len(prepared)
        else:
            self._advance()
        return self._result()

    async def continue_query(self) -> QueryResult:
        await self._enter("continueQuery")
        if self._query is None:
            raise EngineError("continueQuery", "No query has been started.", status=9)
        self._advance()
        return self._result()

    async def get_page(self, page_id: int, page_size: int) -> PageResult:
        await self._enter("getPage", page_id=page_id, page_size=page_size)
        if self._query is None:
            raise EngineError("getPage", "No query has been started.", status=9)
        start = max(page_id, 0) * page_size
        end = min(start + page_size, self._query.computed)
        rows = [dict(r) for r in self._query.prepared[start:end]]
        return PageResult(page_id=page_id, page_size=page_size, rows=rows)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    @staticmethod
    def _cuboid_row(cube: _MockCube, index: int) -> Dict[str, Any]:
        row: Dict[str, Any] = {"id": str(index)}
        for offset, dim in enumerate(cube.cuboid_dimensions):
            width = max(dim.num_bits, 1)
            row[dim.name] = format((index + offset) % (1 << width), f"0{width}b")
        return row

    def _advance(self) -> None:
        assert self._query is not None
        self._query.computed = min(
            self._query.computed + self.cuboids_per_step, len(self._query.prepared)
        )

    def _result(self) -> QueryResult:
        assert self._query is not None
        query = self._query
        page_size = max(query.request.page_size, 1)
        complete = query.computed >= len(query.prepared)
        # The cursor points at the row currently being computed; once complete
        # it rests on the last prepared row.
        cursor = query.computed - 1 if complete else query.computed
        page_id, row = divmod(max(cursor, 0), page_size)
        start = page_id * page_size
        rows = [dict(r) for r in query.prepared[start:min(start + page_size, query.computed)]]

        return QueryResult(
            page_id=page_id,
            rows=rows,
            current_computed_page=page_id,
            current_computed_row=row,
            is_complete=complete,
            series=self._series(query),
            metrics=[
                Metric("Prepared cuboids", query.computed),
                Metric("Total cuboids", len(query.prepared)),
            ],
        )

    def _series(self, query: _MockQuery) -> List[SeriesData]:
        fraction = query.computed / max(len(query.prepared), 1)
        names = [d.level_name for d in query.request.series] or [query.request.measure]
        out: List[SeriesData] = []
        for s_index, name in enumerate(names):
            points = [{"x": str(x), "y": round((x + 1) * (s_index + 1) * fraction, 3)} for x in range(5)]
            out.append(SeriesData(name=name, data=points))
            if query.request.solver == "Linear Programming":
                spread = round(1.0 - fraction, 3)
                out.append(
                    SeriesData(
                        name=f"{name} (lower)",
                        data=[{"x": p["x"], "y": p["y"] - spread} for p in points],
                    )
                )
                out.append(
                    SeriesData(
                        name=f"{name} (upper)",
                        data=[{"x": p["x"], "y": p["y"] + spread} for p in points],
                    )
                )
        return out
