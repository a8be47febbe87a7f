# Cube Query MCP Server
# File: tests/conftest.py
# Version: v1

"""Shared fixtures: configs, cube metadata and scripted engine clients."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

import pytest

from cube_query_mcp.config import CubeQueryConfig
from cube_query_mcp.errors import EngineError
from cube_query_mcp.models import (
    CubeMetadata,
    CuboidDimension,
    Dimension,
    Filter,
    Metric,
    PageResult,
    QueryResult,
    SeriesData,
)


def make_config(**overrides: Any) -> CubeQueryConfig:
    values: Dict[str, Any] = dict(
        engine_url=None,
        oauth_token_url=None,
        client_id=None,
        client_secret=None,
        mock_mode=True,
        page_size=10,
        max_page_size=100,
        cache_ttl_seconds=60,
        cache_max_entries=8,
    )
    values.update(overrides)
    return CubeQueryConfig(**values)


def sales_metadata() -> CubeMetadata:
    return CubeMetadata(
        hierarchy=[
            Dimension("Time", ("Year", "Quarter", "Month")),
            Dimension("Location", ("Country", "City")),
        ],
        cuboid_dimensions=[CuboidDimension("Time", 6), CuboidDimension("Location", 4)],
        measures=["revenue", "units"],
    )


def weather_metadata() -> CubeMetadata:
    return CubeMetadata(
        hierarchy=[Dimension("Station", ("Region", "Station"))],
        cuboid_dimensions=[CuboidDimension("Station", 7)],
        measures=["temperature"],
    )


def rows(start: int, count: int) -> List[Dict[str, Any]]:
    return [{"id": str(i)} for i in range(start, start + count)]


def query_result(
    page_id: int = 0,
    row: int = 0,
    complete: bool = False,
    row_count: int = 5,
    computed_page: Optional[int] = None,
    tag: str = "r",
) -> QueryResult:
    return QueryResult(
        page_id=page_id,
        rows=rows(page_id * 10, row_count),
        current_computed_page=page_id if computed_page is None else computed_page,
        current_computed_row=row,
        is_complete=complete,
        series=[SeriesData(name=f"{tag}-series", data=[{"x": "0", "y": 1.0}])],
        metrics=[Metric(name=f"{tag}-metric", value=1)],
    )


class ScriptedClient:
    """Engine client that answers immediately from scripted values.

    Each operation pops the next scripted answer; an ``EngineError`` in the
    script is raised instead of returned.
    """

    def __init__(self) -> None:
        self.cubes: List[str] = ["SalesCube", "WeatherCube"]
        self.metadata: Dict[str, CubeMetadata] = {
            "SalesCube": sales_metadata(),
            "WeatherCube": weather_metadata(),
        }
        self.scripts: Dict[str, List[Any]] = defaultdict(list)
        self.filters: List[Filter] = []
        self.calls: List[Tuple[str, Any]] = []

    def script(self, operation: str, *answers: Any) -> None:
        self.scripts[operation].extend(answers)

    def _next(self, operation: str, default: Any = None) -> Any:
        answer = self.scripts[operation].pop(0) if self.scripts[operation] else default
        if isinstance(answer, EngineError):
            raise answer
        return answer

    async def ping(self) -> bool:
        return True

    async def list_cubes(self) -> List[str]:
        self.calls.append(("listCubes", None))
        return self._next("listCubes", list(self.cubes))

    async def select_cube(self, name: str) -> CubeMetadata:
        self.calls.append(("selectCube", name))
        return self._next("selectCube", self.metadata[name])

    async def get_filters(self) -> List[Filter]:
        self.calls.append(("getFilters", None))
        return self._next("getFilters", list(self.filters))

    async def delete_filter(self, index: int) -> None:
        self.calls.append(("deleteFilter", index))
        self._next("deleteFilter")

    async def start_query(self, request) -> QueryResult:
        self.calls.append(("startQuery", request))
        return self._next("startQuery", query_result())

    async def continue_query(self) -> QueryResult:
        self.calls.append(("continueQuery", None))
        return self._next("continueQuery", query_result(complete=True))

    async def get_page(self, page_id: int, page_size: int) -> PageResult:
        self.calls.append(("getPage", (page_id, page_size)))
        return self._next(
            "getPage", PageResult(page_id=page_id, page_size=page_size, rows=rows(page_id * page_size, page_size))
        )

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


class GatedClient:
    """Engine client whose calls block until the test resolves them."""

    def __init__(self) -> None:
        self.pending: Dict[str, List[asyncio.Future]] = defaultdict(list)
        self.calls: List[Tuple[str, Any]] = []

    async def _wait(self, operation: str, args: Any = None) -> Any:
        future = asyncio.get_running_loop().create_future()
        self.calls.append((operation, args))
        self.pending[operation].append(future)
        return await future

    def resolve(self, operation: str, value: Any = None) -> None:
        self.pending[operation].pop(0).set_result(value)

    def fail(self, operation: str, message: str, status: int = 2) -> None:
        self.pending[operation].pop(0).set_exception(EngineError(operation, message, status=status))

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    async def ping(self) -> bool:
        return True

    async def list_cubes(self):
        return await self._wait("listCubes")

    async def select_cube(self, name: str):
        return await self._wait("selectCube", name)

    async def get_filters(self):
        return await self._wait("getFilters")

    async def delete_filter(self, index: int):
        return await self._wait("deleteFilter", index)

    async def start_query(self, request):
        return await self._wait("startQuery", request)

    async def continue_query(self):
        return await self._wait("continueQuery")

    async def get_page(self, page_id: int, page_size: int):
        return await self._wait("getPage", (page_id, page_size))


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def config() -> CubeQueryConfig:
    return make_config()


@pytest.fixture
def scripted() -> ScriptedClient:
    return ScriptedClient()


@pytest.fixture
def gated() -> GatedClient:
    return GatedClient()
