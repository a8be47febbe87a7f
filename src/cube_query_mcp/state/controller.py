# Cube Query MCP Server
# File: state/controller.py
# Version: v1

"""Query controller: builds requests from accumulated selections, talks to
the engine and reconciles responses into local state.

Execution is single-threaded on one asyncio loop. Engine calls are the only
suspension points. Per operation kind at most one engine call is outstanding:

- ``select_cube``, ``run`` and ``change_page`` are latest-wins. A call made
  while another of the same kind is pending waits its turn; if a newer call
  arrives meanwhile it is collapsed (never dispatched). A response whose
  call has been superseded is discarded.
- ``load_cubes``, ``continue_query``, ``delete_filter`` and
  ``refresh_filters`` are rejected while one of their kind is pending.

Responses are also tagged with the cube session and the query generation
they were issued under, so a late answer for a previous cube or a previous
query never touches current state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..cache import CatalogCache
from ..config import CubeQueryConfig
from ..errors import EngineError, ErrorChannel, ErrorKind
from ..models import CuboidDimension, Filter, QueryRequest
from .hierarchy import DimensionHierarchy
from .options import Aggregation, Mode, QueryOptions, Solver
from .pager import CuboidPager
from .selection import Axis, SelectionSet
from .view import ResultView

logger = logging.getLogger(__name__)


class OperationStatus(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"
    FAILED = "failed"


@dataclass
class OperationResult:
    status: OperationStatus
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.APPLIED

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "message": self.message}


def _applied(message: str = "") -> OperationResult:
    return OperationResult(OperationStatus.APPLIED, message)


def _rejected(message: str) -> OperationResult:
    logger.debug("Rejected: %s", message)
    return OperationResult(OperationStatus.REJECTED, message)


def _superseded(operation: str) -> OperationResult:
    logger.debug("Discarding superseded %s response.", operation)
    return OperationResult(OperationStatus.SUPERSEDED, f"{operation} was superseded")


class StateChange(str, Enum):
    CUBE = "cube"
    SELECTION = "selection"
    OPTIONS = "options"
    FILTERS = "filters"
    PAGER = "pager"
    RESULT = "result"
    LOADING = "loading"
    ERROR = "error"


Listener = Callable[[StateChange], None]


class _LatestWins:
    """Serialises one operation kind and remembers which call is newest."""

    def __init__(self) -> None:
        self.generation = 0
        self.lock = asyncio.Lock()

    def claim(self) -> int:
        self.generation += 1
        return self.generation

    def is_current(self, ticket: int) -> bool:
        return ticket == self.generation


class QueryController:
    """Owns all query state; presentation reads it and calls the operations."""

    def __init__(
        self,
        client: Any,
        config: Optional[CubeQueryConfig] = None,
        cache: Optional[CatalogCache] = None,
    ) -> None:
        self._client = client
        self.config = config or CubeQueryConfig.from_env()
        self.cache = cache or CatalogCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
        )

        self.cubes: List[str] = []
        self.cube: Optional[str] = None
        self.is_cube_loaded = False
        self.is_cube_loading_failed = False

        self.hierarchy = DimensionHierarchy()
        self.selection = SelectionSet(self.hierarchy)
        self.cuboid_dimensions: List[CuboidDimension] = []
        self.measures: List[str] = []
        self.filters: List[Filter] = []

        self.options = QueryOptions(page_size=self.config.page_size)
        self.pager = CuboidPager(page_size=self.config.page_size)
        self.result = ResultView()
        self.errors = ErrorChannel(on_report=lambda _event: self._notify(StateChange.ERROR))

        self.is_initial_result_loading = False
        self.is_updated_result_loading = False
        self.is_page_loading = False
        self.is_filter_updating = False
        self._is_listing_cubes = False

        self._session = 0
        self._query_generation = 0
        self._select_lock = asyncio.Lock()
        self._run_slot = _LatestWins()
        self._page_slot = _LatestWins()
        self._filter_lock = asyncio.Lock()

        self._listeners: List[Listener] = []
        self._disposed = False

    # ------------------------------------------------------------------
    # Lifecycle & notifications
    # ------------------------------------------------------------------

    @property
    def client(self) -> Any:
        return self._client

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Detach listeners and make every pending response stale."""
        self._disposed = True
        self._listeners.clear()
        self._session += 1
        self._query_generation += 1

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, *changes: StateChange) -> None:
        for change in changes:
            for listener in list(self._listeners):
                try:
                    listener(change)
                except Exception:  # listener errors are logged, never raised
                    logger.warning("State listener failed on %s.", change.value, exc_info=True)

    def _is_stale(self, session: int, query_generation: Optional[int] = None) -> bool:
        if self._disposed or session != self._session:
            return True
        return query_generation is not None and query_generation != self._query_generation

    # ------------------------------------------------------------------
    # Cubes
    # ------------------------------------------------------------------

    async def load_cubes(self, select_first: bool = True, refresh: bool = False) -> OperationResult:
        """Fetch the cube names and (by default) select the first one.

        ``refresh`` drops the cached listing and asks the engine again.
        """
        if self._disposed:
            return _rejected("controller is disposed")
        if self._is_listing_cubes:
            return _rejected("cube listing already in flight")

        session = self._session
        cache_key = ("list_cubes", id(self._client))
        if refresh:
            self.cache.invalidate(cache_key)
        cubes = self.cache.lookup(cache_key)

        if cubes is None:
            self._is_listing_cubes = True
            try:
                cubes = await self._client.list_cubes()
            except EngineError as exc:
                if self._is_stale(session):
                    return _superseded("listCubes")
                self.is_cube_loading_failed = True
                self.errors.report(ErrorKind.LOAD, exc)
                self._notify(StateChange.LOADING)
                return OperationResult(OperationStatus.FAILED, exc.message)
            finally:
                self._is_listing_cubes = False
            self.cache.store(cache_key, list(cubes))

        if self._disposed:
            return _superseded("listCubes")

        self.cubes = list(cubes)
        self._notify(StateChange.CUBE)

        if not select_first:
            return _applied()
        if not self.cubes:
            return _applied("engine has no cubes")
        if self.cube is not None and self._session != session:
            # The user picked a cube while we were listing.
            return _applied()
        return await self.select_cube(self.cubes[0])

    async def select_cube(self, name: str) -> OperationResult:
        """Switch cube: reset everything now, then load the hierarchy."""
        if self._disposed:
            return _rejected("controller is disposed")

        self._session += 1
        self._query_generation += 1
        session = self._session

        self.cube = name
        self.is_cube_loaded = False
        self.is_cube_loading_failed = False
        self.hierarchy = DimensionHierarchy()
        self.selection.reset(self.hierarchy)
        self.cuboid_dimensions = []
        self.measures = []
        self.filters = []
        self.pager.reset()
        self.result.clear()
        self._notify(
            StateChange.CUBE,
            StateChange.SELECTION,
            StateChange.FILTERS,
            StateChange.PAGER,
            StateChange.RESULT,
            StateChange.LOADING,
        )

        async with self._select_lock:
            if self._is_stale(session):
                return _superseded("selectCube")

            logger.info("Selecting cube %s", name)
            try:
                metadata = await self._client.select_cube(name)
            except EngineError as exc:
                if self._is_stale(session):
                    return _superseded("selectCube")
                self.is_cube_loading_failed = True
                self.errors.report(ErrorKind.LOAD, exc)
                self._notify(StateChange.LOADING)
                return OperationResult(OperationStatus.FAILED, exc.message)

            if self._is_stale(session):
                return _superseded("selectCube")

            hierarchy = DimensionHierarchy(metadata.hierarchy)
            self.hierarchy = hierarchy
            self.selection.reset(hierarchy)
            self.cuboid_dimensions = list(metadata.cuboid_dimensions)
            self.measures = list(metadata.measures)
            first = self.measures[0] if self.measures else ""
            self.options.measure = first
            self.options.measure2 = first
            self.is_cube_loaded = True
            self._notify(StateChange.CUBE, StateChange.SELECTION, StateChange.OPTIONS, StateChange.LOADING)
            return _applied()

    # ------------------------------------------------------------------
    # Selections (synchronous intents)
    # ------------------------------------------------------------------

    def add_dimension(self, axis: Axis, dimension_index: int, level_index: int = 0) -> None:
        self.selection.add(axis, dimension_index, level_index)
        self._notify(StateChange.SELECTION)

    def add_horizontal(self, dimension_index: int, level_index: int = 0) -> None:
        self.add_dimension(Axis.HORIZONTAL, dimension_index, level_index)

    def add_series(self, dimension_index: int, level_index: int = 0) -> None:
        self.add_dimension(Axis.SERIES, dimension_index, level_index)

    def remove_dimension(self, axis: Axis, position: int) -> None:
        self.selection.remove(axis, position)
        self._notify(StateChange.SELECTION)

    def remove_horizontal(self, position: int) -> None:
        self.remove_dimension(Axis.HORIZONTAL, position)

    def remove_series(self, position: int) -> None:
        self.remove_dimension(Axis.SERIES, position)

    def zoom_in(self, axis: Axis, position: int) -> bool:
        changed = self.selection.zoom_in(axis, position)
        if changed:
            self._notify(StateChange.SELECTION)
        return changed

    def zoom_out(self, axis: Axis, position: int) -> bool:
        changed = self.selection.zoom_out(axis, position)
        if changed:
            self._notify(StateChange.SELECTION)
        return changed

    # ------------------------------------------------------------------
    # Options (buffered until the next run)
    # ------------------------------------------------------------------

    def set_measure(self, measure: str) -> None:
        self.options.measure = self._known_measure(measure)
        self._notify(StateChange.OPTIONS)

    def set_measure2(self, measure: str) -> None:
        self.options.measure2 = self._known_measure(measure)
        self._notify(StateChange.OPTIONS)

    def set_aggregation(self, aggregation: Aggregation | str) -> None:
        self.options.aggregation = Aggregation(aggregation)
        self._notify(StateChange.OPTIONS)

    def set_solver(self, solver: Solver | str) -> None:
        self.options.solver = Solver(solver)
        self._notify(StateChange.OPTIONS)

    def set_mode(self, mode: Mode | str) -> None:
        self.options.mode = Mode(mode)
        self._notify(StateChange.OPTIONS)

    def _known_measure(self, measure: str) -> str:
        if measure not in self.measures:
            raise ValueError(f"Unknown measure '{measure}'. Available: {self.measures}")
        return measure

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    async def refresh_filters(self) -> OperationResult:
        if self._disposed:
            return _rejected("controller is disposed")
        if not self.is_cube_loaded:
            return _rejected("no cube loaded")
        if self._filter_lock.locked():
            return _rejected("filter update already in flight")

        session = self._session
        async with self._filter_lock:
            return await self._fetch_filters(session)

    async def delete_filter(self, index: int) -> OperationResult:
        """Delete on the engine, then re-fetch the list; never splice locally."""
        if self._disposed:
            return _rejected("controller is disposed")
        if not self.is_cube_loaded:
            return _rejected("no cube loaded")
        if not 0 <= index < len(self.filters):
            return _rejected(f"no filter at index {index}")
        if self._filter_lock.locked():
            return _rejected("filter update already in flight")

        session = self._session
        async with self._filter_lock:
            self.is_filter_updating = True
            self._notify(StateChange.LOADING)
            try:
                try:
                    await self._client.delete_filter(index)
                except EngineError as exc:
                    if self._is_stale(session):
                        return _superseded("deleteFilter")
                    self.errors.report(ErrorKind.MUTATION, exc)
                    return OperationResult(OperationStatus.FAILED, exc.message)

                return await self._fetch_filters(session)
            finally:
                self.is_filter_updating = False
                self._notify(StateChange.LOADING)

    async def _fetch_filters(self, session: int) -> OperationResult:
        try:
            filters = await self._client.get_filters()
        except EngineError as exc:
            if self._is_stale(session):
                return _superseded("getFilters")
            self.errors.report(ErrorKind.MUTATION, exc)
            return OperationResult(OperationStatus.FAILED, exc.message)

        if self._is_stale(session):
            return _superseded("getFilters")
        self.filters = list(filters)
        self._notify(StateChange.FILTERS)
        return _applied()

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def build_request(self) -> QueryRequest:
        """Resolve selections against the current hierarchy and snapshot options."""
        return self.options.build_request(
            horizontal=self.selection.resolve(Axis.HORIZONTAL),
            series=self.selection.resolve(Axis.SERIES),
            page_size=self._clamp_page_size(self.pager.page_size),
        )

    def _clamp_page_size(self, page_size: int) -> int:
        return max(1, min(int(page_size), self.config.max_page_size))

    async def run(self) -> OperationResult:
        """Start a new query. Latest call wins; results are never merged."""
        if self._disposed:
            return _rejected("controller is disposed")
        if not self.is_cube_loaded:
            return _rejected("no cube loaded")

        slot = self._run_slot
        ticket = slot.claim()
        session = self._session
        self.is_initial_result_loading = True
        self._notify(StateChange.LOADING)

        try:
            async with slot.lock:
                if not slot.is_current(ticket) or self._is_stale(session):
                    return _superseded("startQuery")

                request = self.build_request()
                solver = self.options.solver

                logger.info(
                    "Starting query on %s: %d horizontal, %d series, %s(%s) via %s",
                    self.cube,
                    len(request.horizontal),
                    len(request.series),
                    request.aggregation,
                    request.measure,
                    request.solver,
                )
                try:
                    result = await self._client.start_query(request)
                except EngineError as exc:
                    if not slot.is_current(ticket) or self._is_stale(session):
                        return _superseded("startQuery")
                    self.errors.report(ErrorKind.QUERY, exc)
                    return OperationResult(OperationStatus.FAILED, exc.message)

                if not slot.is_current(ticket) or self._is_stale(session):
                    return _superseded("startQuery")

                # A new query replaces the displayed one only once it is applied;
                # pages still pending for the old query become stale here.
                self._query_generation += 1
                self.pager.page_size = request.page_size
                self.pager.seed(result)
                self.result.series = list(result.series)
                self.result.metrics = list(result.metrics)
                self.result.applied_solver = solver
                self.result.show_results = True
                self._notify(StateChange.PAGER, StateChange.RESULT)
                return _applied()
        finally:
            if slot.is_current(ticket):
                self.is_initial_result_loading = False
                self._notify(StateChange.LOADING)

    async def continue_query(self) -> OperationResult:
        """Ask the engine to compute further; merged exactly like ``run``."""
        if self._disposed:
            return _rejected("controller is disposed")
        if not self.pager.has_query:
            return _rejected("no query has been run")
        if self.pager.is_complete:
            return _rejected("query is already complete")
        if self.is_updated_result_loading:
            return _rejected("continuation already in flight")
        if self.is_initial_result_loading:
            return _rejected("a new query is being started")

        session = self._session
        generation = self._query_generation
        self.is_updated_result_loading = True
        self._notify(StateChange.LOADING)

        try:
            result = await self._client.continue_query()
        except EngineError as exc:
            if self._is_stale(session, generation):
                return _superseded("continueQuery")
            self.errors.report(ErrorKind.QUERY, exc)
            return OperationResult(OperationStatus.FAILED, exc.message)
        finally:
            self.is_updated_result_loading = False
            self._notify(StateChange.LOADING)

        if self._is_stale(session, generation):
            return _superseded("continueQuery")

        self.pager.advance(result)
        self.result.series = list(result.series)
        self.result.metrics = list(result.metrics)
        self.result.show_results = True
        self._notify(StateChange.PAGER, StateChange.RESULT)
        return _applied()

    async def change_page(self, page_index: int, page_size: Optional[int] = None) -> OperationResult:
        """Fetch a page of prepared cuboids without moving the computation."""
        if self._disposed:
            return _rejected("controller is disposed")
        if not self.pager.has_query:
            return _rejected("no query has been run")
        if page_index < 0:
            return _rejected(f"invalid page index {page_index}")

        size = self._clamp_page_size(self.pager.page_size if page_size is None else page_size)

        slot = self._page_slot
        ticket = slot.claim()
        session = self._session
        generation = self._query_generation
        self.is_page_loading = True
        self._notify(StateChange.LOADING)

        try:
            async with slot.lock:
                if not slot.is_current(ticket) or self._is_stale(session, generation):
                    return _superseded("getPage")

                try:
                    page = await self._client.get_page(page_index, size)
                except EngineError as exc:
                    if not slot.is_current(ticket) or self._is_stale(session, generation):
                        return _superseded("getPage")
                    self.errors.report(ErrorKind.MUTATION, exc)
                    return OperationResult(OperationStatus.FAILED, exc.message)

                if not slot.is_current(ticket) or self._is_stale(session, generation):
                    return _superseded("getPage")

                self.pager.show_page(page)
                self.options.page_size = page.page_size
                self._notify(StateChange.PAGER)
                return _applied()
        finally:
            if slot.is_current(ticket):
                self.is_page_loading = False
                self._notify(StateChange.LOADING)

    def dismiss_error(self) -> None:
        """Close the surfaced error; the history is kept."""
        if self.errors.is_error_open:
            self.errors.dismiss()
            self._notify(StateChange.ERROR)

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """JSON-serialisable view of everything presentation may render."""
        return {
            "cubes": list(self.cubes),
            "cube": self.cube,
            "is_cube_loaded": self.is_cube_loaded,
            "is_cube_loading_failed": self.is_cube_loading_failed,
            "hierarchy": self.hierarchy.to_list(),
            "measures": list(self.measures),
            "selection": self.selection.to_dict(),
            "filters": [dict(f.to_dict(), label=f.label) for f in self.filters],
            "options": self.options.to_dict(),
            "pager": self.pager.to_dict(),
            "columns": ResultView.columns(self.cuboid_dimensions),
            "result": self.result.to_dict(),
            "loading": {
                "initial_result": self.is_initial_result_loading,
                "updated_result": self.is_updated_result_loading,
                "page": self.is_page_loading,
                "filters": self.is_filter_updating,
            },
            "can_continue": self.pager.can_continue and not self.is_updated_result_loading,
            "error": self.errors.to_dict(),
        }
