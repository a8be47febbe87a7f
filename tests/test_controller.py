# Cube Query MCP Server
# File: tests/test_controller.py
# Version: v1

"""QueryController behaviour against scripted and gated fake engines.

Scripted clients answer immediately; gated clients hold every call until the
test resolves it, which is how interleavings of concurrent operations are
reproduced deterministically.
"""

from __future__ import annotations

import asyncio

import pytest

from cube_query_mcp.errors import EngineError, ErrorKind, InvalidSelectionError
from cube_query_mcp.models import Filter, PageResult
from cube_query_mcp.state import (
    Aggregation,
    Axis,
    OperationStatus,
    QueryController,
    Solver,
    StateChange,
)

from conftest import (
    make_config,
    query_result,
    rows,
    sales_metadata,
    settle,
    weather_metadata,
)

F0 = Filter("Location", "Country", ("DE",))
F1 = Filter("Time", "Year", ("2023", "2024"))
F2 = Filter("Product", "Category", ("Bikes",))


async def _loaded(client, cube: str = "SalesCube") -> QueryController:
    controller = QueryController(client, config=make_config())
    outcome = await controller.select_cube(cube)
    assert outcome.ok
    return controller


async def _gated_loaded(gated) -> QueryController:
    controller = QueryController(gated, config=make_config())
    task = asyncio.create_task(controller.select_cube("SalesCube"))
    await settle()
    gated.resolve("selectCube", sales_metadata())
    assert (await task).ok
    return controller


async def _gated_run(controller, gated, result) -> None:
    task = asyncio.create_task(controller.run())
    await settle()
    gated.resolve("startQuery", result)
    assert (await task).ok


# ---------------------------------------------------------------------------
# Cube lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_load_cubes_selects_the_first_cube_and_caches_the_listing(scripted):
    controller = QueryController(scripted, config=make_config())

    outcome = await controller.load_cubes()

    assert outcome.ok
    assert controller.cubes == ["SalesCube", "WeatherCube"]
    assert controller.cube == "SalesCube"
    assert controller.is_cube_loaded is True

    await controller.load_cubes(select_first=False)
    assert scripted.count("listCubes") == 1
    assert controller.cube == "SalesCube"


@pytest.mark.asyncio
async def test_load_cubes_failure_sets_the_failed_flag(scripted):
    scripted.script("listCubes", EngineError("listCubes", "engine down", status=500))
    controller = QueryController(scripted, config=make_config())

    outcome = await controller.load_cubes()

    assert outcome.status is OperationStatus.FAILED
    assert controller.is_cube_loading_failed is True
    assert controller.errors.last.kind is ErrorKind.LOAD
    assert scripted.count("selectCube") == 0


@pytest.mark.asyncio
async def test_select_cube_loads_hierarchy_and_defaults_measures(scripted):
    controller = await _loaded(scripted)

    assert [d.name for d in controller.hierarchy] == ["Time", "Location"]
    assert controller.measures == ["revenue", "units"]
    assert controller.options.measure == "revenue"
    assert controller.options.measure2 == "revenue"
    assert controller.snapshot()["columns"][0] == {"key": "Time", "header": "Time (6 bits)"}


@pytest.mark.asyncio
async def test_select_cube_resets_selections_filters_and_results(scripted):
    scripted.filters = [F0, F1]
    controller = await _loaded(scripted)
    controller.add_horizontal(0)
    controller.add_series(1, 1)
    await controller.refresh_filters()
    await controller.run()
    assert controller.result.show_results is True

    outcome = await controller.select_cube("WeatherCube")

    assert outcome.ok
    assert controller.selection.horizontal == ()
    assert controller.selection.series == ()
    assert controller.filters == []
    assert controller.pager.has_query is False
    assert controller.result.show_results is False
    assert [d.name for d in controller.hierarchy] == ["Station"]
    assert controller.options.measure == "temperature"


@pytest.mark.asyncio
async def test_select_cube_clears_state_before_the_engine_answers(gated):
    controller = await _gated_loaded(gated)
    controller.add_horizontal(0)

    task = asyncio.create_task(controller.select_cube("WeatherCube"))
    await settle()

    assert controller.is_cube_loaded is False
    assert controller.selection.horizontal == ()
    assert len(controller.hierarchy) == 0
    # Adding against the emptied hierarchy is an invalid selection.
    with pytest.raises(InvalidSelectionError):
        controller.add_horizontal(0)

    gated.resolve("selectCube", weather_metadata())
    assert (await task).ok


@pytest.mark.asyncio
async def test_select_cube_failure_reports_a_load_error(scripted):
    scripted.script("selectCube", EngineError("selectCube", "no such cube", status=5))
    controller = QueryController(scripted, config=make_config())

    outcome = await controller.select_cube("SalesCube")

    assert outcome.status is OperationStatus.FAILED
    assert controller.is_cube_loaded is False
    assert controller.is_cube_loading_failed is True
    assert controller.errors.is_error_open is True
    assert controller.errors.error_message == "no such cube"
    assert controller.errors.last.kind is ErrorKind.LOAD


@pytest.mark.asyncio
async def test_late_select_response_for_a_previous_cube_is_discarded(gated):
    controller = QueryController(gated, config=make_config())

    first = asyncio.create_task(controller.select_cube("SalesCube"))
    await settle()
    second = asyncio.create_task(controller.select_cube("WeatherCube"))
    await settle()
    assert gated.count("selectCube") == 1

    gated.resolve("selectCube", sales_metadata())
    assert (await first).status is OperationStatus.SUPERSEDED
    assert controller.is_cube_loaded is False

    await settle()
    assert gated.calls[-1] == ("selectCube", "WeatherCube")
    gated.resolve("selectCube", weather_metadata())
    assert (await second).ok
    assert controller.cube == "WeatherCube"
    assert [d.name for d in controller.hierarchy] == ["Station"]


@pytest.mark.asyncio
async def test_queued_select_calls_collapse_to_the_newest(gated):
    controller = QueryController(gated, config=make_config())

    a = asyncio.create_task(controller.select_cube("SalesCube"))
    await settle()
    b = asyncio.create_task(controller.select_cube("WeatherCube"))
    c = asyncio.create_task(controller.select_cube("SalesCube"))
    await settle()

    gated.resolve("selectCube", sales_metadata())
    await settle()

    assert (await a).status is OperationStatus.SUPERSEDED
    assert (await b).status is OperationStatus.SUPERSEDED
    assert gated.count("selectCube") == 2

    gated.resolve("selectCube", sales_metadata())
    assert (await c).ok
    assert controller.cube == "SalesCube"


# ---------------------------------------------------------------------------
# Selections & options
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_zoom_scenario_resolves_names_for_the_request(scripted):
    controller = await _loaded(scripted)
    controller.add_dimension(Axis.HORIZONTAL, 0)

    assert controller.zoom_in(Axis.HORIZONTAL, 0) is True
    assert controller.zoom_in(Axis.HORIZONTAL, 0) is True
    assert controller.zoom_in(Axis.HORIZONTAL, 0) is False

    request = controller.build_request()
    assert request.horizontal[0].dimension_name == "Time"
    assert request.horizontal[0].level_name == "Month"


@pytest.mark.asyncio
async def test_unknown_measure_is_rejected(scripted):
    controller = await _loaded(scripted)
    with pytest.raises(ValueError):
        controller.set_measure("profit")
    assert controller.options.measure == "revenue"


@pytest.mark.asyncio
async def test_stale_measure2_never_reaches_the_engine(scripted):
    controller = await _loaded(scripted)
    controller.set_aggregation(Aggregation.REGRESSION)
    controller.set_measure2("units")
    controller.set_aggregation("SUM")

    await controller.run()

    op, request = scripted.calls[-1]
    assert op == "startQuery"
    assert request.measure2 is None
    assert "measure2" not in request.to_dict()


@pytest.mark.asyncio
async def test_measure2_is_sent_for_correlation(scripted):
    controller = await _loaded(scripted)
    controller.set_aggregation(Aggregation.CORRELATION)
    controller.set_measure2("units")

    await controller.run()

    assert scripted.calls[-1][1].to_dict()["measure2"] == "units"


@pytest.mark.asyncio
async def test_solver_change_applies_only_on_the_next_run(scripted):
    controller = await _loaded(scripted)
    await controller.run()
    assert controller.result.applied_solver is Solver.MOMENT

    controller.set_solver(Solver.LINEAR_PROGRAMMING)
    assert controller.result.applied_solver is Solver.MOMENT
    assert controller.result.has_bounds is False

    await controller.run()
    assert controller.result.applied_solver is Solver.LINEAR_PROGRAMMING
    assert controller.result.has_bounds is True
    assert scripted.calls[-1][1].solver == "Linear Programming"


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_requires_a_loaded_cube(scripted):
    controller = QueryController(scripted, config=make_config())
    outcome = await controller.run()
    assert outcome.status is OperationStatus.REJECTED
    assert scripted.count("startQuery") == 0


@pytest.mark.asyncio
async def test_two_runs_apply_only_the_later_result(gated):
    controller = await _gated_loaded(gated)

    first = asyncio.create_task(controller.run())
    await settle()
    second = asyncio.create_task(controller.run())
    await settle()
    assert gated.count("startQuery") == 1

    gated.resolve("startQuery", query_result(row=1, tag="first"))
    await settle()
    assert (await first).status is OperationStatus.SUPERSEDED
    assert controller.result.show_results is False
    assert controller.is_initial_result_loading is True

    assert gated.count("startQuery") == 2
    gated.resolve("startQuery", query_result(row=3, tag="second"))
    assert (await second).ok

    assert [m.name for m in controller.result.metrics] == ["second-metric"]
    assert controller.pager.cursor == (0, 3)
    assert controller.is_initial_result_loading is False


@pytest.mark.asyncio
async def test_run_failure_leaves_previous_results_in_place(scripted):
    controller = await _loaded(scripted)
    scripted.script("startQuery", query_result(row=4, tag="first"))
    await controller.run()
    before = controller.snapshot()

    scripted.script("startQuery", EngineError("startQuery", "solver crashed", status=7))
    outcome = await controller.run()

    assert outcome.status is OperationStatus.FAILED
    after = controller.snapshot()
    assert after["result"] == before["result"]
    assert after["pager"] == before["pager"]
    assert controller.errors.last.kind is ErrorKind.QUERY
    assert controller.errors.error_message == "solver crashed"
    assert controller.is_initial_result_loading is False


# ---------------------------------------------------------------------------
# Continue
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_continue_without_a_query_is_rejected(scripted):
    controller = await _loaded(scripted)
    outcome = await controller.continue_query()
    assert outcome.status is OperationStatus.REJECTED
    assert scripted.count("continueQuery") == 0


@pytest.mark.asyncio
async def test_continue_after_completion_is_rejected_without_changes(scripted):
    controller = await _loaded(scripted)
    scripted.script("startQuery", query_result(row=4, complete=True))
    await controller.run()
    before = controller.snapshot()

    outcome = await controller.continue_query()

    assert outcome.status is OperationStatus.REJECTED
    assert scripted.count("continueQuery") == 0
    assert controller.snapshot() == before


@pytest.mark.asyncio
async def test_continue_merges_cursor_series_and_completion(scripted):
    controller = await _loaded(scripted)
    scripted.script("startQuery", query_result(row=5))
    await controller.run()

    scripted.script("continueQuery", query_result(page_id=1, row=2, tag="more"))
    outcome = await controller.continue_query()

    assert outcome.ok
    assert controller.pager.cursor == (1, 2)
    assert controller.pager.requested_page == 1
    assert controller.result.metrics[0].name == "more-metric"
    assert controller.snapshot()["can_continue"] is True


@pytest.mark.asyncio
async def test_second_continue_while_one_is_pending_is_rejected(gated):
    controller = await _gated_loaded(gated)
    await _gated_run(controller, gated, query_result(row=5))

    first = asyncio.create_task(controller.continue_query())
    await settle()
    assert controller.snapshot()["can_continue"] is False

    outcome = await controller.continue_query()
    assert outcome.status is OperationStatus.REJECTED
    assert gated.count("continueQuery") == 1

    gated.resolve("continueQuery", query_result(row=8))
    assert (await first).ok


@pytest.mark.asyncio
async def test_continue_while_a_run_is_pending_is_rejected(gated):
    controller = await _gated_loaded(gated)
    await _gated_run(controller, gated, query_result(row=5))

    running = asyncio.create_task(controller.run())
    await settle()

    outcome = await controller.continue_query()
    assert outcome.status is OperationStatus.REJECTED

    gated.resolve("startQuery", query_result(row=1))
    assert (await running).ok


@pytest.mark.asyncio
async def test_continue_response_after_cube_change_is_discarded(gated):
    controller = await _gated_loaded(gated)
    await _gated_run(controller, gated, query_result(row=5))

    pending = asyncio.create_task(controller.continue_query())
    await settle()
    switching = asyncio.create_task(controller.select_cube("WeatherCube"))
    await settle()

    gated.resolve("continueQuery", query_result(page_id=2, row=9))
    assert (await pending).status is OperationStatus.SUPERSEDED
    assert controller.pager.has_query is False
    assert controller.pager.cursor == (0, 0)

    gated.resolve("selectCube", weather_metadata())
    assert (await switching).ok


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_change_page_replaces_rows_but_keeps_the_cursor(scripted):
    controller = await _loaded(scripted)
    scripted.script("startQuery", query_result(page_id=0, row=5, row_count=5))
    await controller.run()

    outcome = await controller.change_page(0, 10)

    assert outcome.ok
    assert len(controller.pager.rows) == 10
    assert controller.pager.requested_page == 0
    assert controller.pager.page_size == 10
    assert controller.pager.cursor == (0, 5)
    assert controller.pager.highlighted_row == 5
    assert controller.options.page_size == 10


@pytest.mark.asyncio
async def test_change_page_validates_and_clamps(scripted):
    controller = await _loaded(scripted)

    assert (await controller.change_page(0)).status is OperationStatus.REJECTED

    await controller.run()
    assert (await controller.change_page(-1)).status is OperationStatus.REJECTED

    await controller.change_page(1, 5000)
    assert scripted.calls[-1] == ("getPage", (1, 100))


@pytest.mark.asyncio
async def test_change_page_failure_keeps_the_view(scripted):
    controller = await _loaded(scripted)
    await controller.run()
    before = controller.pager.to_dict()

    scripted.script("getPage", EngineError("getPage", "page gone", status=4))
    outcome = await controller.change_page(3)

    assert outcome.status is OperationStatus.FAILED
    assert controller.pager.to_dict() == before
    assert controller.errors.last.kind is ErrorKind.MUTATION


@pytest.mark.asyncio
async def test_page_and_continue_update_disjoint_fields(gated):
    controller = await _gated_loaded(gated)
    await _gated_run(controller, gated, query_result(page_id=0, row=5))

    continuing = asyncio.create_task(controller.continue_query())
    paging = asyncio.create_task(controller.change_page(0))
    await settle()
    assert gated.count("continueQuery") == 1
    assert gated.count("getPage") == 1

    gated.resolve("continueQuery", query_result(page_id=1, row=2))
    assert (await continuing).ok
    assert controller.pager.requested_page == 1

    gated.resolve("getPage", PageResult(page_id=0, page_size=10, rows=rows(0, 10)))
    assert (await paging).ok

    assert controller.pager.requested_page == 0
    assert controller.pager.cursor == (1, 2)
    assert controller.pager.highlighted_row is None


@pytest.mark.asyncio
async def test_latest_page_request_wins(gated):
    controller = await _gated_loaded(gated)
    await _gated_run(controller, gated, query_result())

    first = asyncio.create_task(controller.change_page(1))
    await settle()
    second = asyncio.create_task(controller.change_page(2))
    await settle()

    gated.resolve("getPage", PageResult(page_id=1, page_size=10, rows=rows(10, 10)))
    await settle()
    assert (await first).status is OperationStatus.SUPERSEDED
    assert controller.pager.requested_page == 0

    gated.resolve("getPage", PageResult(page_id=2, page_size=10, rows=rows(20, 10)))
    assert (await second).ok
    assert controller.pager.requested_page == 2
    assert controller.is_page_loading is False


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_failed_filter_delete_leaves_the_list_untouched(scripted):
    scripted.filters = [F0, F1, F2]
    controller = await _loaded(scripted)
    await controller.refresh_filters()

    scripted.script("deleteFilter", EngineError("deleteFilter", "filter is locked", status=2))
    outcome = await controller.delete_filter(1)

    assert outcome.status is OperationStatus.FAILED
    assert controller.filters == [F0, F1, F2]
    assert controller.errors.is_error_open is True
    assert controller.errors.error_message == "filter is locked"
    assert controller.errors.last.kind is ErrorKind.MUTATION
    assert scripted.count("getFilters") == 1
    assert controller.is_filter_updating is False


@pytest.mark.asyncio
async def test_filter_delete_refetches_the_engine_list(scripted):
    scripted.filters = [F0, F1, F2]
    controller = await _loaded(scripted)
    await controller.refresh_filters()

    # The engine is the source of truth, even if it disagrees with a local splice.
    scripted.filters = [F2, F0]
    outcome = await controller.delete_filter(1)

    assert outcome.ok
    assert ("deleteFilter", 1) in scripted.calls
    assert controller.filters == [F2, F0]


@pytest.mark.asyncio
async def test_filter_delete_with_a_bad_index_is_rejected(scripted):
    scripted.filters = [F0]
    controller = await _loaded(scripted)
    await controller.refresh_filters()

    outcome = await controller.delete_filter(3)

    assert outcome.status is OperationStatus.REJECTED
    assert scripted.count("deleteFilter") == 0


@pytest.mark.asyncio
async def test_second_filter_delete_while_one_is_pending_is_rejected(gated):
    controller = await _gated_loaded(gated)
    refreshing = asyncio.create_task(controller.refresh_filters())
    await settle()
    gated.resolve("getFilters", [F0, F1])
    assert (await refreshing).ok

    first = asyncio.create_task(controller.delete_filter(0))
    await settle()
    assert controller.is_filter_updating is True

    outcome = await controller.delete_filter(1)
    assert outcome.status is OperationStatus.REJECTED

    gated.resolve("deleteFilter", None)
    await settle()
    gated.resolve("getFilters", [F1])
    assert (await first).ok
    assert controller.filters == [F1]
    assert controller.is_filter_updating is False


# ---------------------------------------------------------------------------
# Notifications & lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_listeners_receive_changes_until_unsubscribed(scripted):
    controller = await _loaded(scripted)
    seen = []
    unsubscribe = controller.subscribe(seen.append)

    controller.add_horizontal(0)
    assert seen == [StateChange.SELECTION]

    # Zooming out of the coarsest level changes nothing.
    controller.zoom_out(Axis.HORIZONTAL, 0)
    assert seen == [StateChange.SELECTION]

    unsubscribe()
    controller.add_series(1)
    assert seen == [StateChange.SELECTION]


@pytest.mark.asyncio
async def test_a_failing_listener_does_not_break_the_controller(scripted):
    controller = await _loaded(scripted)

    def broken(change):
        raise RuntimeError("view exploded")

    controller.subscribe(broken)
    await controller.run()
    assert controller.result.show_results is True


@pytest.mark.asyncio
async def test_error_reports_notify_listeners(scripted):
    controller = await _loaded(scripted)
    seen = []
    controller.subscribe(seen.append)

    scripted.script("startQuery", EngineError("startQuery", "boom"))
    await controller.run()

    assert StateChange.ERROR in seen
    controller.errors.dismiss()
    assert controller.snapshot()["error"]["is_error_open"] is False


@pytest.mark.asyncio
async def test_dispose_discards_pending_responses_and_rejects_new_calls(gated):
    controller = await _gated_loaded(gated)
    seen = []
    controller.subscribe(seen.append)

    pending = asyncio.create_task(controller.run())
    await settle()
    controller.dispose()
    seen.clear()

    gated.resolve("startQuery", query_result())
    assert (await pending).status is OperationStatus.SUPERSEDED
    assert controller.result.show_results is False
    assert seen == []

    assert controller.disposed is True
    assert (await controller.run()).status is OperationStatus.REJECTED
    assert (await controller.select_cube("SalesCube")).status is OperationStatus.REJECTED


@pytest.mark.asyncio
async def test_failed_run_keeps_pending_pages_of_the_displayed_query(gated):
    controller = await _gated_loaded(gated)
    await _gated_run(controller, gated, query_result(page_id=0, row=5))

    paging = asyncio.create_task(controller.change_page(0, 10))
    await settle()
    rerun = asyncio.create_task(controller.run())
    await settle()

    gated.fail("startQuery", "backend down")
    assert (await rerun).status is OperationStatus.FAILED

    gated.resolve("getPage", PageResult(page_id=0, page_size=10, rows=rows(0, 10)))
    assert (await paging).ok
    assert len(controller.pager.rows) == 10
    assert controller.pager.cursor == (0, 5)


@pytest.mark.asyncio
async def test_applied_run_makes_pending_pages_of_the_old_query_stale(gated):
    controller = await _gated_loaded(gated)
    await _gated_run(controller, gated, query_result(page_id=0, row=5))

    paging = asyncio.create_task(controller.change_page(3))
    await settle()
    await _gated_run(controller, gated, query_result(page_id=0, row=1, tag="new"))

    gated.resolve("getPage", PageResult(page_id=3, page_size=10, rows=rows(30, 10)))
    assert (await paging).status is OperationStatus.SUPERSEDED
    assert controller.pager.requested_page == 0


@pytest.mark.asyncio
async def test_run_clamps_the_page_size_like_change_page(scripted):
    controller = QueryController(scripted, config=make_config(page_size=50, max_page_size=20))
    assert (await controller.select_cube("SalesCube")).ok

    await controller.run()

    assert scripted.calls[-1][1].page_size == 20
    assert controller.pager.page_size == 20


@pytest.mark.asyncio
async def test_dismiss_error_closes_the_error_and_notifies(scripted):
    controller = await _loaded(scripted)
    scripted.script("startQuery", EngineError("startQuery", "boom"))
    await controller.run()
    seen = []
    controller.subscribe(seen.append)

    controller.dismiss_error()

    assert controller.errors.is_error_open is False
    assert controller.errors.error_message == "boom"
    assert seen == [StateChange.ERROR]

    controller.dismiss_error()
    assert seen == [StateChange.ERROR]


@pytest.mark.asyncio
async def test_load_cubes_refresh_bypasses_the_cached_listing(scripted):
    controller = QueryController(scripted, config=make_config())
    await controller.load_cubes(select_first=False)

    scripted.cubes = ["SalesCube", "WeatherCube", "TrafficCube"]
    await controller.load_cubes(select_first=False)
    assert len(controller.cubes) == 2

    await controller.load_cubes(select_first=False, refresh=True)
    assert controller.cubes == ["SalesCube", "WeatherCube", "TrafficCube"]
    assert scripted.count("listCubes") == 2
