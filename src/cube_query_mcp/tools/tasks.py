# Cube Query MCP Server
# File: tools/tasks.py
# Version: v1
#
# NOTE: Tools are thin: they translate arguments, call one controller
# operation and return the controller's read model. All state lives in the
# QueryController instance passed to `register_tools`.

from __future__ import annotations

import time
from typing import Any, Dict, Optional

from ..errors import CubeQueryError
from ..state import Aggregation, Axis, Mode, OperationResult, QueryController, Solver


def _make_error(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Small, LLM-friendly error shape."""
    err: Dict[str, Any] = {"code": code, "message": message}
    if details:
        err["details"] = details
    return err


def _envelope(
    controller: QueryController,
    summary: str,
    outcome: Optional[OperationResult] = None,
    error: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    meta: Dict[str, Any] = {}
    if outcome is not None:
        meta["outcome"] = outcome.to_dict()
    if error is not None:
        meta["error"] = error
    return {"summary": summary, "data": controller.snapshot(), "meta": meta}


def _intent(controller: QueryController, summary: str, action) -> Dict[str, Any]:
    """Run a synchronous intent, turning bad arguments into an error payload."""
    try:
        action()
    except (CubeQueryError, ValueError) as exc:
        return _envelope(
            controller,
            f"Rejected: {exc}",
            error=_make_error("INVALID_ARGUMENT", str(exc)),
        )
    return _envelope(controller, summary)


def _describe(operation: str, outcome: OperationResult) -> str:
    if outcome.ok:
        return f"{operation}: applied."
    return f"{operation}: {outcome.status.value} ({outcome.message})."


# ---------------------------------------------------------------------------
# Library-style tasks
# ---------------------------------------------------------------------------


async def list_cubes(
    controller: QueryController, select_first: bool = False, refresh: bool = False
) -> Dict[str, Any]:
    outcome = await controller.load_cubes(select_first=select_first, refresh=refresh)
    return _envelope(controller, f"Found {len(controller.cubes)} cubes.", outcome)


async def select_cube(controller: QueryController, name: str) -> Dict[str, Any]:
    outcome = await controller.select_cube(name)
    return _envelope(controller, _describe(f"select cube '{name}'", outcome), outcome)


def add_dimension(
    controller: QueryController, axis: str, dimension_index: int, level_index: int = 0
) -> Dict[str, Any]:
    return _intent(
        controller,
        f"Added dimension {dimension_index} to {axis}.",
        lambda: controller.add_dimension(Axis(axis), dimension_index, level_index),
    )


def remove_dimension(controller: QueryController, axis: str, position: int) -> Dict[str, Any]:
    return _intent(
        controller,
        f"Removed {axis} selection at position {position}.",
        lambda: controller.remove_dimension(Axis(axis), position),
    )


def zoom(controller: QueryController, axis: str, position: int, direction: str) -> Dict[str, Any]:
    direction = direction.strip().lower()
    if direction not in {"in", "out"}:
        return _envelope(
            controller,
            f"Rejected: unknown zoom direction '{direction}'.",
            error=_make_error("INVALID_ARGUMENT", "direction must be 'in' or 'out'"),
        )

    def action() -> None:
        if direction == "in":
            controller.zoom_in(Axis(axis), position)
        else:
            controller.zoom_out(Axis(axis), position)

    return _intent(controller, f"Zoomed {direction} {axis} selection {position}.", action)


def set_options(
    controller: QueryController,
    measure: Optional[str] = None,
    measure2: Optional[str] = None,
    aggregation: Optional[str] = None,
    solver: Optional[str] = None,
    mode: Optional[str] = None,
) -> Dict[str, Any]:
    def action() -> None:
        if measure is not None:
            controller.set_measure(measure)
        if measure2 is not None:
            controller.set_measure2(measure2)
        if aggregation is not None:
            controller.set_aggregation(Aggregation(aggregation))
        if solver is not None:
            controller.set_solver(Solver(solver))
        if mode is not None:
            controller.set_mode(Mode(mode))

    return _intent(controller, "Options updated; they apply on the next run.", action)


async def run_query(controller: QueryController) -> Dict[str, Any]:
    try:
        outcome = await controller.run()
    except CubeQueryError as exc:
        return _envelope(
            controller,
            f"Rejected: {exc}",
            error=_make_error("INVALID_STATE", str(exc)),
        )
    return _envelope(controller, _describe("run query", outcome), outcome)


async def continue_query(controller: QueryController) -> Dict[str, Any]:
    outcome = await controller.continue_query()
    return _envelope(controller, _describe("continue query", outcome), outcome)


async def change_page(
    controller: QueryController, page: int, page_size: Optional[int] = None
) -> Dict[str, Any]:
    outcome = await controller.change_page(page, page_size)
    return _envelope(controller, _describe(f"show page {page}", outcome), outcome)


async def refresh_filters(controller: QueryController) -> Dict[str, Any]:
    outcome = await controller.refresh_filters()
    return _envelope(controller, _describe("refresh filters", outcome), outcome)


async def delete_filter(controller: QueryController, index: int) -> Dict[str, Any]:
    outcome = await controller.delete_filter(index)
    return _envelope(controller, _describe(f"delete filter {index}", outcome), outcome)


def dismiss_error(controller: QueryController) -> Dict[str, Any]:
    controller.dismiss_error()
    return _envelope(controller, "Error dismissed.")


async def diagnostics(controller: QueryController) -> Dict[str, Any]:
    started = time.time()
    cfg = controller.config
    checks = []

    t0 = time.time()
    try:
        ok = await controller.client.ping()
        checks.append(
            {"name": "ping", "ok": bool(ok), "error": None, "elapsed_ms": int((time.time() - t0) * 1000)}
        )
    except Exception as exc:
        checks.append(
            {
                "name": "ping",
                "ok": False,
                "error": _make_error("BACKEND_ERROR", str(exc)),
                "elapsed_ms": int((time.time() - t0) * 1000),
            }
        )

    return {
        "ok": all(c["ok"] for c in checks),
        "mock_mode": bool(cfg.mock_mode),
        "config": {
            "engine_url": cfg.engine_url,
            "oauth_configured": cfg.oauth_configured,
            "verify_tls": cfg.verify_tls,
            "timeout_seconds": cfg.timeout_seconds,
            "page_size": cfg.page_size,
            "max_page_size": cfg.max_page_size,
        },
        "checks": checks,
        "meta": {
            "elapsed_ms": int((time.time() - started) * 1000),
            "cache": controller.cache.stats(),
            "errors": [e.to_dict() for e in controller.errors.history],
        },
    }


# ---------------------------------------------------------------------------
# MCP tool registration
# ---------------------------------------------------------------------------


def register_tools(server: Any, controller: QueryController) -> None:
    """Register MCP tools bound to one controller instance."""
    if server is None or not hasattr(server, "tool"):
        raise ValueError(
            "register_tools(server, controller) expects an MCP Server-like object that exposes a .tool() decorator."
        )

    @server.tool(
        name="cube_list_cubes",
        description="List the cubes the engine offers; refresh=True bypasses the cached listing.",
    )
    async def mcp_list_cubes(select_first: bool = False, refresh: bool = False) -> Dict[str, Any]:
        return await list_cubes(controller, select_first=select_first, refresh=refresh)

    @server.tool(
        name="cube_select",
        description="Select a cube; clears selections, filters and results and loads its dimensions.",
    )
    async def mcp_select(name: str) -> Dict[str, Any]:
        return await select_cube(controller, name)

    @server.tool(
        name="cube_add_dimension",
        description="Add a dimension at a level (0 = coarsest) to the 'horizontal' or 'series' axis.",
    )
    async def mcp_add_dimension(axis: str, dimension_index: int, level_index: int = 0) -> Dict[str, Any]:
        return add_dimension(controller, axis, dimension_index, level_index)

    @server.tool(
        name="cube_remove_dimension",
        description="Remove the selection at a position of the 'horizontal' or 'series' axis.",
    )
    async def mcp_remove_dimension(axis: str, position: int) -> Dict[str, Any]:
        return remove_dimension(controller, axis, position)

    @server.tool(
        name="cube_zoom",
        description="Zoom a selection 'in' (finer level) or 'out' (coarser level).",
    )
    async def mcp_zoom(axis: str, position: int, direction: str) -> Dict[str, Any]:
        return zoom(controller, axis, position, direction)

    @server.tool(
        name="cube_set_options",
        description="Set measure(s), aggregation (SUM, AVERAGE, VARIANCE, COR, REG), solver and mode.",
    )
    async def mcp_set_options(
        measure: Optional[str] = None,
        measure2: Optional[str] = None,
        aggregation: Optional[str] = None,
        solver: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> Dict[str, Any]:
        return set_options(
            controller,
            measure=measure,
            measure2=measure2,
            aggregation=aggregation,
            solver=solver,
            mode=mode,
        )

    @server.tool(name="cube_run_query", description="Start a query with the current selections and options.")
    async def mcp_run_query() -> Dict[str, Any]:
        return await run_query(controller)

    @server.tool(
        name="cube_continue_query",
        description="Ask the engine to compute more cuboids for the running query.",
    )
    async def mcp_continue_query() -> Dict[str, Any]:
        return await continue_query(controller)

    @server.tool(
        name="cube_change_page",
        description="Show another page of prepared cuboids without advancing the computation.",
    )
    async def mcp_change_page(page: int, page_size: Optional[int] = None) -> Dict[str, Any]:
        return await change_page(controller, page, page_size)

    @server.tool(name="cube_refresh_filters", description="Re-fetch the filters applied on the engine.")
    async def mcp_refresh_filters() -> Dict[str, Any]:
        return await refresh_filters(controller)

    @server.tool(name="cube_delete_filter", description="Delete the filter at a position on the engine.")
    async def mcp_delete_filter(index: int) -> Dict[str, Any]:
        return await delete_filter(controller, index)

    @server.tool(name="cube_get_state", description="Return the current query state.")
    async def mcp_get_state() -> Dict[str, Any]:
        return _envelope(controller, "Current query state.")

    @server.tool(name="cube_dismiss_error", description="Close the currently shown engine error.")
    async def mcp_dismiss_error() -> Dict[str, Any]:
        return dismiss_error(controller)

    @server.tool(name="cube_diagnostics", description="Health checks, configuration and cache statistics.")
    async def mcp_diagnostics() -> Dict[str, Any]:
        return await diagnostics(controller)
