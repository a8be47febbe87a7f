# demo_mock_session.py
# Version: v1

r"""
Demo: drive a QueryController through a full session against the in-memory
mock engine (no network needed).

Usage:

  python demo_mock_session.py

  # Pick another cube / page size:
  $env:CUBE_DEMO_CUBE      = "WeatherCube"
  $env:CUBE_QUERY_PAGE_SIZE = "5"
  python demo_mock_session.py
"""

from __future__ import annotations

import asyncio
import os

from cube_query_mcp.config import CubeQueryConfig
from cube_query_mcp.mock import MockEngineClient
from cube_query_mcp.state import Aggregation, Axis, QueryController, Solver

CUBE = os.environ.get("CUBE_DEMO_CUBE", "SalesCube")


async def main() -> None:
    cfg = CubeQueryConfig.from_env()
    controller = QueryController(MockEngineClient(), config=cfg)
    controller.subscribe(lambda change: print(f"  [changed] {change.value}"))

    print("Loading cubes ...")
    await controller.load_cubes(select_first=False)
    print("Cubes:", controller.cubes)

    outcome = await controller.select_cube(CUBE)
    print(f"Select {CUBE}:", outcome.status.value, outcome.message)
    if not outcome.ok:
        return

    controller.add_horizontal(0)
    controller.zoom_in(Axis.HORIZONTAL, 0)
    controller.add_series(1)
    controller.set_aggregation(Aggregation.SUM)
    controller.set_solver(Solver.LINEAR_PROGRAMMING)
    print("Request:", controller.build_request().to_dict())

    await controller.run()
    while controller.pager.can_continue:
        pager = controller.pager
        print(
            f"Cursor page {pager.current_computed_page} row {pager.current_computed_row}, "
            f"showing page {pager.requested_page} ({len(pager.rows)} rows)"
        )
        await controller.continue_query()

    print("Complete. Metrics:", controller.snapshot()["result"]["metrics"])

    await controller.change_page(0)
    print("Page 0 rows:", [r["id"] for r in controller.pager.rows])
    print("Highlighted row:", controller.pager.highlighted_row)

    controller.dispose()


if __name__ == "__main__":
    asyncio.run(main())
