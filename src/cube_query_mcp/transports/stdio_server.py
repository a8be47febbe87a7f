# Cube Query MCP Server
# File: transports/stdio_server.py
# Version: v1

"""STDIO entrypoint for the Cube Query MCP server.

This is the script behind the ``cube-query-mcp`` console command.

It:

- reads configuration from the environment,
- creates the engine client (HTTP or mock) and one QueryController,
- registers the query tools on a FastMCP server, and
- runs the built-in stdio transport.
"""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from ..client import make_client
from ..config import CubeQueryConfig
from ..state import QueryController
from ..tools import tasks

logger = logging.getLogger(__name__)


def build_server(config: CubeQueryConfig | None = None) -> tuple[FastMCP, QueryController]:
    cfg = config or CubeQueryConfig.from_env()
    controller = QueryController(make_client(cfg), config=cfg)

    mcp = FastMCP("cube-query-mcp")
    tasks.register_tools(mcp, controller)
    return mcp, controller


def main() -> None:
    """Synchronous entrypoint for console_scripts."""
    mcp, controller = build_server()
    logger.info("Cube Query MCP server starting (mock_mode=%s)", controller.config.mock_mode)
    try:
        # FastMCP handles stdio and the event loop.
        mcp.run()
    finally:
        controller.dispose()


if __name__ == "__main__":
    main()
