# Cube Query MCP Server
# File: tools/__init__.py
# Version: v1

"""MCP tools over a QueryController."""

from __future__ import annotations

from .tasks import register_tools

__all__ = ["register_tools"]
