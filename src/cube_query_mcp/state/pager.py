# Cube Query MCP Server
# File: state/pager.py
# Version: v1

"""Pagination over progressively computed cuboids.

Two positions are tracked and must not be confused:

- the *view*: ``requested_page`` / ``page_size`` / ``rows``, i.e. what is
  displayed;
- the *cursor*: ``current_computed_page`` / ``current_computed_row``, i.e.
  where the engine's computation stands.

The cursor only moves on ``seed`` (run) and ``advance`` (continue) and never
goes backwards within a query. ``is_complete`` only goes false -> true until
the next ``seed``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models import PageResult, QueryResult

logger = logging.getLogger(__name__)


@dataclass
class CuboidPager:
    page_size: int = 10
    requested_page: int = 0
    current_computed_page: int = 0
    current_computed_row: int = 0
    is_complete: bool = False
    has_query: bool = False
    rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def cursor(self) -> tuple[int, int]:
        return (self.current_computed_page, self.current_computed_row)

    @property
    def can_continue(self) -> bool:
        return self.has_query and not self.is_complete

    @property
    def highlighted_row(self) -> Optional[int]:
        """Row being computed, only when the displayed page holds it."""
        if not self.has_query or self.requested_page != self.current_computed_page:
            return None
        return self.current_computed_row

    def reset(self) -> None:
        self.requested_page = 0
        self.current_computed_page = 0
        self.current_computed_row = 0
        self.is_complete = False
        self.has_query = False
        self.rows = []

    def seed(self, result: QueryResult) -> None:
        """Start a new query lifetime from a ``startQuery`` result."""
        self.has_query = True
        self.current_computed_page = result.current_computed_page
        self.current_computed_row = result.current_computed_row
        self.is_complete = result.is_complete
        self.requested_page = result.page_id
        self.rows = list(result.rows)

    def advance(self, result: QueryResult) -> None:
        """Merge a ``continueQuery`` result into the running query."""
        new_cursor = (result.current_computed_page, result.current_computed_row)
        if new_cursor >= self.cursor:
            self.current_computed_page, self.current_computed_row = new_cursor
        else:
            logger.warning(
                "Engine cursor moved backwards from %s to %s; keeping %s.",
                self.cursor,
                new_cursor,
                self.cursor,
            )
        self.is_complete = self.is_complete or result.is_complete
        self.requested_page = result.page_id
        self.rows = list(result.rows)

    def show_page(self, page: PageResult) -> None:
        """Replace the view with a fetched page; the cursor stays put."""
        self.requested_page = page.page_id
        self.page_size = page.page_size
        self.rows = list(page.rows)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requested_page": self.requested_page,
            "page_size": self.page_size,
            "current_computed_page": self.current_computed_page,
            "current_computed_row": self.current_computed_row,
            "is_complete": self.is_complete,
            "has_query": self.has_query,
            "highlighted_row": self.highlighted_row,
            "rows": [dict(r) for r in self.rows],
        }
