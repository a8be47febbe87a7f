# Cube Query MCP Server
# File: client.py
# Version: v1
"""Async client for the remote cube engine.

Implements the engine operations the query controller consumes:

- list_cubes()
- select_cube()
- get_filters() / delete_filter()
- start_query() / continue_query()
- get_page()

Every failure (transport, HTTP status, or a non-zero ``status`` in the JSON
envelope) is raised as :class:`EngineError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
from httpx import HTTPStatusError, RequestError

from .auth import OAuthClient
from .config import CubeQueryConfig
from .errors import EngineError
from .mock import MockEngineClient
from .models import CubeMetadata, Filter, PageResult, QueryRequest, QueryResult

API_PREFIX = "/api/v1"

T = TypeVar("T")


@dataclass
class EngineClient:
    """Wrapper around the cube engine's HTTP/JSON API."""

    config: CubeQueryConfig
    oauth: OAuthClient
    transport: Optional[httpx.AsyncBaseTransport] = None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        token = await self.oauth.get_access_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _call(
        self,
        operation: str,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.config.engine_url:
            raise EngineError(
                operation,
                "CUBE_ENGINE_URL is not set. Configure it or enable CUBE_ENGINE_MOCK_MODE.",
            )

        url = f"{self.config.engine_url.rstrip('/')}{API_PREFIX}{path}"
        try:
            headers = await self._headers()
        except RuntimeError as exc:
            raise EngineError(operation, str(exc)) from exc

        async with httpx.AsyncClient(
            timeout=float(self.config.timeout_seconds),
            verify=self.config.verify_tls,
            transport=self.transport,
        ) as http_client:
            try:
                response = await http_client.request(
                    method, url, headers=headers, json=payload
                )
            except RequestError as exc:
                raise EngineError(
                    operation, f"Error calling cube engine at '{url}': {exc}"
                ) from exc

            try:
                response.raise_for_status()
            except HTTPStatusError as exc:
                status = response.status_code
                if status == 401:
                    self.oauth.reset()
                body_preview = response.text[:500]
                raise EngineError(
                    operation,
                    f"Cube engine rejected '{url}' (HTTP {status}). "
                    f"Response snippet: {body_preview}",
                    status=status,
                ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise EngineError(operation, f"Cube engine returned invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise EngineError(
                operation,
                f"Unexpected response: expected JSON object, got {type(data).__name__}.",
            )

        try:
            status = int(data.get("status") or 0)
        except (TypeError, ValueError) as exc:
            raise EngineError(
                operation,
                str(data.get("statusMessage") or f"Malformed engine response: status {data.get('status')!r}"),
            ) from exc
        if status != 0:
            raise EngineError(
                operation,
                str(data.get("statusMessage") or "Cube engine reported a failure."),
                status=status,
            )
        return data

    @staticmethod
    def _parse(operation: str, parse: Callable[[Dict[str, Any]], T], data: Dict[str, Any]) -> T:
        """Turn a payload that does not fit the model into :class:`EngineError`."""
        try:
            return parse(data)
        except (TypeError, ValueError, AttributeError) as exc:
            raise EngineError(operation, f"Malformed engine response: {exc}") from exc

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """True when an engine URL is configured."""
        return bool(self.config.engine_url)

    # ------------------------------------------------------------------
    # Cubes
    # ------------------------------------------------------------------

    async def list_cubes(self) -> List[str]:
        data = await self._call("listCubes", "GET", "/cubes")
        raw = data.get("cubes")
        return [str(c) for c in raw] if isinstance(raw, list) else []

    async def select_cube(self, name: str) -> CubeMetadata:
        data = await self._call("selectCube", "POST", "/cubes/select", {"name": name})
        return self._parse("selectCube", CubeMetadata.from_dict, data)

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    async def get_filters(self) -> List[Filter]:
        data = await self._call("getFilters", "GET", "/filters")
        raw = data.get("filters")
        if not isinstance(raw, list):
            return []
        return [self._parse("getFilters", Filter.from_dict, f) for f in raw if isinstance(f, dict)]

    async def delete_filter(self, index: int) -> None:
        await self._call("deleteFilter", "POST", "/filters/delete", {"index": int(index)})

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def start_query(self, request: QueryRequest) -> QueryResult:
        data = await self._call("startQuery", "POST", "/query/start", request.to_dict())
        return self._parse("startQuery", QueryResult.from_dict, data)

    async def continue_query(self) -> QueryResult:
        data = await self._call("continueQuery", "POST", "/query/continue", {})
        return self._parse("continueQuery", QueryResult.from_dict, data)

    async def get_page(self, page_id: int, page_size: int) -> PageResult:
        data = await self._call(
            "getPage",
            "POST",
            "/query/page",
            {"pageId": int(page_id), "pageSize": int(page_size)},
        )
        raw = data.get("rows")
        rows = [dict(r) for r in raw if isinstance(r, dict)] if isinstance(raw, list) else []
        return PageResult(page_id=int(page_id), page_size=int(page_size), rows=rows)


def make_client(cfg: Optional[CubeQueryConfig] = None) -> EngineClient:
    """Create an engine client from config (env by default).

    Returns the in-memory :class:`~cube_query_mcp.mock.MockEngineClient` when
    mock mode is on.
    """
    cfg = cfg or CubeQueryConfig.from_env()

    if cfg.mock_mode:
        return MockEngineClient()  # type: ignore[return-value]

    return EngineClient(config=cfg, oauth=OAuthClient(config=cfg))
