# Cube Query MCP Server
# File: auth.py
# Version: v1

"""Optional OAuth2 client-credentials token source for the cube engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
import base64

import httpx

from .config import CubeQueryConfig


@dataclass
class OAuthClient:
    """Client-credentials flow with HTTP Basic client authentication.

    When the engine runs without auth (no token URL / client id / secret),
    ``get_access_token`` returns None and callers send no Authorization header.
    """

    config: CubeQueryConfig
    transport: Optional[httpx.AsyncBaseTransport] = None
    _cached_token: Optional[str] = None

    async def get_access_token(self) -> Optional[str]:
        """Return a bearer token, or None when auth is not configured.

        The token is cached in-memory until ``reset()`` is called.
        """
        if not self.config.oauth_configured:
            return None

        if self._cached_token:
            return self._cached_token

        raw_credentials = f"{self.config.client_id}:{self.config.client_secret}"
        basic_token = base64.b64encode(raw_credentials.encode("utf-8")).decode("ascii")

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {basic_token}",
        }

        async with httpx.AsyncClient(
            timeout=float(self.config.timeout_seconds),
            verify=self.config.verify_tls,
            transport=self.transport,
        ) as client:
            try:
                response = await client.post(
                    str(self.config.oauth_token_url),
                    data={"grant_type": "client_credentials"},
                    headers=headers,
                )
            except httpx.RequestError as exc:
                raise RuntimeError(
                    f"Error calling token endpoint '{self.config.oauth_token_url}': {exc}"
                ) from exc

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            body_preview = exc.response.text[:500]
            raise RuntimeError(
                f"Failed to obtain access token from '{self.config.oauth_token_url}' "
                f"(HTTP {status}). Check CUBE_ENGINE_OAUTH_TOKEN_URL, "
                "CUBE_ENGINE_CLIENT_ID and CUBE_ENGINE_CLIENT_SECRET. "
                f"Response snippet: {body_preview}"
            ) from exc

        data: dict[str, Any] = response.json()
        token = data.get("access_token")
        if not token:
            raise RuntimeError("OAuth token response did not contain 'access_token'")

        self._cached_token = token
        return token

    def reset(self) -> None:
        """Forget the cached token (e.g. after the engine answered 401)."""
        self._cached_token = None
