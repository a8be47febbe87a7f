# Cube Query MCP Server
# File: config.py
# Version: v1

"""Configuration loading for the Cube Query MCP Server."""

from __future__ import annotations

from dataclasses import dataclass
import os


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable.

    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int_env(
    name: str,
    default: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Parse an int environment variable with clamping and safe fallback."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = int(default)
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            value = int(default)

    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value

    return value


@dataclass
class CubeQueryConfig:
    """Settings for talking to the remote cube engine.

    Auth is optional: the engine may run unauthenticated inside a trusted
    network, in which case the three OAuth values stay unset.
    """

    engine_url: str | None
    oauth_token_url: str | None
    client_id: str | None
    client_secret: str | None
    mock_mode: bool

    verify_tls: bool = True
    timeout_seconds: int = 60

    # Pager limits
    page_size: int = 10
    max_page_size: int = 500

    # Cube catalog cache
    cache_ttl_seconds: int = 60
    cache_max_entries: int = 16

    @property
    def oauth_configured(self) -> bool:
        return bool(self.oauth_token_url and self.client_id and self.client_secret)

    @classmethod
    def from_env(cls) -> "CubeQueryConfig":
        """Create configuration from environment variables."""
        return cls(
            engine_url=os.getenv("CUBE_ENGINE_URL"),
            oauth_token_url=os.getenv("CUBE_ENGINE_OAUTH_TOKEN_URL"),
            client_id=os.getenv("CUBE_ENGINE_CLIENT_ID"),
            client_secret=os.getenv("CUBE_ENGINE_CLIENT_SECRET"),
            mock_mode=_parse_bool_env("CUBE_ENGINE_MOCK_MODE", default=False),
            verify_tls=_parse_bool_env("CUBE_ENGINE_VERIFY_TLS", default=True),
            timeout_seconds=_parse_int_env(
                "CUBE_ENGINE_TIMEOUT_SECONDS", default=60, min_value=1, max_value=3600
            ),
            page_size=_parse_int_env(
                "CUBE_QUERY_PAGE_SIZE", default=10, min_value=1, max_value=1000
            ),
            max_page_size=_parse_int_env(
                "CUBE_QUERY_MAX_PAGE_SIZE", default=500, min_value=1, max_value=10000
            ),
            cache_ttl_seconds=_parse_int_env(
                "CUBE_ENGINE_CACHE_TTL_SECONDS", default=60, min_value=0, max_value=86400
            ),
            cache_max_entries=_parse_int_env(
                "CUBE_ENGINE_CACHE_MAX_ENTRIES", default=16, min_value=0, max_value=1024
            ),
        )
