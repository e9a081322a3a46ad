"""Client configuration: defaults, environment variables and YAML files."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import yaml

from .errors import GraphQLClientError
from .session import (
    DEFAULT_KEEPALIVE_INTERVAL,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_BASE_DELAY,
)

ENV_API_URL = "GRAPHQL_API_URL"
ENV_API_KEY = "GRAPHQL_API_KEY"
ENV_API_KEY_FALLBACK = "API_KEY"
ENV_WS_URL = "GRAPHQL_WS_URL"


class ConfigLoadError(GraphQLClientError):
    """Configuration file is missing or malformed."""


@dataclass(slots=True)
class GraphQLClientConfig:
    """Settings shared by the HTTP and subscription clients.

    Attributes:
        api_url: HTTP endpoint for queries and mutations.
        api_key: Sent as ``x-api-key`` over HTTP and as a Bearer
            ``authorization`` connection param over WebSocket.
        headers: Default HTTP headers, also merged into connection params.
        ws_url: WebSocket endpoint; derived from api_url when omitted.
        ws_headers: Extra connection params for the WebSocket.
        ws_protocols: Sub-protocol token(s) offered on connect.
        keepalive_interval: Seconds between keepalive pings.
        reconnect_base_delay: First reconnect delay in seconds.
        max_reconnect_attempts: Automatic reconnect ceiling.
        connect_timeout: WebSocket handshake timeout in seconds.
        request_timeout: Total HTTP request timeout, None for no limit.
    """

    api_url: str | None = None
    api_key: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    ws_url: str | None = None
    ws_headers: dict[str, str] = field(default_factory=dict)
    ws_protocols: str | list[str] | None = None
    keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL
    reconnect_base_delay: float = DEFAULT_RECONNECT_BASE_DELAY
    max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    connect_timeout: float = 15.0
    request_timeout: float | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> GraphQLClientConfig:
        """Build a config from environment variables.

        Reads GRAPHQL_API_URL, GRAPHQL_API_KEY (or API_KEY) and GRAPHQL_WS_URL.
        Keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {
            "api_url": env.get(ENV_API_URL) or None,
            "api_key": env.get(ENV_API_KEY) or env.get(ENV_API_KEY_FALLBACK) or None,
            "ws_url": env.get(ENV_WS_URL) or None,
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> GraphQLClientConfig:
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigLoadError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**dict(data))

    def resolve_ws_url(self) -> str:
        """Return ws_url, deriving ws:// or wss:// from api_url if needed."""
        if self.ws_url:
            return self.ws_url
        if not self.api_url:
            raise GraphQLClientError("WebSocket URL is required for subscriptions")

        parts = urlsplit(self.api_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        return urlunsplit(parts._replace(scheme=scheme))

    def connection_params(self) -> dict[str, Any]:
        """Assemble connection_init params: API key, then ws_headers, then headers."""
        params: dict[str, Any] = {}
        if self.api_key:
            params["authorization"] = f"Bearer {self.api_key}"
        params.update(self.ws_headers)
        params.update(self.headers)
        return params


def load_config(path: str | Path) -> GraphQLClientConfig:
    """Load a config from a YAML file.

    Raises:
        ConfigLoadError: If the file is missing or not a YAML mapping.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigLoadError(f"File not found: {path}")
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Config must be a mapping: {path}")
    return GraphQLClientConfig.from_mapping(data)
