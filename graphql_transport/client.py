"""High-level GraphQL client combining HTTP requests and subscriptions."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import TracebackType
from typing import Any

import aiohttp

from .config import GraphQLClientConfig
from .http import GraphQLHttpClient, GraphQLResponse
from .session import GraphQLSubscriptionClient, Unsubscribe
from .subscriptions import CompleteCallback, ErrorCallback, NextCallback

_LOGGER = logging.getLogger(__name__)


class GraphQLClient:
    """Single entry point for queries, mutations, uploads and subscriptions.

    The WebSocket connection is only opened on the first subscribe().

    Usage:
        async with GraphQLClient(GraphQLClientConfig(api_url=url, api_key=key)) as client:
            data = await client.execute("query { me { id } }")
            unsubscribe = await client.subscribe(
                "subscription { ping }", on_next=print
            )
    """

    def __init__(
        self,
        config: GraphQLClientConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.config = config or GraphQLClientConfig()
        self._session = session
        self._owns_session = session is None
        self._http: GraphQLHttpClient | None = None
        self._ws_client: GraphQLSubscriptionClient | None = None

    @classmethod
    def from_env(cls, **overrides: Any) -> GraphQLClient:
        """Create a client configured from environment variables."""
        return cls(GraphQLClientConfig.from_env(**overrides))

    async def __aenter__(self) -> GraphQLClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    def _http_client(self) -> GraphQLHttpClient:
        if self._http is None:
            if self._session is None:
                self._session = aiohttp.ClientSession()
            self._http = GraphQLHttpClient(
                self._session,
                self.config.api_url,
                api_key=self.config.api_key,
                headers=self.config.headers,
                timeout=self.config.request_timeout,
            )
        return self._http

    async def request(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        files: Any = None,
        headers: Mapping[str, str] | None = None,
        url: str | None = None,
        api_key: str | None = None,
    ) -> GraphQLResponse:
        """Send an operation; errors are returned, never raised."""
        return await self._http_client().request(
            query, variables, files=files, headers=headers, url=url, api_key=api_key
        )

    async def execute(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        files: Any = None,
        headers: Mapping[str, str] | None = None,
        url: str | None = None,
        api_key: str | None = None,
    ) -> Any:
        """Send an operation and return its data, raising on errors."""
        return await self._http_client().execute(
            query, variables, files=files, headers=headers, url=url, api_key=api_key
        )

    # -------------------------------------------------------------------------
    # WebSocket
    # -------------------------------------------------------------------------

    def _subscription_client(self) -> GraphQLSubscriptionClient:
        if self._ws_client is None:
            self._ws_client = GraphQLSubscriptionClient(
                self.config.resolve_ws_url(),
                self.config.connection_params(),
                self.config.ws_protocols,
                keepalive_interval=self.config.keepalive_interval,
                reconnect_base_delay=self.config.reconnect_base_delay,
                max_reconnect_attempts=self.config.max_reconnect_attempts,
                connect_timeout=self.config.connect_timeout,
            )
        return self._ws_client

    async def subscribe(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        on_next: NextCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> Unsubscribe:
        """Start a subscription, opening the WebSocket if needed."""
        return await self._subscription_client().subscribe(
            query,
            variables,
            on_next=on_next,
            on_error=on_error,
            on_complete=on_complete,
        )

    @property
    def is_websocket_connected(self) -> bool:
        return self._ws_client is not None and self._ws_client.is_connected

    async def close_websocket(self) -> None:
        """Close the WebSocket and forget it; the next subscribe() starts over."""
        if self._ws_client is not None:
            await self._ws_client.close()
            self._ws_client = None

    async def reconnect_websocket(self) -> None:
        if self._ws_client is not None:
            await self._ws_client.reconnect()

    async def update_websocket_auth(self, token: str) -> None:
        """Replace the authorization connection param and reconnect."""
        if self._ws_client is not None:
            self._ws_client.update_connection_params({"authorization": f"Bearer {token}"})
            await self._ws_client.reconnect()

    async def close(self) -> None:
        """Close the WebSocket and the owned HTTP session."""
        await self.close_websocket()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._http = None
        _LOGGER.debug("GraphQL client closed")
