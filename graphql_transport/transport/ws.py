"""Opening the socket behind a GraphQL subscription connection."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)
from websockets.typing import Subprotocol

from ..errors import (
    GraphQLConnectionError,
    GraphQLHandshakeError,
    GraphQLTimeout,
)

# Seconds allowed for the closing handshake before the socket is dropped.
CLOSE_TIMEOUT = 5


async def connect_websocket(
    url: str,
    *,
    subprotocols: Sequence[str] | None = None,
    ping_interval: float | None = None,
    timeout: float = 15.0,
) -> ClientConnection:
    """Open a socket to a GraphQL subscription endpoint.

    The server picks one of ``subprotocols`` (``graphql-ws`` for most
    Apollo-compatible servers). Liveness is tracked with GraphQL ping
    messages, so RFC 6455 pings stay off unless ``ping_interval`` is given.
    Frame size is unbounded.

    Raises:
        GraphQLTimeout: The handshake did not finish within ``timeout``
        GraphQLHandshakeError: Bad URL or the server refused the upgrade
        GraphQLConnectionError: Network failure while connecting
    """
    offered = [Subprotocol(token) for token in subprotocols] if subprotocols else None
    try:
        opening = websockets.connect(
            url,
            subprotocols=offered,
            ping_interval=ping_interval,
            close_timeout=CLOSE_TIMEOUT,
            max_size=None,
        )
        return await asyncio.wait_for(opening, timeout=timeout)
    except TimeoutError as err:
        raise GraphQLTimeout(f"Timed out connecting to {url}") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise GraphQLHandshakeError(f"Handshake with {url} failed: {err}") from err
    except (OSError, WebSocketException) as err:
        raise GraphQLConnectionError(f"Could not connect to {url}: {err}") from err
