"""WebSocket client wrapper for GraphQL subscriptions."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from .errors import GraphQLClientError, GraphQLConnectionError
from .transport.ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class GraphQLWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class GraphQLWsMessage:
    """Normalized WebSocket message payload."""

    type: GraphQLWsMessageType
    data: str | None = None


class GraphQLWsClient:
    """Wrapper around the websockets library for GraphQL frames."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def subprotocol(self) -> str | None:
        """Sub-protocol selected by the server, if any."""
        if self._ws is None:
            return None
        return self._ws.subprotocol

    async def connect(
        self,
        url: str,
        *,
        subprotocols: Sequence[str] | None = None,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the GraphQL WebSocket endpoint."""
        self._ws = await connect_websocket(
            url,
            subprotocols=subprotocols,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            await self._ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload as a text frame."""
        if self._ws is None:
            raise GraphQLConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as err:
            raise GraphQLConnectionError("WebSocket closed while sending") from err

    def __aiter__(self) -> AsyncIterator[GraphQLWsMessage]:
        if self._ws is None:
            raise GraphQLConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[GraphQLWsMessage]:
        if self._ws is None:
            raise GraphQLConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                if isinstance(msg, bytes):
                    continue
                yield GraphQLWsMessage(GraphQLWsMessageType.TEXT, msg)
        except ConnectionClosed:
            yield GraphQLWsMessage(type=GraphQLWsMessageType.CLOSED)
        except Exception:
            yield GraphQLWsMessage(type=GraphQLWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield GraphQLWsMessage(type=GraphQLWsMessageType.CLOSED)

    @staticmethod
    def decode_json(message: GraphQLWsMessage) -> dict[str, Any]:
        """Decode a TEXT message payload into JSON."""
        if message.type is not GraphQLWsMessageType.TEXT:
            raise GraphQLClientError("Only TEXT messages can be decoded")
        if not isinstance(message.data, str):
            raise GraphQLClientError("Message data is not a string")
        result = json.loads(message.data)
        if not isinstance(result, dict):
            raise GraphQLClientError("Message is not a JSON object")
        return result
